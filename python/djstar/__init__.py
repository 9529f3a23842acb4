"""
djstar: server-side half of a reactive hypermedia protocol for Django.

Views answer Datastar requests with an event stream of DOM patches, signal
patches and scripts, built fluently::

    from djstar import star, signals

    def increment(request):
        count = signals(request, "count", 0) + 1
        return star(request).signals(count=count).inner("#count", str(count))

Signals whose names end with ``_`` are locked: their values are sealed in
the session and any forged submission is rejected.
"""

from .exceptions import (
    DjstarError,
    InvalidNavigationError,
    NoFallbackResponseError,
    SignalTamperedError,
    SignalValidationError,
    UnexpectedLockedSignalError,
    UrlAlreadySetError,
)
from .redirect import StarRedirect
from .request import is_datastar, is_navigate
from .response import StarResponse
from .shortcuts import signals, star
from .signal_store import SignalStore

__version__ = "0.1.0"

__all__ = [
    "star",
    "signals",
    "is_datastar",
    "is_navigate",
    "StarResponse",
    "StarRedirect",
    "SignalStore",
    "DjstarError",
    "InvalidNavigationError",
    "NoFallbackResponseError",
    "SignalTamperedError",
    "SignalValidationError",
    "UnexpectedLockedSignalError",
    "UrlAlreadySetError",
]
