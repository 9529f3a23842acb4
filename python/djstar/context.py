"""
Per-request djstar state.

Every collaborator that must be shared within one request (signal store,
URL guard, the response being built) hangs off a ``StarContext`` stored on
the request object. Nothing is process-global, so concurrent requests never
see each other's state.
"""

from typing import Optional

ATTRIBUTE = "_djstar"


class StarContext:
    """Lazily constructed request-scoped services."""

    def __init__(self, request):
        self.request = request
        self._store = None
        self._url_guard = None
        self._response = None

    @property
    def store(self):
        if self._store is None:
            from .signal_store import SignalStore

            self._store = SignalStore(self.request)
        return self._store

    @property
    def url_guard(self):
        if self._url_guard is None:
            from .url_guard import UrlGuard

            self._url_guard = UrlGuard(self.request)
        return self._url_guard

    @property
    def response(self):
        if self._response is None:
            from .response import StarResponse

            self._response = StarResponse(self.request)
        return self._response


def get_context(request) -> StarContext:
    context: Optional[StarContext] = getattr(request, ATTRIBUTE, None)
    if context is None:
        context = StarContext(request)
        setattr(request, ATTRIBUTE, context)
    return context
