"""
View-level entry points.

    from djstar import star, signals

    def save(request):
        title = signals(request, "title", "")
        return star(request).signals(saved=True).inner("#title", title)
"""

from typing import Any, Optional

from .context import get_context


def star(request):
    """The ``StarResponse`` being built for *request*."""
    return get_context(request).response


def signals(request, key: Optional[str] = None, default: Any = None) -> Any:
    """
    Read submitted signals.

    Without *key* returns the ``SignalStore`` itself; with a key (dot paths
    allowed: ``"user.name"``, ``"items.0"``) returns that value or *default*.
    """
    store = get_context(request).store
    if key is None:
        return store
    return store.get(key, default)
