"""
URL / History Guard

Resolves and validates the single browser URL mutation a response may
perform. Two classes of bug are blocked here:

- Open redirects: absolute and protocol-relative targets must point at the
  current request host, and only ``http``/``https`` schemes are accepted
  (``javascript:`` and ``data:`` URLs are rejected outright).
- Racing history updates: several ``pushState``/``replaceState`` calls in
  one response race each other in the browser, so a response may mutate
  the URL at most once.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union
from urllib.parse import urlencode, urljoin, urlsplit, urlunsplit

from django.http import QueryDict
from django.urls import NoReverseMatch, reverse

from .exceptions import InvalidNavigationError, UrlAlreadySetError
from .request import same_host
from .security import sanitize_for_log
from .sse import js_string

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")
HISTORY_MODES = ("push", "replace")

UrlInput = Union[None, str, Mapping[str, Any]]


class UrlGuard:
    """
    Request-scoped URL resolver with an at-most-once mutation flag.

    Obtain it through ``djstar.context.get_context(request).url_guard`` so
    every operation of one response shares the same flag.
    """

    def __init__(self, request):
        self.request = request
        self._url_set = False

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def build(self, url: UrlInput = None) -> str:
        """
        Resolve *url* to an absolute URL.

        - ``None``: the current URL without its query string
        - mapping: the current URL with those query parameters merged in
          (``None`` values remove a parameter)
        - string: absolute ``http(s)`` URLs pass through, anything else is
          resolved against the site root
        """
        if url is None:
            return self.request.build_absolute_uri(self.request.path)

        if isinstance(url, Mapping):
            return self._with_query(url)

        if isinstance(url, str):
            return self._resolve_string(url)

        raise InvalidNavigationError(
            "URL must be None, a string, or a mapping of query parameters",
            hint=f"Got {type(url).__name__}",
        )

    def _with_query(self, params: Mapping[str, Any]) -> str:
        query: QueryDict = self.request.GET.copy()
        for key, value in params.items():
            if value is None:
                query.pop(key, None)
            elif isinstance(value, (list, tuple)):
                query.setlist(key, [str(v) for v in value])
            else:
                query[key] = str(value)

        base = self.request.build_absolute_uri(self.request.path)
        encoded = query.urlencode()
        return f"{base}?{encoded}" if encoded else base

    def _resolve_string(self, url: str) -> str:
        # urlsplit() silently drops these, so check before resolving
        if any(ch in url for ch in "\r\n\t"):
            raise InvalidNavigationError("Invalid URL format: control characters in URL")
        parts = urlsplit(url)
        if parts.scheme in ALLOWED_SCHEMES and parts.netloc:
            return url
        if parts.scheme:
            # Foreign schemes are left untouched so validate() rejects them
            return url
        if url.startswith("//"):
            return url
        return urljoin(self.request.build_absolute_uri("/"), url)

    def build_from_route(
        self,
        name: str,
        args: Optional[Sequence[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Reverse a named route and validate the result.

        Raises:
            InvalidNavigationError: when the route is unknown or the
                parameters do not match it
        """
        try:
            path = reverse(name, args=args, kwargs=kwargs)
        except NoReverseMatch as e:
            raise InvalidNavigationError(
                f"Route '{name}' does not exist or its parameters do not match",
                hint=str(e),
            ) from e

        url = self.request.build_absolute_uri(path)
        self.validate(url)
        return url

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_relative(self, url: str) -> bool:
        parts = urlsplit(url)
        return not parts.scheme and not parts.netloc and not url.startswith(("//", "\\", "/\\"))

    def is_same_origin(self, url: str) -> bool:
        """True for relative paths and for http(s) URLs on the request host."""
        if self.is_relative(url):
            return True
        parts = urlsplit(url)
        if parts.scheme and parts.scheme not in ALLOWED_SCHEMES:
            return False
        return same_host(self.request, parts.netloc)

    def validate(self, url: str) -> None:
        """
        Accept relative paths and same-origin absolute URLs.

        Raises:
            InvalidNavigationError: on a malformed URL, a non-HTTP scheme or a
                foreign host
        """
        if not isinstance(url, str):
            raise InvalidNavigationError(f"Invalid URL format: {url!r}")

        if any(ch in url for ch in "\r\n\t"):
            raise InvalidNavigationError("Invalid URL format: control characters in URL")

        if self.is_relative(url):
            return

        parts = urlsplit(url)
        if parts.scheme and parts.scheme not in ALLOWED_SCHEMES:
            logger.warning("Rejected navigation to %s URL", sanitize_for_log(parts.scheme))
            raise InvalidNavigationError(f"URL scheme '{parts.scheme}' is not allowed")

        if not parts.netloc:
            raise InvalidNavigationError(f"Invalid URL format: {url}")

        if not same_host(self.request, parts.netloc):
            logger.warning(
                "Rejected cross-origin navigation to %s", sanitize_for_log(parts.hostname)
            )
            raise InvalidNavigationError(
                f"Cross-origin URLs not allowed. Got: {parts.hostname}, "
                f"Expected: {self.request.get_host()}"
            )

    # ------------------------------------------------------------------
    # Single use
    # ------------------------------------------------------------------

    def enforce_single_use(self) -> None:
        if self._url_set:
            raise UrlAlreadySetError()
        self._url_set = True

    def reset(self) -> None:
        self._url_set = False

    @property
    def url_set(self) -> bool:
        return self._url_set

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def history_script(self, url: str, mode: str = "push") -> str:
        """
        Script applying *url* through the History API.

        Failures of the History API degrade to a console warning.
        """
        if mode not in HISTORY_MODES:
            raise InvalidNavigationError(f"URL mode must be 'push' or 'replace', got '{mode}'")

        safe_url = js_string(url)
        safe_mode = js_string(mode)
        return (
            "(function(){"
            "try{"
            f"if({safe_mode}==='push'){{"
            f"history.pushState(null,'',{safe_url});"
            "}else{"
            f"history.replaceState(null,'',{safe_url});"
            "}"
            "}catch(e){"
            "console.warn('History API failed:',e);"
            "}"
            "})();"
        )


def build_query_string(params: Mapping[str, Any]) -> str:
    """
    Encode navigation query parameters.

    ``None`` and empty values are skipped; sequences are emitted as
    ``key[]=value`` pairs.
    """
    pairs = []
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            for item in value:
                if item is not None and item != "":
                    pairs.append((f"{key}[]", _query_value(item)))
        else:
            pairs.append((str(key), _query_value(value)))
    return urlencode(pairs)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else ""
    return str(value)


def strip_fragment(url: str) -> str:
    """*url* without its ``#fragment``."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
