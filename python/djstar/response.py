"""
StarResponse - the patch/event responder

Builds the Datastar event stream answering one request. Every operation
produces one protocol event; the response either accumulates them and sends
them all at once, or, after ``stream()``, sends them live while a long
running callback works::

    def increment(request):
        count = signals(request, "count", 0) + 1
        return (
            star(request)
            .signals(count=count)
            .inner("#count", str(count))
            .web(lambda: render(request, "counter.html", {"count": count}))
        )

Lifecycle: ``Idle -> Accumulating -> Flushed`` or
``Idle -> Accumulating -> Streaming -> Flushed``. The response state
(``events``, ``streaming``, the web fallback) belongs to one request only.

Every operation is a silent no-op for ordinary (non-Datastar) requests; the
``web()`` fallback answers those instead.
"""

import logging
import pprint
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from urllib.parse import urlsplit

from django.http import StreamingHttpResponse
from django.shortcuts import render as render_page
from django.template.loader import render_to_string
from django.utils.html import escape

from .config import config
from .context import get_context
from .exceptions import InvalidNavigationError, NoFallbackResponseError, StreamTerminated
from .fragments import render_block
from .redirect import StarRedirect
from .request import is_datastar, is_navigate, same_host
from .serialization import convert_signals, dumps_html_safe
from .signal_store import is_locked
from .sse import (
    PATCH_ELEMENTS,
    PATCH_SIGNALS,
    elements_lines,
    format_event,
    js_string,
    removal_lines,
    script_lines,
    signals_lines,
    sse_headers,
)
from .streaming import stream_events
from .url_guard import ALLOWED_SCHEMES, build_query_string

logger = logging.getLogger(__name__)


def should_merge_by_default(url: str) -> bool:
    """
    Default query merging for ``navigate()``.

    ``/dashboard`` does not merge; ``/dashboard?search=john`` and
    ``?search=john`` merge with the current query string.
    """
    return url.startswith("?") or "?" in url


def _signal_names(signals: Union[str, Mapping[str, Any], Iterable[Any]]) -> List[str]:
    if isinstance(signals, str):
        return [signals]
    if isinstance(signals, Mapping):
        return [str(name) for name in signals]
    return [str(name) for name in signals]


class StarResponse:
    """
    Fluent builder for Datastar protocol responses.

    Obtain the request's instance with ``djstar.star(request)``; every call
    returns the same object so helpers deep in the call stack can add events
    to the response being built.
    """

    def __init__(self, request):
        self.request = request
        self.events: List[str] = []
        self.streaming = False
        self._sink = None
        self._callback: Optional[Callable] = None
        self._fallback: Any = None

    @property
    def is_datastar(self) -> bool:
        return is_datastar(self.request)

    @property
    def store(self):
        return get_context(self.request).store

    @property
    def url_guard(self):
        return get_context(self.request).url_guard

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, data_lines: List[str]) -> "StarResponse":
        if not self.is_datastar:
            return self

        frame = format_event(event_type, data_lines)
        if self.streaming:
            self._sink.put(frame)
        else:
            self.events.append(frame)
        return self

    def _start_streaming(self, sink) -> None:
        self.events = []
        self._sink = sink
        self.streaming = True

    # ------------------------------------------------------------------
    # DOM patches
    # ------------------------------------------------------------------

    def patch_elements(
        self,
        elements: str,
        selector: Optional[str] = None,
        mode: Optional[str] = None,
        use_view_transition: bool = False,
    ) -> "StarResponse":
        return self._emit(
            PATCH_ELEMENTS,
            elements_lines(elements, selector=selector, mode=mode, use_view_transition=use_view_transition),
        )

    html = patch_elements

    def append(self, selector: str, html: str) -> "StarResponse":
        """Insert *html* as the last child of the matched elements."""
        return self.patch_elements(html, selector=selector, mode="append")

    def prepend(self, selector: str, html: str) -> "StarResponse":
        """Insert *html* as the first child of the matched elements."""
        return self.patch_elements(html, selector=selector, mode="prepend")

    def replace(self, selector: str, html: str) -> "StarResponse":
        return self.patch_elements(html, selector=selector, mode="replace")

    def before(self, selector: str, html: str) -> "StarResponse":
        return self.patch_elements(html, selector=selector, mode="before")

    def after(self, selector: str, html: str) -> "StarResponse":
        return self.patch_elements(html, selector=selector, mode="after")

    def inner(self, selector: str, html: str) -> "StarResponse":
        return self.patch_elements(html, selector=selector, mode="inner")

    def outer(self, selector: str, html: str) -> "StarResponse":
        return self.patch_elements(html, selector=selector, mode="outer")

    def remove(self, selector: str, use_view_transition: bool = False) -> "StarResponse":
        return self._emit(PATCH_ELEMENTS, removal_lines(selector, use_view_transition))

    def view(
        self,
        template_name: str,
        context: Optional[Dict[str, Any]] = None,
        selector: Optional[str] = None,
        mode: Optional[str] = None,
        use_view_transition: bool = False,
        web: bool = False,
    ) -> "StarResponse":
        """
        Render a whole template and patch it in.

        With ``web=True`` the same template, rendered as a page, also answers
        ordinary requests.
        """
        if web:
            self.web(lambda: render_page(self.request, template_name, context))

        if not self.is_datastar:
            return self

        markup = render_to_string(template_name, context, request=self.request)
        return self.patch_elements(markup, selector=selector, mode=mode, use_view_transition=use_view_transition)

    component = view

    def fragment(
        self,
        template_name: str,
        block_name: str,
        context: Optional[Dict[str, Any]] = None,
        selector: Optional[str] = None,
        mode: Optional[str] = None,
        use_view_transition: bool = False,
    ) -> "StarResponse":
        """Render one ``{% block %}`` of a template and patch it in."""
        if not self.is_datastar:
            return self

        markup = render_block(template_name, block_name, context, request=self.request)
        return self.patch_elements(markup, selector=selector, mode=mode, use_view_transition=use_view_transition)

    def fragments(self, fragments: Iterable[Dict[str, Any]]) -> "StarResponse":
        """
        Patch several fragments.

        Each item is ``{"template": ..., "block": ..., "context": {...},
        "options": {"selector": ..., "mode": ...}}``.
        """
        if not self.is_datastar:
            return self

        for spec in fragments:
            self.fragment(
                spec["template"],
                spec["block"],
                spec.get("context"),
                **spec.get("options", {}),
            )
        return self

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def signals(
        self,
        key: Union[str, Mapping[str, Any], None] = None,
        value: Any = None,
        only_if_missing: bool = False,
        **kwargs: Any,
    ) -> "StarResponse":
        """
        Patch client signals.

        Accepts a name and value, a mapping, or keyword arguments::

            response.signals("count", 1)
            response.signals({"count": 1, "userId_": 42})
            response.signals(count=1)

        Locked signals (``name_``) are sealed in the session; a ``None``
        value for a locked signal deletes it server-side.
        """
        if isinstance(key, Mapping):
            batch = dict(key)
        elif key is not None:
            batch = {key: value}
        else:
            batch = {}
        batch.update(kwargs)

        return self._update_signals(batch, only_if_missing=only_if_missing)

    def _update_signals(
        self,
        batch: Dict[str, Any],
        only_if_missing: bool = False,
        keep_deleted_locked: bool = False,
    ) -> "StarResponse":
        if not self.is_datastar:
            return self

        store = self.store
        for name, value in batch.items():
            if value is None and is_locked(name):
                store.delete_locked(name)

        converted = convert_signals(batch)
        if any(is_locked(name) and value is not None for name, value in converted.items()):
            store.store_locked(converted)

        if not keep_deleted_locked:
            converted = {
                name: value
                for name, value in converted.items()
                if not (value is None and is_locked(name))
            }

        return self._emit(PATCH_SIGNALS, signals_lines(dumps_html_safe(converted), only_if_missing))

    def forget(
        self,
        names: Union[str, Iterable[str], None] = None,
        include_locked: bool = True,
    ) -> "StarResponse":
        """
        Delete signals on the client.

        ``None`` forgets every signal the request submitted. ``errors`` is
        reset to ``[]`` rather than deleted, so templates can keep treating
        it as a mapping of lists. Locked names are also purged from the
        session unless *include_locked* is False, in which case they are
        left alone entirely.
        """
        if not self.is_datastar:
            return self

        if names is None:
            names = list(self.store.all())

        signal_names = _signal_names(names)
        if include_locked:
            for name in signal_names:
                if is_locked(name):
                    self.store.delete_locked(name)
        else:
            signal_names = [name for name in signal_names if not is_locked(name)]

        deletion = {name: ([] if name == "errors" else None) for name in signal_names}
        return self._update_signals(deletion, keep_deleted_locked=True)

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def js(
        self,
        code: str,
        auto_remove: bool = True,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> "StarResponse":
        """Append a ``<script>`` running *code* to the document body."""
        return self._emit(PATCH_ELEMENTS, script_lines(code, auto_remove=auto_remove, attributes=attributes))

    script = js

    def dispatch(
        self,
        event: str,
        data: Optional[Any] = None,
        selector: Optional[str] = None,
        window: Optional[bool] = None,
        bubbles: bool = True,
        cancelable: bool = True,
        composed: bool = True,
    ) -> "StarResponse":
        """
        Dispatch a ``CustomEvent`` carrying *data* as ``event.detail``.

        Targets every element matching *selector*, else ``window`` (the
        default without a selector), else ``document.body``.

        Raises:
            ValueError: if *event* is empty
        """
        if not self.is_datastar:
            return self

        if not event:
            raise ValueError("Event name cannot be empty")

        if window is None:
            window = not selector

        safe_event = js_string(event)
        safe_data = js_string(data if data is not None else {})
        init = (
            f"{{detail: {safe_data}, bubbles: {str(bool(bubbles)).lower()}, "
            f"cancelable: {str(bool(cancelable)).lower()}, composed: {str(bool(composed)).lower()}}}"
        )

        if selector:
            safe_selector = js_string(selector)
            code = (
                "(function() {"
                f"const targets = document.querySelectorAll({safe_selector});"
                "if (targets.length === 0) {"
                f"console.warn('[djstar dispatch] No elements found for selector:', {safe_selector});"
                "return;"
                "}"
                f"targets.forEach(target => target.dispatchEvent(new CustomEvent({safe_event}, {init})));"
                "})();"
            )
        elif window:
            code = f"window.dispatchEvent(new CustomEvent({safe_event}, {init}));"
        else:
            code = f"document.body.dispatchEvent(new CustomEvent({safe_event}, {init}));"

        return self.js(code)

    # ------------------------------------------------------------------
    # Browser URL (History API)
    # ------------------------------------------------------------------

    def url(self, url: Union[None, str, Mapping[str, Any]] = None, mode: str = "push") -> "StarResponse":
        """
        Change the address bar without navigating.

        Only one URL change is allowed per response.
        """
        if not self.is_datastar:
            return self

        guard = self.url_guard
        guard.enforce_single_use()
        resolved = guard.build(url)
        guard.validate(resolved)
        return self.js(guard.history_script(resolved, mode))

    def push_url(self, url: Union[None, str, Mapping[str, Any]] = None) -> "StarResponse":
        return self.url(url, "push")

    def replace_url(self, url: Union[None, str, Mapping[str, Any]] = None) -> "StarResponse":
        return self.url(url, "replace")

    def route_url(
        self,
        name: str,
        args: Optional[Sequence[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        mode: str = "push",
    ) -> "StarResponse":
        if not self.is_datastar:
            return self

        guard = self.url_guard
        guard.enforce_single_use()
        resolved = guard.build_from_route(name, args=args, kwargs=kwargs)
        return self.js(guard.history_script(resolved, mode))

    def push_route(self, name: str, args=None, kwargs=None) -> "StarResponse":
        return self.route_url(name, args, kwargs, "push")

    def replace_route(self, name: str, args=None, kwargs=None) -> "StarResponse":
        return self.route_url(name, args, kwargs, "replace")

    # ------------------------------------------------------------------
    # Client navigation
    # ------------------------------------------------------------------

    def navigate(
        self,
        url: Union[str, Mapping[str, Any]],
        key: str = "true",
        options: Optional[Dict[str, Any]] = None,
    ) -> "StarResponse":
        """
        Ask the client navigator to load *url* into the region named *key*.

        *url* may be a query mapping, which targets the current path.
        Options: ``merge`` (keep current query parameters, defaulting to
        True only when the target carries a query), ``only``, ``except``
        and ``replace`` (``replaceState`` instead of ``pushState``).
        """
        if not self.is_datastar:
            return self

        guard = self.url_guard
        guard.enforce_single_use()

        if isinstance(url, Mapping):
            query = build_query_string(url)
            final_url = f"{self.request.path}?{query}" if query else self.request.path
        else:
            final_url = url

        guard.validate(final_url)

        options = options or {}
        client_options: Dict[str, Any] = {}
        merge = options.get("merge")
        client_options["merge"] = bool(merge) if merge is not None else should_merge_by_default(final_url)
        if options.get("only"):
            client_options["only"] = list(options["only"])
        if options.get("except"):
            client_options["except"] = list(options["except"])
        if options.get("replace"):
            client_options["replace"] = True

        detail = js_string(
            {
                "url": final_url,
                "key": key,
                "options": client_options,
                "timestamp": time.time(),
            }
        )
        event = js_string(config.get("navigate_event"))
        return self.js(f"document.dispatchEvent(new CustomEvent({event}, {{ detail: {detail} }}))")

    def navigate_with(self, url, key: str = "true", merge: bool = False, options=None) -> "StarResponse":
        return self.navigate(url, key, {**(options or {}), "merge": merge})

    def navigate_merge(self, url, key: str = "true", options=None) -> "StarResponse":
        return self.navigate_with(url, key, True, options)

    def navigate_clean(self, url, key: str = "true", options=None) -> "StarResponse":
        return self.navigate_with(url, key, False, options)

    def navigate_only(self, url, only: Sequence[str], key: str = "true") -> "StarResponse":
        return self.navigate(url, key, {"merge": True, "only": only})

    def navigate_except(self, url, exclude: Sequence[str], key: str = "true") -> "StarResponse":
        return self.navigate(url, key, {"merge": True, "except": exclude})

    def navigate_replace(self, url, key: str = "true", options=None) -> "StarResponse":
        return self.navigate(url, key, {**(options or {}), "replace": True})

    def update_queries(self, queries: Mapping[str, Any], key: str = "filters", merge: bool = True) -> "StarResponse":
        """Navigate to the current path with new query parameters."""
        return self.navigate(queries, key, {"merge": merge})

    def clear_queries(self, names: Iterable[str], key: str = "clear") -> "StarResponse":
        return self.navigate({name: None for name in names}, key, {"merge": True})

    def reset_pagination(self, key: str = "pagination") -> "StarResponse":
        return self.navigate({"page": 1}, key, {"merge": True})

    def route(
        self,
        name: str,
        args: Optional[Sequence[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        key: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> "StarResponse":
        """Navigate to a named route."""
        if not self.is_datastar:
            return self

        url = self.url_guard.build_from_route(name, args=args, kwargs=kwargs)
        return self.navigate(url, key or "route", options)

    def back(self, fallback: str = "/", key: str = "back", options=None) -> "StarResponse":
        """Navigate to the same-origin referring page, else *fallback*."""
        referer = self.request.headers.get("Referer") or fallback
        if referer != self.request.build_absolute_uri(self.request.path):
            if not self.url_guard.is_relative(referer):
                if not same_host(self.request, urlsplit(referer).netloc):
                    referer = fallback

        return self.navigate(referer, key, {"merge": True, **(options or {})})

    def refresh(self, key: str = "refresh", options=None) -> "StarResponse":
        """Re-navigate to the current URL, keeping its query."""
        return self.navigate(self.request.build_absolute_uri(), key, {"merge": True, **(options or {})})

    def reload(self) -> "StarResponse":
        """Full page reload through the ``@reload()`` client action."""
        return self.js("@reload()")

    # ------------------------------------------------------------------
    # Full navigation and document replacement
    # ------------------------------------------------------------------

    def redirect(self, url: str):
        """Start a full-page redirect; see ``StarRedirect``."""
        return StarRedirect(url, self)

    def location(self, url: str) -> "StarResponse":
        """
        Send the browser to *url* immediately.

        Inside a stream this ends the stream.
        """
        scheme = urlsplit(url).scheme
        if scheme and scheme not in ALLOWED_SCHEMES:
            raise InvalidNavigationError(f"URL scheme '{scheme}' is not allowed")

        self._emit(
            PATCH_ELEMENTS,
            elements_lines(
                f"<script>window.location.href = {js_string(url)};</script>",
                selector="body",
                mode="append",
            ),
        )
        if self.streaming:
            raise StreamTerminated("location")
        return self

    def replace_document(self, page: str) -> "StarResponse":
        """
        Replace the whole client document with *page*.

        Inside a stream this ends the stream.
        """
        self._emit(
            PATCH_ELEMENTS,
            elements_lines(
                f"<script>document.open(); document.write({js_string(page)}); document.close();</script>",
                selector="body",
                mode="append",
            ),
        )
        if self.streaming:
            raise StreamTerminated("document replaced")
        return self

    def dump(self, *values: Any) -> "StarResponse":
        """Show *values* on a diagnostic page replacing the document."""
        blocks = "\n".join(f"<pre>{escape(pprint.pformat(value))}</pre>" for value in values)
        page = (
            "<!DOCTYPE html>\n"
            "<html>\n"
            '<head>\n    <meta charset="UTF-8">\n    <title>Dump</title>\n'
            "    <style>body { background: #18171B; color: #FF8400; font-family: monospace; "
            "margin: 0; padding: 20px; } pre { white-space: pre-wrap; word-break: break-all; }</style>\n"
            "</head>\n"
            f"<body>\n{blocks}\n</body>\n"
            "</html>"
        )
        return self.replace_document(page)

    # ------------------------------------------------------------------
    # Conditionals and fallback
    # ------------------------------------------------------------------

    def web(self, fallback: Any) -> "StarResponse":
        """
        Response for ordinary page loads: an ``HttpResponse`` or a callable
        producing one. Ignored for Datastar requests.
        """
        if self.is_datastar:
            return self
        self._fallback = fallback
        return self

    def when(self, condition: Any, callback: Callable, fallback: Optional[Callable] = None) -> "StarResponse":
        result = condition(self) if callable(condition) else condition
        if result:
            callback(self)
        elif fallback is not None:
            fallback(self)
        return self

    def unless(self, condition: Any, callback: Callable, fallback: Optional[Callable] = None) -> "StarResponse":
        result = condition(self) if callable(condition) else condition
        return self.when(not result, callback, fallback)

    def when_datastar(self, callback: Callable, fallback: Optional[Callable] = None) -> "StarResponse":
        return self.when(self.is_datastar, callback, fallback)

    def when_not_datastar(self, callback: Callable, fallback: Optional[Callable] = None) -> "StarResponse":
        return self.when(not self.is_datastar, callback, fallback)

    def when_navigate(
        self,
        key: Union[str, Iterable[str], Callable, None] = None,
        callback: Optional[Callable] = None,
        fallback: Optional[Callable] = None,
    ) -> "StarResponse":
        """Run *callback* for navigation requests carrying *key* (any key when omitted)."""
        if callable(key):
            key, callback, fallback = None, key, callback

        matched = is_navigate(self.request, key)
        if matched and callback is not None:
            callback(self)
        elif not matched and fallback is not None:
            fallback(self)
        return self

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def stream(self, callback: Callable) -> "StarResponse":
        """
        Run *callback(response)* while streaming its events live.

        Events queued before the call are sent first.
        """
        session = getattr(self.request, "session", None)
        if self.is_datastar and session is not None and session.session_key is None:
            # The session cookie is sent with the headers, before the callback runs
            session.save()
        self._callback = callback
        return self

    def to_response(self):
        """
        Materialize the HTTP response.

        Raises:
            NoFallbackResponseError: for an ordinary request without ``web()``
        """
        if not self.is_datastar:
            if self._fallback is None:
                raise NoFallbackResponseError()
            return self._fallback() if callable(self._fallback) else self._fallback

        events, self.events = self.events, []

        if self._callback is None:
            content = [frame.encode("utf-8") for frame in events]
        else:
            content = stream_events(self, self._callback, events)

        response = StreamingHttpResponse(content)
        for name, value in sse_headers(self.request).items():
            response[name] = value
        return response
