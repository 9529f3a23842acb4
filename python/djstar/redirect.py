"""
Full-page redirects that carry flash data.

A Datastar request is a ``fetch()``; an HTTP 302 would be followed by the
browser's fetch machinery and consume the flash data before the real page
loads. ``StarRedirect`` instead answers with a script that assigns
``window.location``, after making sure the flash data is durable:

1. flash each value as new
2. ``persist()``: age once and save the session right now
3. ``reflash()``: mark the data new again, because the end-of-request aging
   in ``DjstarMiddleware`` will age it a second time

Exactly one new -> old transition therefore happens between the write and
the destination page's read.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union
from urllib.parse import urlsplit

from django.http import HttpResponseRedirect

from .config import config
from .context import get_context
from .exceptions import InvalidNavigationError, StreamTerminated
from .flash import FlashBag
from .request import is_datastar
from .sse import js_string
from .url_guard import ALLOWED_SCHEMES, strip_fragment

logger = logging.getLogger(__name__)


class StarRedirect:
    """
    Fluent redirect builder.

    Usage::

        return star(request).redirect("/dashboard").with_flash("message", "Saved")
    """

    def __init__(self, url: str, response=None):
        if response is None:
            raise TypeError("StarRedirect requires the StarResponse it belongs to")
        self.response = response
        self.request = response.request
        self.flash_data: Dict[str, Any] = {}
        self.url = self._checked(url)

    @property
    def guard(self):
        return get_context(self.request).url_guard

    def _checked(self, url: str) -> str:
        scheme = urlsplit(url).scheme
        if scheme and scheme not in ALLOWED_SCHEMES:
            raise InvalidNavigationError(f"URL scheme '{scheme}' is not allowed")
        return url

    # ------------------------------------------------------------------
    # Flash data
    # ------------------------------------------------------------------

    def with_flash(self, key: Union[str, Mapping[str, Any]], value: Any = None) -> "StarRedirect":
        if isinstance(key, Mapping):
            self.flash_data.update(key)
        else:
            self.flash_data[key] = value
        return self

    def with_input(self, data: Optional[Dict[str, Any]] = None) -> "StarRedirect":
        """Flash the submitted input (signals, or form data for plain posts)."""
        if not data:
            data = self._submitted_input()
        return self.with_flash("_old_input", data)

    def with_errors(self, errors: Any) -> "StarRedirect":
        return self.with_flash("errors", errors)

    def _submitted_input(self) -> Dict[str, Any]:
        if is_datastar(self.request):
            signals = get_context(self.request).store.all()
            if signals:
                return dict(signals)
        data = self.request.GET.dict()
        data.update(self.request.POST.dict())
        return data

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def _current_urls(self):
        return (
            self.request.build_absolute_uri(self.request.path),
            self.request.build_absolute_uri(),
        )

    def _previous_url(self) -> Optional[str]:
        return self.request.headers.get("Referer") or None

    def back(self, fallback: str = "/") -> "StarRedirect":
        """Redirect to the same-origin referring page, else *fallback*."""
        previous = self._previous_url()
        if not previous or strip_fragment(previous) in self._current_urls():
            self.url = self.guard.build(fallback)
        elif self.guard.is_same_origin(previous) and not self.guard.is_relative(previous):
            self.url = previous
        else:
            self.url = self.guard.build(fallback)
        return self

    def back_or(
        self,
        route_name: str,
        args: Optional[Sequence[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> "StarRedirect":
        """Go back when there is a referring page, else to a named route."""
        previous = self._previous_url()
        if not previous or strip_fragment(previous) == self._current_urls()[0]:
            return self.route(route_name, args=args, kwargs=kwargs)
        return self.back()

    def refresh(self, preserve_query: bool = True, preserve_fragment: bool = False) -> "StarRedirect":
        """Reload the current page, optionally keeping the referer's fragment."""
        path_url, full_url = self._current_urls()
        if not preserve_query:
            self.url = path_url
            return self

        url = full_url
        if preserve_fragment:
            previous = self._previous_url()
            fragment = urlsplit(previous).fragment if previous else ""
            if fragment:
                url = f"{url}#{fragment}"
        self.url = url
        return self

    def home(self) -> "StarRedirect":
        self.url = self.guard.build("/")
        return self

    def route(
        self,
        name: str,
        args: Optional[Sequence[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> "StarRedirect":
        self.url = self.guard.build_from_route(name, args=args, kwargs=kwargs)
        return self

    def intended(self, default: str = "/") -> "StarRedirect":
        """Redirect to the URL stashed before an authentication detour."""
        key = config.get("intended_url_session_key")
        session = getattr(self.request, "session", None)
        target = session.pop(key, default) if session is not None else default

        if not isinstance(target, str) or not self.guard.is_same_origin(target):
            target = default

        self.url = self.guard.build(target)
        return self

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _write_flash(self, durable: bool = True) -> None:
        if not self.flash_data:
            return

        session = getattr(self.request, "session", None)
        if session is None:
            logger.warning("Flash data dropped: sessions are not enabled")
            return

        bag = FlashBag(session)
        for key, value in self.flash_data.items():
            bag.flash(str(key), value)

        if not durable:
            # Ordinary redirect: the normal end-of-request cycle applies
            return

        if self.response.streaming:
            # The end-of-request aging ran before the stream body started
            bag.mark_old(self.flash_data)
            session.save()
            return

        bag.persist()
        # The middleware ages once more at the end of this request
        bag.reflash()

    def _delay(self) -> int:
        return int(config.get("redirect_delay_ms", 200))

    def _finish(self, script: str, reason: str):
        self._write_flash()
        self.response.js(script, auto_remove=True)
        if self.response.streaming:
            raise StreamTerminated(reason)
        return self.response.to_response()

    def to_response(self):
        """
        Build the HTTP response performing the redirect.

        Plain requests get an ordinary ``HttpResponseRedirect``. During a
        stream the navigation script is sent live and the stream ends.
        """
        if not is_datastar(self.request):
            self._write_flash(durable=False)
            return HttpResponseRedirect(self.url)

        script = f"setTimeout(() => window.location = {js_string(self.url)}, {self._delay()})"
        return self._finish(script, "redirect")

    def force_reload(self, force: bool = False):
        """Reload the current page instead of navigating to ``url``."""
        if not is_datastar(self.request):
            self._write_flash(durable=False)
            return HttpResponseRedirect(self.request.get_full_path())

        flag = "true" if force else "false"
        script = f"setTimeout(() => window.location.reload({flag}), {self._delay()})"
        return self._finish(script, "reload")
