"""
DjstarMiddleware - request/response integration

Install it after ``SessionMiddleware``, as the last entry of ``MIDDLEWARE``::

    MIDDLEWARE = [
        ...
        "django.contrib.sessions.middleware.SessionMiddleware",
        ...
        "djstar.middleware.DjstarMiddleware",
    ]

It:

- turns ``StarResponse`` / ``StarRedirect`` objects returned by views into
  HTTP responses
- turns ordinary 3xx redirects answering a Datastar request into a
  client-side location change, keeping flash data for the destination page
- ages flash data once at the end of every request
- answers locked signal tampering and signal validation failures
"""

import logging

from django.http import HttpResponseRedirect, JsonResponse

from .config import config
from .context import get_context
from .exceptions import SignalTamperedError, SignalValidationError
from .flash import FlashBag
from .redirect import StarRedirect
from .request import is_datastar
from .response import StarResponse
from .sse import js_string

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)

TAMPER_MESSAGE = "Security violation: Signal tampering detected. Please refresh the page."


class DjstarMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)
        response = self._convert(request, response)
        self._age_flash(request)
        return response

    def _convert(self, request, response):
        if isinstance(response, (StarResponse, StarRedirect)):
            return response.to_response()

        if (
            is_datastar(request)
            and getattr(response, "status_code", None) in REDIRECT_STATUSES
            and config.get("response_header") not in response
        ):
            return self._client_redirect(request, response)

        return response

    def _client_redirect(self, request, redirect):
        """Replay an HTTP redirect as a script the browser runs itself."""
        location = redirect["Location"]
        logger.debug("Converting %s redirect for Datastar request", redirect.status_code)

        session = getattr(request, "session", None)
        if session is not None:
            # Flash data written for the destination must survive this request
            FlashBag(session).reflash()

        star = StarResponse(request)
        delay = int(config.get("redirect_delay_ms", 200))
        star.js(f"setTimeout(() => window.location.href = {js_string(location)}, {delay})")

        response = star.to_response()
        for name, cookie in redirect.cookies.items():
            response.cookies[name] = cookie
        return response

    def _age_flash(self, request):
        session = getattr(request, "session", None)
        if session is not None:
            FlashBag(session).age()

    def process_exception(self, request, exception):
        if isinstance(exception, SignalTamperedError):
            return self._tampered(request, exception)

        if isinstance(exception, SignalValidationError):
            if not is_datastar(request):
                return None
            # A fresh responder: the view's own events are discarded
            return StarResponse(request).signals({"errors": exception.errors}).to_response()

        return None

    def _tampered(self, request, exception):
        logger.warning(
            "Signal tampering blocked on %s (%s)",
            request.path,
            exception.signal_name or "record",
        )

        if is_datastar(request):
            star = StarResponse(request)
            star.signals({"errors": {"security": [TAMPER_MESSAGE]}})
            star.js(f"console.error({js_string('[djstar] ' + str(exception))});")
            return star.to_response()

        if "application/json" in request.headers.get("Accept", ""):
            return JsonResponse(
                {"error": "Signal tampering detected", "message": TAMPER_MESSAGE},
                status=exception.status_code,
            )

        session = getattr(request, "session", None)
        if session is not None:
            FlashBag(session).flash("errors", {"security": [TAMPER_MESSAGE]})
        target = request.headers.get("Referer") or "/"
        if not get_context(request).url_guard.is_same_origin(target):
            target = "/"
        return HttpResponseRedirect(target)
