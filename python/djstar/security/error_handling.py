"""
Error pages for failures that happen after a stream has started.

Once the event stream is open the status line is gone, so the only way to
report a failure is to swap the client document for an error page. What
that page reveals follows ``settings.DEBUG``: exception type, message and
traceback in development, a fixed generic sentence in production.

    from djstar.security import render_exception_page

    try:
        callback(response)
    except Exception as exc:
        response.replace_document(render_exception_page(request, exc))
"""

import html
import logging
import traceback
from typing import Any, Dict, Optional

from .log_sanitizer import sanitize_dict_for_log

# Production wording, chosen so nothing about the failure leaks
GENERIC_ERROR_MESSAGES = {
    "default": "An error occurred. Please try again.",
    "stream": "The live update was interrupted. Please refresh the page.",
    "security": "Security violation detected. Please try again.",
    "validation": "Invalid input. Please check your data.",
}


def _debug_enabled(debug_mode: Optional[bool]) -> bool:
    if debug_mode is not None:
        return debug_mode
    from django.conf import settings

    return bool(settings.configured and settings.DEBUG)


def safe_error_message(
    exception: Exception,
    error_type: str = "default",
    debug_mode: Optional[bool] = None,
) -> str:
    """
    ``"ValueError: detail"`` under DEBUG, otherwise the generic message for
    *error_type*.
    """
    if _debug_enabled(debug_mode):
        return f"{type(exception).__name__}: {exception}"
    return GENERIC_ERROR_MESSAGES.get(error_type, GENERIC_ERROR_MESSAGES["default"])


def render_exception_page(request, exception: Exception, debug_mode: Optional[bool] = None) -> str:
    """
    Render the best available HTML page for *exception*.

    Uses Django's own renderers (technical 500 page in DEBUG, the project's
    ``500.html`` otherwise) and falls back to a minimal inline page when the
    renderer itself fails.
    """
    debug = _debug_enabled(debug_mode)
    try:
        if debug:
            from django.views.debug import technical_500_response

            response = technical_500_response(
                request, type(exception), exception, exception.__traceback__
            )
        else:
            from django.views.defaults import server_error

            response = server_error(request)
        return response.content.decode(response.charset or "utf-8")
    except Exception:
        logging.getLogger(__name__).debug("Error renderer failed, using inline page", exc_info=True)
        return fallback_error_page(exception, debug_mode=debug)


def fallback_error_page(exception: Exception, debug_mode: Optional[bool] = None) -> str:
    """Minimal self-contained error page used when Django's renderer fails."""
    if _debug_enabled(debug_mode):
        frames = traceback.extract_tb(exception.__traceback__)
        location = f"{frames[-1].filename}:{frames[-1].lineno}" if frames else "unknown"
        trace = "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        )
        body = (
            "<h1>Exception in Stream</h1>\n"
            f"    <p><strong>Message:</strong> {html.escape(str(exception))}</p>\n"
            f"    <p><strong>File:</strong> {html.escape(location)}</p>\n"
            '    <pre style="background: rgba(0,0,0,0.2); padding: 15px; border-radius: 5px;">'
            f"{html.escape(trace)}</pre>"
        )
    else:
        body = f"<h1>Error</h1>\n    <p>{html.escape(safe_error_message(exception, 'stream', False))}</p>"

    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head><title>Error</title></head>\n"
        '<body style="background: #ef4444; color: white; padding: 20px; font-family: monospace;">\n'
        f"    {body}\n"
        "</body>\n"
        "</html>"
    )


def log_exception_safely(
    logger,
    exception: Exception,
    message: str,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """Log *exception* with its traceback; *extra* is sanitised before it is attached."""
    kwargs: Dict[str, Any] = {"exc_info": (type(exception), exception, exception.__traceback__)}
    if extra:
        kwargs["extra"] = {"sanitized_context": sanitize_dict_for_log(extra)}
    logger.error("%s: %s", message, type(exception).__name__, **kwargs)
