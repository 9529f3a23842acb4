"""
Datastar wire format for djstar.

Every event is framed as::

    event: datastar-patch-elements
    data: selector #list
    data: mode append
    data: elements <li>one</li>

(terminated by a blank line). The helpers below build the ``data`` lines for
each event kind in the order the client runtime expects them; ``format_event``
turns them into the final frame.
"""

from typing import Any, Dict, Iterable, List, Optional

from django.utils.html import escape

from .config import config
from .serialization import dumps_html_safe

PATCH_ELEMENTS = "datastar-patch-elements"
PATCH_SIGNALS = "datastar-patch-signals"

EVENT_TYPES = frozenset({PATCH_ELEMENTS, PATCH_SIGNALS})

PATCH_MODES = frozenset(
    {"append", "prepend", "replace", "before", "after", "inner", "outer", "remove"}
)


def format_event(event_type: str, data_lines: Iterable[str]) -> str:
    """
    Format one protocol event.

    Args:
        event_type: ``datastar-patch-elements`` or ``datastar-patch-signals``
        data_lines: Already-encoded data lines (directives then payload)

    Returns:
        Event frame terminated by a blank line
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")

    lines = [f"event: {event_type}"]
    for line in data_lines:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def sse_comment(comment: str) -> str:
    """Format a comment (keep-alive) message."""
    lines = [f": {line}" for line in comment.split("\n")]
    return "\n".join(lines) + "\n\n"


def elements_lines(
    elements: str,
    selector: Optional[str] = None,
    mode: Optional[str] = None,
    use_view_transition: bool = False,
) -> List[str]:
    """
    Build the data lines of a ``patch-elements`` event.

    Markup is trimmed and split on newlines, one ``elements`` line per line.
    """
    if mode is not None and mode not in PATCH_MODES:
        raise ValueError(f"Unknown patch mode: {mode}")

    lines = []
    if selector:
        lines.append(f"selector {selector}")
    if mode:
        lines.append(f"mode {mode}")
    if use_view_transition:
        lines.append("useViewTransition true")

    for line in elements.strip().split("\n"):
        lines.append(f"elements {line}")
    return lines


def removal_lines(selector: str, use_view_transition: bool = False) -> List[str]:
    """Build the data lines of a ``patch-elements`` event removing *selector*."""
    lines = [f"selector {selector}", "mode remove"]
    if use_view_transition:
        lines.append("useViewTransition true")
    return lines


def signals_lines(signals_json: str, only_if_missing: bool = False) -> List[str]:
    """Build the data lines of a ``patch-signals`` event from encoded JSON."""
    lines = []
    if only_if_missing:
        lines.append("onlyIfMissing true")
    for line in signals_json.split("\n"):
        lines.append(f"signals {line}")
    return lines


def script_lines(
    script: str,
    auto_remove: bool = True,
    attributes: Optional[Dict[str, Any]] = None,
) -> List[str]:
    """
    Build a ``patch-elements`` event appending a ``<script>`` to ``body``.

    With *auto_remove* the element carries ``data-effect="el.remove()"`` so
    the client runtime drops it once it has executed.
    """
    tag = "<script"
    for key, value in (attributes or {}).items():
        tag += f' {key}="{escape(str(value))}"'
    if auto_remove:
        tag += ' data-effect="el.remove()"'
    tag += f">{script}</script>"

    return elements_lines(tag, selector="body", mode="append")


def sse_headers(request) -> Dict[str, str]:
    """
    Headers required on every protocol response.

    ``Connection: keep-alive`` is only sent for HTTP/1.1 transports, and never
    to the wsgiref development server, which rejects hop-by-hop headers.
    """
    headers = {
        "Cache-Control": "no-cache",
        "Content-Type": "text/event-stream",
        "X-Accel-Buffering": "no",  # Disable nginx buffering
        config.get("response_header"): "true",
    }
    if (
        request is not None
        and request.META.get("SERVER_PROTOCOL") == "HTTP/1.1"
        and not request.META.get("SERVER_SOFTWARE", "").startswith("WSGIServer")
    ):
        headers["Connection"] = "keep-alive"
    return headers


def js_string(value: Any) -> str:
    """
    Encode *value* as a JavaScript literal that is safe inside ``<script>``.

    Tag, ampersand and apostrophe characters are unicode-escaped so user
    data can never close the surrounding element.
    """
    return dumps_html_safe(value)


__all__ = [
    "PATCH_ELEMENTS",
    "PATCH_SIGNALS",
    "PATCH_MODES",
    "format_event",
    "sse_comment",
    "elements_lines",
    "removal_lines",
    "signals_lines",
    "script_lines",
    "sse_headers",
    "js_string",
]
