"""
Log Sanitizer - Prevent log injection through user-controlled values

Signal names, URLs and header values reach djstar's log calls straight from
the client. This module neutralises them before they are formatted:

    - CR/LF replaced so a value cannot forge extra log lines
    - ANSI escapes and other control characters removed
    - Long values truncated to keep log files bounded
    - Sensitive keys redacted in dict payloads

Usage:
    from djstar.security import sanitize_for_log

    logger.warning("Locked signal %s mismatch", sanitize_for_log(name))
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional

MAX_LOG_LENGTH = 500
MAX_LIST_ITEMS = 10

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

DEFAULT_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "csrf",
        "csrfmiddlewaretoken",
        "api_key",
        "authorization",
        "cookie",
        "sessionid",
    }
)


def sanitize_for_log(value: Any, max_length: int = MAX_LOG_LENGTH) -> str:
    """
    Render *value* as a single safe log line.

    Newlines become the two-character sequence ``\\n``, control characters
    are dropped and ``None`` renders as ``[None]``.
    """
    if value is None:
        return "[None]"

    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace")
    else:
        text = str(value)

    text = _ANSI_ESCAPE_RE.sub("", text)
    text = text.replace("\r", "\\r").replace("\n", "\\n").replace("\t", " ")
    text = _CONTROL_CHARS_RE.sub("", text)

    if len(text) > max_length:
        text = f"{text[:max_length]}...[truncated at {max_length} chars]"

    return text


def sanitize_dict_for_log(
    data: Dict[str, Any],
    sensitive_keys: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """
    Return a copy of *data* safe for structured logging.

    Keys in *sensitive_keys* (case-insensitive) are replaced with
    ``[REDACTED]``; nested dicts are processed recursively and lists longer
    than ``MAX_LIST_ITEMS`` are truncated.
    """
    keys = {k.lower() for k in (sensitive_keys if sensitive_keys is not None else DEFAULT_SENSITIVE_KEYS)}
    return _sanitize_mapping(data, keys)


def _sanitize_mapping(data: Dict[str, Any], keys: set) -> Dict[str, Any]:
    result = {}
    for key, value in data.items():
        if str(key).lower() in keys:
            result[key] = "[REDACTED]"
        else:
            result[key] = _sanitize_value(value, keys)
    return result


def _sanitize_value(value: Any, keys: set) -> Any:
    if isinstance(value, dict):
        return _sanitize_mapping(value, keys)
    if isinstance(value, (list, tuple)):
        items = [_sanitize_value(item, keys) for item in value[:MAX_LIST_ITEMS]]
        if len(value) > MAX_LIST_ITEMS:
            items.append(f"...and {len(value) - MAX_LIST_ITEMS} more")
        return items
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return sanitize_for_log(value)


class DjstarLogSanitizerFilter(logging.Filter):
    """
    Logging filter that sanitizes string arguments of every record.

    Installed on the ``djstar`` logger by the app config so individual call
    sites do not have to remember to sanitize.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple):
            record.args = tuple(
                sanitize_for_log(arg) if isinstance(arg, (str, bytes)) else arg
                for arg in record.args
            )
        elif isinstance(record.args, dict):
            record.args = {
                key: sanitize_for_log(arg) if isinstance(arg, (str, bytes)) else arg
                for key, arg in record.args.items()
            }
        return True
