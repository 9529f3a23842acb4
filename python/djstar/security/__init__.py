"""
Security utilities for djstar: log sanitisation and safe error pages.
"""

from .error_handling import (
    GENERIC_ERROR_MESSAGES,
    fallback_error_page,
    log_exception_safely,
    render_exception_page,
    safe_error_message,
)
from .log_sanitizer import (
    DjstarLogSanitizerFilter,
    sanitize_dict_for_log,
    sanitize_for_log,
)

__all__ = [
    "GENERIC_ERROR_MESSAGES",
    "fallback_error_page",
    "log_exception_safely",
    "render_exception_page",
    "safe_error_message",
    "DjstarLogSanitizerFilter",
    "sanitize_dict_for_log",
    "sanitize_for_log",
]
