"""
Tests for log sanitisation and stream error pages.
"""

import logging

from djstar.security import (
    DjstarLogSanitizerFilter,
    fallback_error_page,
    render_exception_page,
    safe_error_message,
    sanitize_dict_for_log,
    sanitize_for_log,
)

from .helpers import make_request


class TestLogSanitizer:
    def test_newlines_escaped(self):
        assert sanitize_for_log("a\nFAKE ENTRY") == "a\\nFAKE ENTRY"

    def test_control_and_ansi_removed(self):
        assert sanitize_for_log("\x1b[31mred\x1b[0m\x00") == "red"

    def test_truncated(self):
        assert sanitize_for_log("x" * 20, max_length=5) == "xxxxx...[truncated at 5 chars]"

    def test_none(self):
        assert sanitize_for_log(None) == "[None]"

    def test_sensitive_keys_redacted(self):
        data = {"password": "hunter2", "nested": {"Token": "t"}, "name": "Ada\n"}
        assert sanitize_dict_for_log(data) == {
            "password": "[REDACTED]",
            "nested": {"Token": "[REDACTED]"},
            "name": "Ada\\n",
        }

    def test_filter_sanitizes_arguments(self):
        record = logging.LogRecord("djstar", logging.WARNING, __file__, 1, "signal %s", ("a\nb",), None)
        assert DjstarLogSanitizerFilter().filter(record)
        assert record.getMessage() == "signal a\\nb"

    def test_filter_installed_on_package_loggers(self):
        assert any(
            isinstance(f, DjstarLogSanitizerFilter) for f in logging.getLogger("djstar").filters
        )
        assert any(
            isinstance(f, DjstarLogSanitizerFilter)
            for f in logging.getLogger("djstar.signal_store").filters
        )


class TestErrorPages:
    def test_safe_message(self):
        error = ValueError("secret detail")
        assert safe_error_message(error, debug_mode=True) == "ValueError: secret detail"
        assert "secret" not in safe_error_message(error, debug_mode=False)

    def test_debug_page_is_technical_500(self):
        try:
            raise RuntimeError("boom in stream")
        except RuntimeError as e:
            page = render_exception_page(make_request(), e, debug_mode=True)
        assert "boom in stream" in page
        assert "RuntimeError" in page

    def test_production_page_hides_details(self):
        page = render_exception_page(make_request(), RuntimeError("boom in stream"), debug_mode=False)
        assert "Server Error (500)" in page
        assert "boom in stream" not in page

    def test_fallback_page(self):
        try:
            raise KeyError("missing")
        except KeyError as e:
            debug_page = fallback_error_page(e, debug_mode=True)
        assert "Exception in Stream" in debug_page
        assert "missing" in debug_page
        assert "missing" not in fallback_error_page(KeyError("missing"), debug_mode=False)
