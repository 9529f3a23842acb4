"""
Tests for signal validation rules and registered rules.
"""

import pytest
from django.core.exceptions import ImproperlyConfigured

from djstar.context import get_context
from djstar.exceptions import SignalValidationError
from djstar.validation import SignalValidator, check_value

from .helpers import make_request, queued_events, signals_of


class TestRules:
    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_required_blank(self, value):
        assert check_value(value, {"required": True}) == ["This field is required."]

    def test_required_accepts_zero(self):
        assert check_value(0, {"required": True}) == []

    def test_disabled_rule_skipped(self):
        assert check_value("", {"required": False}) == []

    def test_lengths(self):
        assert check_value("a", {"min_length": 2}) == ["Must be at least 2 characters."]
        assert check_value("abc", {"max_length": 2}) == ["Must be at most 2 characters."]
        assert check_value([1, 2, 3], {"max_length": 2}) == ["Select at most 2 items."]
        assert check_value("", {"min_length": 2}) == []

    def test_pattern_must_match_fully(self):
        assert check_value("12a", {"pattern": r"\d+"}) == ["Invalid format."]
        assert check_value("123", {"pattern": r"\d+"}) == []
        assert check_value("a1", {"pattern": r"a|b1"}) == ["Invalid format."]

    def test_email_and_url(self):
        assert check_value("not-an-email", {"email": True}) == ["Enter a valid email address."]
        assert check_value("ada@example.com", {"email": True}) == []
        assert check_value("ftp://example.com", {"url": True}) == ["Enter a valid URL."]
        assert check_value("https://example.com", {"url": True}) == []

    def test_numbers(self):
        assert check_value("17", {"min": 18}) == ["Must be at least 18."]
        assert check_value(121, {"max": 120}) == ["Must be at most 120."]
        assert check_value("abc", {"min": 1}) == ["Must be a number."]
        assert check_value(None, {"min": 1}) == []

    def test_choices(self):
        assert check_value("root", {"choices": ["admin", "user"]}) == ["Must be one of: admin, user."]
        assert check_value("user", {"choices": ["admin", "user"]}) == []

    def test_custom_messages(self):
        assert check_value("", {"required": True}, {"required": "Name please."}) == ["Name please."]

    def test_custom_validators(self):
        def no_spam(value):
            return "No spam." if "spam" in value else None

        assert check_value("spam!", {"validators": [no_spam]}) == ["No spam."]

    def test_all_failures_reported(self):
        assert check_value("a", {"min_length": 2, "pattern": r"\d+"}) == [
            "Must be at least 2 characters.",
            "Invalid format.",
        ]

    def test_unknown_rule(self):
        with pytest.raises(ImproperlyConfigured):
            check_value("x", {"shape": "round"})


class TestSignalValidator:
    def test_check_returns_cleaned_values(self):
        request = make_request(signals={"user": {"name": "Ada"}, "age": 36})
        cleaned = SignalValidator(request).check({"user.name": {"required": True}, "age": {"min": 18}})
        assert cleaned == {"user.name": "Ada", "age": 36}

    def test_check_raises_with_errors(self):
        request = make_request(signals={"age": 12})
        with pytest.raises(SignalValidationError) as exc_info:
            SignalValidator(request).check({"age": {"min": 18}, "name": {"required": True}})
        assert exc_info.value.errors == {
            "age": ["Must be at least 18."],
            "name": ["This field is required."],
        }

    def test_local_signals_cannot_have_rules(self):
        with pytest.raises(ImproperlyConfigured):
            SignalValidator(make_request()).register("_open", {"required": True})

    def test_registered_rules_survive_to_next_request(self, session):
        def no_spam(value):
            return "No spam." if value and "spam" in value else None

        page = make_request(datastar=False, session=session)
        SignalValidator(page).register(
            "email",
            {"required": True, "email": True, "validators": [no_spam]},
            {"email": "Use a real address."},
        )
        stored = session["djstar_signal_validation_rules"]
        assert stored["rules"] == {"email": {"required": True, "email": True}}

        later = SignalValidator(make_request(signals={"email": "nope"}, session=session))
        assert later.has_rules_for("email")
        with pytest.raises(SignalValidationError) as exc_info:
            later.validate_single("email")
        assert exc_info.value.errors == {"email": ["Use a real address."]}

    def test_validate_single_returns_value(self, session):
        SignalValidator(make_request(datastar=False, session=session)).register("name", {"required": True})
        validator = SignalValidator(make_request(signals={"name": "Ada"}, session=session))
        assert validator.validate_single("name") == "Ada"

    def test_page_load_discards_stale_rules(self, session):
        SignalValidator(make_request(datastar=False, session=session)).register("name", {"required": True})
        reloaded = SignalValidator(make_request(datastar=False, session=session))
        assert reloaded.registered() == {}
        assert "djstar_signal_validation_rules" not in session

    def test_validate_all_registered(self, session):
        validator = SignalValidator(make_request(datastar=False, session=session))
        validator.register("name", {"required": True})
        validator.register("age", {"min": 18})
        later = SignalValidator(make_request(signals={"name": "Ada", "age": 17}, session=session))
        with pytest.raises(SignalValidationError) as exc_info:
            later.validate()
        assert exc_info.value.errors == {"age": ["Must be at least 18."]}

    def test_unregister_and_clear(self, session):
        validator = SignalValidator(make_request(datastar=False, session=session))
        validator.register("name", {"required": True})
        validator.register("age", {"min": 18})
        validator.unregister("age")
        assert list(validator.registered()) == ["name"]
        validator.clear()
        assert validator.registered() == {}

    def test_unknown_registered_path(self):
        with pytest.raises(ImproperlyConfigured):
            SignalValidator(make_request()).validate_registered(["missing"])


class TestStoreValidate:
    def test_success_resets_errors_of_validated_fields(self):
        request = make_request(signals={"name": "Ada", "errors": {"name": ["Too short."], "email": ["Taken."]}})
        cleaned = get_context(request).store.validate({"name": {"min_length": 2}})
        assert cleaned == {"name": "Ada"}
        star = get_context(request).response
        assert signals_of(queued_events(star)[0]) == {"errors": {"name": [], "email": ["Taken."]}}

    def test_failure_merges_previous_errors(self):
        request = make_request(signals={"name": "A", "errors": {"email": ["Taken."]}})
        with pytest.raises(SignalValidationError) as exc_info:
            get_context(request).store.validate({"name": {"min_length": 2}})
        assert exc_info.value.errors == {
            "email": ["Taken."],
            "name": ["Must be at least 2 characters."],
        }
