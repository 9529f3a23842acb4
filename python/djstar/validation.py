"""
Signal validation

Validates submitted signals either with a Django ``forms.Form`` subclass or
with declarative rule dicts::

    store.validate({
        "name": {"required": True, "min_length": 2},
        "email": {"required": True, "email": True},
        "age": {"min": 18, "max": 120},
        "role": {"choices": ["admin", "user", "guest"]},
        "bio": {"max_length": 500, "validators": [no_spam]},
    })

Rules registered with ``SignalValidator.register`` are kept in the session so
a later request (e.g. a live ``blur`` check) can validate a single field
without redeclaring them. Local signals (``_open``) never reach the server
and cannot carry rules.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from django import forms
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.core.validators import (
    EmailValidator,
    MaxLengthValidator,
    MaxValueValidator,
    MinLengthValidator,
    MinValueValidator,
    RegexValidator,
    URLValidator,
)

from . import files
from .config import config
from .context import get_context
from .exceptions import SignalValidationError
from .request import is_datastar
from .signal_store import data_get, is_local

logger = logging.getLogger(__name__)

Rules = Dict[str, Any]


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == [] or value == {}


def _run(validator: Callable[[Any], None], value: Any) -> Optional[str]:
    try:
        validator(value)
    except ValidationError as e:
        return e.messages[0]
    return None


def _check_required(value: Any, _opts: Any) -> Optional[str]:
    if _blank(value):
        return "This field is required."
    return None


def _check_min_length(value: Any, min_len: int) -> Optional[str]:
    if not value or not isinstance(value, (str, list)):
        return None
    unit = "characters" if isinstance(value, str) else "items"
    verb = "Must be" if isinstance(value, str) else "Select"
    return _run(MinLengthValidator(min_len, message=f"{verb} at least %(limit_value)d {unit}."), value)


def _check_max_length(value: Any, max_len: int) -> Optional[str]:
    if not isinstance(value, (str, list)):
        return None
    unit = "characters" if isinstance(value, str) else "items"
    verb = "Must be" if isinstance(value, str) else "Select"
    return _run(MaxLengthValidator(max_len, message=f"{verb} at most %(limit_value)d {unit}."), value)


def _check_pattern(value: Any, pattern: str) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    # RegexValidator searches; the rule must match the whole value
    return _run(RegexValidator(rf"\A(?:{pattern})\Z", message="Invalid format."), value)


def _check_email(value: Any, _opts: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    return _run(EmailValidator(message="Enter a valid email address."), value)


def _check_url(value: Any, _opts: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    return _run(URLValidator(schemes=["http", "https"], message="Enter a valid URL."), value)


def _as_number(value: Any) -> Optional[float]:
    if _blank(value) or isinstance(value, bool):
        return None
    return float(value)


def _check_bound(value: Any, validator: Callable[[Any], None]) -> Optional[str]:
    try:
        num = _as_number(value)
    except (ValueError, TypeError):
        return "Must be a number."
    if num is None:
        return None
    return _run(validator, num)


def _check_min(value: Any, min_val: Union[int, float]) -> Optional[str]:
    return _check_bound(value, MinValueValidator(min_val, message="Must be at least %(limit_value)s."))


def _check_max(value: Any, max_val: Union[int, float]) -> Optional[str]:
    return _check_bound(value, MaxValueValidator(max_val, message="Must be at most %(limit_value)s."))


def _check_choices(value: Any, choices: list) -> Optional[str]:
    if not _blank(value) and value not in choices:
        return f"Must be one of: {', '.join(str(c) for c in choices)}."
    return None


def _file_bytes(value: Any, max_kb: Optional[float] = None) -> Union[None, bytes, str]:
    """Decoded file of a file signal, None when empty, or an error message."""
    text = files.extract_base64(value)
    if not text:
        return None
    max_bytes = int(max_kb * 1024) if max_kb is not None else None
    try:
        return files.decode_base64(text, max_bytes)
    except ValueError:
        if max_bytes is not None and files.estimated_size(text) > max_bytes:
            return f"The file may not be greater than {max_kb} kilobytes."
        return "Must be a valid base64 encoded file."


def _check_b64file(value: Any, _opts: Any) -> Optional[str]:
    data = _file_bytes(value)
    return data if isinstance(data, str) else None


def _check_b64image(value: Any, _opts: Any) -> Optional[str]:
    data = _file_bytes(value)
    if isinstance(data, str):
        return data
    if data is not None and files.image_dimensions(data) is None:
        return "Must be an image."
    return None


def _check_b64max(value: Any, max_kb: float) -> Optional[str]:
    data = _file_bytes(value, max_kb)
    return data if isinstance(data, str) else None


def _check_b64min(value: Any, min_kb: float) -> Optional[str]:
    data = _file_bytes(value)
    if isinstance(data, str):
        return data
    if data is not None and len(data) / 1024 < min_kb:
        return f"The file must be at least {min_kb} kilobytes."
    return None


def _check_b64size(value: Any, size_kb: float) -> Optional[str]:
    data = _file_bytes(value)
    if isinstance(data, str):
        return data
    if data is not None and abs(round(len(data) / 1024, 2) - size_kb) >= 0.01:
        return f"The file must be {size_kb} kilobytes."
    return None


def _check_b64mimes(value: Any, extensions: list) -> Optional[str]:
    data = _file_bytes(value)
    if isinstance(data, str):
        return data
    allowed = {"jpg" if ext == "jpeg" else ext for ext in extensions}
    if data is not None and files.extension_for(files.detect_mime(data)) not in allowed:
        return f"Must be a file of type: {', '.join(extensions)}."
    return None


def _ratio(value: Union[str, float]) -> float:
    if isinstance(value, str) and "/" in value:
        numerator, denominator = value.split("/", 1)
        return float(numerator) / float(denominator)
    return float(value)


def _check_b64dimensions(value: Any, constraints: Dict[str, Any]) -> Optional[str]:
    data = _file_bytes(value)
    if isinstance(data, str):
        return data
    if data is None:
        return None
    size = files.image_dimensions(data)
    if size is None:
        return "Must be an image."

    width, height = size
    failed = (
        width < constraints.get("min_width", width)
        or width > constraints.get("max_width", width)
        or height < constraints.get("min_height", height)
        or height > constraints.get("max_height", height)
        or width != constraints.get("width", width)
        or height != constraints.get("height", height)
        or ("ratio" in constraints and abs(width / height - _ratio(constraints["ratio"])) > 0.01)
    )
    return "The image has invalid dimensions." if failed else None


RULE_CHECKS: Dict[str, Callable[[Any, Any], Optional[str]]] = {
    "required": _check_required,
    "min_length": _check_min_length,
    "max_length": _check_max_length,
    "pattern": _check_pattern,
    "email": _check_email,
    "url": _check_url,
    "min": _check_min,
    "max": _check_max,
    "choices": _check_choices,
    "b64file": _check_b64file,
    "b64image": _check_b64image,
    "b64max": _check_b64max,
    "b64min": _check_b64min,
    "b64size": _check_b64size,
    "b64mimes": _check_b64mimes,
    "b64dimensions": _check_b64dimensions,
}


def check_value(
    value: Any,
    rules: Rules,
    messages: Optional[Dict[str, str]] = None,
) -> List[str]:
    """
    Run *rules* against one value.

    Returns every failing rule's message, in declaration order. Custom
    callables under ``validators`` return an error string or None.
    """
    messages = messages or {}
    errors = []

    for rule_name, rule_value in rules.items():
        if rule_name == "validators":
            continue
        check = RULE_CHECKS.get(rule_name)
        if check is None:
            raise ImproperlyConfigured(f"Unknown signal validation rule '{rule_name}'")
        if rule_value is False or rule_value is None:
            continue
        error = check(value, rule_value)
        if error:
            errors.append(messages.get(rule_name, error))

    for validator_fn in rules.get("validators", ()):
        error = validator_fn(value)
        if error:
            errors.append(error)

    return errors


def _is_form_class(rules: Any) -> bool:
    return isinstance(rules, type) and issubclass(rules, forms.BaseForm)


class SignalValidator:
    """
    Validate signals of one request and manage registered rules.

    Registered rules live in memory and, minus the non-serialisable custom
    ``validators``, in the session. The session copy is discarded on an
    ordinary page load and reused by the Datastar requests that follow.
    """

    def __init__(self, request, store=None):
        self.request = request
        self.store = store if store is not None else get_context(request).store
        self.session_key = config.get("validation_rules_session_key")
        self._rules: Dict[str, Rules] = {}
        self._messages: Dict[str, Dict[str, str]] = {}
        self._loaded = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _session(self):
        return getattr(self.request, "session", None)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True

        session = self._session()
        if session is None:
            return
        if self.session_key not in session or not is_datastar(self.request):
            # Fresh reactive session: rules from an earlier page are stale
            session.pop(self.session_key, None)
            return

        stored = session.get(self.session_key) or {}
        for path, entry in stored.get("rules", {}).items():
            self._rules.setdefault(path, entry)
        for path, entry in stored.get("messages", {}).items():
            self._messages.setdefault(path, entry)

    def _persist(self) -> None:
        session = self._session()
        if session is None:
            return
        session[self.session_key] = {
            "rules": {
                path: {k: v for k, v in rules.items() if k != "validators"}
                for path, rules in self._rules.items()
            },
            "messages": self._messages,
        }

    def register(self, path: str, rules: Rules, messages: Optional[Dict[str, str]] = None) -> None:
        """
        Register rules for a signal path.

        Raises:
            ImproperlyConfigured: for local signals, which never reach the server
        """
        root = path.split(".", 1)[0]
        if is_local(root):
            raise ImproperlyConfigured(
                f"Cannot register validation rules for local signal '{path}'. "
                "Local signals (prefixed with '_') stay in the browser and are "
                "never submitted to the server."
            )

        self._ensure_loaded()
        self._rules[path] = dict(rules)
        if messages:
            self._messages[path] = dict(messages)
        else:
            self._messages.pop(path, None)
        self._persist()

    def unregister(self, path: str) -> None:
        self._ensure_loaded()
        self._rules.pop(path, None)
        self._messages.pop(path, None)
        self._persist()

    def clear(self) -> None:
        self._ensure_loaded()
        self._rules = {}
        self._messages = {}
        session = self._session()
        if session is not None:
            session.pop(self.session_key, None)

    def has_rules_for(self, path: str) -> bool:
        self._ensure_loaded()
        return path in self._rules

    def registered(self) -> Dict[str, Rules]:
        self._ensure_loaded()
        return dict(self._rules)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def fields_of(self, rules: Any) -> List[str]:
        """Signal paths covered by *rules* (form class or rule mapping)."""
        if _is_form_class(rules):
            return list(rules.base_fields)
        return list(rules)

    def check(self, rules: Any, messages: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Validate the request's signals against *rules*.

        Returns:
            The cleaned values of the validated fields

        Raises:
            SignalValidationError: with ``{field: [messages]}`` on failure
        """
        data = self.store.all()

        if _is_form_class(rules):
            return self._check_form(rules, data)

        messages = messages or {}
        errors: Dict[str, List[str]] = {}
        cleaned: Dict[str, Any] = {}
        for path, field_rules in rules.items():
            value = data_get(data, path)
            field_errors = check_value(value, field_rules, messages.get(path))
            if field_errors:
                errors[path] = field_errors
            else:
                cleaned[path] = value

        if errors:
            logger.debug("Signal validation failed for %s", ", ".join(sorted(errors)))
            raise SignalValidationError(errors)
        return cleaned

    def _check_form(self, form_class, data: Dict[str, Any]) -> Dict[str, Any]:
        form_data = {}
        for name in form_class.base_fields:
            value = data_get(data, name)
            if isinstance(value, bool):
                # BooleanField treats the string "False" as unchecked
                value = "on" if value else ""
            form_data[name] = value

        form = form_class(data=form_data)
        if not form.is_valid():
            errors = {field: [str(e) for e in errs] for field, errs in form.errors.items()}
            raise SignalValidationError(errors)
        return form.cleaned_data

    def validate(self, rules: Optional[Any] = None, messages: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Validate *rules*, or every registered rule when omitted."""
        if rules is None:
            return self.validate_all_registered()
        return self.check(rules, messages)

    def validate_single(self, path: str) -> Any:
        """Validate one registered path and return its value."""
        cleaned = self.validate_registered([path])
        return cleaned.get(path)

    def validate_registered(self, paths: Iterable[str]) -> Dict[str, Any]:
        self._ensure_loaded()
        rules = {}
        messages = {}
        for path in paths:
            if path not in self._rules:
                raise ImproperlyConfigured(f"No validation rules registered for signal '{path}'")
            rules[path] = self._rules[path]
            if path in self._messages:
                messages[path] = self._messages[path]
        return self.check(rules, messages)

    def validate_all_registered(self) -> Dict[str, Any]:
        self._ensure_loaded()
        return self.check(self._rules, self._messages)
