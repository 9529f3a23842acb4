"""
JSON serialization for signal values.

Signal values pushed to the client go through ``to_signal_value`` first so
objects exposing a mapping or JSON contract are unwrapped, then through
``SignalJSONEncoder`` for the remaining Django and Python types.
"""

import dataclasses
import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict
from uuid import UUID

from django.db import models
from django.forms.models import model_to_dict
from django.utils.functional import Promise

# Escapes applied to JSON text embedded in markup (tags, ampersand, quotes)
_HTML_SAFE_ESCAPES = {
    ord("<"): "\\u003C",
    ord(">"): "\\u003E",
    ord("&"): "\\u0026",
    ord("'"): "\\u0027",
}


class SignalJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles common Django and Python types.

    Automatically converts:
    - datetime/date/time → ISO format strings
    - UUID → string
    - Decimal → float
    - lazy translation strings → string
    - Django models → dict of their editable fields
    - QuerySets and sets → list
    """

    def default(self, obj):
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()

        if isinstance(obj, UUID):
            return str(obj)

        if isinstance(obj, Decimal):
            return float(obj)

        if isinstance(obj, Promise):
            return str(obj)

        if isinstance(obj, models.Model):
            return model_to_dict(obj)

        # QuerySets
        if hasattr(obj, "model") and hasattr(obj, "__iter__"):
            return list(obj)

        if isinstance(obj, (set, frozenset)):
            return list(obj)

        unwrapped = _unwrap(obj)
        if unwrapped is not obj:
            return unwrapped

        return super().default(obj)


def _unwrap(value: Any) -> Any:
    """Apply the mapping/JSON contracts of *value*, or return it unchanged."""
    if isinstance(value, type):
        return value

    for method in ("to_dict", "as_dict"):
        converter = getattr(value, method, None)
        if callable(converter):
            return converter()

    for method in ("__json__", "to_json"):
        converter = getattr(value, method, None)
        if callable(converter):
            result = converter()
            if isinstance(result, str):
                try:
                    return json.loads(result)
                except ValueError:
                    return result
            return result

    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)

    return value


def to_signal_value(value: Any) -> Any:
    """
    Convert *value* into a JSON-compatible signal value.

    Objects implementing ``to_dict()``/``as_dict()`` (mapping contract) or
    ``__json__()``/``to_json()`` (JSON contract) are unwrapped first; nested
    dicts and lists are converted recursively.
    """
    value = _unwrap(value)

    if isinstance(value, dict):
        return {str(k): to_signal_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_signal_value(v) for v in value]
    return value


def convert_signals(signals: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a batch of signals, keeping key order."""
    return {name: to_signal_value(value) for name, value in signals.items()}


def dumps(value: Any) -> str:
    """Compact JSON encoding with Django type support."""
    return json.dumps(value, cls=SignalJSONEncoder, separators=(",", ":"), ensure_ascii=False)


def dumps_html_safe(value: Any) -> str:
    """
    Encode *value* as JSON that is safe to embed in HTML.

    ``<``, ``>``, ``&`` and ``'`` are emitted as unicode escapes, so the
    text can sit inside a ``<script>`` element or a single-quoted attribute.
    """
    return dumps(value).translate(_HTML_SAFE_ESCAPES)


def _normalize_numbers(value: Any) -> Any:
    # bool is an int subclass and must stay distinct from 1 and 0
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize_numbers(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_numbers(item) for item in value]
    return value


def canonical(value: Any) -> str:
    """
    Canonical JSON text used to compare signal values.

    Types stay distinct (``1``, ``"1"`` and ``true`` all differ), but numbers
    compare by value: a browser parses ``10.0`` and sends back ``10``.
    """
    return json.dumps(
        _normalize_numbers(value), cls=SignalJSONEncoder, sort_keys=True, separators=(",", ":")
    )
