"""
djstar settings.

Every protocol name (headers, query parameter, DOM event) and every session
key lives here so a project can rename them without touching the package.
Override them through ``DJSTAR_CONFIG`` in Django settings::

    DJSTAR_CONFIG = {
        "redirect_delay_ms": 300,
        "log_violations": False,
    }

or at runtime::

    from djstar.config import config
    config.set("redirect_delay_ms", 300)
"""

import copy
from typing import Dict, Any

DEFAULTS: Dict[str, Any] = {
    # Request side
    "signal_key": "datastar",  # Query parameter carrying the signals JSON
    "request_header": "Datastar-Request",
    "navigate_header": "Djstar-Navigate",
    "navigate_key_header": "Djstar-Navigate-Key",  # Comma-separated keys
    # Response side
    "response_header": "X-Djstar-Response",
    "navigate_event": "djstar:navigate",
    # Session keys
    "locked_signals_session_key": "djstar_locked_signals",
    "validation_rules_session_key": "djstar_signal_validation_rules",
    "flash_session_key": "_djstar_flash",
    "intended_url_session_key": "url.intended",
    # Milliseconds the browser waits before following a redirect script
    "redirect_delay_ms": 200,
    # Largest decoded file accepted from a base64 file signal
    "file_signal_max_bytes": 10 * 1024 * 1024,
    "log_violations": True,
}

_MISSING = object()


class DjstarConfig:
    """Defaults merged with ``settings.DJSTAR_CONFIG``; keys accept dot paths."""

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self.reset()

    def reset(self):
        """Drop runtime changes and re-read settings."""
        self._values = copy.deepcopy(DEFAULTS)
        self._values.update(self._settings_overrides())

    @staticmethod
    def _settings_overrides() -> Dict[str, Any]:
        from django.conf import settings
        from django.core.exceptions import ImproperlyConfigured

        try:
            return dict(getattr(settings, "DJSTAR_CONFIG", None) or {})
        except ImproperlyConfigured:
            return {}

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._values
        for part in key.split("."):
            node = node.get(part, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING or node is None:
                return default
        return node

    def set(self, key: str, value: Any):
        *parents, leaf = key.split(".")
        node = self._values
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

    def update(self, values: Dict[str, Any]):
        self._values.update(values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)


class _LazyConfig:
    """Builds the shared ``DjstarConfig`` on first use, after settings load."""

    _instance = None

    def _resolve(self) -> DjstarConfig:
        if _LazyConfig._instance is None:
            _LazyConfig._instance = DjstarConfig()
        return _LazyConfig._instance

    def __getattr__(self, name):
        return getattr(self._resolve(), name)


config = _LazyConfig()


def get_config() -> DjstarConfig:
    return config._resolve()
