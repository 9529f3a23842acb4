"""
Signal Store - request-scoped access to client signals

Reads the signals submitted with a Datastar request, classifies them by name
and protects "locked" signals against client-side forgery:

    count        regular signal, round-trips freely
    _open        local signal, never sent to the server by the client runtime
    userId_      locked signal, value sealed in the session and checked on
                 every request that submits it

Locked values are kept in one encrypted record per session. On the first
interaction of a reactive session the record is replaced; later
interactions merge new locked values into it.

Known limitation: the read-validate-store sequence on the session record is
not serialised across concurrent requests of the same session. Two requests
racing to store locked signals can overwrite each other's merge, so a page
should drive at most one reactive view per session at a time.
"""

import enum
import json
import logging
import time
from typing import Any, Dict, Iterable, Optional

from django.core.exceptions import ImproperlyConfigured
from django.http.request import RawPostDataException

from .config import config
from .context import get_context
from .crypto import DecryptionError, SignalCipher
from .dispatch import signal_tampering_detected
from .exceptions import SignalTamperedError, SignalValidationError, UnexpectedLockedSignalError
from .files import SignalFileStorage, StorageArg
from .request import is_datastar
from .serialization import canonical

logger = logging.getLogger(__name__)

_MISSING = object()


class SignalKind(enum.Enum):
    LOCKED = "locked"
    LOCAL = "local"
    REGULAR = "regular"


class SessionState(enum.Enum):
    """Replace-vs-merge mode of the locked record for one request."""

    FRESH = "fresh"
    CONTINUING = "continuing"


def signal_kind(name: str) -> SignalKind:
    """
    Classify a signal by the edges of its name.

    The trailing underscore wins: ``_token_`` is locked, not local.
    """
    if name.endswith("_"):
        return SignalKind.LOCKED
    if name.startswith("_"):
        return SignalKind.LOCAL
    return SignalKind.REGULAR


def is_locked(name: Any) -> bool:
    return isinstance(name, str) and signal_kind(name) is SignalKind.LOCKED


def is_local(name: Any) -> bool:
    return isinstance(name, str) and signal_kind(name) is SignalKind.LOCAL


def extract_locked(signals: Dict[str, Any]) -> Dict[str, Any]:
    """Locked entries of *signals*, in order."""
    return {name: value for name, value in signals.items() if is_locked(name)}


def data_get(data: Any, path: str, default: Any = None) -> Any:
    """
    Resolve a dot path (``user.address.city``, ``items.0``) inside *data*.
    """
    if path in (None, ""):
        return data

    current = data
    for segment in str(path).split("."):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return current


class SignalStore:
    """
    Signals of one request, with locked signal persistence.

    Construct one per request (``djstar.context.get_context(request).store``);
    the session state is derived once here and never recomputed.
    """

    def __init__(self, request, cipher: Optional[SignalCipher] = None):
        self.request = request
        self.cipher = cipher or SignalCipher()
        self.session_key = config.get("locked_signals_session_key")
        self._signals: Optional[Dict[str, Any]] = None
        self._replaced = False
        self.state = self._detect_state()

    def _detect_state(self) -> SessionState:
        session = getattr(self.request, "session", None)
        has_record = session is not None and self.session_key in session
        if not has_record or not is_datastar(self.request):
            return SessionState.FRESH
        return SessionState.CONTINUING

    @property
    def is_fresh(self) -> bool:
        return self.state is SessionState.FRESH

    @property
    def session(self):
        session = getattr(self.request, "session", None)
        if session is None:
            raise ImproperlyConfigured(
                "Locked signals require sessions. Add "
                "'django.contrib.sessions.middleware.SessionMiddleware' to MIDDLEWARE."
            )
        return session

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def all(self) -> Dict[str, Any]:
        """
        All submitted signals, parsed once per request.

        Raises:
            SignalTamperedError: on the first read when a locked signal does
                not match the session record
        """
        if self._signals is None:
            signals = self._read_payload()
            if any(is_locked(name) for name in signals):
                self._validate_locked(signals)
            self._signals = signals
        return self._signals

    read_all = all

    def _read_payload(self) -> Dict[str, Any]:
        # Query parameter first, then the whole body
        raw = self.request.GET.get(config.get("signal_key"))
        if raw is None:
            try:
                body = self.request.body
            except RawPostDataException:
                # Body already consumed as a stream by upstream code
                body = b""
            raw = body.decode("utf-8", errors="replace") if body else None

        if not raw:
            return {}

        try:
            signals = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON signal payload")
            return {}

        return signals if isinstance(signals, dict) else {}

    def get(self, path: str, default: Any = None) -> Any:
        return data_get(self.all(), path, default)

    def has(self, path: str) -> bool:
        return data_get(self.all(), path) is not None

    def only(self, keys: Iterable[str]) -> Dict[str, Any]:
        signals = self.all()
        return {key: signals[key] for key in keys if key in signals}

    def collect(self) -> Dict[str, Any]:
        return dict(self.all())

    def __contains__(self, path: str) -> bool:
        return self.has(path)

    def __getitem__(self, path: str) -> Any:
        value = data_get(self.all(), path, _MISSING)
        if value is _MISSING:
            raise KeyError(path)
        return value

    # ------------------------------------------------------------------
    # Tamper validation
    # ------------------------------------------------------------------

    def _validate_locked(self, signals: Dict[str, Any]) -> None:
        session = getattr(self.request, "session", None)
        if session is None or self.session_key not in session:
            return

        try:
            stored = self._open_record(session.get(self.session_key))
        except DecryptionError:
            self._report(None, "invalid_record")
            raise SignalTamperedError(
                "Locked signals signature is invalid. Possible tampering detected."
            )

        current = {
            name: value for name, value in extract_locked(signals).items() if value is not None
        }

        for name, original in stored.items():
            if name not in current:
                # Absent from the payload: the client deleted it
                continue
            if canonical(current[name]) != canonical(original):
                self._report(name, "mismatch")
                raise SignalTamperedError(
                    f"Locked signal '{name}' was tampered with.", signal_name=name
                )

        for name in current:
            if name not in stored:
                self._report(name, "unexpected")
                raise UnexpectedLockedSignalError(name)

    def _report(self, name: Optional[str], reason: str) -> None:
        if config.get("log_violations"):
            logger.warning(
                "Locked signal violation (%s) for signal %s from %s on %s",
                reason,
                name,
                self.request.META.get("REMOTE_ADDR", "unknown"),
                self.request.path,
            )

        signal_tampering_detected.send(
            sender=self.__class__,
            request=self.request,
            signal_name=name,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Locked record storage
    # ------------------------------------------------------------------

    def _open_record(self, token: Any) -> Dict[str, Any]:
        if not isinstance(token, str):
            raise DecryptionError("Record is not a string")
        record = self.cipher.decrypt(token)
        signals = record.get("signals")
        if not isinstance(signals, dict):
            raise DecryptionError("Record has no signal map")
        return signals

    def stored_locked(self) -> Dict[str, Any]:
        """
        Locked values currently sealed in the session.

        Unlike request validation this read is lenient: a record that cannot
        be opened is logged and treated as empty.
        """
        session = self.session
        if self.session_key not in session:
            return {}
        try:
            return self._open_record(session.get(self.session_key))
        except DecryptionError:
            logger.warning("Discarding unreadable locked signal record")
            return {}

    def _write_record(self, signals: Dict[str, Any]) -> None:
        session = self.session
        if not signals:
            session.pop(self.session_key, None)
            return
        session[self.session_key] = self.cipher.encrypt(
            {
                "signals": signals,
                "timestamp": int(time.time()),
                "session_id": session.session_key,
            }
        )

    def store_locked(self, signals: Dict[str, Any]) -> None:
        """
        Seal the locked, non-null entries of *signals*.

        On a fresh session the first write of the request replaces the
        record with exactly these entries; every other write merges into it.
        """
        locked = {name: value for name, value in extract_locked(signals).items() if value is not None}
        if not locked:
            return

        if self.is_fresh and not self._replaced:
            final = locked
            self._replaced = True
        else:
            final = self.stored_locked()
            final.update(locked)

        self._write_record(final)

    def delete_locked(self, name: str) -> None:
        """Remove one locked entry, dropping the record once empty."""
        if not is_locked(name):
            return

        existing = self.stored_locked()
        if name in existing:
            del existing[name]
            self._write_record(existing)

    def update_locked(self, name: str, value: Any) -> None:
        """
        Upsert a single locked entry, bypassing replace-vs-merge.

        ``None`` deletes the entry.
        """
        if not is_locked(name):
            return

        if value is None:
            self.delete_locked(name)
            return

        existing = self.stored_locked()
        existing[name] = value
        self._write_record(existing)

    def clear_locked(self) -> None:
        self.session.pop(self.session_key, None)

    # ------------------------------------------------------------------
    # File signals
    # ------------------------------------------------------------------

    def store(
        self,
        key: str,
        directory: str = "",
        storage: StorageArg = None,
        filename: Optional[str] = None,
    ) -> str:
        """Save the base64 file held by signal *key*; see ``djstar.files``."""
        return SignalFileStorage(self).save(key, directory, storage, filename)

    def store_as_url(
        self,
        key: str,
        directory: str = "",
        storage: StorageArg = None,
        filename: Optional[str] = None,
    ) -> str:
        return SignalFileStorage(self).save_as_url(key, directory, storage, filename)

    def store_multiple(self, mapping: Dict[str, str], storage: StorageArg = None) -> Dict[str, str]:
        return SignalFileStorage(self).save_many(mapping, storage)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, rules, messages: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Validate signals and push the refreshed ``errors`` signal.

        Errors already shown for the validated fields are reset to ``[]``.
        On failure ``SignalValidationError`` carries the previous errors
        merged with the new ones; the middleware turns it into a signal
        patch.

        Returns:
            Cleaned values of the validated signals
        """
        from .validation import SignalValidator

        errors = self.get("errors") or {}
        if not isinstance(errors, dict):
            errors = {}
        errors = dict(errors)

        validator = SignalValidator(self.request, store=self)
        fields = validator.fields_of(rules)
        for field in fields:
            if field in errors:
                errors[field] = []

        try:
            cleaned = validator.check(rules, messages)
        except SignalValidationError as e:
            merged = dict(errors)
            merged.update(e.errors)
            raise SignalValidationError(merged) from e

        get_context(self.request).response.signals({"errors": errors})
        return cleaned
