"""
Authenticated encryption for server-side signal records.

The locked signal record lives in the session, which may be stored
client-side (signed cookies) or in a shared cache. It is sealed with
AES-GCM so any modification or key change is detected on decryption.
"""

import base64
import binascii
import json
import secrets
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.utils.crypto import salted_hmac

from .serialization import SignalJSONEncoder

NONCE_SIZE = 12
KEY_SALT = "djstar.crypto.SignalCipher"


class DecryptionError(Exception):
    """The payload is malformed or failed integrity verification."""


class SignalCipher:
    """
    Seal and open JSON payloads with AES-256-GCM.

    The key is derived from ``SECRET_KEY`` (or an explicit *secret*) with
    ``salted_hmac`` so rotating the project secret invalidates every record.
    Payload layout is ``base64(nonce || ciphertext || tag)``.
    """

    def __init__(self, secret: Optional[str] = None):
        self._key = salted_hmac(KEY_SALT, "locked-signals", secret=secret, algorithm="sha256").digest()

    def encrypt(self, payload: Dict[str, Any]) -> str:
        data = json.dumps(payload, cls=SignalJSONEncoder, separators=(",", ":")).encode("utf-8")
        nonce = secrets.token_bytes(NONCE_SIZE)
        encrypted = AESGCM(self._key).encrypt(nonce, data, None)
        return base64.b64encode(nonce + encrypted).decode("ascii")

    def decrypt(self, token: str) -> Dict[str, Any]:
        """
        Open *token*.

        Raises:
            DecryptionError: if the token is not valid base64, was produced
                with another key, was modified, or does not hold a JSON object
        """
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, AttributeError) as e:
            raise DecryptionError("Malformed payload") from e

        if len(raw) <= NONCE_SIZE:
            raise DecryptionError("Payload too short")

        nonce, encrypted = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            data = AESGCM(self._key).decrypt(nonce, encrypted, None)
        except InvalidTag as e:
            raise DecryptionError("Integrity check failed") from e

        try:
            payload = json.loads(data.decode("utf-8"))
        except ValueError as e:
            raise DecryptionError("Payload is not JSON") from e

        if not isinstance(payload, dict):
            raise DecryptionError("Payload is not an object")
        return payload
