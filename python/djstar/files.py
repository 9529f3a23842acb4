"""
Files carried in signals as base64 text.

A file input bound to a signal reaches the server as a list holding either
plain base64 strings or ``{"name": ..., "contents": ..., "mime": ...}``
objects; data URLs (``data:image/png;base64,...``) are accepted as well.
Only the first file of the list is used.

Usage:
    def save_avatar(request):
        path = signals(request).store("avatar", "avatars")
        url = signals(request).store_as_url("avatar", "avatars")

Files are written through Django's storage API, so any configured backend
(local disk, S3 via django-storages, ...) works unchanged.
"""

import base64
import binascii
import json
import logging
import re
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from django.core.files.base import ContentFile
from django.core.files.images import get_image_dimensions
from django.core.files.storage import Storage, default_storage, storages

from .config import config
from .security import sanitize_for_log

logger = logging.getLogger(__name__)

# (magic_bytes, offset); every entry of a list must match
MAGIC_BYTES: Dict[str, Tuple[Tuple[bytes, int], ...]] = {
    "image/jpeg": ((b"\xff\xd8\xff", 0),),
    "image/png": ((b"\x89PNG\r\n\x1a\n", 0),),
    "image/gif": ((b"GIF8", 0),),
    "image/webp": ((b"RIFF", 0), (b"WEBP", 8)),
    "application/pdf": ((b"%PDF", 0),),
}

MIME_EXTENSIONS: Dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "application/json": "json",
}

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

StorageArg = Union[None, str, Storage]


def extract_base64(value: Any) -> str:
    """Pull the base64 text of the first file out of a signal value."""
    if isinstance(value, (list, tuple)):
        if not value:
            return ""
        value = value[0]
    if isinstance(value, Mapping):
        value = value.get("contents")
    if not isinstance(value, str):
        return ""
    if ";base64," in value:
        value = value.split(",", 1)[1]
    return value.strip()


def estimated_size(text: str) -> int:
    """Decoded byte count of *text*, computed without decoding it."""
    return (len(text) * 3) // 4 - text[-2:].count("=")


def is_valid_base64(text: str) -> bool:
    if not text or len(text) % 4 or not _BASE64_RE.match(text):
        return False
    try:
        base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def decode_base64(text: str, max_bytes: Optional[int] = None) -> bytes:
    """
    Decode strictly, refusing payloads larger than *max_bytes*.

    Raises:
        ValueError: on malformed base64 or an oversized payload
    """
    if max_bytes is None:
        max_bytes = config.get("file_signal_max_bytes")
    if max_bytes and estimated_size(text) > max_bytes:
        raise ValueError(f"File exceeds the {max_bytes} byte limit for file signals")
    if not is_valid_base64(text):
        raise ValueError("Signal value is not valid base64")
    return base64.b64decode(text)


def detect_mime(data: bytes) -> Optional[str]:
    """MIME type from content: magic bytes first, then text sniffing."""
    for mime, signatures in MAGIC_BYTES.items():
        if all(data[offset:offset + len(magic)] == magic for magic, offset in signatures):
            return mime

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    stripped = text.lstrip()
    if stripped.startswith("<svg") or (stripped.startswith("<?xml") and "<svg" in stripped):
        return "image/svg+xml"
    try:
        json.loads(text)
    except ValueError:
        return "text/plain"
    return "application/json"


def extension_for(mime: Optional[str]) -> str:
    return MIME_EXTENSIONS.get(mime or "", "bin")


def image_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    """``(width, height)`` of a raster image, None when *data* is not one."""
    width, height = get_image_dimensions(ContentFile(data))
    if width is None or height is None:
        return None
    return width, height


def unique_filename(extension: str) -> str:
    return f"file_{uuid.uuid4().hex}.{extension}"


def resolve_storage(storage: StorageArg = None) -> Storage:
    """``None`` is ``default_storage``; a string names an entry of ``STORAGES``."""
    if storage is None:
        return default_storage
    if isinstance(storage, str):
        return storages[storage]
    return storage


class SignalFileStorage:
    """Saves base64 file signals of one request through Django storage."""

    def __init__(self, store):
        self.store = store

    def save(
        self,
        key: str,
        directory: str = "",
        storage: StorageArg = None,
        filename: Optional[str] = None,
    ) -> str:
        """
        Decode the file in signal *key* and save it.

        Returns:
            The name the storage backend saved the file under

        Raises:
            ValueError: when the signal holds no file or invalid base64
        """
        text = extract_base64(self.store.get(key))
        if not text:
            raise ValueError(f"No base64 data found for signal: {key}")

        data = decode_base64(text)
        if not filename:
            filename = unique_filename(extension_for(detect_mime(data)))

        directory = directory.strip("/")
        path = f"{directory}/{filename}" if directory else filename
        name = resolve_storage(storage).save(path, ContentFile(data))
        logger.debug("Stored file signal %s as %s", sanitize_for_log(key), sanitize_for_log(name))
        return name

    def save_as_url(
        self,
        key: str,
        directory: str = "",
        storage: StorageArg = None,
        filename: Optional[str] = None,
    ) -> str:
        backend = resolve_storage(storage)
        return backend.url(self.save(key, directory, backend, filename))

    def save_many(self, mapping: Mapping[str, str], storage: StorageArg = None) -> Dict[str, str]:
        """Save every signal of *mapping* (key -> directory) that was submitted."""
        backend = resolve_storage(storage)
        return {
            key: self.save(key, directory, backend)
            for key, directory in mapping.items()
            if self.store.has(key)
        }
