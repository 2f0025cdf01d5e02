"""Attachment uploads for report cards.

Checks size and media type, writes the blob once to object storage under a
key derived from owner, time and filename, and returns a public URL.
"""
import logging
import re
import time
from typing import Any, Iterable, Optional
from urllib.parse import quote

from .constants import ALLOWED_UPLOAD_TYPES, MAX_UPLOAD_SIZE, UPLOAD_PREFIX, sanitize_filename

logger = logging.getLogger(__name__)


class UploadRejected(Exception):
    """The upload was refused before touching storage."""


class UnsupportedMediaType(UploadRejected):
    pass


class PayloadTooLarge(UploadRejected):
    pass


class UploadFailed(Exception):
    """Object storage write failed."""


_OWNER_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


class UploadGateway:
    def __init__(self, storage: Any, public_base_url: str, max_size: int = MAX_UPLOAD_SIZE,
                 allowed_types: Iterable[str] = ALLOWED_UPLOAD_TYPES, prefix: str = UPLOAD_PREFIX):
        self.storage = storage
        self.public_base_url = public_base_url.rstrip('/')
        self.max_size = max_size
        self.allowed_types = frozenset(t.lower() for t in allowed_types)
        self.prefix = prefix.strip('/')

    def check(self, media_type: Optional[str], size: int) -> None:
        """Raise PayloadTooLarge or UnsupportedMediaType; size is checked first."""
        if size > self.max_size:
            raise PayloadTooLarge(f"File size too large. Maximum size is {self.max_size // (1024 * 1024)}MB")
        normalized = (media_type or "").split(";")[0].strip().lower()
        if normalized not in self.allowed_types:
            raise UnsupportedMediaType("Invalid file type. Only JPEG, PNG, and PDF files are allowed")

    def storage_key(self, owner_id: str, filename: Optional[str], now: Optional[float] = None) -> str:
        """`<prefix>/<owner>_<epoch millis>_<filename>`."""
        millis = int((time.time() if now is None else now) * 1000)
        owner = _OWNER_UNSAFE.sub("_", owner_id) or "anonymous"
        try:
            name = sanitize_filename(filename or "")
        except ValueError:
            name = "upload"
        name = name.replace(" ", "_")
        return f"{self.prefix}/{owner}_{millis}_{name}"

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    async def store(self, owner_id: str, filename: Optional[str], media_type: Optional[str], data: bytes) -> str:
        self.check(media_type, len(data))
        key = self.storage_key(owner_id, filename)
        try:
            await self.storage.async_upload_fileobj(key, data)
        except Exception as exc:
            logger.exception("Failed to store upload %s", key)
            raise UploadFailed(f"Failed to store {key}: {exc}") from exc
        logger.info("Stored upload %s (%d bytes, %s) for %s", key, len(data), media_type, owner_id)
        return self.public_url(key)
