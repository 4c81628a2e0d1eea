"""Filesystem content store with HMAC-signed, expiring download links."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import quote, urlencode

from .errors import StorageError
from .schemas import utcnow


LOGGER = logging.getLogger("bizbox.storage")


class LocalContentStore:
    """Stores bytes under ``root`` and hands out links signed with ``signing_key``."""

    def __init__(self, root: Path, signing_key: Optional[str], public_base_url: str) -> None:
        self._root = Path(root)
        self._signing_key = signing_key
        self._public_base_url = public_base_url.rstrip("/")

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Upload of {path} failed: {exc}") from exc
        LOGGER.info("Stored %s (%d bytes, %s)", path, len(data), content_type)
        return path

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def signed_url(self, stored_path: str, ttl_seconds: int, now: Optional[datetime] = None) -> str:
        if not self.exists(stored_path):
            raise StorageError(f"Cannot sign missing object {stored_path}")
        expires = int((now or utcnow()).timestamp()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "signature": self._sign(stored_path, expires)})
        return f"{self._public_base_url}/{quote(stored_path)}?{query}"

    def verify(self, path: str, expires: int, signature: str, now: Optional[datetime] = None) -> bool:
        if not self._signing_key:
            return False
        current = int((now or utcnow()).timestamp())
        if current >= int(expires):
            return False
        return hmac.compare_digest(self._sign(path, int(expires)), signature)

    def _sign(self, path: str, expires: int) -> str:
        if not self._signing_key:
            raise StorageError("No signing key configured for download links")
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._signing_key.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise StorageError(f"Invalid storage path: {path!r}")
        return self._root.joinpath(*relative.parts)
