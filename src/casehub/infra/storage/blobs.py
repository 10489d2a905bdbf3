from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from src.casehub.config import settings
from src.casehub.errors import NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)


def build_object_path(owner_id: str, category: str, file_name: str) -> str:
    """Return ``{owner}/{category}_{random}.{ext}`` for a new upload."""

    ext = ""
    if "." in file_name:
        ext = file_name.rsplit(".", 1)[1].lower()
    token = f"{int(time.time() * 1000)}{secrets.token_hex(4)}"
    name = f"{category}_{token}"
    return f"{owner_id}/{name}.{ext}" if ext else f"{owner_id}/{name}"


def _sign(bucket: str, path: str, expires: int) -> str:
    message = f"{bucket}\n{path}\n{expires}".encode("utf-8")
    return hmac.new(settings.signed_url_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class BlobStorageBackend(ABC):
    @abstractmethod
    def save_file(self, bucket: str, path: str, content: bytes, *, content_type: Optional[str] = None) -> str:
        """Persist bytes under ``bucket/path`` and return the object path."""

    @abstractmethod
    def read_file(self, bucket: str, path: str) -> bytes:
        """Return the stored bytes; raises NotFoundError if absent."""

    @abstractmethod
    def delete_file(self, bucket: str, path: str) -> None:
        """Best-effort deletion of a previously saved object."""

    def create_signed_url(self, bucket: str, path: str, expires_in: Optional[int] = None) -> str:
        """Return a time-limited download URL for ``bucket/path``.

        The signature is an HMAC over bucket, path and expiry, verified by the
        storage download route.
        """

        ttl = settings.signed_url_ttl_seconds if expires_in is None else expires_in
        expires = int(time.time()) + ttl
        query = urlencode({"expires": expires, "signature": _sign(bucket, path, expires)})
        base = settings.public_base_url.rstrip("/")
        return f"{base}/api/v1/storage/{quote(bucket)}/{quote(path)}?{query}"

    def verify_signature(
        self,
        bucket: str,
        path: str,
        expires: int,
        signature: str,
        *,
        now: Optional[float] = None,
    ) -> bool:
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(_sign(bucket, path, expires), signature)


class LocalBlobStorageBackend(BlobStorageBackend):
    """Stores objects on the local filesystem, one directory per bucket."""

    def __init__(self, base: Optional[Path] = None) -> None:
        self._base: Path = base or settings.blob_storage_dir

    def _resolve(self, bucket: str, path: str) -> Path:
        parts = [bucket, *path.split("/")]
        if any(p in ("", ".", "..") for p in parts):
            raise ValidationError("Invalid storage path", details={"path": path})
        return self._base.joinpath(*parts)

    def save_file(self, bucket: str, path: str, content: bytes, *, content_type: Optional[str] = None) -> str:
        dest_path = self._resolve(bucket, path)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_bytes(content)
        except OSError as exc:
            raise StoreError("Failed to store file", details={"path": path}) from exc
        return path

    def read_file(self, bucket: str, path: str) -> bytes:
        source = self._resolve(bucket, path)
        if not source.is_file():
            raise NotFoundError("File not found", details={"path": path})
        return source.read_bytes()

    def delete_file(self, bucket: str, path: str) -> None:
        target = self._resolve(bucket, path)
        if target.exists():
            try:
                target.unlink()
            except OSError:
                logger.warning("Could not delete stored file %s/%s", bucket, path)


blob_storage_backend: BlobStorageBackend = LocalBlobStorageBackend()
