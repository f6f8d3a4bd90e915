"""Blob storage for uploaded CSV files (local filesystem or Redis)."""

from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import BinaryIO, Protocol

from redis import Redis
from redis.exceptions import RedisError

from book_importer.core.config import Settings, get_settings
from book_importer.core.errors import BlobNotFoundError, BlobStorageError
from book_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

REDIS_LOCATOR_PREFIX = "redis:"
# Redis key prefix for file storage
FILE_STORAGE_PREFIX = "files:upload:"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._/-]")


class BlobStore(Protocol):
    def upload(self, data: bytes, path_hint: str) -> str:
        """Store ``data`` and return an opaque locator."""
        ...

    def download(self, locator: str) -> BinaryIO:
        """Return a readable stream; raises BlobNotFoundError."""
        ...

    def delete(self, locator: str) -> None:
        ...


def _safe_key(path_hint: str) -> str:
    key = _UNSAFE_KEY_CHARS.sub("_", path_hint).lstrip("/")
    if not key or ".." in key.split("/"):
        raise BlobStorageError(f"Invalid blob path: {path_hint!r}")
    return key


class LocalBlobStore:
    """Persist blobs under the uploads directory; locator is the relative key."""

    def __init__(self, root: str | Path, container: str) -> None:
        self.root = Path(root).resolve()
        self.container = container

    def _path(self, locator: str) -> Path:
        key = _safe_key(locator)
        if not key.startswith(f"{self.container}/"):
            raise BlobStorageError(f"Blob {locator} is outside container {self.container}")
        return (self.root / key).resolve()

    def upload(self, data: bytes, path_hint: str) -> str:
        locator = f"{self.container}/{_safe_key(path_hint)}"
        target_path = self._path(locator)
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(data)
        except OSError as e:
            logger.error(f"OS error saving blob {locator}: {e}", exc_info=True)
            raise BlobStorageError(f"Failed to save file: {e}") from e
        logger.info(f"Stored blob {locator} ({len(data)} bytes)")
        return locator

    def download(self, locator: str) -> BinaryIO:
        path = self._path(locator)
        try:
            return io.BytesIO(path.read_bytes())
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {locator}") from e
        except OSError as e:
            raise BlobStorageError(f"Failed to read blob {locator}: {e}") from e

    def delete(self, locator: str) -> None:
        try:
            self._path(locator).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete blob {locator}: {e}")


class RedisBlobStore:
    """Keep blobs in Redis so API and workers on separate hosts share uploads.

    No TTL is applied: the import re-reads the file on every resume.
    """

    def __init__(self, client: Redis, container: str) -> None:
        self.client = client
        self.container = container

    def _key(self, locator: str) -> str:
        if not locator.startswith(REDIS_LOCATOR_PREFIX):
            raise BlobStorageError(f"Not a Redis blob locator: {locator}")
        return f"{FILE_STORAGE_PREFIX}{locator[len(REDIS_LOCATOR_PREFIX):]}"

    def upload(self, data: bytes, path_hint: str) -> str:
        locator = f"{REDIS_LOCATOR_PREFIX}{self.container}/{_safe_key(path_hint)}"
        try:
            self.client.set(self._key(locator), data)
        except RedisError as e:
            logger.error(f"Failed to store blob {locator} in Redis: {e}", exc_info=True)
            raise BlobStorageError(f"Failed to store file in Redis: {e}") from e
        logger.info(f"Stored blob {locator} in Redis ({len(data)} bytes)")
        return locator

    def download(self, locator: str) -> BinaryIO:
        try:
            content = self.client.get(self._key(locator))
        except RedisError as e:
            raise BlobStorageError(f"Failed to retrieve {locator} from Redis: {e}") from e
        if content is None:
            raise BlobNotFoundError(f"Blob not found: {locator}")
        return io.BytesIO(content)

    def delete(self, locator: str) -> None:
        try:
            self.client.delete(self._key(locator))
        except RedisError as e:
            logger.warning(f"Failed to delete blob {locator} from Redis: {e}")


def get_blob_store(settings: Settings | None = None) -> BlobStore:
    settings = settings or get_settings()
    if settings.blob_backend == "redis":
        # Binary payloads, so no decode_responses
        client = create_redis_client(settings.redis_url, decode_responses=False)
        return RedisBlobStore(client, settings.blob_container)
    return LocalBlobStore(settings.uploads_dir, settings.blob_container)
