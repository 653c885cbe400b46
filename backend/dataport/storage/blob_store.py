"""Durable storage for raw upload bytes, addressed by an opaque reference.

Two backends share one interface: the local filesystem (single instance
deployments) and Redis (API and worker on separate instances). References
carry their backend as a prefix, ``file:<name>`` or ``redis:<key>``.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Callable

from redis import Redis
from redis.exceptions import RedisError

from dataport.core.config import get_settings
from dataport.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

LOCAL_PREFIX = "file:"
REDIS_PREFIX = "redis:"
REDIS_KEY_PREFIX = "files:upload:"


class BlobStoreError(Exception):
    """Storage backend failed; the operation may succeed if retried."""


class BlobNotFoundError(BlobStoreError):
    """No blob exists for the reference."""


def blob_key(job_id: str, original_name: str | None = None) -> str:
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    return f"{job_id}-{uuid.uuid4().hex[:8]}{suffix}"


class BlobStore:
    """Interface used by the import engine."""

    def put(self, key: str, data: bytes) -> str:
        raise NotImplementedError

    def fetch_bytes(self, ref: str) -> bytes:
        raise NotImplementedError

    def delete(self, ref: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, ref: str) -> Path:
        if not ref.startswith(LOCAL_PREFIX):
            raise BlobNotFoundError(f"Not a local blob reference: {ref}")
        name = ref[len(LOCAL_PREFIX):]
        path = (self.root / name).resolve()
        if path.parent != self.root:
            raise BlobNotFoundError(f"Blob reference escapes storage root: {ref}")
        return path

    def put(self, key: str, data: bytes) -> str:
        ref = f"{LOCAL_PREFIX}{key}"
        try:
            self._path(ref).write_bytes(data)
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob {key}: {e}") from e
        logger.info(f"Stored blob {ref} ({len(data)} bytes)")
        return ref

    def fetch_bytes(self, ref: str) -> bytes:
        path = self._path(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {ref}") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob {ref}: {e}") from e

    def delete(self, ref: str) -> None:
        try:
            self._path(ref).unlink(missing_ok=True)
            logger.info(f"Deleted blob {ref}")
        except (OSError, BlobStoreError) as e:
            # Best effort
            logger.warning(f"Failed to delete blob {ref}: {e}")


class RedisBlobStore(BlobStore):
    def __init__(self, client_factory: Callable[[], Redis], ttl_seconds: int):
        self._client_factory = client_factory
        self.ttl_seconds = ttl_seconds

    def _key(self, ref: str) -> str:
        if not ref.startswith(REDIS_PREFIX):
            raise BlobNotFoundError(f"Not a Redis blob reference: {ref}")
        return f"{REDIS_KEY_PREFIX}{ref[len(REDIS_PREFIX):]}"

    def put(self, key: str, data: bytes) -> str:
        ref = f"{REDIS_PREFIX}{key}"
        client = self._client_factory()
        try:
            client.set(self._key(ref), data, ex=self.ttl_seconds)
        except RedisError as e:
            raise BlobStoreError(f"Failed to store blob {key} in Redis: {e}") from e
        finally:
            client.close()
        logger.info(f"Stored blob {ref} in Redis ({len(data)} bytes)")
        return ref

    def fetch_bytes(self, ref: str) -> bytes:
        client = self._client_factory()
        try:
            content = client.get(self._key(ref))
        except RedisError as e:
            raise BlobStoreError(f"Failed to read blob {ref} from Redis: {e}") from e
        finally:
            client.close()
        if content is None:
            raise BlobNotFoundError(f"Blob not found or expired: {ref}")
        return content

    def delete(self, ref: str) -> None:
        client = self._client_factory()
        try:
            client.delete(self._key(ref))
            logger.info(f"Deleted blob {ref} from Redis")
        except (RedisError, BlobStoreError) as e:
            logger.warning(f"Failed to delete blob {ref} from Redis: {e}")
        finally:
            client.close()


def get_blob_store() -> BlobStore:
    """Return the backend selected by BLOB_BACKEND."""
    settings = get_settings()
    if settings.blob_backend == "redis":
        return RedisBlobStore(
            lambda: create_redis_client(settings.redis_url, decode_responses=False),
            ttl_seconds=settings.blob_ttl_seconds,
        )
    return LocalBlobStore(settings.uploads_dir)
