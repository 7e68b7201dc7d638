"""In-memory storage backend for the S3 proxy.

Implements the StorageBackend protocol using a Python dictionary. Useful
for local development and tests; nothing survives a restart. Objects are
added with put() and read back with S3-like semantics: quoted MD5 ETags,
``application/octet-stream`` when no content type was given, If-None-Match
evaluation and lexicographically ordered listings.
"""

import email.utils
import hashlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone

from s3proxy.errors import ObjectNotFound, ObjectNotModified
from s3proxy.storage.backend import StoredObject

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB (matches the AWS backend)
_CHUNK_SIZE = 64 * 1024


@dataclass
class _MemoryObject:
    data: bytes
    etag: str
    last_modified: datetime
    content_type: str
    cache_control: str | None = None


def _etag_matches(if_none_match: str, etag: str) -> bool:
    """Evaluate an If-None-Match header against a quoted ETag."""
    if if_none_match.strip() == "*":
        return True
    bare = etag.strip('"')
    for tag in if_none_match.split(","):
        tag = tag.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag.strip('"') == bare:
            return True
    return False


class MemoryStorageBackend:
    """Storage backend that holds all objects in memory.

    Objects are stored in a dictionary keyed by (bucket, key).
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], _MemoryObject] = {}

    async def init(self) -> None:
        """Nothing to set up; kept for protocol compatibility."""
        logger.info("Memory storage backend initialized")

    async def close(self) -> None:
        """Drop all stored objects."""
        self._objects.clear()

    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_control: str | None = None,
        last_modified: datetime | None = None,
    ) -> str:
        """Store an object.

        Args:
            bucket: The bucket name.
            key: The object key.
            data: The raw bytes to store.
            content_type: Stored Content-Type. Defaults to octet-stream.
            cache_control: Stored Cache-Control, if any.
            last_modified: Modification time. Defaults to now.

        Returns:
            The quoted MD5 ETag of the stored data.
        """
        etag = f'"{hashlib.md5(data).hexdigest()}"'
        self._objects[(bucket, key)] = _MemoryObject(
            data=data,
            etag=etag,
            last_modified=last_modified or datetime.now(timezone.utc),
            content_type=content_type or "application/octet-stream",
            cache_control=cache_control,
        )
        return etag

    async def get_object(
        self, bucket: str, key: str, if_none_match: str | None = None
    ) -> StoredObject:
        """Return a stored object.

        Raises:
            ObjectNotFound: If the key does not exist.
            ObjectNotModified: If ``if_none_match`` matches the stored ETag.
        """
        obj = self._objects.get((bucket, key))
        if obj is None:
            raise ObjectNotFound(key)
        if if_none_match and _etag_matches(if_none_match, obj.etag):
            raise ObjectNotModified(key)

        headers = {
            "content-type": obj.content_type,
            "last-modified": email.utils.format_datetime(obj.last_modified, usegmt=True),
            "etag": obj.etag,
            "content-length": str(len(obj.data)),
        }
        if obj.cache_control:
            headers["cache-control"] = obj.cache_control
        return StoredObject(key=key, headers=headers, body=self._iter_body(obj.data))

    async def _iter_body(self, data: bytes) -> AsyncIterator[bytes]:
        for offset in range(0, len(data), _CHUNK_SIZE):
            yield data[offset:offset + _CHUNK_SIZE]

    async def list_keys(self, bucket: str, prefix: str) -> list[str]:
        """List keys under ``prefix`` in lexicographic order."""
        return sorted(
            key for (b, key) in self._objects if b == bucket and key.startswith(prefix)
        )
