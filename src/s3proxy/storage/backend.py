"""Abstract storage backend protocol for the S3 proxy."""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

# Stored headers handed to the response translator
FORWARDED_METADATA = ("content-type", "last-modified", "etag", "cache-control", "content-length")


@dataclass
class StoredObject:
    """A found object whose headers have arrived but whose body has not.

    Attributes:
        key: The storage key the object was found at.
        headers: Object metadata keyed by lower-case header name. Only
            names in FORWARDED_METADATA are present, any may be missing.
        body: Async iterator over the object bytes. Consuming it is what
            actually transfers the body.
        release: Optional coroutine function returning the underlying
            connection to its pool. Backends without pooled streams leave
            it unset.
    """

    key: str
    headers: dict[str, str] = field(default_factory=dict)
    body: AsyncIterator[bytes] | None = None
    release: Callable[[], Awaitable[None]] | None = None
    _closed: bool = field(default=False, init=False, repr=False)

    async def close(self) -> None:
        """Release the body stream, whether or not it was ever read.

        Closing a body generator that never started does not run any of
        its cleanup, hence the separate ``release`` hook. Safe to call
        more than once.
        """
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self.body, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.release is not None:
            await self.release()


class StorageBackend(Protocol):
    """Protocol defining the read-only object storage interface.

    Implementations raise the errors from ``s3proxy.errors``:
    ObjectNotFound for missing keys, ObjectNotModified when an
    If-None-Match validator matches, and StorageError for anything else.
    """

    async def init(self) -> None:
        """Initialize the storage backend (connect, verify access, etc.)."""
        ...

    async def close(self) -> None:
        """Release resources held by the storage backend."""
        ...

    async def get_object(
        self, bucket: str, key: str, if_none_match: str | None = None
    ) -> StoredObject:
        """Fetch an object's headers and open its body stream.

        Args:
            bucket: The bucket name.
            key: The exact object key.
            if_none_match: Optional ETag validator for a conditional fetch.

        Returns:
            The object with its headers and a lazily consumed body.

        Raises:
            ObjectNotFound: If the key does not exist.
            ObjectNotModified: If ``if_none_match`` matches the object.
            StorageError: On any other backend failure.
        """
        ...

    async def list_keys(self, bucket: str, prefix: str) -> list[str]:
        """List every key under a prefix, including nested ones.

        Args:
            bucket: The bucket name.
            prefix: The key prefix; empty for the whole bucket.

        Returns:
            Full keys in backend order.

        Raises:
            StorageError: If the listing fails.
        """
        ...
