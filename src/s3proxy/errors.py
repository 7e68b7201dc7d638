"""Error definitions for the S3 proxy."""


class ProxyError(Exception):
    """An error raised while resolving a request against the bucket.

    Attributes:
        code: Short error code string (e.g. "NoSuchKey", "NotModified").
        message: Human-readable error description.
        http_status: The HTTP status code the error maps to.
        key: The storage key or prefix the error relates to, if any.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 500,
        key: str = "",
    ) -> None:
        """Initialize the proxy error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 500).
            key: Optional storage key or prefix.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.key = key


# -- Fetch outcomes ------------------------------------------------------------


class ObjectNotFound(ProxyError):
    """The requested key does not exist in the bucket."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="NoSuchKey",
            message="The specified key does not exist.",
            http_status=404,
            key=key,
        )


class ObjectNotModified(ProxyError):
    """The object matched the If-None-Match validator."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="NotModified",
            message="Not Modified",
            http_status=304,
            key=key,
        )


class StorageError(ProxyError):
    """The storage backend failed in a way that cannot be treated as a miss."""

    def __init__(self, message: str = "Storage backend error", key: str = "") -> None:
        super().__init__(code="InternalError", message=message, http_status=500, key=key)
