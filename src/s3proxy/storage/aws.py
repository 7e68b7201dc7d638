"""AWS S3 storage backend for the S3 proxy.

Reads objects and listings from S3 (or any S3-compatible endpoint) via
aiobotocore. A single client, and with it a single connection pool, is
shared by all in-flight requests.

Credentials are resolved via the standard AWS credential chain
(env vars, ~/.aws/credentials, IAM role, etc.) unless an explicit key
pair is configured.
"""

import logging
from collections.abc import AsyncIterator
from functools import partial

from aiobotocore.session import AioSession
from botocore.exceptions import BotoCoreError, ClientError

from s3proxy.errors import ObjectNotFound, ObjectNotModified, StorageError
from s3proxy.storage.backend import FORWARDED_METADATA, StoredObject

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024

_NOT_FOUND_CODES = ("NoSuchKey", "NotFound", "404")
_NOT_MODIFIED_CODES = ("NotModified", "304")


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


async def _iter_body(body) -> AsyncIterator[bytes]:
    """Yield an aiobotocore StreamingBody in 64KB chunks, then release it."""
    async with body as stream:
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


async def _release_body(body) -> None:
    """Return the connection behind a StreamingBody to the pool."""
    await body.__aexit__(None, None, None)


class AWSStorageBackend:
    """Storage backend that reads from real S3 buckets.

    Attributes:
        region: The AWS region.
        endpoint_url: Custom endpoint for S3-compatible services.
        use_path_style: Use path-style addressing instead of virtual hosts.
        bucket_name: Bucket checked for access on init (optional).
    """

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: str = "",
        use_path_style: bool = False,
        access_key_id: str = "",
        secret_access_key: str = "",
        bucket_name: str = "",
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.bucket_name = bucket_name
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    async def init(self) -> None:
        """Create the aiobotocore S3 client and verify the bucket is reachable.

        Raises:
            ValueError: If the configured bucket does not exist or is inaccessible.
        """
        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.use_path_style:
            from botocore.config import Config as BotoConfig
            client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})

        # Use explicit credentials if provided, otherwise fall back to chain
        if self.access_key_id and self.secret_access_key:
            session = AioSession()
            session.set_credentials(self.access_key_id, self.secret_access_key)
            self._session = session
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        if self.bucket_name:
            try:
                await self._client.head_bucket(Bucket=self.bucket_name)
            except ClientError as e:
                await self._client_ctx.__aexit__(None, None, None)
                self._client = None
                self._client_ctx = None
                raise ValueError(
                    f"Cannot access S3 bucket '{self.bucket_name}': {_error_code(e)}"
                ) from e

        logger.info(
            "AWS storage backend initialized: bucket=%s region=%s endpoint=%s",
            self.bucket_name,
            self.region,
            self.endpoint_url or "default",
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def get_object(
        self, bucket: str, key: str, if_none_match: str | None = None
    ) -> StoredObject:
        """Issue a GetObject and return once the response headers are in.

        Raises:
            ObjectNotFound: If the object does not exist.
            ObjectNotModified: If S3 answered 304 to the If-None-Match validator.
            StorageError: On any other S3 or transport error.
        """
        logger.debug("get s3 object with key %s", key)

        kwargs: dict = {"Bucket": bucket, "Key": key}
        if if_none_match:
            kwargs["IfNoneMatch"] = if_none_match

        try:
            resp = await self._client.get_object(**kwargs)
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_MODIFIED_CODES:
                raise ObjectNotModified(key) from e
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFound(key) from e
            raise StorageError(f"GetObject failed for {bucket}/{key}: {code}", key=key) from e
        except BotoCoreError as e:
            raise StorageError(f"GetObject failed for {bucket}/{key}: {e}", key=key) from e

        http_headers = resp.get("ResponseMetadata", {}).get("HTTPHeaders", {})
        headers = {
            name: str(http_headers[name]) for name in FORWARDED_METADATA if name in http_headers
        }
        body = resp["Body"]
        return StoredObject(
            key=key,
            headers=headers,
            body=_iter_body(body),
            release=partial(_release_body, body),
        )

    async def list_keys(self, bucket: str, prefix: str) -> list[str]:
        """List every key under ``prefix``, following continuation tokens.

        Raises:
            StorageError: If any page of the listing fails.
        """
        logger.debug("list s3 keys at %s", prefix)

        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            async for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as e:
            raise StorageError(
                f"ListObjects failed for {bucket}/{prefix}: {_error_code(e)}", key=prefix
            ) from e
        except BotoCoreError as e:
            raise StorageError(f"ListObjects failed for {bucket}/{prefix}: {e}", key=prefix) from e
        return keys
