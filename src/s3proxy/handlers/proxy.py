"""Request handler serving bucket objects as static files.

For a GET request under the mount path the handler walks the candidate
keys from ``s3proxy.resolver`` one at a time:

    - object candidates are fetched with GetObject; the first hit is
      streamed back with translated headers, a 304 from storage ends the
      request, a miss moves on to the next candidate;
    - listing candidates are listed; a non-empty listing is returned as a
      JSON array of relative keys, an empty one moves on.

When every candidate misses the handler returns None and the caller hands
the request to the next handler in its chain.
"""

import logging
import urllib.parse
from collections.abc import AsyncIterator
from dataclasses import dataclass

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from s3proxy import metrics
from s3proxy.encoding import BASE64, accepts_encoding, b64encode_stream
from s3proxy.errors import ObjectNotFound, ObjectNotModified, StorageError
from s3proxy.headers import TranslationContext, proxy_key_header, translate_headers
from s3proxy.listing import format_listing
from s3proxy.resolver import (
    candidate_keys,
    decode_path,
    is_listing_key,
    is_mounted,
    normalize_mount_path,
    relative_url,
)
from s3proxy.storage.backend import StoredObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """What the handler needs to know about one incoming request.

    Attributes:
        method: The HTTP method.
        path: The decoded path following the mount point, query stripped.
        if_none_match: The client's If-None-Match validator, if any.
        base64_encode: Whether the client accepts a base64 encoded body.
    """

    method: str
    path: str
    if_none_match: str | None = None
    base64_encode: bool = False


def original_url(request: Request) -> str:
    """Rebuild the undecoded request target (path plus query string)."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


def quote_key(key: str) -> str:
    """Percent-encode a storage key for use as a header value."""
    return urllib.parse.quote(key, safe="/")


def _record_outcome(kind: str, key: str, outcome: str) -> None:
    metrics.record_fetch(kind, outcome)
    logger.debug("%s %r: %s", kind, key, outcome, extra={"key": key, "outcome": outcome})


async def _count_bytes(body: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    async for chunk in body:
        metrics.record_bytes_sent(len(chunk))
        yield chunk


class ProxyHandler:
    """Resolves GET requests against the configured bucket.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        """Initialize the proxy handler.

        Args:
            app: The FastAPI application instance.
        """
        self.app = app

    @property
    def storage(self):
        """Shortcut to the storage backend on app.state."""
        return self.app.state.storage

    @property
    def config(self):
        """Shortcut to the S3ProxyAppConfig on app.state."""
        return self.app.state.config

    @property
    def options(self):
        """Shortcut to the proxy section of the configuration."""
        return self.config.proxy

    def build_context(self, request: Request) -> RequestContext | None:
        """Extract the request context, or None if outside the mount path.

        Raises:
            UnicodeDecodeError: If the path does not percent-decode as UTF-8.
        """
        mount_path = normalize_mount_path(self.options.mount_path)
        url = original_url(request)
        if not is_mounted(url.split("?", 1)[0], mount_path):
            return None

        return RequestContext(
            method=request.method,
            path=decode_path(relative_url(url, mount_path)),
            if_none_match=request.headers.get("if-none-match"),
            base64_encode=accepts_encoding(request.headers.get("accept-encoding"), BASE64),
        )

    async def handle(self, request: Request) -> Response | None:
        """Serve a request from the bucket.

        Returns:
            The response to send, or None when the request is not a GET,
            lies outside the mount path, or no candidate key matched.

        Raises:
            StorageError: If the backend fails on any candidate. Remaining
                candidates are not tried.
        """
        if request.method != "GET":
            return None

        ctx = self.build_context(request)
        if ctx is None:
            return None

        for key in candidate_keys(ctx.path, self.options):
            logger.debug("try path %s", key)
            if is_listing_key(key):
                response = await self.output_listing(key)
            else:
                response = await self.output_object(key, ctx)
            if response is not None:
                return response

        logger.debug("no key matched %s", ctx.path)
        return None

    async def output_listing(self, prefix: str) -> Response | None:
        """List keys under ``prefix`` as a JSON array, or None if empty."""
        try:
            keys = await self.storage.list_keys(self.options.bucket, prefix)
        except StorageError:
            _record_outcome("listing", prefix, "error")
            logger.exception("Listing failed for prefix %r", prefix)
            raise

        relative = format_listing(keys, prefix)
        if not relative:
            _record_outcome("listing", prefix, "miss")
            return None

        _record_outcome("listing", prefix, "found")
        return JSONResponse(content=relative)

    async def output_object(self, key: str, ctx: RequestContext) -> Response | None:
        """Stream the object at ``key``, or None if it does not exist."""
        # The stored ETag describes the raw body, never the base64 one
        if_none_match = None if ctx.base64_encode else ctx.if_none_match

        try:
            obj = await self.storage.get_object(self.options.bucket, key, if_none_match)
        except ObjectNotModified:
            _record_outcome("object", key, "not_modified")
            return Response(status_code=304)
        except ObjectNotFound:
            _record_outcome("object", key, "miss")
            return None
        except StorageError:
            _record_outcome("object", key, "error")
            logger.exception("GetObject failed for key %r", key)
            raise

        _record_outcome("object", key, "found")

        # From here on the body holds a storage connection until closed
        try:
            return self._object_response(obj, ctx)
        except BaseException:
            await obj.close()
            raise

    def _object_response(self, obj: StoredObject, ctx: RequestContext) -> StreamingResponse:
        headers = translate_headers(
            obj.headers,
            TranslationContext(
                path=ctx.path,
                base64_encode=ctx.base64_encode,
                override_cache_control=self.options.override_cache_control,
                default_cache_control=self.options.default_cache_control,
            ),
        )
        headers[proxy_key_header(self.config.server.custom_header_prefix)] = quote_key(obj.key)

        body = _count_bytes(obj.body)
        if ctx.base64_encode:
            logger.debug("base64 encode response")
            headers["content-encoding"] = BASE64
            body = b64encode_stream(body)

        return StreamingResponse(
            content=body,
            status_code=200,
            headers=headers,
            background=BackgroundTask(obj.close),
        )
