"""Translation of stored object headers into proxy response headers."""

import logging
import mimetypes
from collections.abc import Callable, Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
BASE64_ETAG_SUFFIX = "_base64"
PROXY_KEY_HEADER = "s3-proxy-key"


@dataclass(frozen=True)
class TranslationContext:
    """Per-request inputs to the header transforms.

    Attributes:
        path: The request path, used for content-type inference.
        base64_encode: Whether the body is transcoded to base64.
        override_cache_control: Cache-Control forced on every object.
        default_cache_control: Cache-Control used when the object has none.
    """

    path: str
    base64_encode: bool = False
    override_cache_control: str | None = None
    default_cache_control: str | None = None


def guess_content_type(path: str) -> str:
    """Look up a content type from the extension of ``path``."""
    content_type, _ = mimetypes.guess_type(path, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def base64_etag(etag: str) -> str:
    """Add the base64 marker inside the quotes of an ETag.

    ``"abc"`` becomes ``"abc_base64"`` and ``W/"abc"`` becomes
    ``W/"abc_base64"``.
    """
    weak = ""
    if etag.startswith("W/"):
        weak, etag = "W/", etag[2:]
    tag = etag.strip('"')
    return f'{weak}"{tag}{BASE64_ETAG_SUFFIX}"'


def _content_type(value: str | None, ctx: TranslationContext) -> str | None:
    if value is None or value == DEFAULT_CONTENT_TYPE:
        # S3 falls back to octet-stream when no type was given on upload
        return guess_content_type(ctx.path)
    return value


def _passthrough(value: str | None, ctx: TranslationContext) -> str | None:
    return value


def _etag(value: str | None, ctx: TranslationContext) -> str | None:
    if value is not None and ctx.base64_encode:
        return base64_etag(value)
    return value


def _cache_control(value: str | None, ctx: TranslationContext) -> str | None:
    if ctx.override_cache_control:
        logger.debug("override cache-control to %s", ctx.override_cache_control)
        return ctx.override_cache_control
    if value is None and ctx.default_cache_control:
        logger.debug("default cache-control to %s", ctx.default_cache_control)
        return ctx.default_cache_control
    return value


def _content_length(value: str | None, ctx: TranslationContext) -> str | None:
    # The encoded body is longer than the stored one
    if ctx.base64_encode:
        return None
    return value


HeaderTransform = Callable[[str | None, TranslationContext], str | None]

FORWARD_HEADERS: tuple[tuple[str, HeaderTransform], ...] = (
    ("content-type", _content_type),
    ("last-modified", _passthrough),
    ("etag", _etag),
    ("cache-control", _cache_control),
    ("content-length", _content_length),
)


def translate_headers(metadata: Mapping[str, str], ctx: TranslationContext) -> dict[str, str]:
    """Build the response headers for a found object.

    Args:
        metadata: Stored object headers keyed by lower-case header name.
        ctx: The translation context for this request.

    Returns:
        Headers to send, in ``FORWARD_HEADERS`` order. Headers whose
        transform yields nothing are left out.
    """
    headers: dict[str, str] = {}
    for name, transform in FORWARD_HEADERS:
        value = transform(metadata.get(name), ctx)
        if value:
            logger.debug("set header %s=%s", name, value)
            headers[name] = value
    return headers


def proxy_key_header(prefix: str) -> str:
    """Name of the response header carrying the resolved storage key."""
    return f"{prefix}{PROXY_KEY_HEADER}"
