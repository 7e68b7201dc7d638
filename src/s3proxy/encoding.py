"""Base64 transcoding of object bodies.

Clients that send ``Accept-Encoding: base64`` get the object body as
base64 text with ``Content-Encoding: base64``. The body is encoded chunk by
chunk as it streams from storage.
"""

import base64
from collections.abc import AsyncIterator

BASE64 = "base64"


def _parse_accept_encoding(header: str) -> dict[str, float]:
    """Parse an Accept-Encoding header into ``{coding: qvalue}``."""
    codings: dict[str, float] = {}
    for item in header.split(","):
        parts = [p.strip() for p in item.split(";")]
        coding = parts[0].lower()
        if not coding:
            continue
        q = 1.0
        for param in parts[1:]:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    q = float(value.strip())
                except ValueError:
                    q = 0.0
        codings[coding] = q
    return codings


def accepts_encoding(header: str | None, coding: str) -> bool:
    """Whether an Accept-Encoding header allows ``coding``.

    An explicit entry for the coding decides on its own; otherwise a ``*``
    wildcard with a non-zero q-value accepts it. A missing header accepts
    nothing but identity.

    Args:
        header: The raw Accept-Encoding header value, or None.
        coding: The content-coding to check, e.g. "base64".
    """
    if not header:
        return False
    codings = _parse_accept_encoding(header)
    coding = coding.lower()
    if coding in codings:
        return codings[coding] > 0
    return codings.get("*", 0) > 0


async def b64encode_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Base64-encode an async byte stream incrementally.

    Input bytes that do not fill a complete 3-byte group are carried over to
    the next chunk, so the concatenated output equals ``b64encode`` of the
    whole body. Padding only appears at the very end.

    Args:
        chunks: The raw body chunks.

    Yields:
        Base64 encoded chunks.
    """
    remainder = b""
    async for chunk in chunks:
        data = remainder + chunk
        cut = len(data) - len(data) % 3
        remainder = data[cut:]
        if cut:
            yield base64.b64encode(data[:cut])
    if remainder:
        yield base64.b64encode(remainder)
