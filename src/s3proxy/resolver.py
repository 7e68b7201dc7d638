"""Map request paths onto the ordered list of bucket keys to try.

For a request path the resolver yields, in priority order:

    1. the direct object key (unless it is empty),
    2. ``<key>/<document>`` for every configured index document,
    3. ``<key>/`` as a listing prefix when directory listing is enabled.

Path segments starting with ``--`` are dropped before the key is built.
They are only used to force cache invalidation on the client side and
never take part in resolution.
"""

import urllib.parse

from s3proxy.config import ProxyConfig

# Path segments starting with this marker are ignored
CACHE_BUST_MARKER = "--"


def strip_slashes(value: str) -> str:
    """Remove a single leading and a single trailing slash."""
    if value.startswith("/"):
        value = value[1:]
    if value.endswith("/"):
        value = value[:-1]
    return value


def normalize_prefix(prefix: str | None) -> str:
    """Return the configured key prefix without surrounding slashes."""
    if not prefix:
        return ""
    return strip_slashes(prefix)


def sanitize_key(raw: str) -> str:
    """Turn a decoded request path into a bucket key.

    Chops off the query string, drops cache-busting ``--`` segments and
    strips the leading and trailing slash.

    Args:
        raw: The percent-decoded path following the mount point.

    Returns:
        The sanitized key, which may be empty for the bucket root.
    """
    query_index = raw.find("?")
    if query_index != -1:
        raw = raw[:query_index]

    segments = [s for s in raw.split("/") if s[:2] != CACHE_BUST_MARKER]
    return strip_slashes("/".join(segments))


def normalize_mount_path(mount_path: str | None) -> str:
    """Return the mount path without trailing slash; empty for the root."""
    stripped = (mount_path or "").strip("/")
    return f"/{stripped}" if stripped else ""


def is_mounted(path: str, mount_path: str) -> bool:
    """Whether a request path falls under a normalized mount path."""
    return path == mount_path or path.startswith(mount_path + "/")


def relative_url(url: str, mount_path: str) -> str:
    """Return the part of ``url`` following the mount point.

    Args:
        url: The original (undecoded) request path including any query string.
        mount_path: The normalized mount path, see normalize_mount_path().
    """
    rest = url[len(mount_path):]
    if rest.startswith("/"):
        rest = rest[1:]
    return rest


def decode_path(url: str) -> str:
    """Percent-decode a URL path and drop its query string.

    Decoding happens first, so an encoded ``%3F`` also ends the path.

    Raises:
        UnicodeDecodeError: If the percent-escapes do not decode as UTF-8.
    """
    decoded = urllib.parse.unquote(url, errors="strict")
    return decoded.split("?", 1)[0]


def base_key(path: str, prefix: str | None = None) -> str:
    """Build the base storage key for a request path.

    Args:
        path: The decoded path following the mount point.
        prefix: Optional key prefix all objects live under.

    Returns:
        ``<prefix>/<key>``, or whichever of the two is non-empty.
    """
    return _join(normalize_prefix(prefix), sanitize_key(path))


def _join(base: str, name: str) -> str:
    if base and name:
        return f"{base}/{name}"
    return base or name


def candidate_keys(path: str, config: ProxyConfig) -> list[str]:
    """Resolve a request path into the ordered keys to try.

    Args:
        path: The decoded path following the mount point.
        config: The proxy configuration.

    Returns:
        Candidate keys in priority order. Listing candidates end with a
        slash, or are empty for the bucket root.
    """
    key = base_key(path, config.prefix)

    candidates: list[str] = []
    if key:
        candidates.append(key)

    for document in config.index:
        candidates.append(_join(key, strip_slashes(document)))

    if config.listing:
        candidates.append(f"{key}/" if key else "")

    return candidates


def is_listing_key(key: str) -> bool:
    """Whether a candidate denotes a listing prefix rather than an object."""
    return key == "" or key.endswith("/")
