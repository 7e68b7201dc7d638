"""Directory listing output."""

from collections.abc import Iterable


def format_listing(keys: Iterable[str], prefix: str) -> list[str]:
    """Return listed keys relative to ``prefix``.

    The prefix itself (the "directory" placeholder object some tools create)
    is left out. With an empty prefix the keys are returned unmodified.

    Args:
        keys: Keys returned by the storage backend for ``prefix``.
        prefix: The listing prefix.

    Returns:
        The relative keys in backend order. An empty list means the prefix
        has nothing to show and should be treated as a miss.
    """
    relative: list[str] = []
    for key in keys:
        if key == prefix:
            continue
        relative.append(key[len(prefix):] if prefix else key)
    return relative
