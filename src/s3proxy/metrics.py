"""Prometheus metrics definitions for the S3 proxy.

All custom metrics use the ``s3proxy_`` prefix. HTTP-level metrics
(request count, duration, sizes) come from the
``prometheus-fastapi-instrumentator`` package and are not duplicated here.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Candidate fetch counter  (labels: kind, outcome)
# ---------------------------------------------------------------------------
fetch_attempts_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    This must be called once when metrics are enabled. When metrics are
    disabled in config the module-level references stay ``None`` and no
    collectors are registered in the global registry.
    """
    global _initialized
    global fetch_attempts_total, bytes_sent_total

    if _initialized:
        return

    fetch_attempts_total = Counter(
        "s3proxy_fetch_attempts_total",
        "Candidate key fetches by kind (object, listing) and outcome",
        ["kind", "outcome"],
    )

    bytes_sent_total = Counter(
        "s3proxy_bytes_sent_total",
        "Total object bytes streamed to clients (before transcoding)",
    )

    _initialized = True


def record_fetch(kind: str, outcome: str) -> None:
    """Count one candidate fetch. No-op when metrics are disabled."""
    if fetch_attempts_total is not None:
        fetch_attempts_total.labels(kind=kind, outcome=outcome).inc()


def record_bytes_sent(count: int) -> None:
    """Count streamed body bytes. No-op when metrics are disabled."""
    if bytes_sent_total is not None and count > 0:
        bytes_sent_total.inc(count)
