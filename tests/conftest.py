"""Shared pytest fixtures for s3proxy tests.

Apps are created with metrics disabled so that each test can build its own
app without registering Prometheus collectors twice. The storage backend
is set directly on ``app.state`` since the lifespan does not run under
ASGITransport.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from s3proxy.config import (
    ObservabilityConfig,
    ProxyConfig,
    S3ProxyAppConfig,
    ServerConfig,
    StorageConfig,
)
from s3proxy.server import create_app
from s3proxy.storage.memory import MemoryStorageBackend

BUCKET = "test-bucket"


def make_config(**proxy_overrides) -> S3ProxyAppConfig:
    """Return a test config serving BUCKET, with optional proxy overrides."""
    proxy = dict(bucket=BUCKET)
    proxy.update(proxy_overrides)
    return S3ProxyAppConfig(
        server=ServerConfig(host="127.0.0.1", port=8090),
        proxy=ProxyConfig(**proxy),
        storage=StorageConfig(backend="memory"),
        observability=ObservabilityConfig(metrics=False, health_check=True),
    )


@pytest.fixture
def storage() -> MemoryStorageBackend:
    """A fresh in-memory storage backend."""
    return MemoryStorageBackend()


@pytest.fixture
async def make_client(storage):
    """Factory fixture: build a client for a config with the given proxy options.

    Usage::

        client = await make_client(index=["index.html"], listing=True)
    """
    clients: list[AsyncClient] = []

    async def _make(config: S3ProxyAppConfig | None = None, **proxy_overrides) -> AsyncClient:
        app = create_app(config or make_config(**proxy_overrides))
        app.state.storage = storage
        transport = ASGITransport(app=app)
        client = AsyncClient(transport=transport, base_url="http://testserver")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


@pytest.fixture
async def client(make_client) -> AsyncClient:
    """Client for the default config: no prefix, no index, no listing."""
    return await make_client()
