"""FastAPI application factory and middleware setup for the S3 proxy."""

import logging
import secrets
import time
import urllib.parse
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response

from s3proxy.config import S3ProxyAppConfig
from s3proxy.errors import ProxyError
from s3proxy.handlers.proxy import ProxyHandler
from s3proxy.headers import proxy_key_header
from s3proxy.storage.backend import StorageBackend

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus collectors in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(excluded_handlers=["/metrics"])
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: S3ProxyAppConfig) -> FastAPI:
    """Create and configure the S3 proxy FastAPI application.

    GET requests under ``config.proxy.mount_path`` are served from the
    bucket by the proxy middleware. Anything the proxy does not serve falls
    through to the regular routes, which end in FastAPI's 404.

    The lifespan context manager creates the storage backend on startup and
    closes it on shutdown.

    Args:
        config: The loaded proxy configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan hook: open the shared storage client."""
        storage = create_storage_backend(config)
        await storage.init()
        app.state.storage = storage
        logger.info(
            "Serving bucket %s (prefix=%r) at %s via %s storage",
            config.proxy.bucket,
            config.proxy.prefix,
            config.proxy.mount_path,
            config.storage.backend,
        )

        yield

        await storage.close()
        logger.info("Storage backend closed")

    app = FastAPI(
        title="S3 Proxy",
        version="0.1.0",
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app, config)

    if config.observability.metrics:
        import s3proxy.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="s3proxy").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


def create_storage_backend(config: S3ProxyAppConfig) -> StorageBackend:
    """Create a storage backend instance based on configuration.

    Supports 'aws' and 'memory' backends.

    Args:
        config: The proxy configuration.

    Returns:
        A storage backend instance.
    """
    backend = config.storage.backend
    if backend == "memory":
        from s3proxy.storage.memory import MemoryStorageBackend

        return MemoryStorageBackend()
    elif backend == "aws":
        if not config.proxy.bucket:
            raise ValueError("proxy.bucket is required when backend is 'aws'")
        from s3proxy.storage.aws import AWSStorageBackend

        return AWSStorageBackend(
            region=config.storage.aws_region,
            endpoint_url=config.storage.aws_endpoint_url,
            use_path_style=config.storage.aws_use_path_style,
            access_key_id=config.storage.aws_access_key_id,
            secret_access_key=config.storage.aws_secret_access_key,
            bucket_name=config.proxy.bucket,
        )
    else:
        raise ValueError(f"Unknown storage backend: {backend}")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions from routes and return an empty 500."""
        logger.exception("Unhandled exception in request handler")
        return Response(status_code=500)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI, config: S3ProxyAppConfig) -> None:
    """Register middleware on the FastAPI app.

    In FastAPI, middleware is registered in reverse order (last registered
    runs first). We register the proxy first, then request logging, so the
    execution order is: request_logging -> s3_proxy -> routes.
    """

    # Paths served by the app itself, never looked up in the bucket
    proxy_skip_paths = set()
    if config.observability.health_check:
        proxy_skip_paths.add("/health")
    if config.observability.metrics:
        proxy_skip_paths.add("/metrics")

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health"}

    proxy = ProxyHandler(app)
    proxy_key_name = proxy_key_header(config.server.custom_header_prefix)

    @app.middleware("http")
    async def s3_proxy_middleware(request: Request, call_next) -> Response:
        """Serve the request from the bucket, or defer to the next handler.

        ProxyError is rendered here as an empty response with its status,
        since FastAPI exception handlers do not catch exceptions raised
        from middleware.
        """
        if request.url.path in proxy_skip_paths:
            return await call_next(request)

        try:
            response = await proxy.handle(request)
        except ProxyError as exc:
            return Response(status_code=exc.http_status)

        if response is None:
            return await call_next(request)
        return response

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next) -> Response:
        """Log one line per request with its outcome and duration."""
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        key = response.headers.get(proxy_key_name)
        if key is not None:
            key = urllib.parse.unquote(key)

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                    "key": key,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: S3ProxyAppConfig) -> None:
    """Register the non-proxied routes on the application.

    Args:
        app: The FastAPI application to attach routes to.
        config: The proxy configuration.
    """
    health_check_enabled = config.observability.health_check

    if health_check_enabled:

        @app.get("/health")
        async def health_check() -> Response:
            """Return static ``{"status": "ok"}``."""
            return Response(
                content='{"status":"ok"}',
                media_type="application/json",
            )
