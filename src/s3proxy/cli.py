"""CLI entry point for the S3 proxy."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from s3proxy.config import S3ProxyAppConfig, load_config
from s3proxy.logging_config import configure_logging
from s3proxy.server import create_app

# CLI option -> (config section, field)
_OVERRIDES = {
    "bucket": ("proxy", "bucket"),
    "prefix": ("proxy", "prefix"),
    "mount_path": ("proxy", "mount_path"),
    "host": ("server", "host"),
    "port": ("server", "port"),
    "log_level": ("server", "log_level"),
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Every option except ``--config`` overrides the matching setting of the
    YAML file; anything not given keeps the file's value.
    """
    parser = argparse.ArgumentParser(
        prog="s3proxy",
        description="Serve an S3 bucket as a static web site",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("s3proxy.yaml"),
        help="Path to YAML configuration file (default: s3proxy.yaml)",
    )
    site = parser.add_argument_group("site")
    site.add_argument("--bucket", help="Bucket to serve")
    site.add_argument("--prefix", help="Key prefix the site lives under")
    site.add_argument("--mount-path", help="URL path the site is served at")
    server = parser.add_argument_group("server")
    server.add_argument("--host", help="Host address to bind to")
    server.add_argument("--port", type=int, help="Port to listen on")
    server.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level",
    )
    return parser.parse_args(argv)


def apply_overrides(config: S3ProxyAppConfig, args: argparse.Namespace) -> None:
    """Copy the options given on the command line into ``config``."""
    for option, (section, name) in _OVERRIDES.items():
        value = getattr(args, option)
        if value is not None:
            setattr(getattr(config, section), name, value)


def main(argv: list[str] | None = None) -> None:
    """Load the configuration and run the proxy under uvicorn."""
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    logger = logging.getLogger("s3proxy")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    apply_overrides(config, args)
    configure_logging(level=config.server.log_level, fmt=config.server.log_format)

    if not config.proxy.bucket and config.storage.backend == "aws":
        logger.error("No bucket configured: set proxy.bucket or pass --bucket")
        sys.exit(1)

    logger.info(
        "Starting s3proxy on %s:%d (bucket=%s, mount=%s)",
        config.server.host,
        config.server.port,
        config.proxy.bucket,
        config.proxy.mount_path,
    )

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
    )


if __name__ == "__main__":
    main()
