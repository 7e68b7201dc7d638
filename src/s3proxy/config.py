"""Configuration loading and Pydantic models for the S3 proxy."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30
    custom_header_prefix: str = "x-4front-"


class ProxyConfig(BaseModel):
    """How request paths are mapped onto keys of the proxied bucket."""

    bucket: str = ""
    prefix: str = ""
    index: list[str] = Field(default_factory=list)
    listing: bool = False
    override_cache_control: str | None = None
    default_cache_control: str | None = None
    mount_path: str = "/"


class StorageConfig(BaseModel):
    """Object storage backend configuration."""

    backend: str = "aws"
    aws_region: str = "us-east-1"
    aws_endpoint_url: str = ""
    aws_use_path_style: bool = False
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""


class ObservabilityConfig(BaseModel):
    """Metrics and health check configuration."""

    metrics: bool = True
    health_check: bool = True


class S3ProxyAppConfig(BaseModel):
    """Top-level S3 proxy configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 8080),
        "log_level": data.get("log_level", "INFO"),
        "log_format": data.get("log_format", "text"),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
        "custom_header_prefix": data.get("custom_header_prefix", "x-4front-"),
    }


def _parse_proxy(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the proxy section from YAML data.

    Accepts ``index`` as a single document name or a list of names, and
    the YAML key ``list`` for the listing flag.

    Handles nested structure: proxy.cache_control.override -> override_cache_control
    """
    if data is None:
        return {}

    index = data.get("index") or []
    if isinstance(index, str):
        index = [index]

    result: dict[str, Any] = {
        "bucket": data.get("bucket", ""),
        "prefix": data.get("prefix") or "",
        "index": index,
        "listing": data.get("list", False),
        "mount_path": data.get("mount_path", "/"),
    }

    cache_section = data.get("cache_control")
    if isinstance(cache_section, dict):
        result["override_cache_control"] = cache_section.get("override")
        result["default_cache_control"] = cache_section.get("default")

    return result


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.aws.region -> aws_region, etc.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {"backend": data.get("backend", "aws")}

    aws_section = data.get("aws")
    if isinstance(aws_section, dict):
        result["aws_region"] = aws_section.get("region", "us-east-1")
        result["aws_endpoint_url"] = aws_section.get("endpoint_url", "")
        result["aws_use_path_style"] = aws_section.get("use_path_style", False)
        result["aws_access_key_id"] = aws_section.get("access_key_id", "")
        result["aws_secret_access_key"] = aws_section.get("secret_access_key", "")

    return result


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def load_config(path: Path) -> S3ProxyAppConfig:
    """Load an S3ProxyAppConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated S3ProxyAppConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return S3ProxyAppConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        proxy=ProxyConfig(**_parse_proxy(raw.get("proxy"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
