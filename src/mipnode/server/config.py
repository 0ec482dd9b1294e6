# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Server configuration using pydantic-settings."""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from mipnode.core.config import CoreSettings

logger = logging.getLogger(__name__)


def get_package_version() -> str:
    """Get the package version from installed metadata.

    Returns the version from pyproject.toml when installed,
    or a dev fallback when running from source without install.
    """
    try:
        return version("mipnode")
    except PackageNotFoundError:
        return "0.0.0-dev"


class ServerSettings(CoreSettings):
    """Configuration for the MIP node HTTP server.

    Inherits the protocol and logging settings and adds HTTP, node config
    and admin settings.

    Settings can be configured via environment variables with MIP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="MIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="127.0.0.1", description="Host to bind to")
    port: int | None = Field(default=None, description="Port to bind to (defaults to the node config port)")

    # External URL peers use to reach this node - if not set, taken from the node config
    external_url: str | None = Field(
        default=None,
        description="External base URL (e.g., https://mip.example.org)",
    )

    # Node definition
    node_config: Path = Field(
        default=Path("config/node.yml"),
        description="Path to the node YAML config",
    )
    state_file: Path | None = Field(
        default=None,
        description="JSON snapshot of connections and exchanges (optional)",
    )

    # Admin API
    admin_token: str | None = Field(
        default=None,
        description="Bearer token for /admin. Unset = /admin only answers loopback clients",
    )

    server_version: str = Field(default_factory=get_package_version, description="Server version")


# Global settings instance - lazy loaded
_settings: ServerSettings | None = None


def get_settings() -> ServerSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _settings
    _settings = None
