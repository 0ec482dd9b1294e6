# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Core configuration - centralized config for the mipnode package.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from mipnode.core.config import get_config
    config = get_config()

    window = config.timestamp_window_seconds
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreSettings(BaseSettings):
    """Core configuration settings for a MIP node.

    Settings can be configured via environment variables with the MIP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="MIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
    )

    # ==========================================================================
    # PROTOCOL SETTINGS
    # ==========================================================================

    timestamp_window_seconds: int = Field(
        default=300,
        ge=1,
        description="Accepted clock skew for X-MIP-TIMESTAMP, in seconds",
    )
    outbound_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Total timeout for each outbound call to a peer",
    )
    default_daily_rate_limit: int = Field(
        default=100,
        ge=0,
        description="Daily rate limit granted to newly approved connections",
    )
    allow_rerequest_after_decline: bool = Field(
        default=False,
        description="Reset a DECLINED connection to PENDING when the peer requests again",
    )
    endorsement_validity_days: int = Field(
        default=365,
        ge=1,
        description="Lifetime of endorsements issued by this node",
    )
    cogs_validity_days: int = Field(
        default=90,
        ge=1,
        description="Validity window of issued certificates of good standing",
    )
    activity_log_size: int = Field(
        default=100,
        ge=1,
        description="Number of activity entries kept in memory",
    )


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
