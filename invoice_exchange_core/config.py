"""
Centralized configuration management for the invoice exchange core.

This module provides a unified configuration system with support for:
- Environment variables
- Token lifetime and refresh policy
- Export formatting rules
- Validation using Pydantic
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    MILLIS_PER_DAY,
    MILLIS_PER_MINUTE,
    EnvironmentVariable,
    LogLevel,
)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class AccountingAPIConfig(BaseModel):
    """Endpoints and identity of the external invoicing service."""

    api_base_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.ACCOUNTING_API_BASE_URL.value, "https://api.fortnox.se/3"
        ),
        description="Versioned REST root for customers, articles and invoices",
    )
    auth_url: str = Field(
        default="https://apps.fortnox.se/oauth-v1/auth", description="Authorization endpoint"
    )
    token_url: str = Field(
        default="https://apps.fortnox.se/oauth-v1/token", description="Token endpoint"
    )
    migration_url: str = Field(
        default="https://apps.fortnox.se/oauth-v1/migrate",
        description="Legacy token migration endpoint",
    )
    scope: str = Field(
        default="invoice company-settings customer article", description="Requested OAuth scope"
    )
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    client_id: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ACCOUNTING_CLIENT_ID.value),
        description="Default integration client id",
    )
    client_secret: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ACCOUNTING_CLIENT_SECRET.value),
        description="Default integration client secret",
    )
    redirect_uri: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ACCOUNTING_REDIRECT_URI.value),
        description="OAuth redirect URI registered with the provider",
    )


class TokenPolicyConfig(BaseModel):
    """Token lifetime bookkeeping and refresh thresholds. All durations in epoch millis."""

    credential_key: str = Field(
        default="fortnox_credentials", description="Key of the singleton credential record"
    )
    default_expires_in: int = Field(
        default=3600, gt=0, description="Access token lifetime (s) when the response omits it"
    )
    refresh_token_lifetime_ms: int = Field(
        default=45 * MILLIS_PER_DAY, description="Provider-enforced refresh token lifetime"
    )
    expiring_window_ms: int = Field(
        default=30 * MILLIS_PER_MINUTE,
        description="Remaining access token life below which callers refresh before use",
    )
    proactive_refresh_window_ms: int = Field(
        default=7 * MILLIS_PER_DAY, description="Day tier of the scheduled refresh check"
    )
    proactive_refresh_floor_ms: int = Field(
        default=30 * MILLIS_PER_MINUTE, description="Minute tier of the scheduled refresh check"
    )
    refresh_interval_seconds: int = Field(
        default=15 * 60, gt=0, description="Interval of the scheduled refresh check"
    )

    @model_validator(mode="after")
    def validate_refresh_tiers(self) -> "TokenPolicyConfig":
        """The minute tier must sit inside the day tier."""
        if self.proactive_refresh_floor_ms > self.proactive_refresh_window_ms:
            raise ValueError("proactive_refresh_floor_ms must not exceed proactive_refresh_window_ms")
        return self


class ExportConfig(BaseModel):
    """Rules for mapping billing records into the external invoice schema."""

    allowed_vat_rates: tuple[int, ...] = Field(default=(25, 12, 6))
    default_vat: int = Field(default=25)
    default_country_code: str = Field(default="SE")
    payment_terms_days: int = Field(default=30, ge=0)
    invoice_comment: str = Field(default="Invoice generated from time tracking")
    default_sales_account: str = Field(default="3001")
    article_number_start: int = Field(default=1000, gt=0)
    description_max_length: int = Field(default=50, gt=0)
    reconciliation_attempts: int = Field(default=3, ge=1)
    hour_unit: str = Field(default="tim")
    item_unit: str = Field(default="st")

    @field_validator("default_vat")
    def validate_default_vat(cls, v: int, info) -> int:
        """The default VAT must itself be an allowed rate."""
        allowed = info.data.get("allowed_vat_rates", (25, 12, 6))
        if v not in allowed:
            raise ValueError(f"default_vat {v} is not one of the allowed rates {allowed}")
        return v


class SecurityConfig(BaseModel):
    """Security-related configuration."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.CREDENTIAL_ENCRYPTION_KEY.value),
        description="Symmetric key for pgcrypto encryption of stored secrets",
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.DEBUG.value, "false").lower()
        == "true",
        description="Debug mode",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    accounting_api: AccountingAPIConfig = Field(default_factory=AccountingAPIConfig)
    token_policy: TokenPolicyConfig = Field(default_factory=TokenPolicyConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
