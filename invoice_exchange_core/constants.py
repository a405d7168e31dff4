"""
Constants and enums for the invoice exchange core.

This module centralizes the magic strings used by the token lifecycle,
the external API client and the export pipeline.
"""

from enum import Enum


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    ACCOUNTING_API_BASE_URL = "ACCOUNTING_API_BASE_URL"
    ACCOUNTING_CLIENT_ID = "ACCOUNTING_CLIENT_ID"
    ACCOUNTING_CLIENT_SECRET = "ACCOUNTING_CLIENT_SECRET"
    ACCOUNTING_REDIRECT_URI = "ACCOUNTING_REDIRECT_URI"
    CREDENTIAL_ENCRYPTION_KEY = "CREDENTIAL_ENCRYPTION_KEY"


class ConnectionStatus(str, Enum):
    """Connectivity states of the stored integration credential."""

    DISCONNECTED = "disconnected"
    CONNECTED_LEGACY = "connected_legacy"
    CONNECTED_REFRESHABLE = "connected_refreshable"
    EXPIRING = "expiring"
    EXPIRED_RECOVERABLE = "expired_recoverable"
    EXPIRED_UNRECOVERABLE = "expired_unrecoverable"


class GrantType(str, Enum):
    """OAuth grant types sent to the token endpoint."""

    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


class OAuthErrorCode(str, Enum):
    """OAuth-style error codes returned by the token and migration endpoints."""

    INVALID_GRANT = "invalid_grant"
    INVALID_CLIENT = "invalid_client"
    INVALID_REQUEST = "invalid_request"
    TOKEN_NOT_FOUND = "token_not_found"
    JWT_CREATION_NOT_ALLOWED = "jwt_creation_not_allowed"
    JWT_CREATION_FAILED = "jwt_creation_failed"
    INCORRECT_AUTH_FLOW = "incorrect_auth_flow"


class RefreshTrigger(str, Enum):
    """What caused a refresh attempt, recorded in the refresh log."""

    ON_DEMAND = "on_demand"
    SCHEDULED = "scheduled"
    FORCED = "forced"
    AUTH_RETRY = "auth_retry"


class FailureReason(str, Enum):
    """Machine-readable reason attached to token lifecycle errors."""

    LEGACY_TOKEN = "legacy_token"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    ALREADY_MIGRATED = "already_migrated"


class ProductType(str, Enum):
    """Billing record kinds, decided by the product they reference."""

    ACTIVITY = "activity"
    ITEM = "item"


class InvoiceStatus(str, Enum):
    """Status values of a local invoice."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


class HTTPMethod(str, Enum):
    """HTTP methods accepted by the external API client."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


# Provider error code for "article not found" in ErrorInformation bodies
ARTICLE_NOT_FOUND_ERROR_CODE = 2001302

MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_DAY = 24 * 60 * MILLIS_PER_MINUTE
