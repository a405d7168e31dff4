"""
Pydantic schemas for the integration credential and token endpoint responses.

The core only ever sees decrypted credentials through these models; the
SQLAlchemy rows stay inside the credential store.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import ConnectionStatus


class Credential(BaseModel):
    """Decrypted view of the singleton integration credential."""

    model_config = ConfigDict(validate_assignment=True)

    key: str = Field(..., min_length=1, description="Singleton key of the credential")
    client_id: Optional[str] = Field(None, description="Integration application id")
    client_secret: Optional[str] = Field(None, description="Integration application secret")
    access_token: Optional[str] = Field(None, description="Short-lived bearer token")
    refresh_token: Optional[str] = Field(None, description="Token used to mint access tokens")
    expires_at: Optional[int] = Field(None, description="Access token expiry, epoch millis")
    refresh_token_expires_at: Optional[int] = Field(
        None, description="Refresh token expiry, epoch millis"
    )
    is_legacy_token: bool = Field(default=False)
    refresh_fail_count: int = Field(default=0, ge=0)
    last_refresh_attempt: Optional[int] = Field(None, description="Epoch millis")
    migration_attempt_count: int = Field(default=0, ge=0)
    migration_error: Optional[str] = None

    @property
    def has_client_identity(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def is_connected(self) -> bool:
        """A credential without client identity or access token is not connected."""
        return self.has_client_identity and bool(self.access_token)

    @property
    def is_legacy(self) -> bool:
        """Access-only credentials cannot be refreshed, whatever the flag says."""
        return bool(self.access_token) and (self.is_legacy_token or not self.refresh_token)


class TokenResponse(BaseModel):
    """Successful body of the token and migration endpoints."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(None, gt=0, description="Access token lifetime in seconds")
    token_type: str = Field(default="Bearer")
    scope: Optional[str] = None

    @field_validator("refresh_token")
    @classmethod
    def empty_refresh_token_is_missing(cls, v):
        return v or None


class ProactiveRefreshResult(BaseModel):
    """Outcome of one scheduled refresh check. The check itself never raises."""

    refreshed: bool = False
    status: ConnectionStatus
    skipped_reason: Optional[str] = None
    error: Optional[str] = None
    remaining_ms: Optional[int] = None


class TokenInfo(BaseModel):
    """Operator summary of the stored credential, safe to display."""

    status: ConnectionStatus
    connected: bool
    is_legacy_token: bool = False
    expires_at: Optional[int] = None
    refresh_token_expires_at: Optional[int] = None
    access_token_remaining_ms: Optional[int] = None
    refresh_token_remaining_ms: Optional[int] = None
    refresh_fail_count: int = 0
    last_refresh_attempt: Optional[int] = None
    migration_attempt_count: int = 0
    migration_error: Optional[str] = None
