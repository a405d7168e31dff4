"""
Credential models for the accounting integration.

Just the data structure - token rules live in services.token_lifecycle_service.
"""

from sqlalchemy import BigInteger, Boolean, Column, Integer, String, Text

from .db_base import JSON, EncryptedBinary, TimestampMixin, UUIDMixin
from .db_config import Base


class IntegrationCredential(Base, UUIDMixin, TimestampMixin):
    """Singleton OAuth credential of the integration, addressed by a fixed key."""

    __tablename__ = "integration_credentials"

    key = Column(String(100), nullable=False, unique=True, index=True)

    client_id = Column(String(255), nullable=True)
    client_secret = Column(EncryptedBinary, nullable=True)
    access_token = Column(EncryptedBinary, nullable=True)
    refresh_token = Column(EncryptedBinary, nullable=True)

    # Epoch milliseconds
    expires_at = Column(BigInteger, nullable=True)
    refresh_token_expires_at = Column(BigInteger, nullable=True)

    is_legacy_token = Column(Boolean, nullable=False, default=False)
    refresh_fail_count = Column(Integer, nullable=False, default=0)
    last_refresh_attempt = Column(BigInteger, nullable=True)
    migration_attempt_count = Column(Integer, nullable=False, default=0)
    migration_error = Column(Text, nullable=True)

    context = Column(JSON, nullable=True)


class TokenRefreshLog(Base, UUIDMixin, TimestampMixin):
    """One row per refresh attempt, successful or not."""

    __tablename__ = "token_refresh_logs"

    credential_key = Column(String(100), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    trigger = Column(String(20), nullable=False)
    message = Column(Text, nullable=True)
    token_length = Column(Integer, nullable=True)
