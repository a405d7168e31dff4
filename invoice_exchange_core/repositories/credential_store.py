"""
Credential store: persistence of the singleton integration credential.

Pure read/write. Token rules live in TokenLifecycleManager, which receives a
CredentialStore by injection and is the only component that touches it.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.orm import Session

from ..constants import RefreshTrigger
from ..db.db_credential_models import IntegrationCredential, TokenRefreshLog
from ..exceptions import ErrorCode, RepositoryError
from ..schemas.credential_schemas import Credential
from ..utils.crud_helpers import create_record, get_record
from ..utils.encryption_utils import decrypt_secret, encrypt_secret
from ..utils.logger import get_logger

_SECRET_FIELDS = ("client_secret", "access_token", "refresh_token")
_PLAIN_FIELDS = (
    "client_id",
    "expires_at",
    "refresh_token_expires_at",
    "is_legacy_token",
    "refresh_fail_count",
    "last_refresh_attempt",
    "migration_attempt_count",
    "migration_error",
)


class CredentialStore(ABC):
    """Key/value persistence interface for credentials."""

    @abstractmethod
    def get(self, key: str) -> Optional[Credential]:
        """Return the credential stored under key, or None."""

    @abstractmethod
    def upsert(self, credential: Credential) -> Credential:
        """Insert or fully replace the credential under credential.key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete the credential. Returns False when nothing was stored."""

    @abstractmethod
    def record_refresh_attempt(
        self,
        key: str,
        success: bool,
        trigger: RefreshTrigger,
        message: Optional[str] = None,
        token_length: Optional[int] = None,
    ) -> None:
        """Append one entry to the refresh log."""


class SQLCredentialStore(CredentialStore):
    """CredentialStore over SQLAlchemy with secrets encrypted at rest."""

    def __init__(self, session: Session):
        self.session = session
        self.logger = get_logger()

    def _to_schema(self, row: IntegrationCredential) -> Credential:
        data = {field: getattr(row, field) for field in _PLAIN_FIELDS}
        for field in _SECRET_FIELDS:
            data[field] = decrypt_secret(self.session, getattr(row, field), field)
        return Credential(key=row.key, **data)

    def get(self, key: str) -> Optional[Credential]:
        row = get_record(self.session, IntegrationCredential, {"key": key})
        if row is None:
            return None
        # Another session may have rotated the tokens since this one loaded the row
        self.session.refresh(row)
        return self._to_schema(row)

    def upsert(self, credential: Credential) -> Credential:
        """
        Write every field of the credential, including None values.

        None is meaningful here: clearing access_token is how a credential
        becomes disconnected, so partial-update helpers are not used.
        """
        try:
            row = get_record(self.session, IntegrationCredential, {"key": credential.key})
            if row is None:
                row = IntegrationCredential(key=credential.key)
                self.session.add(row)

            for field in _PLAIN_FIELDS:
                setattr(row, field, getattr(credential, field))
            for field in _SECRET_FIELDS:
                setattr(row, field, encrypt_secret(self.session, getattr(credential, field), field))

            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise RepositoryError(
                f"Failed to store credential: {str(e)}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                credential_key=credential.key,
            )

        self.logger.debug(
            "Credential stored",
            extra={
                "credential_key": credential.key,
                "has_access_token": bool(credential.access_token),
                "has_refresh_token": bool(credential.refresh_token),
                "expires_at": credential.expires_at,
            },
        )
        return credential

    def delete(self, key: str) -> bool:
        row = get_record(self.session, IntegrationCredential, {"key": key})
        if row is None:
            return False
        try:
            self.session.delete(row)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise RepositoryError(
                f"Failed to delete credential: {str(e)}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                credential_key=key,
            )
        self.logger.info("Credential deleted", extra={"credential_key": key})
        return True

    def record_refresh_attempt(
        self,
        key: str,
        success: bool,
        trigger: RefreshTrigger,
        message: Optional[str] = None,
        token_length: Optional[int] = None,
    ) -> None:
        create_record(
            self.session,
            TokenRefreshLog,
            {
                "credential_key": key,
                "success": success,
                "trigger": trigger.value,
                "message": message,
                "token_length": token_length,
            },
        )
