"""
Encryption of stored integration secrets.

Handles cross-database encryption (PostgreSQL pgcrypto, SQLite plaintext for testing).
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import get_config
from ..exceptions import BaseError, ErrorCode


def _secret_key(key_suffix: str) -> str:
    base_key = get_config().security.encryption_key
    if not base_key:
        raise BaseError(
            "Credential encryption key is not configured",
            error_code=ErrorCode.CONFIGURATION_ERROR,
        )
    return f"{base_key}_{key_suffix}" if key_suffix else base_key


def encrypt_value(session: Session, value: Optional[str], key_suffix: str = "") -> Optional[bytes]:
    """
    Encrypt a value using database-specific encryption.

    Args:
        session: Database session
        value: Value to encrypt
        key_suffix: Additional key suffix separating secret kinds

    Returns:
        Encrypted bytes, or None when there is nothing to store
    """
    if value is None:
        return None

    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_encrypt(:data, :key)"),
            {"data": value, "key": _secret_key(key_suffix)},
        ).scalar()

    # SQLite for testing
    return value.encode()


def decrypt_value(
    session: Session, encrypted_value: Optional[bytes], key_suffix: str = ""
) -> Optional[str]:
    """Decrypt a value stored by encrypt_value."""
    if not encrypted_value:
        return None

    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_decrypt(:data, :key)"),
            {"data": encrypted_value, "key": _secret_key(key_suffix)},
        ).scalar()

    if isinstance(encrypted_value, bytes):
        return encrypted_value.decode()
    return encrypted_value


def encrypt_secret(session: Session, value: Optional[str], field_name: str) -> Optional[bytes]:
    """Encrypt one of the credential secrets (client secret, access or refresh token)."""
    return encrypt_value(session, value, f"cred_{field_name}")


def decrypt_secret(session: Session, encrypted: Optional[bytes], field_name: str) -> Optional[str]:
    return decrypt_value(session, encrypted, f"cred_{field_name}")
