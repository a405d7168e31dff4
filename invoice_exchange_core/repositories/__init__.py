"""Repository layer for data access."""

from .credential_store import CredentialStore, SQLCredentialStore

__all__ = [
    "CredentialStore",
    "SQLCredentialStore",
]
