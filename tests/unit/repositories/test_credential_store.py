"""
Tests for SQLCredentialStore.

Following NO MOCKS policy - tests use the real session and models.
"""

from invoice_exchange_core.constants import RefreshTrigger
from invoice_exchange_core.db import IntegrationCredential, TokenRefreshLog
from invoice_exchange_core.schemas.credential_schemas import Credential
from invoice_exchange_core.utils.crud_helpers import count_records, get_record, list_records


class TestSQLCredentialStore:
    """Test credential persistence."""

    def test_get_missing(self, credential_store):
        assert credential_store.get("fortnox_credentials") is None

    def test_upsert_and_get(self, credential_store):
        credential = Credential(
            key="fortnox_credentials",
            client_id="client",
            client_secret="secret",
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=1_000,
            refresh_token_expires_at=2_000,
        )

        credential_store.upsert(credential)

        assert credential_store.get("fortnox_credentials") == credential

    def test_upsert_replaces_including_none(self, credential_store, db_session):
        credential_store.upsert(
            Credential(
                key="fortnox_credentials",
                client_id="client",
                client_secret="secret",
                access_token="access-1",
                refresh_token="refresh-1",
                expires_at=1_000,
            )
        )

        credential_store.upsert(
            Credential(
                key="fortnox_credentials",
                client_id="client",
                client_secret="secret",
                refresh_fail_count=2,
            )
        )

        stored = credential_store.get("fortnox_credentials")
        assert stored.access_token is None
        assert stored.refresh_token is None
        assert stored.expires_at is None
        assert stored.refresh_fail_count == 2
        assert count_records(db_session, IntegrationCredential) == 1

    def test_secrets_are_stored_through_encryption(self, credential_store, db_session):
        credential_store.upsert(
            Credential(key="k", client_id="client", client_secret="secret", access_token="access")
        )

        row = get_record(db_session, IntegrationCredential, {"key": "k"})
        db_session.refresh(row)
        assert row.client_id == "client"
        assert row.access_token == "access"

    def test_delete(self, credential_store):
        credential_store.upsert(Credential(key="k", client_id="client"))

        assert credential_store.delete("k") is True
        assert credential_store.delete("k") is False
        assert credential_store.get("k") is None

    def test_record_refresh_attempt(self, credential_store, db_session):
        credential_store.record_refresh_attempt("k", False, RefreshTrigger.SCHEDULED, "Timeout")
        credential_store.record_refresh_attempt(
            "k", True, RefreshTrigger.AUTH_RETRY, "Token refreshed", token_length=42
        )

        logs = list_records(db_session, TokenRefreshLog, {"credential_key": "k"}, order_by="success")
        assert [(log.success, log.trigger) for log in logs] == [
            (False, "scheduled"),
            (True, "auth_retry"),
        ]
        assert logs[1].token_length == 42
