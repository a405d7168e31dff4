"""
Test fixtures for the invoice exchange core.

This module provides shared test fixtures including database setup,
configuration, a fake accounting provider and wired-up services.
"""

import httpx
import pytest
from sqlalchemy.orm import Session

from invoice_exchange_core.config import (
    AccountingAPIConfig,
    AppConfig,
    SecurityConfig,
    reset_config,
    set_config,
)
from invoice_exchange_core.db import (
    DatabaseConfig,
    DatabaseManager,
    import_all_models,
)
from invoice_exchange_core.db.db_config import initialize_db
from invoice_exchange_core.repositories.credential_store import SQLCredentialStore
from invoice_exchange_core.services.accounting_resources import AccountingResources
from invoice_exchange_core.services.external_api_client import ExternalAPIClient
from invoice_exchange_core.services.invoice_export_service import InvoiceExportPipeline
from invoice_exchange_core.services.token_endpoint_client import TokenEndpointClient
from invoice_exchange_core.services.token_lifecycle_service import TokenLifecycleManager
from invoice_exchange_core.utils import logger as utils_logger
from tests.fixtures import factories
from tests.fixtures.fake_provider import FakeAccountingProvider, FakeClock


@pytest.fixture(autouse=True)
def app_config():
    """Deterministic configuration, independent of the environment."""
    config = AppConfig(
        environment="test",
        debug=False,
        accounting_api=AccountingAPIConfig(
            client_id="test-client-id",
            client_secret="test-client-secret",
            redirect_uri="https://app.example.com/integrations/callback",
        ),
        security=SecurityConfig(encryption_key="test-encryption-key"),
    )
    set_config(config)
    yield config
    reset_config()
    utils_logger.reset_logging()


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    return initialize_db(db_config)


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test so each test
    starts from an empty database.
    """
    session = db_manager.get_session()
    db_manager.create_tables()
    factories.bind_session(session)

    yield session

    session.rollback()
    db_manager.close_session()
    db_manager.drop_tables()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeAccountingProvider:
    return FakeAccountingProvider()


@pytest.fixture
def http_client(provider: FakeAccountingProvider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))


@pytest.fixture
def credential_store(db_session) -> SQLCredentialStore:
    return SQLCredentialStore(db_session)


@pytest.fixture
def token_manager(credential_store, http_client, app_config, clock) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        credential_store,
        TokenEndpointClient(app_config.accounting_api, http_client=http_client),
        clock=clock,
    )


@pytest.fixture
def api_client(token_manager, http_client, app_config) -> ExternalAPIClient:
    return ExternalAPIClient(token_manager, app_config.accounting_api, http_client=http_client)


@pytest.fixture
def resources(api_client) -> AccountingResources:
    return AccountingResources(api_client)


@pytest.fixture
def pipeline(db_session, resources, clock) -> InvoiceExportPipeline:
    return InvoiceExportPipeline(db_session, resources, clock=clock)


@pytest.fixture
def connected(credential_store, clock, app_config, provider):
    """Store a fresh refreshable credential the fake provider accepts."""
    return factories.store_credential(
        credential_store,
        clock,
        app_config,
        access_token="access-initial",
        refresh_token="refresh-initial",
    )
