"""Tests for database configuration and the global database manager."""

import pytest

from invoice_exchange_core.db import (
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    set_db_manager,
)
from invoice_exchange_core.exceptions import ServiceError, ValidationError


@pytest.fixture
def restore_db_manager(db_manager):
    """Put the shared test manager back after a test swaps the global one."""
    yield db_manager
    set_db_manager(db_manager)


def _sqlite_config(**overrides) -> DatabaseConfig:
    values = {"db_type": "sqlite", "database": ":memory:", "development_mode": True}
    values.update(overrides)
    return DatabaseConfig(**values)


class TestDatabaseConfig:
    """Connection strings and presets."""

    def test_sqlite_connection_string(self):
        assert _sqlite_config().get_connection_string() == "sqlite:///:memory:"

    def test_postgres_requires_credentials(self):
        config = DatabaseConfig(db_type="postgres", database="invoicing_db", host="localhost")

        with pytest.raises(ValidationError):
            config.get_connection_string()

    def test_unsupported_type(self):
        with pytest.raises(ValidationError):
            _sqlite_config(db_type="oracle").get_connection_string()

    def test_repr_masks_password(self):
        config = DatabaseConfig(database="invoicing_db", username="app", password="s3cret")
        assert "s3cret" not in repr(config)
        assert "password='***'" in repr(config)

    def test_development_config(self, monkeypatch):
        monkeypatch.delenv("DEV_DB_PATH", raising=False)

        config = get_development_config()

        assert config.db_type == "sqlite"
        assert config.database == ":memory:"
        assert config.development_mode is True

    def test_production_config_from_env(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("DB_NAME", "invoicing")
        monkeypatch.setenv("DB_USER", "billing")
        monkeypatch.setenv("DB_PASSWORD", "pw")
        monkeypatch.setenv("DB_POOL_SIZE", "2")

        config = get_production_config()

        assert config.development_mode is False
        assert config.pool_size == 2
        assert config.get_connection_string() == "postgresql+psycopg://billing:pw@db.internal:6543/invoicing"


class TestDatabaseManager:
    """Table management guards."""

    def test_drop_tables_refused_outside_development(self):
        manager = DatabaseManager(_sqlite_config(development_mode=False))
        try:
            with pytest.raises(ServiceError):
                manager.drop_tables()
        finally:
            manager.close()

    def test_create_and_drop_tables(self):
        manager = DatabaseManager(_sqlite_config())
        try:
            manager.create_tables()
            manager.drop_tables()
        finally:
            manager.close()


class TestGlobalManager:
    """get_db_manager / set_db_manager / close_db."""

    def test_get_returns_initialized_manager(self, db_manager):
        assert get_db_manager() is db_manager

    def test_set_and_close(self, restore_db_manager):
        manager = DatabaseManager(_sqlite_config())
        set_db_manager(manager)
        assert get_db_manager() is manager

        close_db()

        with pytest.raises(ServiceError):
            get_db_manager()

    def test_close_twice(self, restore_db_manager):
        set_db_manager(DatabaseManager(_sqlite_config()))

        close_db()
        close_db()

        with pytest.raises(ServiceError):
            get_db_manager()
