"""
SQLAlchemy models and database configuration.

This module provides a common entry point for all models.
"""

from .db_base import (
    JSON,
    EncryptedBinary,
    TimestampMixin,
    UUIDMixin,
    utc_now,
)
from .db_billing_models import BillingRecord, Client, Invoice, Product
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_credential_models import IntegrationCredential, TokenRefreshLog

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "EncryptedBinary",
    "TimestampMixin",
    "UUIDMixin",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "BillingRecord",
    "Client",
    "IntegrationCredential",
    "Invoice",
    "Product",
    "TokenRefreshLog",
]
