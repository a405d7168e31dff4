"""Utility modules for the invoice exchange core."""

# Generic CRUD helpers
from .crud_helpers import (
    count_records,
    create_record,
    delete_record,
    get_record,
    get_record_by_id,
    list_records,
    update_record,
)

# Encryption utilities
from .encryption_utils import (
    decrypt_secret,
    decrypt_value,
    encrypt_secret,
    encrypt_value,
)

# Logging utilities
from .logger import (
    ContextAwareLogger,
    CorrelationIdFilter,
    configure_logging,
    get_logger,
    mask_secret,
)

# Epoch-millis clock helpers
from .time_utils import Clock, expires_at_from, now_ms, remaining_ms

__all__ = [
    "count_records",
    "create_record",
    "delete_record",
    "get_record",
    "get_record_by_id",
    "list_records",
    "update_record",
    "decrypt_secret",
    "decrypt_value",
    "encrypt_secret",
    "encrypt_value",
    "ContextAwareLogger",
    "CorrelationIdFilter",
    "configure_logging",
    "get_logger",
    "mask_secret",
    "Clock",
    "expires_at_from",
    "now_ms",
    "remaining_ms",
]
