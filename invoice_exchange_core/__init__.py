"""Accounting integration core: OAuth token lifecycle and invoice export."""

from .config import AppConfig, get_config, reset_config, set_config
from .exceptions import BaseError, ErrorCode

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "BaseError",
    "ErrorCode",
    "get_config",
    "reset_config",
    "set_config",
]
