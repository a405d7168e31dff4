from .credential_schemas import Credential, ProactiveRefreshResult, TokenInfo, TokenResponse
from .export_schemas import (
    ArticlePayload,
    CustomerPayload,
    EmailInformation,
    ExportResult,
    InvoicePayload,
    InvoiceRow,
)

__all__ = [
    "Credential",
    "ProactiveRefreshResult",
    "TokenInfo",
    "TokenResponse",
    "ArticlePayload",
    "CustomerPayload",
    "EmailInformation",
    "ExportResult",
    "InvoicePayload",
    "InvoiceRow",
]
