"""Services for the accounting integration: token lifecycle, API client and invoice export."""

from .accounting_resources import AccountingResources
from .external_api_client import ExternalAPIClient
from .invoice_export_service import InvoiceExportPipeline
from .invoice_formatting import coerce_vat, format_invoice_row, sanitize_description
from .refresh_scheduler import TokenRefreshScheduler
from .token_endpoint_client import TokenEndpointClient
from .token_lifecycle_service import TokenLifecycleManager, classify_credential

__all__ = [
    "AccountingResources",
    "ExternalAPIClient",
    "InvoiceExportPipeline",
    "TokenEndpointClient",
    "TokenLifecycleManager",
    "TokenRefreshScheduler",
    "classify_credential",
    "coerce_vat",
    "format_invoice_row",
    "sanitize_description",
]
