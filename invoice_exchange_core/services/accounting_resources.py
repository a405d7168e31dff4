"""
Resource helpers for customers, articles and invoices of the accounting API.

Each helper unwraps the service's named root object ({"Customer": ...},
{"Invoice": ...}) and lets the client's exceptions propagate.
"""

import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..constants import HTTPMethod
from ..exceptions import ExternalServiceError
from ..schemas.export_schemas import ArticlePayload, CustomerPayload, InvoicePayload
from .external_api_client import ExternalAPIClient


def _unwrap(body: Dict[str, Any], root: str, endpoint: str) -> Dict[str, Any]:
    value = body.get(root)
    if not isinstance(value, dict):
        raise ExternalServiceError(
            f"Unexpected response from {endpoint}: missing {root}",
            endpoint=endpoint,
            response_keys=sorted(body.keys()),
        )
    return value


def _unwrap_list(body: Dict[str, Any], root: str, item: str) -> List[Dict[str, Any]]:
    value = body.get(root) or []
    # Some responses nest the list once more: {"Customers": {"Customer": [...]}}
    if isinstance(value, dict):
        value = value.get(item) or []
    return [entry for entry in value if isinstance(entry, dict)]


def normalize_organisation_number(value: Optional[str]) -> str:
    return re.sub(r"[^0-9A-Za-z]", "", value or "")


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


class AccountingResources:
    """Thin typed facade over ExternalAPIClient."""

    def __init__(self, api_client: ExternalAPIClient):
        self.api_client = api_client

    # Customers

    async def get_customer(self, customer_number: str) -> Dict[str, Any]:
        endpoint = f"/customers/{_segment(customer_number)}"
        return _unwrap(await self.api_client.call(endpoint), "Customer", endpoint)

    async def find_customer_by_organisation_number(
        self, organisation_number: str
    ) -> Optional[Dict[str, Any]]:
        """Return the first remote customer with this organisation number, or None."""
        wanted = normalize_organisation_number(organisation_number)
        if not wanted:
            return None
        body = await self.api_client.call(
            "/customers", params={"organisationnumber": organisation_number}
        )
        for customer in _unwrap_list(body, "Customers", "Customer"):
            if normalize_organisation_number(customer.get("OrganisationNumber")) == wanted:
                return customer
        return None

    async def create_customer(self, customer: CustomerPayload) -> Dict[str, Any]:
        body = await self.api_client.call(
            "/customers", HTTPMethod.POST, {"Customer": customer.to_remote()}
        )
        return _unwrap(body, "Customer", "/customers")

    # Articles

    async def get_article(self, article_number: str) -> Dict[str, Any]:
        endpoint = f"/articles/{_segment(article_number)}"
        return _unwrap(await self.api_client.call(endpoint), "Article", endpoint)

    async def create_article(self, article: ArticlePayload) -> Dict[str, Any]:
        body = await self.api_client.call(
            "/articles", HTTPMethod.POST, {"Article": article.to_remote()}
        )
        return _unwrap(body, "Article", "/articles")

    # Invoices

    async def create_invoice(self, invoice: InvoicePayload) -> Dict[str, Any]:
        body = await self.api_client.call(
            "/invoices", HTTPMethod.POST, {"Invoice": invoice.to_remote()}
        )
        return _unwrap(body, "Invoice", "/invoices")

    async def get_invoice(self, document_number: str) -> Dict[str, Any]:
        endpoint = f"/invoices/{_segment(document_number)}"
        return _unwrap(await self.api_client.call(endpoint), "Invoice", endpoint)

    async def list_invoices(self, **filters: Any) -> List[Dict[str, Any]]:
        body = await self.api_client.call("/invoices", params=filters or None)
        return _unwrap_list(body, "Invoices", "Invoice")
