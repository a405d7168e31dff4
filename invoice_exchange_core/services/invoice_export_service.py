"""
Export of unbilled billing records as one invoice in the accounting service.

The steps run strictly in order: validate the request, resolve the customer,
resolve the articles, submit the invoice, reconcile local records. Remote
identifiers are written back to the local client and products as soon as
they are known, so a repeated export reuses them instead of creating
duplicates.
"""

import asyncio
from datetime import date
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import ExportConfig, get_config
from ..constants import InvoiceStatus
from ..db.db_billing_models import BillingRecord, Client, Invoice, Product
from ..exceptions import (
    ArticleNotFoundError,
    ExternalNotFoundError,
    ExternalServiceError,
    ExternalValidationError,
    InvalidExportRequest,
    MissingProductError,
    ReconciliationError,
)
from ..schemas.export_schemas import (
    ArticlePayload,
    CustomerPayload,
    EmailInformation,
    ExportResult,
    InvoicePayload,
)
from ..utils.crud_helpers import get_record_by_id, update_record
from ..utils.logger import get_logger
from ..utils.time_utils import Clock, add_days, now_ms, utc_today
from .accounting_resources import AccountingResources
from .invoice_formatting import (
    article_payload_for,
    coerce_vat,
    format_invoice_row,
    next_article_number,
    sanitize_description,
)


def _parse_date(value, fallback: date) -> date:
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return fallback
    return fallback


class InvoiceExportPipeline:
    """Turns a client's unbilled billing records into one remote invoice."""

    def __init__(
        self,
        session: Session,
        resources: AccountingResources,
        config: Optional[ExportConfig] = None,
        clock: Clock = now_ms,
    ):
        self.session = session
        self.resources = resources
        self.config = config or get_config().export
        self.clock = clock
        self.logger = get_logger()

    async def export(self, client_id: str, record_ids: Sequence[str]) -> ExportResult:
        """
        Export the given records of one client as a single invoice.

        Raises:
            InvalidExportRequest: unknown, foreign or already invoiced records
            MissingProductError: a record's product was deleted
            ExternalValidationError: the invoice was rejected, including a
                second missing-article failure after self-healing
            ReconciliationError: the remote invoice exists but local records
                could not be updated; needs manual reconciliation
        """
        client, records = self._load_request(client_id, record_ids)
        self.logger.info(
            "Starting invoice export",
            extra={"client_id": client.id, "record_count": len(records)},
        )

        customer_number = await self._resolve_customer(client)
        article_numbers = await self._resolve_articles(records)
        payload = self._build_invoice(client, customer_number, records, article_numbers)
        remote_invoice = await self._submit(payload)
        return self._reconcile(client, records, payload, remote_invoice, article_numbers)

    # ==================== VALIDATION ====================

    def _load_request(self, client_id: str, record_ids: Sequence[str]):
        ids = list(dict.fromkeys(record_ids or []))
        if not ids:
            raise InvalidExportRequest("No billing records selected", field="record_ids")

        client = get_record_by_id(self.session, Client, client_id)
        if client is None:
            raise InvalidExportRequest(
                f"Client not found: {client_id}", field="client_id", client_id=client_id
            )

        found = {
            record.id: record
            for record in self.session.query(BillingRecord).filter(BillingRecord.id.in_(ids)).all()
        }

        unknown = [record_id for record_id in ids if record_id not in found]
        if unknown:
            raise InvalidExportRequest(
                "Unknown billing records selected", field="record_ids", record_ids=unknown
            )

        records = [found[record_id] for record_id in ids]

        foreign = [record.id for record in records if record.client_id != client.id]
        if foreign:
            raise InvalidExportRequest(
                "Billing records belong to a different client",
                field="record_ids",
                client_id=client.id,
                record_ids=foreign,
            )

        invoiced = [record.id for record in records if record.invoiced]
        if invoiced:
            raise InvalidExportRequest(
                "Billing records are already invoiced", field="record_ids", record_ids=invoiced
            )

        orphaned = [record.id for record in records if record.product is None]
        if orphaned:
            raise MissingProductError(field="product_id", record_ids=orphaned)

        return client, records

    # ==================== CUSTOMER ====================

    async def _resolve_customer(self, client: Client) -> str:
        """Cached number, then organisation number search, then create."""
        if client.client_number:
            try:
                customer = await self.resources.get_customer(client.client_number)
                return str(customer.get("CustomerNumber") or client.client_number)
            except ExternalNotFoundError:
                self.logger.warning(
                    "Cached customer number not found remotely",
                    extra={"client_id": client.id, "client_number": client.client_number},
                )

        customer = None
        if client.organization_number:
            customer = await self.resources.find_customer_by_organisation_number(
                client.organization_number
            )

        if customer is None:
            customer = await self.resources.create_customer(
                CustomerPayload(
                    name=client.name,
                    organisation_number=client.organization_number,
                    address1=client.address,
                    zip_code=client.postal_code,
                    city=client.city,
                    country_code=self.config.default_country_code,
                    email=client.email,
                    phone1=client.telephone,
                )
            )
            self.logger.info("Created remote customer", extra={"client_id": client.id})

        customer_number = customer.get("CustomerNumber")
        if not customer_number:
            raise ExternalServiceError(
                "Customer response carried no CustomerNumber", client_id=client.id
            )
        customer_number = str(customer_number)

        if client.client_number != customer_number:
            update_record(self.session, Client, client.id, {"client_number": customer_number})
        return customer_number

    # ==================== ARTICLES ====================

    async def _article_exists(self, article_number: str) -> bool:
        try:
            await self.resources.get_article(article_number)
            return True
        except ExternalNotFoundError:
            return False

    async def _resolve_articles(self, records: List[BillingRecord]) -> Dict[str, str]:
        """
        Map product id to a remote article number, creating missing articles.

        Remote lookups and creations run concurrently; numbers are allocated
        and written back to the products sequentially.
        """
        products: Dict[str, Product] = {}
        for record in records:
            products.setdefault(record.product.id, record.product)

        cached = [product for product in products.values() if product.article_number]
        exists = await asyncio.gather(
            *(self._article_exists(product.article_number) for product in cached)
        )

        article_numbers = {
            product.id: product.article_number for product, found in zip(cached, exists) if found
        }
        to_create = [product for product in products.values() if product.id not in article_numbers]
        if not to_create:
            return article_numbers

        in_use = [number for (number,) in self.session.query(Product.article_number).all()]
        planned: List[ArticlePayload] = []
        for product in to_create:
            number = product.article_number
            if not number:
                number = next_article_number(in_use, self.config.article_number_start)
                in_use.append(number)
            planned.append(article_payload_for(product, number, self.config))

        created = await asyncio.gather(
            *(self.resources.create_article(payload) for payload in planned),
            return_exceptions=True,
        )

        # Successful creations are written back before any failure is raised
        failures: List[BaseException] = []
        for product, payload, article in zip(to_create, planned, created):
            if isinstance(article, BaseException):
                self.logger.warning(
                    "Remote article creation failed",
                    extra={"product_id": product.id, "article_number": payload.article_number},
                )
                failures.append(article)
                continue
            number = str(article.get("ArticleNumber") or payload.article_number)
            article_numbers[product.id] = number
            if product.article_number != number:
                update_record(self.session, Product, product.id, {"article_number": number})
            self.logger.info(
                "Created remote article",
                extra={"product_id": product.id, "article_number": number},
            )

        if failures:
            raise failures[0]
        return article_numbers

    # ==================== INVOICE ====================

    def _build_invoice(
        self,
        client: Client,
        customer_number: str,
        records: List[BillingRecord],
        article_numbers: Dict[str, str],
    ) -> InvoicePayload:
        today = utc_today(self.clock())
        return InvoicePayload(
            customer_number=customer_number,
            invoice_rows=[
                format_invoice_row(
                    record, record.product, article_numbers[record.product.id], self.config
                )
                for record in records
            ],
            invoice_date=today,
            due_date=add_days(today, self.config.payment_terms_days),
            comments=self.config.invoice_comment,
            email_information=EmailInformation(email_address_to=client.email)
            if client.email
            else None,
        )

    async def _submit(self, payload: InvoicePayload) -> dict:
        """Submit once; on a missing article create it and resubmit exactly once."""
        try:
            return await self.resources.create_invoice(payload)
        except ArticleNotFoundError as first_error:
            self.logger.warning(
                "Invoice references a missing article, creating it and resubmitting",
                extra={"article_number": first_error.article_number},
            )
            await self._create_missing_article(first_error)

        try:
            return await self.resources.create_invoice(payload)
        except ArticleNotFoundError as second_error:
            raise ExternalValidationError(
                "Invoice still references a missing article after recreating it",
                payload=second_error.article_details,
                cause=second_error,
                article_number=second_error.article_number,
            )

    async def _create_missing_article(self, error: ArticleNotFoundError) -> None:
        details = error.article_details
        article_number = error.article_number
        if not article_number:
            raise ExternalValidationError(
                "Missing article error carried no article number",
                payload=details,
                cause=error,
            )
        await self.resources.create_article(
            ArticlePayload(
                article_number=article_number,
                description=sanitize_description(
                    details.get("description"), self.config.description_max_length
                )
                or f"Article {article_number}",
                sales_account=str(details.get("accountNumber") or self.config.default_sales_account),
                vat=coerce_vat(
                    details.get("vat"), self.config.allowed_vat_rates, self.config.default_vat
                ),
            )
        )

    # ==================== RECONCILIATION ====================

    def _reconcile(
        self,
        client: Client,
        records: List[BillingRecord],
        payload: InvoicePayload,
        remote_invoice: dict,
        article_numbers: Dict[str, str],
    ) -> ExportResult:
        """
        Mirror the remote invoice locally and mark the records invoiced in one commit.

        Only the local write is retried. Resubmitting would duplicate the remote invoice.
        """
        record_ids = [record.id for record in records]
        client_id = client.id
        document_number = remote_invoice.get("DocumentNumber")
        if not document_number:
            raise ReconciliationError(
                "Invoice response carried no DocumentNumber",
                record_ids=record_ids,
                response_keys=sorted(remote_invoice.keys()),
            )
        document_number = str(document_number)
        total = remote_invoice.get("Total")

        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.reconciliation_attempts + 1):
            try:
                invoice = Invoice(
                    client_id=client_id,
                    invoice_number=document_number,
                    status=InvoiceStatus.SENT.value,
                    issue_date=_parse_date(remote_invoice.get("InvoiceDate"), payload.invoice_date),
                    due_date=_parse_date(remote_invoice.get("DueDate"), payload.due_date),
                    total_amount=total,
                    exported=True,
                    external_invoice_id=document_number,
                )
                self.session.add(invoice)
                self.session.flush()
                for record in records:
                    record.invoiced = True
                    record.invoice_id = invoice.id
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                last_error = e
                self.logger.warning(
                    "Local reconciliation attempt failed",
                    extra={
                        "attempt": attempt,
                        "invoice_number": document_number,
                        "error": str(e),
                    },
                )
                continue

            self.logger.info(
                "Invoice exported",
                extra={"invoice_number": document_number, "record_count": len(record_ids)},
            )
            return ExportResult(
                invoice_id=invoice.id,
                invoice_number=document_number,
                customer_number=payload.customer_number,
                article_numbers=sorted(set(article_numbers.values())),
                record_ids=record_ids,
                total_amount=float(total) if total is not None else None,
            )

        raise ReconciliationError(
            f"Invoice {document_number} was created remotely but local records could not be updated",
            external_invoice_number=document_number,
            record_ids=record_ids,
            cause=last_error,
            client_id=client_id,
            attempts=self.config.reconciliation_attempts,
        )
