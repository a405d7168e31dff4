"""
Local billing models: clients, products, billing records and invoices.

The remote identifiers (client_number, article_number, external_invoice_id)
are caches of the accounting service's ids and are filled in by the export.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ..constants import InvoiceStatus, ProductType
from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class Client(Base, UUIDMixin, TimestampMixin):
    """Customer being invoiced."""

    __tablename__ = "clients"

    name = Column(String(255), nullable=False)
    organization_number = Column(String(50), nullable=True, index=True)
    client_number = Column(String(50), nullable=True)
    address = Column(String(255), nullable=True)
    postal_code = Column(String(20), nullable=True)
    city = Column(String(100), nullable=True)
    telephone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)

    billing_records = relationship("BillingRecord", back_populates="client")
    invoices = relationship("Invoice", back_populates="client")


class Product(Base, UUIDMixin, TimestampMixin):
    """Billable activity (hourly) or item (per unit)."""

    __tablename__ = "products"

    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default=ProductType.ACTIVITY.value)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    account_number = Column(String(20), nullable=True)
    vat_percentage = Column(Numeric(5, 2), nullable=True)
    article_number = Column(String(50), nullable=True, unique=True)

    billing_records = relationship("BillingRecord", back_populates="product")


class BillingRecord(Base, UUIDMixin, TimestampMixin):
    """
    Time entry or item entry waiting to be invoiced.

    Activities carry start_time/end_time, items carry quantity.
    """

    __tablename__ = "billing_records"

    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    quantity = Column(Numeric(12, 2), nullable=True)
    unit_price = Column(Numeric(12, 2), nullable=True)
    description = Column(Text, nullable=True)
    performed_by = Column(String(255), nullable=True)
    invoiced = Column(Boolean, nullable=False, default=False)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=True)

    client = relationship("Client", back_populates="billing_records")
    product = relationship("Product", back_populates="billing_records")
    invoice = relationship("Invoice", back_populates="billing_records")

    __table_args__ = (Index("ix_billing_records_client_invoiced", "client_id", "invoiced"),)


class Invoice(Base, UUIDMixin, TimestampMixin):
    """Local record of an invoice created in the accounting service."""

    __tablename__ = "invoices"

    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    invoice_number = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value)
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)
    exported = Column(Boolean, nullable=False, default=False)
    external_invoice_id = Column(String(50), nullable=True)

    client = relationship("Client", back_populates="invoices")
    billing_records = relationship("BillingRecord", back_populates="invoice")
