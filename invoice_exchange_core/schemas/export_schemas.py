"""
Payload models for the accounting service resources.

Field aliases carry the service's PascalCase names; dump with
``model_dump(by_alias=True, exclude_none=True)`` before sending.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RemotePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_remote(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class CustomerPayload(RemotePayload):
    """Customer body. CustomerNumber is assigned by the service and never sent."""

    name: str = Field(..., alias="Name", min_length=1)
    organisation_number: Optional[str] = Field(None, alias="OrganisationNumber")
    address1: Optional[str] = Field(None, alias="Address1")
    zip_code: Optional[str] = Field(None, alias="ZipCode")
    city: Optional[str] = Field(None, alias="City")
    country_code: str = Field("SE", alias="CountryCode")
    email: Optional[str] = Field(None, alias="Email")
    phone1: Optional[str] = Field(None, alias="Phone1")


class ArticlePayload(RemotePayload):
    article_number: str = Field(..., alias="ArticleNumber", min_length=1)
    description: str = Field(..., alias="Description")
    sales_account: Optional[str] = Field(None, alias="SalesAccount")
    vat: Optional[int] = Field(None, alias="VAT")
    unit: Optional[str] = Field(None, alias="Unit")
    sales_price: Optional[float] = Field(None, alias="SalesPrice")


class InvoiceRow(RemotePayload):
    article_number: str = Field(..., alias="ArticleNumber")
    description: str = Field(..., alias="Description")
    delivered_quantity: float = Field(..., alias="DeliveredQuantity")
    price: float = Field(..., alias="Price")
    vat: int = Field(..., alias="VAT")
    account_number: Optional[str] = Field(None, alias="AccountNumber")
    unit: Optional[str] = Field(None, alias="Unit")


class EmailInformation(RemotePayload):
    email_address_to: str = Field(..., alias="EmailAddressTo")
    email_subject: str = Field("New Invoice", alias="EmailSubject")
    email_body: str = Field("Please find attached your invoice.", alias="EmailBody")


class InvoicePayload(RemotePayload):
    """Invoice body, submitted wrapped as {"Invoice": ...}."""

    customer_number: str = Field(..., alias="CustomerNumber", min_length=1)
    invoice_rows: List[InvoiceRow] = Field(..., alias="InvoiceRows", min_length=1)
    invoice_date: date = Field(..., alias="InvoiceDate")
    due_date: date = Field(..., alias="DueDate")
    comments: Optional[str] = Field(None, alias="Comments")
    email_information: Optional[EmailInformation] = Field(None, alias="EmailInformation")


class ExportResult(BaseModel):
    """What one successful export produced, locally and remotely."""

    invoice_id: str
    invoice_number: str
    customer_number: str
    article_numbers: List[str] = Field(default_factory=list)
    record_ids: List[str] = Field(default_factory=list)
    total_amount: Optional[float] = None
