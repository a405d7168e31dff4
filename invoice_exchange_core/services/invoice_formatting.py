"""
Pure formatting rules turning billing records into invoice rows.

Nothing here touches the network or the session, so every rule can be
tested on plain model instances.
"""

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from ..config import ExportConfig, get_config
from ..constants import ProductType
from ..db.db_billing_models import BillingRecord, Product
from ..schemas.export_schemas import ArticlePayload, InvoiceRow
from ..utils.time_utils import to_utc

_FORBIDDEN_CHARS = re.compile(r"[|\x00-\x1f\x7f]")
_SEPARATOR_RUN = re.compile(r"\s*([-,;:/])(?:\s*[-,;:/])+\s*")
_WHITESPACE = re.compile(r"\s+")
_EDGE_CHARS = " -,;:/"

DESCRIPTION_JOINER = " - "


def sanitize_description(text: Optional[str], max_length: int = 50) -> str:
    """
    Make a line description acceptable to the invoice schema.

    Pipes and control characters become spaces, runs of separators collapse to
    the first one, whitespace collapses, separators are trimmed from both ends
    and the result is cut to max_length. Applying it twice changes nothing.
    """
    if not text:
        return ""
    value = _FORBIDDEN_CHARS.sub(" ", text)
    value = _SEPARATOR_RUN.sub(lambda match: f" {match.group(1)} ", value)
    value = _WHITESPACE.sub(" ", value).strip(_EDGE_CHARS)
    return value[:max_length].strip(_EDGE_CHARS)


def coerce_vat(value, allowed: Iterable[int] = (25, 12, 6), default: int = 25) -> int:
    """Return value as an allowed VAT rate, or default for anything else."""
    if value is None:
        return default
    try:
        rate = Decimal(str(value))
        if not rate.is_finite() or rate != rate.to_integral_value():
            return default
    except ArithmeticError:
        return default
    return int(rate) if int(rate) in set(allowed) else default


def is_activity(record: BillingRecord, product: Product) -> bool:
    return (
        product.type == ProductType.ACTIVITY.value
        and record.start_time is not None
        and record.end_time is not None
    )


def billing_quantity(record: BillingRecord, product: Product) -> float:
    """Hours with two decimals for activities, the raw quantity for items."""
    if is_activity(record, product):
        seconds = (to_utc(record.end_time) - to_utc(record.start_time)).total_seconds()
        hours = Decimal(str(max(seconds, 0))) / Decimal(3600)
        return float(hours.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    if record.quantity is not None:
        return float(record.quantity)
    return 1.0


def unit_price(record: BillingRecord, product: Product) -> float:
    """Per-record override first, else the product's price."""
    if record.unit_price is not None:
        return float(record.unit_price)
    return float(product.price or 0)


def _time_range(record: BillingRecord) -> str:
    start = to_utc(record.start_time)
    end = to_utc(record.end_time)
    if start.date() == end.date():
        return f"{start:%Y-%m-%d %H.%M}-{end:%H.%M} UTC"
    return f"{start:%Y-%m-%d %H.%M}-{end:%Y-%m-%d %H.%M} UTC"


def build_description(record: BillingRecord, product: Product, max_length: int = 50) -> str:
    """Record description (or product name), performer and, for activities, the time range."""
    parts = [record.description or product.name]
    if record.performed_by:
        parts.append(f"Performed by {record.performed_by}")
    if is_activity(record, product):
        parts.append(_time_range(record))

    description = sanitize_description(
        DESCRIPTION_JOINER.join(part for part in parts if part), max_length
    )
    return description or sanitize_description(product.name, max_length) or "Item"


def unit_for(product: Product, config: ExportConfig) -> str:
    if product.type == ProductType.ACTIVITY.value:
        return config.hour_unit
    return config.item_unit


def format_invoice_row(
    record: BillingRecord,
    product: Product,
    article_number: str,
    config: Optional[ExportConfig] = None,
) -> InvoiceRow:
    config = config or get_config().export
    return InvoiceRow(
        article_number=article_number,
        description=build_description(record, product, config.description_max_length),
        delivered_quantity=billing_quantity(record, product),
        price=unit_price(record, product),
        vat=coerce_vat(product.vat_percentage, config.allowed_vat_rates, config.default_vat),
        account_number=product.account_number or config.default_sales_account,
        unit=unit_for(product, config),
    )


def article_payload_for(
    product: Product, article_number: str, config: Optional[ExportConfig] = None
) -> ArticlePayload:
    config = config or get_config().export
    return ArticlePayload(
        article_number=article_number,
        description=sanitize_description(product.name, config.description_max_length)
        or f"Article {article_number}",
        sales_account=product.account_number or config.default_sales_account,
        vat=coerce_vat(product.vat_percentage, config.allowed_vat_rates, config.default_vat),
        unit=unit_for(product, config),
        sales_price=float(product.price or 0),
    )


def next_article_number(existing: Iterable[Optional[str]], start: int = 1000) -> str:
    """One above the highest numeric article number in use, never below start."""
    numbers = [int(value) for value in existing if value and str(value).isdigit()]
    return str(max([start - 1] + numbers) + 1)
