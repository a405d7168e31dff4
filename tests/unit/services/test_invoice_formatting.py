"""Tests for invoice row formatting rules. Plain model instances, no session."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from invoice_exchange_core.config import ExportConfig
from invoice_exchange_core.constants import ProductType
from invoice_exchange_core.db import BillingRecord, Product
from invoice_exchange_core.services.invoice_formatting import (
    article_payload_for,
    billing_quantity,
    build_description,
    coerce_vat,
    format_invoice_row,
    next_article_number,
    sanitize_description,
    unit_price,
)


def _activity_product(**overrides):
    values = {
        "name": "Consulting",
        "type": ProductType.ACTIVITY.value,
        "price": Decimal("500.00"),
        "account_number": "3001",
        "vat_percentage": Decimal("25"),
    }
    values.update(overrides)
    return Product(**values)


def _item_product(**overrides):
    values = {
        "name": "Network cable",
        "type": ProductType.ITEM.value,
        "price": Decimal("49.00"),
        "account_number": "3041",
        "vat_percentage": Decimal("25"),
    }
    values.update(overrides)
    return Product(**values)


def _activity(start=(10, 0), end=(12, 30), **overrides):
    values = {
        "start_time": datetime(2024, 3, 4, *start, tzinfo=timezone.utc),
        "end_time": datetime(2024, 3, 4, *end, tzinfo=timezone.utc),
        "description": "Backend development",
        "performed_by": "Alex Svensson",
    }
    values.update(overrides)
    return BillingRecord(**values)


SANITIZE_SAMPLES = [
    "Design | review",
    "Fix -- ,; bug",
    "  -Leading and trailing:  ",
    "tab\there\nnewline\x00null",
    "a -b, -c //d",
    "x" * 48 + " - tail",
    "e-mail / phone",
    "",
]


class TestSanitizeDescription:
    """Description cleanup."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Design | review", "Design review"),
            ("Fix -- ,; bug", "Fix - bug"),
            ("  -Leading and trailing:  ", "Leading and trailing"),
            ("tab\there\nnewline\x00null", "tab here newline null"),
            ("e-mail / phone", "e-mail / phone"),
            (None, ""),
        ],
    )
    def test_cleanup(self, raw, expected):
        assert sanitize_description(raw) == expected

    def test_truncates_and_trims_cut_separator(self):
        assert sanitize_description("x" * 48 + " - tail") == "x" * 48
        assert len(sanitize_description("word " * 30)) <= 50

    @pytest.mark.parametrize("raw", SANITIZE_SAMPLES)
    def test_idempotent_and_pipe_free(self, raw):
        once = sanitize_description(raw)
        assert sanitize_description(once) == once
        assert "|" not in once
        assert len(once) <= 50


class TestCoerceVat:
    """VAT rate coercion."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (25, 25),
            (12, 12),
            ("6", 6),
            (12.0, 12),
            (Decimal("6.00"), 6),
            (20, 25),
            (12.5, 25),
            (None, 25),
            ("abc", 25),
            (float("inf"), 25),
            (float("nan"), 25),
        ],
    )
    def test_coerce(self, value, expected):
        assert coerce_vat(value) == expected

    def test_custom_rates(self):
        assert coerce_vat(0, allowed=(25, 0), default=25) == 0
        assert coerce_vat(7, allowed=(19, 7), default=19) == 7


class TestQuantityAndPrice:
    """Billed quantity and unit price."""

    def test_activity_hours(self):
        assert billing_quantity(_activity(), _activity_product()) == 2.5

    @pytest.mark.parametrize(
        "end,expected",
        [((10, 20), 0.33), ((10, 10), 0.17), ((10, 0), 0.0)],
    )
    def test_activity_hours_rounding(self, end, expected):
        assert billing_quantity(_activity(end=end), _activity_product()) == expected

    def test_negative_duration_is_zero(self):
        assert billing_quantity(_activity(start=(12, 0), end=(10, 0)), _activity_product()) == 0.0

    def test_naive_times_are_utc(self):
        record = _activity(
            start_time=datetime(2024, 3, 4, 10, 0), end_time=datetime(2024, 3, 4, 11, 15)
        )
        assert billing_quantity(record, _activity_product()) == 1.25

    def test_item_quantity(self):
        assert billing_quantity(BillingRecord(quantity=Decimal("3")), _item_product()) == 3.0
        assert billing_quantity(BillingRecord(), _item_product()) == 1.0

    def test_unit_price_override(self):
        product = _activity_product()
        assert unit_price(_activity(), product) == 500.0
        assert unit_price(_activity(unit_price=Decimal("650")), product) == 650.0


class TestBuildDescription:
    """Row descriptions."""

    def test_activity_includes_time_range(self):
        description = build_description(_activity(), _activity_product(), max_length=100)
        assert description == (
            "Backend development - Performed by Alex Svensson - 2024-03-04 10.00-12.30 UTC"
        )

    def test_default_length_cuts_time_range(self):
        assert build_description(_activity(), _activity_product()) == (
            "Backend development - Performed by Alex Svensson"
        )

    def test_product_name_fallback(self):
        record = BillingRecord(description=None, performed_by=None, quantity=Decimal("1"))
        assert build_description(record, _item_product()) == "Network cable"

    def test_empty_after_sanitizing(self):
        record = BillingRecord(description="|||", quantity=Decimal("1"))
        assert build_description(record, _item_product(name="---")) == "Item"


class TestFormatInvoiceRow:
    """Complete rows."""

    def test_activity_row(self):
        row = format_invoice_row(_activity(), _activity_product(), "1000", ExportConfig())

        assert row.to_remote() == {
            "ArticleNumber": "1000",
            "Description": "Backend development - Performed by Alex Svensson",
            "DeliveredQuantity": 2.5,
            "Price": 500.0,
            "VAT": 25,
            "AccountNumber": "3001",
            "Unit": "tim",
        }

    def test_item_row(self):
        record = BillingRecord(quantity=Decimal("3"), description="Cat6 cable 5m")
        row = format_invoice_row(record, _item_product(), "1001", ExportConfig())

        assert row.delivered_quantity == 3.0
        assert row.price == 49.0
        assert row.unit == "st"
        assert row.description == "Cat6 cable 5m"

    def test_invalid_vat_and_missing_account(self):
        product = _activity_product(vat_percentage=Decimal("20"), account_number=None)

        row = format_invoice_row(_activity(), product, "1000", ExportConfig())

        assert row.vat == 25
        assert row.account_number == "3001"


class TestArticles:
    """Article payloads and numbering."""

    def test_article_payload(self):
        payload = article_payload_for(_item_product(vat_percentage=Decimal("12")), "1001", ExportConfig())

        assert payload.to_remote() == {
            "ArticleNumber": "1001",
            "Description": "Network cable",
            "SalesAccount": "3041",
            "VAT": 12,
            "Unit": "st",
            "SalesPrice": 49.0,
        }

    @pytest.mark.parametrize(
        "existing,expected",
        [
            ([], "1000"),
            (["1000", "1001", None, "ABC"], "1002"),
            (["5"], "1000"),
            (["2000"], "2001"),
        ],
    )
    def test_next_article_number(self, existing, expected):
        assert next_article_number(existing) == expected
