"""
Tests for the generic CRUD helpers.

Uses the real SQLite session and billing models, no mocks.
"""

from decimal import Decimal

import pytest

from invoice_exchange_core.db import Client, Product
from invoice_exchange_core.exceptions import BaseError, ErrorCode, RepositoryError
from invoice_exchange_core.utils.crud_helpers import (
    count_records,
    create_record,
    delete_record,
    get_record,
    get_record_by_id,
    list_records,
    update_record,
)
from tests.fixtures.factories import ClientFactory, ProductFactory


class TestCreateRecord:
    """Test create_record."""

    def test_create(self, db_session):
        client = create_record(db_session, Client, {"name": "Acme AB", "organization_number": "556677-8899"})

        assert client.id is not None
        assert client.created_at is not None
        assert get_record_by_id(db_session, Client, client.id).name == "Acme AB"

    def test_create_failure_raises_database_error(self, db_session):
        # name is NOT NULL
        with pytest.raises(BaseError) as exc_info:
            create_record(db_session, Client, {"name": None})

        assert exc_info.value.error_code == ErrorCode.DATABASE_ERROR
        assert count_records(db_session, Client) == 0


class TestGetRecord:
    """Test lookups."""

    def test_get_by_filters(self, db_session):
        ClientFactory(name="First AB")
        second = ClientFactory(name="Second AB")

        assert get_record(db_session, Client, {"name": "Second AB"}).id == second.id
        assert get_record(db_session, Client, {"name": "Missing AB"}) is None

    def test_none_filters_are_ignored(self, db_session):
        client = ClientFactory()
        assert get_record(db_session, Client, {"name": None}).id == client.id

    def test_get_by_id_missing(self, db_session):
        assert get_record_by_id(db_session, Client, "does-not-exist") is None


class TestUpdateRecord:
    """Test update_record."""

    def test_partial_update_skips_none(self, db_session):
        product = ProductFactory(article_number=None, account_number="3001")

        updated = update_record(
            db_session, Product, product.id, {"article_number": "1000", "account_number": None}
        )

        assert updated.article_number == "1000"
        assert updated.account_number == "3001"

    def test_update_missing_record(self, db_session):
        with pytest.raises(RepositoryError) as exc_info:
            update_record(db_session, Client, "missing", {"name": "x"})
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND

    def test_unique_violation_rolls_back(self, db_session):
        ProductFactory(article_number="1000")
        other = ProductFactory(article_number=None)

        with pytest.raises(BaseError) as exc_info:
            update_record(db_session, Product, other.id, {"article_number": "1000"})

        assert exc_info.value.error_code == ErrorCode.DATABASE_ERROR
        assert get_record_by_id(db_session, Product, other.id).article_number is None


class TestDeleteAndList:
    """Test delete, list and count."""

    def test_delete(self, db_session):
        client = ClientFactory()

        assert delete_record(db_session, Client, client.id) is True
        assert delete_record(db_session, Client, client.id) is False
        assert count_records(db_session, Client) == 0

    def test_list_with_filters_and_paging(self, db_session):
        for price in ("100", "200", "300"):
            ProductFactory(price=Decimal(price), account_number="3041")
        ProductFactory(account_number="3001")

        services = list_records(db_session, Product, {"account_number": "3041"}, order_by="price")

        assert [product.price for product in services] == [Decimal("100"), Decimal("200"), Decimal("300")]
        assert len(list_records(db_session, Product, limit=2)) == 2
        assert count_records(db_session, Product, {"account_number": "3041"}) == 3
