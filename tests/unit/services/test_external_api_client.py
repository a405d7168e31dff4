"""Tests for ExternalAPIClient: auth retry and error mapping."""

import pytest

from invoice_exchange_core.constants import HTTPMethod
from invoice_exchange_core.db import TokenRefreshLog
from invoice_exchange_core.exceptions import (
    ArticleNotFoundError,
    CredentialNotFoundError,
    ExternalAuthError,
    ExternalNotFoundError,
    ExternalServiceError,
    ExternalTransportError,
    ExternalValidationError,
    RequiresReconnectError,
)
from invoice_exchange_core.services.external_api_client import (
    article_details_from_error,
    unwrap_error,
)
from invoice_exchange_core.utils.crud_helpers import list_records


class TestErrorHelpers:
    """Provider error body parsing."""

    def test_unwrap_error_information(self):
        body = {"ErrorInformation": {"error": 1, "message": "Kan inte hitta kunden.", "code": 2000433}}
        assert unwrap_error(body, 404) == ("2000433", "Kan inte hitta kunden.")

    def test_unwrap_oauth_error(self):
        body = {"error": "invalid_token", "error_description": "Token expired"}
        assert unwrap_error(body, 401) == ("invalid_token", "Token expired")

    def test_unwrap_unknown_body(self):
        assert unwrap_error({}, 500) == (None, "HTTP 500")

    def test_article_details_passthrough(self):
        body = {"articleDetails": {"articleNumber": "1003", "accountNumber": "3041"}}
        assert article_details_from_error(body, None, "") == body["articleDetails"]

    def test_article_number_from_message(self):
        details = article_details_from_error({}, "2001302", 'Kunde inte hitta artikel "1004"')
        assert details == {"articleNumber": "1004"}

    def test_other_errors_are_not_article_errors(self):
        assert article_details_from_error({}, "2000433", 'Kunde inte hitta kund "7"') is None


class TestCall:
    """Authenticated calls."""

    @pytest.mark.asyncio
    async def test_get_sends_bearer_token(self, api_client, connected, provider):
        provider.add_customer("101", Name="Acme AB")

        body = await api_client.call("/customers/101")

        assert body == {"Customer": {"CustomerNumber": "101", "Name": "Acme AB"}}
        request = provider.calls("GET", "/3/customers/101")[0]
        assert request.headers["Authorization"] == "Bearer access-initial"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_post_sends_json(self, api_client, connected, provider):
        await api_client.call("/articles", HTTPMethod.POST, {"Article": {"ArticleNumber": "1000"}})

        assert provider.articles == {"1000": {"ArticleNumber": "1000"}}

    @pytest.mark.asyncio
    async def test_not_connected(self, api_client, provider):
        with pytest.raises(CredentialNotFoundError):
            await api_client.call("/customers")
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_empty_body(self, api_client, connected, provider):
        provider.invoice_failures.append((204, None))

        assert await api_client.call("/invoices", HTTPMethod.POST, {"Invoice": {}}) == {}

    def test_build_url(self, api_client):
        assert api_client.build_url("/customers") == "https://api.fortnox.se/3/customers"
        assert api_client.build_url("//invoices//5001") == "https://api.fortnox.se/3/invoices/5001"


class TestAuthRetry:
    """401 handling."""

    @pytest.mark.asyncio
    async def test_refreshes_and_retries_once(self, api_client, connected, provider, db_session):
        provider.rejected_tokens.add("access-initial")

        body = await api_client.call("/invoices")

        assert body == {"Invoices": []}
        assert len(provider.token_calls()) == 1
        calls = provider.calls("GET", "/3/invoices")
        assert [request.headers["Authorization"] for request in calls] == [
            "Bearer access-initial",
            "Bearer access-1",
        ]
        assert list_records(db_session, TokenRefreshLog)[0].trigger == "auth_retry"

    @pytest.mark.asyncio
    async def test_second_401_is_auth_error(self, api_client, connected, provider):
        provider.rejected_tokens.update({"access-initial", "access-1"})

        with pytest.raises(ExternalAuthError):
            await api_client.call("/invoices")

        assert len(provider.calls("GET", "/3/invoices")) == 2
        assert len(provider.token_calls()) == 1

    @pytest.mark.asyncio
    async def test_rejected_refresh_requires_reconnect(self, api_client, connected, provider, token_manager):
        provider.rejected_tokens.add("access-initial")
        provider.queue_token(400, error="invalid_grant")

        with pytest.raises(RequiresReconnectError):
            await api_client.call("/invoices")

        assert len(provider.calls("GET", "/3/invoices")) == 1
        assert await token_manager.get_valid_credential() is None


class TestErrorMapping:
    """Non-2xx responses."""

    @pytest.mark.asyncio
    async def test_transport_failure(self, api_client, connected, provider):
        provider.unreachable_paths.add("/3/customers")

        with pytest.raises(ExternalTransportError) as exc_info:
            await api_client.call("/customers")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_not_found(self, api_client, connected):
        with pytest.raises(ExternalNotFoundError) as exc_info:
            await api_client.call("/customers/999")

        assert not isinstance(exc_info.value, ArticleNotFoundError)
        assert exc_info.value.context["provider_error_code"] == "2000433"

    @pytest.mark.asyncio
    async def test_validation_error_keeps_payload(self, api_client, connected, provider):
        failure = {"ErrorInformation": {"error": 1, "message": "Ogiltig momssats", "code": 2000588}}
        provider.invoice_failures.append((400, failure))

        with pytest.raises(ExternalValidationError) as exc_info:
            await api_client.call("/invoices", HTTPMethod.POST, {"Invoice": {}})

        assert exc_info.value.payload == failure
        assert "Ogiltig momssats" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_article_error_code(self, api_client, connected, provider):
        provider.invoice_failures.append(
            (400, {"ErrorInformation": {"message": 'Kunde inte hitta artikel "1007"', "code": 2001302}})
        )

        with pytest.raises(ArticleNotFoundError) as exc_info:
            await api_client.call("/invoices", HTTPMethod.POST, {"Invoice": {}})

        assert exc_info.value.article_number == "1007"

    @pytest.mark.asyncio
    async def test_missing_article_details(self, api_client, connected, provider):
        details = {"articleNumber": "1008", "description": "Support", "accountNumber": "3041", "vat": 12}
        provider.invoice_failures.append((400, {"message": "Article missing", "articleDetails": details}))

        with pytest.raises(ArticleNotFoundError) as exc_info:
            await api_client.call("/invoices", HTTPMethod.POST, {"Invoice": {}})

        assert exc_info.value.article_details == details

    @pytest.mark.asyncio
    async def test_server_error(self, api_client, connected, provider):
        provider.invoice_failures.append((503, {"message": "Maintenance"}))

        with pytest.raises(ExternalServiceError) as exc_info:
            await api_client.call("/invoices", HTTPMethod.POST, {"Invoice": {}})

        assert type(exc_info.value) is ExternalServiceError
        assert exc_info.value.status_code == 502
        assert exc_info.value.context["http_status"] == 503
