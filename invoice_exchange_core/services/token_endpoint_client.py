"""
HTTP client for the provider's OAuth token and migration endpoints.

Each call returns a validated TokenResponse or raises the error class the
token lifecycle reacts to: AuthExchangeError for the code exchange,
RefreshFailure / RequiresReconnectError for refresh, MigrationError for the
legacy migration.
"""

import base64
from typing import Any, Dict, Optional, Tuple, Type

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import AccountingAPIConfig, get_config
from ..constants import GrantType, OAuthErrorCode
from ..exceptions import (
    AuthExchangeError,
    ExternalServiceError,
    MigrationError,
    RefreshFailure,
    RequiresReconnectError,
)
from ..schemas.credential_schemas import TokenResponse
from ..utils.logger import get_logger, mask_secret

# Refresh errors that no amount of retrying will fix
PERMANENT_REFRESH_ERRORS = {OAuthErrorCode.INVALID_GRANT.value}


def _basic_auth(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}"
    return base64.b64encode(credentials.encode()).decode()


def _parse_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"raw_response": response.text}
    return body if isinstance(body, dict) else {"raw_response": body}


class TokenEndpointClient:
    """Talks to the token and migration endpoints. Holds no credential state."""

    def __init__(
        self,
        config: Optional[AccountingAPIConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config().accounting_api
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self.logger = get_logger()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post_form(
        self,
        url: str,
        data: Dict[str, str],
        error_class: Type[ExternalServiceError],
        operation: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        request_headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        request_headers.update(headers or {})
        try:
            response = await self._client.post(url, data=data, headers=request_headers)
        except httpx.TransportError as e:
            raise error_class(
                f"Could not reach token endpoint during {operation}: {str(e)}",
                cause=e,
                operation=operation,
                url=url,
            )

        body = _parse_body(response)
        self.logger.debug(
            f"Token endpoint responded to {operation}",
            extra={
                "operation": operation,
                "status": response.status_code,
                "has_access_token": bool(body.get("access_token")),
                "has_refresh_token": bool(body.get("refresh_token")),
            },
        )
        return response.status_code, body

    @staticmethod
    def _is_error(status: int, body: Dict[str, Any]) -> bool:
        return status >= 400 or "error" in body

    @staticmethod
    def _error_fields(status: int, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "http_status": status,
            "provider_error": body.get("error"),
            "provider_error_description": body.get("error_description"),
        }

    def _token_response(
        self, body: Dict[str, Any], error_class: Type[ExternalServiceError], operation: str
    ) -> TokenResponse:
        try:
            return TokenResponse.model_validate(body)
        except PydanticValidationError as e:
            raise error_class(
                f"Token endpoint returned an unusable response during {operation}",
                cause=e,
                operation=operation,
                response_keys=sorted(body.keys()),
            )

    async def exchange_code(
        self, client_id: str, client_secret: str, code: str, redirect_uri: str
    ) -> TokenResponse:
        """
        Exchange an authorization code for an access/refresh token pair.

        Raises:
            AuthExchangeError: code invalid or expired, or the endpoint unreachable
        """
        self.logger.info(
            "Exchanging authorization code",
            extra={"code": mask_secret(code), "client_id": mask_secret(client_id)},
        )
        status, body = await self._post_form(
            self.config.token_url,
            {
                "grant_type": GrantType.AUTHORIZATION_CODE.value,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            AuthExchangeError,
            "exchange_code",
            headers={"Authorization": f"Basic {_basic_auth(client_id, client_secret)}"},
        )
        if self._is_error(status, body):
            description = body.get("error_description") or body.get("error") or f"HTTP {status}"
            raise AuthExchangeError(
                f"Authorization code exchange failed: {description}",
                **self._error_fields(status, body),
            )
        return self._token_response(body, AuthExchangeError, "exchange_code")

    async def refresh(self, client_id: str, client_secret: str, refresh_token: str) -> TokenResponse:
        """
        Mint a new access token from a refresh token.

        Raises:
            RequiresReconnectError: the provider rejected the grant (never retry)
            RefreshFailure: transient failure, the refresh token is still usable
        """
        status, body = await self._post_form(
            self.config.token_url,
            {
                "grant_type": GrantType.REFRESH_TOKEN.value,
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
            },
            RefreshFailure,
            "refresh",
        )
        if self._is_error(status, body):
            provider_error = body.get("error")
            description = body.get("error_description") or provider_error or f"HTTP {status}"
            if provider_error in PERMANENT_REFRESH_ERRORS:
                raise RequiresReconnectError(
                    f"Refresh token rejected: {description}", **self._error_fields(status, body)
                )
            raise RefreshFailure(f"Token refresh failed: {description}", **self._error_fields(status, body))
        return self._token_response(body, RefreshFailure, "refresh")

    async def migrate(self, client_id: str, client_secret: str, access_token: str) -> TokenResponse:
        """
        Convert a legacy access-only token into a refreshable pair.

        Raises:
            MigrationError: always terminal; the provider's error code is kept in context
        """
        status, body = await self._post_form(
            self.config.migration_url,
            {
                "access_token": access_token,
                "auth_flow": "authorization_code_grant",
                "token_type_hint": "jwt",
            },
            MigrationError,
            "migrate",
            headers={"Authorization": f"Basic {_basic_auth(client_id, client_secret)}"},
        )
        if self._is_error(status, body):
            provider_error = body.get("error")
            if status == 404 or provider_error == OAuthErrorCode.TOKEN_NOT_FOUND.value:
                provider_error = OAuthErrorCode.TOKEN_NOT_FOUND.value
                description = "Access token not found or has expired"
            else:
                description = body.get("error_description") or provider_error or f"HTTP {status}"
            fields = self._error_fields(status, body)
            fields["provider_error"] = provider_error
            raise MigrationError(f"Legacy token migration failed: {description}", **fields)
        return self._token_response(body, MigrationError, "migrate")
