"""
Authenticated client for the accounting service's REST API.

All outbound resource calls go through ExternalAPIClient.call(), which takes
its bearer token from TokenLifecycleManager.get_valid_credential() and maps
every failure onto one exception class:

    transport failure        ExternalTransportError (retryable)
    401                      one forced refresh + one retry, then ExternalAuthError
    missing article          ArticleNotFoundError (carries article_details)
    404                      ExternalNotFoundError
    other 4xx                ExternalValidationError (full payload kept)
    5xx                      ExternalServiceError
"""

import re
from typing import Any, Dict, Optional, Tuple

import httpx

from ..config import AccountingAPIConfig, get_config
from ..constants import ARTICLE_NOT_FOUND_ERROR_CODE, HTTPMethod, RefreshTrigger
from ..exceptions import (
    ArticleNotFoundError,
    CredentialNotFoundError,
    ExternalAuthError,
    ExternalNotFoundError,
    ExternalServiceError,
    ExternalTransportError,
    ExternalValidationError,
)
from ..utils.logger import get_logger
from .token_lifecycle_service import TokenLifecycleManager

_DUPLICATE_SLASHES = re.compile(r"(?<!:)/{2,}")
_QUOTED_NAME = re.compile(r"[\"'“”«»]([^\"'“”«»]+)[\"'“”«»]")


def _parse_body(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {"raw_response": response.text}
    return body if isinstance(body, dict) else {"data": body}


def unwrap_error(body: Dict[str, Any], status: int) -> Tuple[Optional[str], str]:
    """
    Extract (code, message) from a provider error body.

    Handles ErrorInformation bodies of the REST API as well as OAuth-style
    {"error", "error_description"} bodies.
    """
    info = body.get("ErrorInformation") or body.get("errorInformation")
    if isinstance(info, dict):
        code = info.get("code", info.get("Code"))
        message = info.get("message") or info.get("Message") or f"HTTP {status}"
        return (str(code) if code is not None else None), message

    if "error" in body:
        code = body.get("error")
        message = body.get("error_description") or body.get("message") or str(code)
        return (str(code) if code is not None else None), message

    return None, body.get("message") or f"HTTP {status}"


def article_details_from_error(
    body: Dict[str, Any], code: Optional[str], message: str
) -> Optional[Dict[str, Any]]:
    """Return the missing article's details when the error is an article-not-found error."""
    details = body.get("articleDetails")
    if isinstance(details, dict) and details.get("articleNumber"):
        return details

    if code == str(ARTICLE_NOT_FOUND_ERROR_CODE) or code == "article_not_found":
        match = _QUOTED_NAME.search(message or "")
        return {"articleNumber": match.group(1) if match else None}

    return None


class ExternalAPIClient:
    """Calls the accounting REST API with a valid bearer token."""

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        config: Optional[AccountingAPIConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_manager = token_manager
        self.config = config or get_config().accounting_api
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self.logger = get_logger()

    async def __aenter__(self) -> "ExternalAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_url(self, endpoint: str) -> str:
        url = f"{self.config.api_base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        return _DUPLICATE_SLASHES.sub("/", url)

    async def call(
        self,
        endpoint: str,
        method: HTTPMethod = HTTPMethod.GET,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send one request and return the decoded JSON body ({} for empty bodies).

        Raises:
            CredentialNotFoundError: the integration is not connected
            RefreshFailure: the forced refresh after a 401 failed
            ExternalTransportError, ExternalAuthError, ExternalNotFoundError,
            ArticleNotFoundError, ExternalValidationError, ExternalServiceError
        """
        method = HTTPMethod(method)
        credential = await self.token_manager.get_valid_credential()
        if credential is None:
            raise CredentialNotFoundError(endpoint=endpoint, method=method.value)

        response = await self._send(method, endpoint, credential.access_token, payload, params)

        if response.status_code == 401:
            self.logger.warning(
                "Accounting API rejected access token, forcing refresh",
                extra={"endpoint": endpoint, "method": method.value},
            )
            refreshed = await self.token_manager.refresh(credential, trigger=RefreshTrigger.AUTH_RETRY)
            response = await self._send(method, endpoint, refreshed.access_token, payload, params)
            if response.status_code == 401:
                code, message = unwrap_error(_parse_body(response), 401)
                raise ExternalAuthError(
                    f"Accounting API rejected the refreshed token: {message}",
                    endpoint=endpoint,
                    method=method.value,
                    provider_error_code=code,
                )

        return self._handle_response(response, method, endpoint)

    async def _send(
        self,
        method: HTTPMethod,
        endpoint: str,
        access_token: str,
        payload: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            return await self._client.request(
                method.value,
                self.build_url(endpoint),
                headers=headers,
                json=payload if method != HTTPMethod.GET else None,
                params=params,
            )
        except httpx.TransportError as e:
            raise ExternalTransportError(
                f"Could not reach accounting service: {str(e)}",
                cause=e,
                endpoint=endpoint,
                method=method.value,
            )

    def _handle_response(
        self, response: httpx.Response, method: HTTPMethod, endpoint: str
    ) -> Dict[str, Any]:
        status = response.status_code
        body = _parse_body(response)

        if response.is_success:
            self.logger.debug(
                "Accounting API call succeeded",
                extra={"endpoint": endpoint, "method": method.value, "status": status},
            )
            return body

        code, message = unwrap_error(body, status)
        context = {
            "endpoint": endpoint,
            "method": method.value,
            "http_status": status,
            "provider_error_code": code,
            "provider_message": message,
        }

        if 400 <= status < 500:
            details = article_details_from_error(body, code, message)
            if details is not None:
                raise ArticleNotFoundError(
                    f"Referenced article not found: {message}", article_details=details, **context
                )
            if status == 404:
                raise ExternalNotFoundError(f"Remote resource not found: {message}", **context)
            raise ExternalValidationError(
                f"Accounting service rejected the request: {message}", payload=body, **context
            )

        raise ExternalServiceError(
            f"Accounting service error: {message}", status_code=502, payload=body, **context
        )
