"""
Consolidated exception system with error codes, context, and correlation support.

Every error raised by the token lifecycle, the external API client and the
export pipeline derives from BaseError, so callers can always tell whether to
retry, reconnect or reconcile by the class they catch.
"""

import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# Context variable so the id follows asyncio tasks as well as threads
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    EXPIRED = "3004"

    # Business logic errors (4xxx)
    BUSINESS_RULE_VIOLATION = "4000"
    INVALID_STATE_TRANSITION = "4001"
    PRECONDITION_FAILED = "4004"
    RECONCILIATION_FAILED = "4005"

    # External service errors (5xxx)
    EXTERNAL_API_ERROR = "5002"
    INTEGRATION_ERROR = "5003"
    AUTHENTICATION_FAILED = "5005"
    TOKEN_REFRESH_FAILED = "5006"
    MIGRATION_FAILED = "5007"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP-like status used to pick the log level
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Imported lazily: the logger reads config, which imports nothing from here
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_class": type(self).__name__,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if self.status_code >= 500:
            logger.error(f"Error {self.error_code.value}: {self.message}", extra=log_data)
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """
        Convert to dict for notifications and API responses.

        Args:
            include_cause: Include cause information (useful for debugging)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "type": type(self).__name__,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Add additional context to the error (fluent interface)."""
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Persistence layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ExternalServiceError(BaseError):
    """External accounting service integration errors."""

    def __init__(
        self,
        message: str,
        service_name: str = "accounting_api",
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        status_code: int = 502,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, status_code, cause, **context)


# Factory functions for common error patterns
def not_found(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> RepositoryError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'Client', 'Product')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., record_id='123')

    Returns:
        Configured RepositoryError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return RepositoryError(
        message,
        error_code=ErrorCode.NOT_FOUND,
        status_code=404,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get the current context's correlation ID."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the current context's correlation ID."""
    _correlation_id.set(None)


# ==================== CREDENTIAL AND TOKEN EXCEPTIONS ====================


class CredentialNotFoundError(BaseError):
    """Raised when no usable credential is stored (the integration is not connected)."""

    def __init__(self, message: str = "Accounting integration is not connected", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class AuthExchangeError(ExternalServiceError):
    """Authorization code could not be exchanged; the connect flow must restart."""

    def __init__(self, message: str = "Authorization code exchange failed", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.AUTHENTICATION_FAILED)
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class RefreshFailure(ExternalServiceError):
    """
    A token refresh attempt failed.

    Transient failures (network, 5xx) leave the credential untouched apart from
    the failure counter. Permanent failures are raised as RequiresReconnectError.
    """

    permanent = False

    def __init__(self, message: str = "Token refresh failed", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.TOKEN_REFRESH_FAILED)
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)
        self.context["permanent"] = self.permanent

    @property
    def requires_reconnect(self) -> bool:
        return self.permanent


class RequiresReconnectError(RefreshFailure):
    """The refresh token is no longer usable; the admin must authorize again."""

    permanent = True

    def __init__(self, message: str = "Accounting integration requires reconnect", **kwargs):
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class MigrationError(ExternalServiceError):
    """Legacy token migration failed. Terminal: never retried automatically."""

    def __init__(self, message: str = "Legacy token migration failed", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.MIGRATION_FAILED)
        kwargs.setdefault("status_code", 409)
        super().__init__(message, **kwargs)


# ==================== EXTERNAL API EXCEPTIONS ====================


class ExternalTransportError(ExternalServiceError):
    """The external service could not be reached. Safe to retry."""

    retryable = True

    def __init__(self, message: str = "Could not reach accounting service", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.CONNECTION_ERROR)
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)


class ExternalAuthError(ExternalServiceError):
    """The external service kept rejecting the token after the forced refresh."""

    def __init__(self, message: str = "Accounting service rejected the access token", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.AUTHENTICATION_FAILED)
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class ExternalNotFoundError(ExternalServiceError):
    """The requested remote resource does not exist. Used as a create-then-retry signal."""

    def __init__(self, message: str = "Remote resource not found", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.NOT_FOUND)
        kwargs.setdefault("status_code", 404)
        super().__init__(message, **kwargs)


class ArticleNotFoundError(ExternalNotFoundError):
    """An invoice referenced an article the remote catalog does not have."""

    def __init__(
        self,
        message: str = "Referenced article not found",
        article_details: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        self.article_details = article_details or {}
        kwargs["article_details"] = self.article_details
        super().__init__(message, **kwargs)

    @property
    def article_number(self) -> Optional[str]:
        number = self.article_details.get("articleNumber")
        return str(number) if number is not None else None


class ExternalValidationError(ExternalServiceError):
    """The external service rejected the payload. Fatal, surfaced verbatim."""

    def __init__(
        self,
        message: str = "Accounting service rejected the payload",
        payload: Optional[Any] = None,
        **kwargs,
    ):
        self.payload = payload
        kwargs["payload"] = payload
        kwargs.setdefault("error_code", ErrorCode.VALIDATION_FAILED)
        kwargs.setdefault("status_code", 422)
        super().__init__(message, **kwargs)


# ==================== EXPORT EXCEPTIONS ====================


class InvalidExportRequest(ValidationError):
    """The caller asked to export records that cannot be exported together."""

    def __init__(self, message: str = "Invalid export request", **kwargs):
        super().__init__(message, error_code=ErrorCode.PRECONDITION_FAILED, **kwargs)


class MissingProductError(InvalidExportRequest):
    """A selected billing record references a product that no longer exists."""

    def __init__(self, message: str = "Billing record references a deleted product", **kwargs):
        super().__init__(message, **kwargs)


class ReconciliationError(ServiceError):
    """
    The remote invoice was created but the local records could not be updated.

    Never retried by submitting again: that would create a duplicate remote
    invoice. Requires manual reconciliation.
    """

    def __init__(
        self,
        message: str,
        external_invoice_number: Optional[str] = None,
        record_ids: Optional[List[str]] = None,
        **kwargs,
    ):
        self.external_invoice_number = external_invoice_number
        self.record_ids = list(record_ids or [])
        super().__init__(
            message,
            error_code=ErrorCode.RECONCILIATION_FAILED,
            operation="reconcile_export",
            external_invoice_number=external_invoice_number,
            record_ids=self.record_ids,
            manual_fix_required=True,
            **kwargs,
        )
