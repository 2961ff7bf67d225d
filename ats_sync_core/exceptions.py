"""
Exception hierarchy for the sync engine.

Every error carries a stable error code, an HTTP-style status code, the
exception that caused it and free-form context. Errors log themselves when
raised and pick up the correlation id of the current thread.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"
    ENCRYPTION_ERROR = "1005"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    LOCKED = "3003"
    EXPIRED = "3004"
    LIMIT_EXCEEDED = "3005"

    # Business logic errors (4xxx)
    INVALID_STATE_TRANSITION = "4001"
    PERMISSION_DENIED = "4003"
    PRECONDITION_FAILED = "4004"

    # External service errors (5xxx)
    QUEUE_ERROR = "5001"
    EXTERNAL_API_ERROR = "5002"
    INTEGRATION_ERROR = "5003"
    RATE_LIMITED = "5005"
    AUTHENTICATION_FAILED = "5006"
    RETRIES_EXHAUSTED = "5007"


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
            status_code: HTTP status code for API responses
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
        """Log error with a level derived from the status code."""
        # Lazy import, the logger module imports config which imports constants
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
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

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Add additional context to the error and return self."""
        self.context.update(kwargs)
        return self


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


class ConfigurationError(BaseError):
    """Raised when required configuration is missing or malformed."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, 500, cause, **context)


class EncryptionError(BaseError):
    """Raised when credential material cannot be encrypted or decrypted."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.ENCRYPTION_ERROR, 500, cause, **context)


class ExternalServiceError(BaseError):
    """External service integration errors."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, 502, cause, **context)


# ==================== PROVIDER API EXCEPTIONS ====================


class ProviderAPIError(ExternalServiceError):
    """
    A provider call failed and will not be retried.

    Attributes:
        provider: Provider identifier the call was made against
        error_kind: Classification of the last failure (see ErrorKind)
        http_status: Remote HTTP status, when the failure had one
        attempts: Number of attempts that were made
    """

    def __init__(
        self,
        message: str,
        provider: str,
        error_kind: Optional[str] = None,
        http_status: Optional[int] = None,
        attempts: int = 1,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        self.provider = provider
        self.error_kind = error_kind
        self.http_status = http_status
        self.attempts = attempts
        super().__init__(
            message,
            service_name=provider,
            error_code=error_code,
            cause=cause,
            error_kind=error_kind,
            http_status=http_status,
            attempts=attempts,
            **context,
        )


class ProviderRetryExhaustedError(ProviderAPIError):
    """Retryable failures persisted through every allowed attempt."""

    def __init__(self, message: str, provider: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.RETRIES_EXHAUSTED)
        super().__init__(message, provider, **kwargs)


class ProviderAuthError(ProviderAPIError):
    """Credentials were rejected and could not be refreshed."""

    def __init__(self, message: str, provider: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.AUTHENTICATION_FAILED)
        super().__init__(message, provider, **kwargs)


# ==================== CREDENTIAL EXCEPTIONS ====================


class CredentialError(BaseError):
    """Base exception for credential-related errors."""

    def __init__(self, message: str = "Credential error", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.INTEGRATION_ERROR, status_code=500, **kwargs
        )


class CredentialNotFoundError(BaseError):
    """Raised when a tenant has no stored credentials for a provider."""

    def __init__(self, message: str = "Credential not found", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class CredentialExpiredError(BaseError):
    """Raised when the stored access token is still expired after a refresh."""

    def __init__(self, message: str = "Credential has expired", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.EXPIRED, status_code=401, **kwargs)


# ==================== SYNC ENGINE EXCEPTIONS ====================


class EntityNotFoundError(RepositoryError):
    """An internal record referenced by a sync event does not exist."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.NOT_FOUND, 404, cause, **context)


class InvalidStateTransitionError(BaseError):
    """A sync log was asked to move to a status its lifecycle forbids."""

    def __init__(self, message: str, **context):
        super().__init__(message, ErrorCode.INVALID_STATE_TRANSITION, 409, None, **context)


class LockTimeoutError(BaseError):
    """A per-entity sync lock could not be acquired in time."""

    def __init__(self, message: str, **context):
        super().__init__(message, ErrorCode.LOCKED, 423, None, **context)


class RateLimitExceededError(BaseError):
    """A keyed counter refused an operation because its window is full."""

    def __init__(self, message: str, **context):
        super().__init__(message, ErrorCode.LIMIT_EXCEEDED, 429, None, **context)


# Factory functions for common error patterns
def not_found(resource_type: str, cause: Optional[Exception] = None, **identifiers) -> EntityNotFoundError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'Candidate', 'Integration')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., candidate_id='123')

    Returns:
        Configured EntityNotFoundError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return EntityNotFoundError(message, cause=cause, resource_type=resource_type, **identifiers)


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
