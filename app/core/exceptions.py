"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the API
- Machine-readable error codes for client handling
- A single place where domain errors are mapped to HTTP status codes

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input or business-rule validation failures (400)
    ├── PermissionDeniedError - Authorization failures (403)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - State conflicts, illegal transitions (409)
    └── ExternalServiceError - Third-party service failures (502)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError("Amount must be positive", error_code="INVALID_AMOUNT")

    raise NotFoundError(
        "Transaction not found",
        error_code="TRANSACTION_NOT_FOUND",
        details={"payment_intent_id": "pi_123"},
    )

Note:
    Domain apps subclass these categories (see settlement.exceptions) so that
    core.handlers.api_exception_handler can translate them without knowing
    the domain. This module imports nothing that needs the app registry, so
    it is safe to import while apps are loading.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import status

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, limits)

    Example:
        try:
            RefundService().refund(payment_intent_id, amount_cents=500)
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Refund exceeds remaining balance",
                "error_code": "REFUND_EXCEEDS_BALANCE",
                "details": {"requested_cents": 9000, "remaining_cents": 6000}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input or a business rule fails validation.

    Use for:
    - Amounts below the configured floor
    - Accounts that cannot receive funds yet
    - Refunds larger than the remaining balance

    Note:
        For request-shape validation, use DRF serializers.
        Use this for service-layer validation logic.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for single-resource lookups where existence is expected.
    """

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Example:
        if request.user.id != transaction.creator_id and not request.user.is_staff:
            raise PermissionDeniedError("Only the creator may refund this payment")

    Note:
        For authentication failures (missing/invalid token), DRF's
        NotAuthenticated is raised by the authentication classes.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Invalid state transitions
    - Concurrent modification conflicts

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Use for:
    - Payment gateway failures
    - Network timeouts
    - Unexpected external service responses

    Note:
        Log the original error for debugging but don't expose
        internal details to clients in production.
        HTTP 502 Bad Gateway is returned by api_exception_handler.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"


# Order matters: the first matching category wins.
ERROR_STATUS_MAP: tuple[tuple[type[BaseApplicationError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
)


def status_for_error(exc: BaseApplicationError) -> int:
    """Return the HTTP status code for an application error."""
    for error_class, status_code in ERROR_STATUS_MAP:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR
