"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data, services handle logic.

Pattern Comparison:
    - ServiceResult: Use for outcomes the caller must inspect but that must
      never abort the surrounding work (webhook handlers, notifications)
    - Exceptions: Use for failures the caller cannot continue from
      (validation errors, gateway errors, missing records)

Usage:
    from core.services import BaseService, ServiceResult

    class NotificationFanout(BaseService):
        def notify(self, channel: str, event: str, payload: dict) -> ServiceResult[None]:
            try:
                self._publish(channel, event, payload)
            except Exception:
                self.get_logger().exception("Publish failed")
                return ServiceResult.failure("Failed to send notification")
            return ServiceResult.success(None)

Related:
    - core.exceptions: For failures that should propagate
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        result = processor.handle(payload, signature)
        if result.success:
            event = result.data
        else:
            logger.error(f"Error: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details

        Example:
            return ServiceResult.failure(
                "Transaction not found for intent pi_123",
                error_code="TRANSACTION_NOT_FOUND",
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Args:
            exc: The caught exception
            error_code: Optional error code (defaults to the exception's own
                error_code, then to the class name)

        Returns:
            ServiceResult with error details from exception
        """
        code = error_code or getattr(exc, "error_code", None) or exc.__class__.__name__.upper()
        return cls(
            success=False,
            error=getattr(exc, "message", None) or str(exc),
            error_code=code,
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Returns:
            {"success": True} plus "data" when present, or
            {"success": False, "error": ...} plus code/field errors
        """
        if self.success:
            response: dict[str, Any] = {"success": True}
            if self.data is not None:
                response["data"] = self.data
            return response

        response = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        """Allow using result in boolean context (same as result.success)."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Settlement services are constructed with their collaborators
    (configuration, gateway adapter, notification fan-out) so tests can
    inject doubles; the helpers here work from instances and classes alike.

    Usage:
        class RefundService(BaseService):
            def refund(self, payment_intent_id: str) -> RefundOutcome:
                with self.atomic():
                    txn = Transaction.objects.select_for_update().get(...)
                    ...
                self.get_logger().info("Refund recorded")
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Note:
            This is a thin wrapper around Django's transaction.atomic().
            Use it to make transaction boundaries explicit in service code.
        """
        with transaction.atomic():
            yield
