"""Tests for the application error hierarchy and the DRF exception handler."""

from unittest.mock import MagicMock

import pytest
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    status_for_error,
)
from core.handlers import api_exception_handler


class TestBaseApplicationError:
    def test_defaults(self):
        exc = ValidationError("Amount too small")

        assert exc.message == "Amount too small"
        assert exc.error_code == "VALIDATION_ERROR"
        assert exc.details == {}
        assert str(exc) == "[VALIDATION_ERROR] Amount too small"

    def test_to_dict_includes_details_when_present(self):
        exc = ConflictError(
            "Refund exceeds remaining balance",
            error_code="REFUND_EXCEEDS_BALANCE",
            details={"remaining_cents": 6000},
        )

        assert exc.to_dict() == {
            "error": "Refund exceeds remaining balance",
            "error_code": "REFUND_EXCEEDS_BALANCE",
            "details": {"remaining_cents": 6000},
        }
        assert "details" not in NotFoundError("Missing").to_dict()

    def test_repr(self):
        assert repr(NotFoundError("Missing")) == (
            "NotFoundError(message='Missing', error_code='NOT_FOUND', details={})"
        )


class TestStatusForError:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (ValidationError("x"), 400),
            (PermissionDeniedError("x"), 403),
            (NotFoundError("x"), 404),
            (ConflictError("x"), 409),
            (ExternalServiceError("x"), 502),
            (BaseApplicationError("x"), 500),
        ],
    )
    def test_mapping(self, exc, expected):
        assert status_for_error(exc) == expected

    def test_subclasses_use_category(self):
        class RefundExceedsBalance(ValidationError):
            default_error_code = "REFUND_EXCEEDS_BALANCE"

        assert status_for_error(RefundExceedsBalance("x")) == 400


class TestApiExceptionHandler:
    def test_application_error_response(self):
        response = api_exception_handler(
            NotFoundError("Transaction not found", details={"payment_intent_id": "pi_1"}),
            {"view": MagicMock()},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data == {
            "error": "Transaction not found",
            "error_code": "NOT_FOUND",
            "details": {"payment_intent_id": "pi_1"},
        }

    def test_gateway_error_is_bad_gateway(self):
        response = api_exception_handler(ExternalServiceError("Stripe unavailable"), {})

        assert response.status_code == status.HTTP_502_BAD_GATEWAY

    def test_drf_errors_fall_through(self):
        response = api_exception_handler(NotAuthenticated(), {})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_errors_are_not_handled(self):
        assert api_exception_handler(RuntimeError("boom"), {}) is None
