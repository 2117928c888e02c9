"""
Settlement-specific exceptions.

Every class slots into one of the core categories, so
core.handlers.api_exception_handler maps it to an HTTP status without
knowing about settlement.

Exception Hierarchy:
    ValidationError (400)
    ├── InvalidAmountError - Non-positive or below-minimum amounts
    ├── AccountNotReadyError - Creator account cannot take charges or payouts
    ├── RefundExceedsBalanceError - Refund larger than what remains
    ├── InvalidSignatureError - Webhook signature missing or wrong
    └── MalformedEventError - Webhook body is not a Stripe event

    NotFoundError (404)
    ├── AccountNotFoundError - No payout account (locally or at Stripe)
    ├── TransactionNotFoundError - No Transaction for a payment intent
    └── SubscriptionNotFoundError - No Subscription for an id

    ConflictError (409)
    └── InvalidStateTransitionError - FSM transition not allowed

    ExternalServiceError (502)
    └── GatewayError - Base for all Stripe errors
        ├── GatewayCardDeclinedError - Card declined (permanent)
        ├── GatewayInvalidAccountError - Connected account unusable (permanent)
        ├── GatewayInvalidRequestError - Invalid request params (permanent)
        ├── GatewayRateLimitError - Rate limited (transient, retry)
        ├── GatewayUnavailableError - API unavailable (transient, retry)
        └── GatewayTimeoutError - Request timeout (transient, retry)

Usage:
    from settlement.exceptions import InvalidAmountError, GatewayError

    if amount_cents < config.minimum_amount_cents:
        raise InvalidAmountError(
            "Amount is below the minimum",
            details={"amount_cents": amount_cents, "minimum_cents": 100},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Validation Errors
# =============================================================================


class InvalidAmountError(ValidationError):
    """
    Raised for amounts that cannot be charged or refunded.

    Use for:
    - Zero, negative or non-integer cent amounts
    - Amounts below SETTLEMENT_MINIMUM_AMOUNT_CENTS
    """

    default_error_code: str = "INVALID_AMOUNT"


class AccountNotReadyError(ValidationError):
    """
    Creator's Stripe account cannot accept charges or payouts yet.

    The creator has to finish Stripe onboarding. Nothing is written when
    this is raised.
    """

    default_error_code: str = "ACCOUNT_NOT_READY"


class RefundExceedsBalanceError(ValidationError):
    """Requested refund is larger than the remaining refundable amount."""

    default_error_code: str = "REFUND_EXCEEDS_BALANCE"


class InvalidSignatureError(ValidationError):
    """Webhook payload failed Stripe signature verification."""

    default_error_code: str = "INVALID_SIGNATURE"


class MalformedEventError(ValidationError):
    """Webhook body is not a well-formed Stripe event."""

    default_error_code: str = "MALFORMED_EVENT"


# =============================================================================
# Not Found Errors
# =============================================================================


class AccountNotFoundError(NotFoundError):
    """
    Creator has no payout account, or Stripe no longer knows the account.
    """

    default_error_code: str = "ACCOUNT_NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    """No Transaction recorded for the given payment intent."""

    default_error_code: str = "TRANSACTION_NOT_FOUND"


class SubscriptionNotFoundError(NotFoundError):
    """No Subscription recorded for the given id."""

    default_error_code: str = "SUBSCRIPTION_NOT_FOUND"


# =============================================================================
# Conflict Errors
# =============================================================================


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed with our error format.

    Example:
        try:
            txn.refund_partial()
        except TransitionNotAllowed:
            raise InvalidStateTransitionError(
                f"Cannot refund transaction in '{txn.status}' state",
                details={"current_state": txn.status, "transition": "refund_partial"},
            )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code (if any)
        decline_code: Card decline code (if applicable)
        is_retryable: Whether the same call may succeed later

    Note:
        Retrying a timed-out call is safe only with the same idempotency
        key; the adapter derives keys deterministically for that reason.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class GatewayCardDeclinedError(GatewayError):
    """Card was declined by the issuing bank; decline_code has the reason."""

    default_error_code: str = "CARD_DECLINED"


class GatewayInvalidAccountError(GatewayError):
    """
    Connected account is missing, restricted or unable to receive transfers.

    Requires the creator (or support) to fix the account.
    """

    default_error_code: str = "INVALID_GATEWAY_ACCOUNT"


class GatewayInvalidRequestError(GatewayError):
    """
    Stripe rejected the request parameters.

    Note:
        This usually indicates a bug in our code, not a user error.
    """

    default_error_code: str = "INVALID_GATEWAY_REQUEST"


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class GatewayRateLimitError(GatewayError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """Stripe API unreachable or returning 5xx."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayTimeoutError(GatewayError):
    """
    Stripe call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


__all__ = [
    # Validation
    "InvalidAmountError",
    "AccountNotReadyError",
    "RefundExceedsBalanceError",
    "InvalidSignatureError",
    "MalformedEventError",
    # Not found
    "AccountNotFoundError",
    "TransactionNotFoundError",
    "SubscriptionNotFoundError",
    # Conflict
    "InvalidStateTransitionError",
    # Gateway
    "GatewayError",
    "GatewayCardDeclinedError",
    "GatewayInvalidAccountError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayUnavailableError",
    "GatewayTimeoutError",
]
