"""
Stripe API adapter for settlement operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter to
ensure consistent error handling, timeouts, idempotency and observability.

Features:
- One StripeClient per adapter built from SettlementConfig: API key,
  timeout and network retries never touch the SDK's module globals
- Automatic error translation to settlement GatewayError subclasses
- Structured logging with timing metrics
- Deterministic idempotency keys for safe retries

Usage:
    from settlement.adapters import StripeAdapter, CreatePaymentIntentParams

    adapter = StripeAdapter(config)
    result = adapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=10000,
            currency="usd",
            destination_account="acct_123",
            application_fee_cents=3000,
            metadata={"creator_id": "42"},
            idempotency_key=IdempotencyKeyGenerator.generate("create_intent", payer.id),
        )
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from settlement.exceptions import (
    GatewayCardDeclinedError,
    GatewayError,
    GatewayInvalidAccountError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    InvalidSignatureError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from settlement.config import SettlementConfig


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for a destination-charge PaymentIntent.

    Attributes:
        amount_cents: Gross amount charged to the fan
        currency: ISO 4217 currency code
        destination_account: Creator's connected account (acct_xxx)
        application_fee_cents: Platform fee kept from the charge
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs to attach (values must be strings)
        payment_method_types: Allowed payment methods (default: ['card'])
    """

    amount_cents: int
    currency: str
    destination_account: str
    application_fee_cents: int
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    payment_method_types: list[str] = field(default_factory=lambda: ["card"])

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not 0 <= self.application_fee_cents <= self.amount_cents:
            raise ValueError("application_fee_cents must be between 0 and amount_cents")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.destination_account:
            raise ValueError("destination_account is required")


@dataclass
class CreateSubscriptionParams:
    """
    Parameters for a Stripe Billing subscription with a destination.

    Attributes:
        customer_id: Payer's Stripe Customer (cus_xxx)
        price_id: Recurring price for the tier (price_xxx)
        destination_account: Creator's connected account (acct_xxx)
        application_fee_percent: Platform share of every invoice
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs to attach
    """

    customer_id: str
    price_id: str
    destination_account: str
    application_fee_percent: int
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, succeeded, etc.)
        amount_cents: Amount in cents
        currency: Currency code
        client_secret: Secret for client-side confirmation
        application_fee_cents: Application fee requested
        metadata: Attached metadata
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    application_fee_cents: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class AccountResult:
    """Live state of a connected account."""

    id: str
    charges_enabled: bool
    payouts_enabled: bool
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class SubscriptionResult:
    """
    Result from Stripe Subscription operations.

    Attributes:
        id: Subscription ID (sub_xxx)
        status: Stripe status (incomplete, active, past_due, ...)
        customer_id: Customer being billed
        client_secret: First invoice's payment secret (creation only)
        current_period_start/end: Billing period bounds
        cancel_at_period_end: Whether cancellation is scheduled
    """

    id: str
    status: str
    customer_id: str
    client_secret: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component makes keys unguessable while the structured
    prefix aids debugging and correlation.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="refund",
            entity_id=f"{txn.id}:{txn.refund_amount_cents}:{amount}",
        )
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate a deterministic idempotency key.

        Args:
            operation: The Stripe operation (create_intent, refund, etc.)
            entity_id: The domain entity ID or composite key
            attempt: Attempt number for deliberate re-submission (default: 1)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def is_retryable_gateway_error(error: Exception) -> bool:
    """True if the error is a transient gateway error that can be retried."""
    if isinstance(error, GatewayError):
        return getattr(error, "is_retryable", False)
    return False


def _timestamp_to_datetime(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    One instance per SettlementConfig. The adapter owns its StripeClient
    (created on first use), so adapters with different keys or timeouts can
    run side by side in one process. Tests pass a mock client.

    Usage:
        adapter = StripeAdapter(SettlementConfig.from_settings())
        adapter.retrieve_account("acct_123")
    """

    def __init__(self, config: SettlementConfig, client: stripe.StripeClient | None = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> stripe.StripeClient:
        """StripeClient with this adapter's key, timeout and retry policy."""
        if self._client is None:
            self._client = stripe.StripeClient(
                self.config.stripe_secret_key,
                http_client=stripe.RequestsClient(
                    timeout=self.config.stripe_api_timeout_seconds,
                ),
                max_network_retries=self.config.stripe_max_network_retries,
            )
        return self._client

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _request(
        self,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """
        Run one Stripe call with timing logs and error translation.

        Raises:
            GatewayError: Any Stripe SDK failure, translated
        """
        logger = self.get_logger()
        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)

        try:
            response = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise  # Never reached, but satisfies type checker

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "stripe_object_id": getattr(response, "id", None),
                "duration_ms": duration_ms,
            },
        )
        return response

    # =========================================================================
    # Payments
    # =========================================================================

    def create_payment_intent(self, params: CreatePaymentIntentParams) -> PaymentIntentResult:
        """
        Create a PaymentIntent that transfers to the creator minus the fee.

        Raises:
            GatewayCardDeclinedError: Card was declined
            GatewayInvalidAccountError: Destination account unusable
            GatewayInvalidRequestError: Invalid parameters
            GatewayUnavailableError: Stripe service unavailable
        """
        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "application_fee_cents": params.application_fee_cents,
            "currency": params.currency,
            "destination_account": params.destination_account,
            "idempotency_key": params.idempotency_key,
        }

        intent = self._request(
            log_context,
            lambda: self.client.v1.payment_intents.create(
                params={
                    "amount": params.amount_cents,
                    "currency": params.currency,
                    "application_fee_amount": params.application_fee_cents,
                    "transfer_data": {"destination": params.destination_account},
                    "metadata": params.metadata,
                    "payment_method_types": params.payment_method_types,
                },
                options={"idempotency_key": params.idempotency_key},
            ),
        )

        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            application_fee_cents=intent.application_fee_amount,
            metadata=dict(intent.metadata or {}),
            raw_response=intent.to_dict(),
        )

    def create_refund(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        reverse_transfer: bool = False,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund (part of) a destination charge.

        With reverse_transfer, Stripe pulls the creator's share back from
        the connected account and returns the application fee in proportion
        (refund_application_fee).

        Raises:
            GatewayInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "reverse_transfer": reverse_transfer,
            "idempotency_key": idempotency_key,
        }

        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "reverse_transfer": reverse_transfer,
            "refund_application_fee": reverse_transfer,
            "metadata": metadata or {},
        }
        if amount_cents is not None:
            refund_params["amount"] = amount_cents
        if reason:
            refund_params["reason"] = reason

        refund = self._request(
            log_context,
            lambda: self.client.v1.refunds.create(
                params=refund_params,
                options={"idempotency_key": idempotency_key},
            ),
        )

        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            raw_response=refund.to_dict(),
        )

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    def retrieve_account(self, account_id: str) -> AccountResult:
        """
        Fetch the live state of a connected account.

        Raises:
            GatewayInvalidAccountError: Account missing or inaccessible
        """
        account = self._request(
            {"operation": "retrieve_account", "account_id": account_id},
            lambda: self.client.v1.accounts.retrieve(account_id),
            level=logging.DEBUG,
        )

        return AccountResult(
            id=account.id,
            charges_enabled=bool(account.charges_enabled),
            payouts_enabled=bool(account.payouts_enabled),
            raw_response=account.to_dict(),
        )

    # =========================================================================
    # Billing
    # =========================================================================

    def create_customer(
        self,
        idempotency_key: str,
        email: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Create a Stripe Customer and return its ID (cus_xxx)."""
        customer_params: dict[str, Any] = {"metadata": metadata or {}}
        if email:
            customer_params["email"] = email

        customer = self._request(
            {"operation": "create_customer", "idempotency_key": idempotency_key},
            lambda: self.client.v1.customers.create(
                params=customer_params,
                options={"idempotency_key": idempotency_key},
            ),
        )
        return customer.id

    def create_product(
        self,
        name: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Create a Product for a subscription tier and return its ID."""
        product = self._request(
            {"operation": "create_product", "idempotency_key": idempotency_key},
            lambda: self.client.v1.products.create(
                params={"name": name, "metadata": metadata or {}},
                options={"idempotency_key": idempotency_key},
            ),
        )
        return product.id

    def create_price(
        self,
        product_id: str,
        amount_cents: int,
        currency: str,
        interval: str,
        idempotency_key: str,
    ) -> str:
        """Create a recurring Price and return its ID (price_xxx)."""
        price = self._request(
            {
                "operation": "create_price",
                "product_id": product_id,
                "amount_cents": amount_cents,
                "interval": interval,
                "idempotency_key": idempotency_key,
            },
            lambda: self.client.v1.prices.create(
                params={
                    "product": product_id,
                    "unit_amount": amount_cents,
                    "currency": currency,
                    "recurring": {"interval": interval},
                },
                options={"idempotency_key": idempotency_key},
            ),
        )
        return price.id

    def create_subscription(self, params: CreateSubscriptionParams) -> SubscriptionResult:
        """
        Create a subscription whose invoices transfer to the creator.

        The subscription starts incomplete; the first invoice's payment
        secret is returned for client-side confirmation.
        """
        log_context = {
            "operation": "create_subscription",
            "customer_id": params.customer_id,
            "price_id": params.price_id,
            "destination_account": params.destination_account,
            "idempotency_key": params.idempotency_key,
        }

        subscription = self._request(
            log_context,
            lambda: self.client.v1.subscriptions.create(
                params={
                    "customer": params.customer_id,
                    "items": [{"price": params.price_id}],
                    "application_fee_percent": params.application_fee_percent,
                    "transfer_data": {"destination": params.destination_account},
                    "payment_behavior": "default_incomplete",
                    "payment_settings": {"save_default_payment_method": "on_subscription"},
                    "expand": ["latest_invoice.payment_intent"],
                    "metadata": params.metadata,
                },
                options={"idempotency_key": params.idempotency_key},
            ),
        )
        return self._subscription_result(subscription)

    def cancel_subscription(self, subscription_id: str, prorate: bool = False) -> SubscriptionResult:
        """Cancel a subscription immediately."""
        subscription = self._request(
            {
                "operation": "cancel_subscription",
                "subscription_id": subscription_id,
                "prorate": prorate,
            },
            lambda: self.client.v1.subscriptions.cancel(
                subscription_id,
                params={"prorate": prorate},
            ),
        )
        return self._subscription_result(subscription)

    @staticmethod
    def _subscription_result(subscription: Any) -> SubscriptionResult:
        data = subscription.to_dict()
        return SubscriptionResult(
            id=data["id"],
            status=data["status"],
            customer_id=data.get("customer"),
            client_secret=extract_invoice_client_secret(data.get("latest_invoice")),
            current_period_start=_timestamp_to_datetime(period_value(data, "current_period_start")),
            current_period_end=_timestamp_to_datetime(period_value(data, "current_period_end")),
            cancel_at_period_end=bool(data.get("cancel_at_period_end")),
            raw_response=data,
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify a webhook's Stripe-Signature header and parse the event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            The event as a plain dict

        Raises:
            InvalidSignatureError: Missing/invalid signature or secret
            ValueError: Payload is not valid JSON
        """
        if not signature:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        if not self.config.stripe_webhook_secret:
            raise InvalidSignatureError(
                "Webhook secret is not configured",
                error_code="WEBHOOK_SECRET_MISSING",
            )

        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                self.config.stripe_webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            self.get_logger().warning(
                "Webhook signature verification failed",
                extra={"operation": "verify_webhook_signature", "error": str(e)},
            )
            raise InvalidSignatureError("Invalid webhook signature") from e

        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return json.loads(payload)

    # =========================================================================
    # Error Translation
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to settlement gateway errors.

        Raises:
            GatewayCardDeclinedError: Card was declined
            GatewayInvalidAccountError: Invalid connected account
            GatewayInvalidRequestError: Invalid request parameters
            GatewayRateLimitError: Rate limited
            GatewayTimeoutError: Request timed out
            GatewayUnavailableError: API unavailable
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, GatewayError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise GatewayCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.PermissionError):
            # Platform no longer has access to the connected account
            logger.error("Stripe permission error", extra=log_context)
            raise GatewayInvalidAccountError(
                str(error),
                stripe_code=error.code or "permission_error",
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            param = getattr(error, "param", None) or ""
            if "account" in (error.code or "") or "destination" in param or (
                log_context.get("operation") == "retrieve_account"
            ):
                raise GatewayInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                ) from error

            raise GatewayInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            if "timed out" in str(error).lower():
                raise GatewayTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            # Invalid API key - permanent, operational issue
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error


# =============================================================================
# Response Helpers
# =============================================================================


def extract_invoice_client_secret(invoice: Any) -> str | None:
    """
    Client secret for an expanded invoice's first payment.

    Handles both the payment_intent expansion and the newer
    confirmation_secret field.
    """
    if not isinstance(invoice, dict):
        return None
    payment_intent = invoice.get("payment_intent")
    if isinstance(payment_intent, dict) and payment_intent.get("client_secret"):
        return payment_intent["client_secret"]
    confirmation = invoice.get("confirmation_secret")
    if isinstance(confirmation, dict):
        return confirmation.get("client_secret")
    return None


def period_value(subscription: dict[str, Any], key: str) -> int | None:
    """
    Billing period bound from a subscription dict.

    Newer API versions moved the period onto the subscription items.
    """
    if subscription.get(key):
        return subscription[key]
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get(key)
    return None
