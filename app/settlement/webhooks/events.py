"""
Typed Stripe webhook events.

Incoming JSON is parsed once into a GatewayEvent whose payload is a
dataclass specific to the event kind. Handlers work with these types
instead of digging through nested dicts.

The set of handled kinds is closed (WebhookEventType). Events of any other
type still parse, with payload=None, and are acknowledged without effect.

Usage:
    from settlement.webhooks.events import GatewayEvent, WebhookEventType

    event = GatewayEvent.parse(event_dict)
    if event.kind == WebhookEventType.PAYMENT_INTENT_SUCCEEDED:
        event.payload.id   # "pi_..."
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Union

from django.db import models

from settlement.adapters.stripe_adapter import period_value
from settlement.exceptions import MalformedEventError

if TYPE_CHECKING:
    from typing import Any


class WebhookEventType(models.TextChoices):
    """Stripe event types the settlement pipeline applies."""

    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded", "Payment succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed", "Payment failed"
    CHARGE_REFUNDED = "charge.refunded", "Charge refunded"
    SUBSCRIPTION_CREATED = "customer.subscription.created", "Subscription created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated", "Subscription updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted", "Subscription deleted"
    SUBSCRIPTION_PAUSED = "customer.subscription.paused", "Subscription paused"
    SUBSCRIPTION_RESUMED = "customer.subscription.resumed", "Subscription resumed"
    SUBSCRIPTION_TRIAL_WILL_END = "customer.subscription.trial_will_end", "Trial ending soon"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded", "Invoice paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed", "Invoice payment failed"
    INVOICE_PAYMENT_ACTION_REQUIRED = (
        "invoice.payment_action_required",
        "Invoice payment requires action",
    )


def _to_datetime(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _require(obj: dict[str, Any], key: str) -> Any:
    value = obj.get(key)
    if value in (None, ""):
        raise MalformedEventError(
            f"Event object is missing '{key}'",
            details={"field": key},
        )
    return value


def _expandable_id(value: Any) -> str | None:
    """ID of a field that may be a bare id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


# =============================================================================
# Payload Types
# =============================================================================


@dataclass(frozen=True)
class PaymentIntentPayload:
    """payment_intent.* object."""

    id: str
    amount: int
    currency: str
    status: str
    metadata: dict[str, str] = field(default_factory=dict)
    failure_message: str | None = None
    invoice_id: str | None = None

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> PaymentIntentPayload:
        last_error = obj.get("last_payment_error") or {}
        return cls(
            id=_require(obj, "id"),
            amount=int(obj.get("amount") or 0),
            currency=obj.get("currency") or "",
            status=obj.get("status") or "",
            metadata=dict(obj.get("metadata") or {}),
            failure_message=last_error.get("message") or last_error.get("code"),
            invoice_id=_expandable_id(obj.get("invoice")),
        )


@dataclass(frozen=True)
class ChargePayload:
    """charge.* object."""

    id: str
    payment_intent_id: str | None
    amount: int
    amount_refunded: int
    refunded: bool

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> ChargePayload:
        return cls(
            id=_require(obj, "id"),
            payment_intent_id=_expandable_id(obj.get("payment_intent")),
            amount=int(obj.get("amount") or 0),
            amount_refunded=int(obj.get("amount_refunded") or 0),
            refunded=bool(obj.get("refunded")),
        )


@dataclass(frozen=True)
class SubscriptionPayload:
    """customer.subscription.* object."""

    id: str
    status: str
    customer_id: str | None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    trial_end: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> SubscriptionPayload:
        return cls(
            id=_require(obj, "id"),
            status=_require(obj, "status"),
            customer_id=_expandable_id(obj.get("customer")),
            current_period_start=_to_datetime(period_value(obj, "current_period_start")),
            current_period_end=_to_datetime(period_value(obj, "current_period_end")),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            canceled_at=_to_datetime(obj.get("canceled_at")),
            trial_end=_to_datetime(obj.get("trial_end")),
            metadata=dict(obj.get("metadata") or {}),
        )


@dataclass(frozen=True)
class InvoicePayload:
    """invoice.* object."""

    id: str
    subscription_id: str | None
    payment_intent_id: str | None
    customer_id: str | None
    amount_paid: int
    amount_due: int
    currency: str
    application_fee_amount: int | None
    attempt_count: int

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> InvoicePayload:
        fee = obj.get("application_fee_amount")
        return cls(
            id=_require(obj, "id"),
            subscription_id=_invoice_subscription_id(obj),
            payment_intent_id=_invoice_payment_intent_id(obj),
            customer_id=_expandable_id(obj.get("customer")),
            amount_paid=int(obj.get("amount_paid") or 0),
            amount_due=int(obj.get("amount_due") or 0),
            currency=obj.get("currency") or "",
            application_fee_amount=int(fee) if fee is not None else None,
            attempt_count=int(obj.get("attempt_count") or 0),
        )


def _invoice_subscription_id(obj: dict[str, Any]) -> str | None:
    subscription = _expandable_id(obj.get("subscription"))
    if subscription:
        return subscription
    # Newer API versions nest it under parent.subscription_details
    details = (obj.get("parent") or {}).get("subscription_details") or {}
    return _expandable_id(details.get("subscription"))


def _invoice_payment_intent_id(obj: dict[str, Any]) -> str | None:
    payment_intent = _expandable_id(obj.get("payment_intent"))
    if payment_intent:
        return payment_intent
    for invoice_payment in (obj.get("payments") or {}).get("data") or []:
        payment_intent = _expandable_id((invoice_payment.get("payment") or {}).get("payment_intent"))
        if payment_intent:
            return payment_intent
    return None


EventPayload = Union[PaymentIntentPayload, ChargePayload, SubscriptionPayload, InvoicePayload]

PAYLOAD_TYPES: dict[str, type] = {
    WebhookEventType.PAYMENT_INTENT_SUCCEEDED: PaymentIntentPayload,
    WebhookEventType.PAYMENT_INTENT_FAILED: PaymentIntentPayload,
    WebhookEventType.CHARGE_REFUNDED: ChargePayload,
    WebhookEventType.SUBSCRIPTION_CREATED: SubscriptionPayload,
    WebhookEventType.SUBSCRIPTION_UPDATED: SubscriptionPayload,
    WebhookEventType.SUBSCRIPTION_DELETED: SubscriptionPayload,
    WebhookEventType.SUBSCRIPTION_PAUSED: SubscriptionPayload,
    WebhookEventType.SUBSCRIPTION_RESUMED: SubscriptionPayload,
    WebhookEventType.SUBSCRIPTION_TRIAL_WILL_END: SubscriptionPayload,
    WebhookEventType.INVOICE_PAYMENT_SUCCEEDED: InvoicePayload,
    WebhookEventType.INVOICE_PAYMENT_FAILED: InvoicePayload,
    WebhookEventType.INVOICE_PAYMENT_ACTION_REQUIRED: InvoicePayload,
}


# =============================================================================
# Event Envelope
# =============================================================================


@dataclass(frozen=True)
class GatewayEvent:
    """
    A verified Stripe event.

    Attributes:
        id: Stripe Event ID (evt_xxx)
        type: Event type string
        created: When Stripe created the event
        livemode: Live or test mode
        payload: Typed data.object, None for unhandled kinds
    """

    id: str
    type: str
    created: datetime | None
    livemode: bool
    payload: EventPayload | None = None

    @property
    def kind(self) -> WebhookEventType | None:
        """The handled event kind, or None for event types we ignore."""
        if self.type in WebhookEventType.values:
            return WebhookEventType(self.type)
        return None

    @classmethod
    def parse(cls, event: dict[str, Any]) -> GatewayEvent:
        """
        Build a GatewayEvent from a Stripe event dict.

        Raises:
            MalformedEventError: Missing id/type/data.object or bad payload
        """
        if not isinstance(event, dict):
            raise MalformedEventError("Event must be a JSON object")

        event_id = _require(event, "id")
        event_type = _require(event, "type")

        payload = None
        payload_type = PAYLOAD_TYPES.get(event_type)
        if payload_type is not None:
            obj = (event.get("data") or {}).get("object")
            if not isinstance(obj, dict):
                raise MalformedEventError(
                    "Event is missing data.object",
                    details={"event_id": event_id},
                )
            try:
                payload = payload_type.from_dict(obj)
            except (TypeError, ValueError) as e:
                raise MalformedEventError(
                    f"Invalid {event_type} payload: {e}",
                    details={"event_id": event_id},
                ) from e

        return cls(
            id=str(event_id),
            type=str(event_type),
            created=_to_datetime(event.get("created")),
            livemode=bool(event.get("livemode")),
            payload=payload,
        )
