"""
Webhook handlers for Stripe events.

Each handler applies one event kind to the ledger. Handlers are registered
in WEBHOOK_HANDLERS with the @register_handler decorator and are invoked by
WebhookProcessor inside the atomic block that also records the event, so
row locks taken here last until the event is committed.

Handler contract:
    handler(event: GatewayEvent, context: HandlerContext) -> ServiceResult

    - success: the event was applied, or was stale and is acknowledged
    - failure: the whole block is rolled back and Stripe redelivers

Events can arrive out of order. A handler that finds the row already past
the state the event would move it to logs and acknowledges instead of
failing. Notifications are scheduled with transaction.on_commit.

Usage:
    from settlement.webhooks.handlers import HandlerContext, dispatch

    result = dispatch(event, HandlerContext(config, fees, fanout))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from core.services import ServiceResult
from notifications.services import AlertSeverity, NotificationEvents

from settlement.exceptions import InvalidStateTransitionError
from settlement.models import Order, Subscription, Transaction
from settlement.services.refund_service import apply_refund, schedule_refund_notifications
from settlement.services.subscription_service import (
    GATEWAY_STATUS_MAP,
    move_subscription_to,
    notify_subscription_canceled,
)
from settlement.state_machines import (
    InvoicePaymentStatus,
    SubscriptionStatus,
    TransactionStatus,
    TransactionType,
)
from settlement.webhooks.events import WebhookEventType

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from notifications.services import NotificationFanout

    from settlement.config import SettlementConfig
    from settlement.fees import FeeCalculator
    from settlement.webhooks.events import GatewayEvent

    HandlerFunc = Callable[[GatewayEvent, "HandlerContext"], ServiceResult]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerContext:
    """Collaborators handlers need besides the event itself."""

    config: SettlementConfig
    fees: FeeCalculator
    fanout: NotificationFanout


# Registry of event type -> handler function
WEBHOOK_HANDLERS: dict[str, HandlerFunc] = {}


def register_handler(event_type: str):
    """
    Decorator to register a webhook handler for an event type.

    Usage:
        @register_handler("payment_intent.succeeded")
        def handle_payment_intent_succeeded(event, context):
            ...
    """

    def decorator(func: HandlerFunc) -> HandlerFunc:
        WEBHOOK_HANDLERS[str(event_type)] = func
        return func

    return decorator


def dispatch(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """
    Route an event to its registered handler.

    Event types without a handler are acknowledged without effect.
    """
    handler = WEBHOOK_HANDLERS.get(event.type)

    if handler is None:
        logger.info(
            f"No handler registered for event type: {event.type}",
            extra={"stripe_event_id": event.id},
        )
        return ServiceResult.success({"applied": False})

    return handler(event, context)


def _acknowledged(reason: str) -> ServiceResult:
    return ServiceResult.success({"applied": False, "reason": reason})


def _applied(**data: Any) -> ServiceResult:
    return ServiceResult.success({"applied": True, **data})


def _lock_transaction(payment_intent_id: str) -> Transaction | None:
    return (
        Transaction.objects.select_for_update()
        .filter(stripe_payment_intent_id=payment_intent_id)
        .first()
    )


def _lock_subscription(stripe_subscription_id: str) -> Subscription | None:
    return (
        Subscription.objects.select_for_update()
        .filter(stripe_subscription_id=stripe_subscription_id)
        .first()
    )


def _subscription_not_found(event: GatewayEvent, stripe_subscription_id: str) -> ServiceResult:
    logger.warning(
        "Subscription not found for webhook",
        extra={
            "stripe_event_id": event.id,
            "event_type": event.type,
            "stripe_subscription_id": stripe_subscription_id,
        },
    )
    return ServiceResult.failure(
        f"Subscription not found: {stripe_subscription_id}",
        error_code="SUBSCRIPTION_NOT_FOUND",
    )


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler(WebhookEventType.PAYMENT_INTENT_SUCCEEDED)
def handle_payment_intent_succeeded(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """
    Complete the Transaction and open the Order.

    A succeeded event for an intent the ledger does not know is a
    consistency fault: it is alerted on and returned as a failure so the
    event is redelivered once the row exists.

    Intents created by Stripe Billing for a subscription invoice are booked
    by invoice.payment_succeeded, so an unknown intent that names an invoice
    is acknowledged here.
    """
    intent = event.payload
    log_context = {"stripe_event_id": event.id, "payment_intent_id": intent.id}

    txn = _lock_transaction(intent.id)

    if txn is None:
        if intent.invoice_id:
            logger.info(
                "Invoice payment intent succeeded, booked with the invoice",
                extra={**log_context, "invoice_id": intent.invoice_id},
            )
            return _acknowledged("invoice_payment")

        logger.error("Transaction not found for succeeded payment intent", extra=log_context)
        context.fanout.system_alert(
            "webhook_transaction_not_found",
            AlertSeverity.CRITICAL,
            {
                "message": f"Payment {intent.id} succeeded but no transaction exists",
                "event_id": event.id,
                "payment_intent_id": intent.id,
                "amount_cents": intent.amount,
            },
        )
        return ServiceResult.failure(
            f"Transaction not found for intent: {intent.id}",
            error_code="TRANSACTION_NOT_FOUND",
        )

    if txn.status == TransactionStatus.FAILED:
        logger.error(
            "Payment succeeded for a failed transaction",
            extra={**log_context, "transaction_id": str(txn.id)},
        )
        context.fanout.system_alert(
            "payment_succeeded_after_failure",
            AlertSeverity.CRITICAL,
            {
                "message": f"Payment {intent.id} succeeded but its transaction is failed",
                "event_id": event.id,
                "payment_intent_id": intent.id,
                "transaction_id": str(txn.id),
            },
        )
        return _acknowledged("transaction_failed")

    if txn.status != TransactionStatus.PENDING:
        logger.info(
            "Transaction already settled, ignoring payment_intent.succeeded",
            extra={**log_context, "current_state": txn.status},
        )
        return _acknowledged("already_settled")

    txn.complete()
    txn.save()

    order = None
    if txn.transaction_type == TransactionType.VIDEO:
        order = Order.objects.create(
            transaction=txn,
            creator_id=txn.creator_id,
            fan_id=txn.payer_id,
            details=dict(txn.metadata or {}),
        )

    logger.info(
        "Transaction completed",
        extra={
            **log_context,
            "transaction_id": str(txn.id),
            "gross_amount_cents": txn.gross_amount_cents,
            "platform_fee_cents": txn.platform_fee_cents,
        },
    )

    data = {
        "transaction_id": str(txn.id),
        "payment_intent_id": txn.stripe_payment_intent_id,
        "order_id": str(order.id) if order else None,
        "amount_cents": txn.gross_amount_cents,
        "creator_earnings_cents": txn.creator_earnings_cents,
    }
    fanout = context.fanout

    def _notify() -> None:
        fanout.notify_creator(
            txn.creator_id,
            NotificationEvents.NEW_ORDER,
            title="New order",
            message="You have a new paid request",
            data=data,
        )
        fanout.notify_fan(
            txn.payer_id,
            NotificationEvents.ORDER_STATUS_UPDATE,
            title="Payment confirmed",
            message="Your payment was received",
            data={**data, "status": "payment_confirmed"},
        )

    transaction.on_commit(_notify)
    return _applied(transaction_id=str(txn.id))


@register_handler(WebhookEventType.PAYMENT_INTENT_FAILED)
def handle_payment_intent_failed(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """Fail a pending Transaction and tell the fan."""
    intent = event.payload
    reason = intent.failure_message or "Payment failed"
    log_context = {"stripe_event_id": event.id, "payment_intent_id": intent.id}

    txn = _lock_transaction(intent.id)

    if txn is None:
        # Nothing was recorded, so nothing to fail
        logger.warning("Transaction not found for failed payment intent", extra=log_context)
        return _acknowledged("transaction_not_found")

    if txn.status != TransactionStatus.PENDING:
        logger.info(
            "Stale payment_intent.payment_failed, transaction not pending",
            extra={**log_context, "current_state": txn.status},
        )
        return _acknowledged("not_pending")

    txn.fail(reason)
    txn.save()

    logger.info(
        "Transaction failed",
        extra={**log_context, "transaction_id": str(txn.id), "reason": reason},
    )

    data = {
        "transaction_id": str(txn.id),
        "payment_intent_id": txn.stripe_payment_intent_id,
        "status": "payment_failed",
        "reason": reason,
    }
    transaction.on_commit(
        lambda: context.fanout.notify_fan(
            txn.payer_id,
            NotificationEvents.ORDER_STATUS_UPDATE,
            title="Payment failed",
            message=reason,
            data=data,
        )
    )
    return _applied(transaction_id=str(txn.id))


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler(WebhookEventType.CHARGE_REFUNDED)
def handle_charge_refunded(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """
    Record refunds issued outside the API (e.g. from the Stripe dashboard).

    Refunds issued through RefundService are already in refund_amount_cents,
    so only the excess reported by Stripe is applied. Whether the transfer
    was reversed is not part of the charge, so the excess is booked as
    absorbed by the platform.
    A refund reported while the Transaction is still pending fails, so
    Stripe redelivers it after payment_intent.succeeded is applied.
    """
    charge = event.payload
    log_context = {"stripe_event_id": event.id, "charge_id": charge.id}

    if not charge.payment_intent_id:
        return _acknowledged("no_payment_intent")

    txn = _lock_transaction(charge.payment_intent_id)
    if txn is None:
        logger.warning(
            "Transaction not found for refunded charge",
            extra={**log_context, "payment_intent_id": charge.payment_intent_id},
        )
        return _acknowledged("transaction_not_found")

    difference = min(charge.amount_refunded, txn.gross_amount_cents) - txn.refund_amount_cents
    if difference <= 0:
        return _acknowledged("already_recorded")

    if txn.status == TransactionStatus.PENDING:
        # payment_intent.succeeded has not been applied yet; redeliver later
        logger.warning(
            "Charge refunded before the transaction settled",
            extra={**log_context, "transaction_id": str(txn.id), "amount_cents": difference},
        )
        return ServiceResult.failure(
            f"Transaction not settled yet: {txn.stripe_payment_intent_id}",
            error_code="TRANSACTION_NOT_SETTLED",
        )

    try:
        apply_refund(txn, difference, reverse_transfer=False, fees=context.fees)
    except InvalidStateTransitionError:
        logger.error(
            "Charge refunded for a transaction that cannot be refunded",
            extra={**log_context, "transaction_id": str(txn.id), "current_state": txn.status},
        )
        return _acknowledged("not_refundable")

    logger.info(
        "External refund reconciled",
        extra={**log_context, "transaction_id": str(txn.id), "amount_cents": difference},
    )
    schedule_refund_notifications(context.fanout, txn, difference)
    return _applied(transaction_id=str(txn.id), amount_cents=difference)


# =============================================================================
# Subscription Handlers
# =============================================================================


def _subscription_target(event: GatewayEvent) -> str | None:
    if event.kind == WebhookEventType.SUBSCRIPTION_DELETED:
        return SubscriptionStatus.CANCELED
    if event.kind == WebhookEventType.SUBSCRIPTION_PAUSED:
        return SubscriptionStatus.PAUSED
    if event.kind == WebhookEventType.SUBSCRIPTION_RESUMED:
        return SubscriptionStatus.ACTIVE
    return GATEWAY_STATUS_MAP.get(event.payload.status)


@register_handler(WebhookEventType.SUBSCRIPTION_CREATED)
@register_handler(WebhookEventType.SUBSCRIPTION_UPDATED)
@register_handler(WebhookEventType.SUBSCRIPTION_DELETED)
@register_handler(WebhookEventType.SUBSCRIPTION_PAUSED)
@register_handler(WebhookEventType.SUBSCRIPTION_RESUMED)
def handle_subscription_changed(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """Mirror Stripe's subscription status and billing period."""
    payload = event.payload
    log_context = {"stripe_event_id": event.id, "stripe_subscription_id": payload.id}

    subscription = _lock_subscription(payload.id)
    if subscription is None:
        return _subscription_not_found(event, payload.id)

    if subscription.is_terminal:
        logger.info(
            "Subscription already ended, ignoring event",
            extra={**log_context, "event_type": event.type, "current_state": subscription.status},
        )
        return _acknowledged("terminal")

    if payload.current_period_start:
        subscription.current_period_start = payload.current_period_start
    if payload.current_period_end:
        subscription.current_period_end = payload.current_period_end
    subscription.cancel_at_period_end = payload.cancel_at_period_end
    if payload.trial_end:
        subscription.trial_end = payload.trial_end

    previous = subscription.status
    target = _subscription_target(event)
    changed = False

    if target is None:
        logger.warning(
            f"Unknown gateway subscription status: {payload.status}",
            extra=log_context,
        )
    else:
        try:
            changed = move_subscription_to(subscription, target)
        except InvalidStateTransitionError:
            logger.info(
                "Stale subscription event, status not changed",
                extra={**log_context, "current_state": previous, "target_state": target},
            )

    subscription.save()

    if changed:
        logger.info(
            "Subscription status changed",
            extra={**log_context, "from_state": previous, "to_state": subscription.status},
        )
        if subscription.status == SubscriptionStatus.CANCELED:
            notify_subscription_canceled(context.fanout, subscription)
        elif (
            subscription.status == SubscriptionStatus.ACTIVE
            and previous == SubscriptionStatus.INCOMPLETE
        ):
            _notify_new_subscriber(context.fanout, subscription)

    return _applied(subscription_id=str(subscription.id), status=subscription.status)


def _notify_new_subscriber(fanout: NotificationFanout, subscription: Subscription) -> None:
    data = {
        "subscription_id": str(subscription.id),
        "tier_name": subscription.tier_name,
        "payer_id": str(subscription.payer_id),
        "amount_cents": subscription.amount_cents,
    }
    transaction.on_commit(
        lambda: fanout.notify_creator(
            subscription.creator_id,
            NotificationEvents.NEW_SUBSCRIBER,
            title="New subscriber",
            message=f"Someone subscribed to {subscription.tier_name}",
            data=data,
        )
    )


@register_handler(WebhookEventType.SUBSCRIPTION_TRIAL_WILL_END)
def handle_subscription_trial_will_end(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """Record when the trial ends and remind the fan."""
    payload = event.payload
    log_context = {"stripe_event_id": event.id, "stripe_subscription_id": payload.id}

    subscription = _lock_subscription(payload.id)
    if subscription is None:
        return _subscription_not_found(event, payload.id)

    if subscription.is_terminal:
        return _acknowledged("terminal")

    subscription.trial_end = payload.trial_end
    subscription.save()

    trial_end = payload.trial_end.isoformat() if payload.trial_end else None
    logger.info("Subscription trial ending soon", extra={**log_context, "trial_end": trial_end})

    data = {
        "subscription_id": str(subscription.id),
        "tier_name": subscription.tier_name,
        "trial_end": trial_end,
    }
    fanout = context.fanout
    transaction.on_commit(
        lambda: fanout.notify_fan(
            subscription.payer_id,
            NotificationEvents.SUBSCRIPTION_TRIAL_ENDING,
            title="Your trial ends soon",
            message=f"Your {subscription.tier_name} trial is about to end",
            data=data,
        )
    )
    return _applied(subscription_id=str(subscription.id))


# =============================================================================
# Invoice Handlers
# =============================================================================


@register_handler(WebhookEventType.INVOICE_PAYMENT_SUCCEEDED)
def handle_invoice_payment_succeeded(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """
    Record a subscription payment as a completed Transaction.

    The Transaction is keyed by the invoice's payment intent (or the invoice
    itself when Stripe reports none), so a redelivered invoice never books
    the payment twice.
    """
    invoice = event.payload
    log_context = {"stripe_event_id": event.id, "invoice_id": invoice.id}

    if not invoice.subscription_id:
        return _acknowledged("not_a_subscription_invoice")

    subscription = _lock_subscription(invoice.subscription_id)
    if subscription is None:
        return _subscription_not_found(event, invoice.subscription_id)

    txn = None
    if invoice.amount_paid > 0:
        txn = _record_invoice_payment(subscription, invoice, context)

    previous = subscription.status
    subscription.failed_payment_count = 0
    subscription.last_payment_at = timezone.now()
    subscription.last_invoice_id = invoice.id
    subscription.last_payment_status = InvoicePaymentStatus.SUCCEEDED

    if previous in (SubscriptionStatus.INCOMPLETE, SubscriptionStatus.PAST_DUE):
        move_subscription_to(subscription, SubscriptionStatus.ACTIVE)
    subscription.save()

    logger.info(
        "Subscription payment recorded",
        extra={
            **log_context,
            "subscription_id": str(subscription.id),
            "amount_paid": invoice.amount_paid,
            "status": subscription.status,
        },
    )

    if previous == SubscriptionStatus.INCOMPLETE:
        _notify_new_subscriber(context.fanout, subscription)

    if txn is not None:
        data = {
            "subscription_id": str(subscription.id),
            "transaction_id": str(txn.id),
            "amount_cents": txn.gross_amount_cents,
            "creator_earnings_cents": txn.creator_earnings_cents,
        }
        fanout = context.fanout
        transaction.on_commit(
            lambda: fanout.notify_creator(
                subscription.creator_id,
                NotificationEvents.SUBSCRIPTION_PAYMENT,
                title="Subscription payment received",
                message=f"{subscription.tier_name} subscription renewed",
                data=data,
            )
        )

    return _applied(
        subscription_id=str(subscription.id),
        transaction_id=str(txn.id) if txn else None,
    )


def _record_invoice_payment(
    subscription: Subscription,
    invoice: Any,
    context: HandlerContext,
) -> Transaction | None:
    """Create the completed Transaction for a paid invoice (once)."""
    payment_key = invoice.payment_intent_id or invoice.id

    if Transaction.objects.filter(stripe_payment_intent_id=payment_key).exists():
        return None

    gross = invoice.amount_paid
    if invoice.application_fee_amount is not None:
        platform_fee = min(invoice.application_fee_amount, gross)
    else:
        platform_fee = context.fees.split(gross).platform_fee_cents

    return Transaction.objects.create(
        stripe_payment_intent_id=payment_key,
        stripe_invoice_id=invoice.id,
        creator_id=subscription.creator_id,
        payer_id=subscription.payer_id,
        subscription=subscription,
        gross_amount_cents=gross,
        platform_fee_cents=platform_fee,
        creator_earnings_cents=gross - platform_fee,
        currency=invoice.currency or subscription.currency,
        transaction_type=TransactionType.SUBSCRIPTION,
        status=TransactionStatus.COMPLETED,
        completed_at=timezone.now(),
        metadata={"subscription_id": str(subscription.id), "invoice_id": invoice.id},
    )


@register_handler(WebhookEventType.INVOICE_PAYMENT_FAILED)
def handle_invoice_payment_failed(event: GatewayEvent, context: HandlerContext) -> ServiceResult:
    """
    Count a failed renewal and degrade the subscription.

    Reaching past_due_after_failures marks it past due; reaching
    expire_after_failures expires it.
    """
    invoice = event.payload
    log_context = {"stripe_event_id": event.id, "invoice_id": invoice.id}

    if not invoice.subscription_id:
        return _acknowledged("not_a_subscription_invoice")

    subscription = _lock_subscription(invoice.subscription_id)
    if subscription is None:
        return _subscription_not_found(event, invoice.subscription_id)

    if subscription.is_terminal:
        return _acknowledged("terminal")

    subscription.failed_payment_count += 1
    subscription.last_invoice_id = invoice.id
    subscription.last_payment_status = InvoicePaymentStatus.FAILED
    failures = subscription.failed_payment_count

    target = None
    if failures >= context.config.expire_after_failures:
        target = SubscriptionStatus.EXPIRED
    elif failures >= context.config.past_due_after_failures:
        target = SubscriptionStatus.PAST_DUE

    if target is not None:
        try:
            move_subscription_to(subscription, target)
        except InvalidStateTransitionError:
            logger.warning(
                "Cannot degrade subscription after payment failure",
                extra={**log_context, "current_state": subscription.status, "target_state": target},
            )
    subscription.save()

    logger.info(
        "Subscription payment failed",
        extra={
            **log_context,
            "subscription_id": str(subscription.id),
            "failed_payment_count": failures,
            "status": subscription.status,
        },
    )

    data = {
        "subscription_id": str(subscription.id),
        "tier_name": subscription.tier_name,
        "failed_payment_count": failures,
        "status": subscription.status,
        "amount_due_cents": invoice.amount_due,
    }
    fanout = context.fanout
    transaction.on_commit(
        lambda: fanout.notify_fan(
            subscription.payer_id,
            NotificationEvents.SUBSCRIPTION_PAYMENT_FAILED,
            title="Subscription payment failed",
            message=f"We couldn't renew your {subscription.tier_name} subscription",
            data=data,
        )
    )
    return _applied(subscription_id=str(subscription.id), status=subscription.status)


@register_handler(WebhookEventType.INVOICE_PAYMENT_ACTION_REQUIRED)
def handle_invoice_payment_action_required(
    event: GatewayEvent,
    context: HandlerContext,
) -> ServiceResult:
    """
    A renewal needs the fan to confirm the payment (e.g. 3D Secure).

    The subscription is marked past due until the invoice is paid. This is
    not a failed attempt, so failed_payment_count is left alone.
    """
    invoice = event.payload
    log_context = {"stripe_event_id": event.id, "invoice_id": invoice.id}

    if not invoice.subscription_id:
        return _acknowledged("not_a_subscription_invoice")

    subscription = _lock_subscription(invoice.subscription_id)
    if subscription is None:
        return _subscription_not_found(event, invoice.subscription_id)

    if subscription.is_terminal:
        return _acknowledged("terminal")

    subscription.last_invoice_id = invoice.id
    subscription.last_payment_status = InvoicePaymentStatus.REQUIRES_ACTION

    try:
        move_subscription_to(subscription, SubscriptionStatus.PAST_DUE)
    except InvalidStateTransitionError:
        logger.info(
            "Subscription left unchanged for payment action",
            extra={**log_context, "current_state": subscription.status},
        )
    subscription.save()

    logger.info(
        "Subscription payment requires action",
        extra={
            **log_context,
            "subscription_id": str(subscription.id),
            "payment_intent_id": invoice.payment_intent_id,
            "status": subscription.status,
        },
    )

    data = {
        "subscription_id": str(subscription.id),
        "tier_name": subscription.tier_name,
        "invoice_id": invoice.id,
        "payment_intent_id": invoice.payment_intent_id,
        "amount_due_cents": invoice.amount_due,
    }
    fanout = context.fanout
    transaction.on_commit(
        lambda: fanout.notify_fan(
            subscription.payer_id,
            NotificationEvents.SUBSCRIPTION_ACTION_REQUIRED,
            title="Confirm your subscription payment",
            message=f"Your {subscription.tier_name} renewal needs your confirmation",
            data=data,
        )
    )
    return _applied(subscription_id=str(subscription.id), status=subscription.status)
