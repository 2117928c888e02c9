"""
Subscription billing for recurring creator subscriptions.

Subscriptions are billed by Stripe Billing. Every invoice carries the
platform's application_fee_percent and transfers the rest to the creator's
connected account, so the same split applies as for one-off payments.

Usage:
    from settlement.services import SubscriptionService

    signup = SubscriptionService().subscribe(
        creator_id=creator.id,
        payer=request.user,
        tier_name="Gold",
        amount_cents=999,
        interval="month",
    )
    signup.client_secret   # confirm the first invoice client-side

    SubscriptionService().cancel(signup.subscription.id, prorate=True)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction
from django_fsm import TransitionNotAllowed

from core.exceptions import ValidationError
from notifications.services import NotificationEvents

from settlement.adapters import CreateSubscriptionParams, IdempotencyKeyGenerator
from settlement.exceptions import (
    InvalidStateTransitionError,
    SubscriptionNotFoundError,
)
from settlement.models import Subscription
from settlement.services.account_validator import AccountValidator
from settlement.services.base import SettlementService, require_chargeable_amount
from settlement.state_machines import BillingInterval, SubscriptionStatus

if TYPE_CHECKING:
    from typing import Any

    from django.contrib.auth.models import AbstractBaseUser


# Stripe subscription status -> local status
GATEWAY_STATUS_MAP = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "trialing": SubscriptionStatus.ACTIVE,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAUSED,
    "canceled": SubscriptionStatus.CANCELED,
}


@dataclass
class SubscriptionSignup:
    """
    A created subscription awaiting its first payment.

    Attributes:
        subscription: The Subscription row
        client_secret: First invoice's payment secret (may be None)
    """

    subscription: Subscription
    client_secret: str | None


class SubscriptionService(SettlementService):
    """Creates and cancels creator subscriptions."""

    def __init__(self, *args, validator: AccountValidator | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.validator = validator or AccountValidator(config=self.config, gateway=self.gateway)

    def subscribe(
        self,
        creator_id: Any,
        payer: AbstractBaseUser,
        tier_name: str,
        amount_cents: int,
        interval: str = BillingInterval.MONTH,
    ) -> SubscriptionSignup:
        """
        Subscribe a fan to a creator tier.

        Raises:
            InvalidAmountError: Amount not positive or below minimum
            ValidationError: Unknown interval or empty tier name
            AccountNotFoundError / AccountNotReadyError: Creator cannot be paid
            GatewayError: Stripe call failed
        """
        logger = self.get_logger()

        require_chargeable_amount(amount_cents, self.config)
        if interval not in BillingInterval.values:
            raise ValidationError(
                f"Invalid billing interval: {interval}",
                error_code="INVALID_INTERVAL",
                details={"allowed": list(BillingInterval.values)},
            )
        if not tier_name or not tier_name.strip():
            raise ValidationError("Tier name is required", error_code="INVALID_TIER_NAME")

        account = self.validator.validate(creator_id)

        subscription_id = uuid.uuid4()
        customer_id = self._get_or_create_customer(payer)

        product_id = self.gateway.create_product(
            name=tier_name.strip(),
            idempotency_key=IdempotencyKeyGenerator.generate("create_product", subscription_id),
            metadata={"creator_id": str(creator_id)},
        )
        price_id = self.gateway.create_price(
            product_id=product_id,
            amount_cents=amount_cents,
            currency=self.config.currency,
            interval=interval,
            idempotency_key=IdempotencyKeyGenerator.generate("create_price", subscription_id),
        )
        result = self.gateway.create_subscription(
            CreateSubscriptionParams(
                customer_id=customer_id,
                price_id=price_id,
                destination_account=account.stripe_account_id,
                application_fee_percent=self.config.platform_fee_percent,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_subscription", subscription_id
                ),
                metadata={
                    "subscription_ref": str(subscription_id),
                    "creator_id": str(creator_id),
                    "payer_id": str(payer.pk),
                    "tier_name": tier_name.strip(),
                },
            )
        )

        subscription = Subscription.objects.create(
            id=subscription_id,
            creator_id=creator_id,
            payer=payer,
            stripe_subscription_id=result.id,
            stripe_customer_id=customer_id,
            stripe_price_id=price_id,
            stripe_product_id=product_id,
            tier_name=tier_name.strip(),
            amount_cents=amount_cents,
            currency=self.config.currency,
            billing_interval=interval,
            status=GATEWAY_STATUS_MAP.get(result.status, SubscriptionStatus.INCOMPLETE),
            current_period_start=result.current_period_start,
            current_period_end=result.current_period_end,
        )

        logger.info(
            "Subscription created",
            extra={
                "subscription_id": str(subscription.id),
                "stripe_subscription_id": result.id,
                "amount_cents": amount_cents,
                "interval": interval,
                "status": subscription.status,
            },
        )

        return SubscriptionSignup(subscription=subscription, client_secret=result.client_secret)

    def cancel(self, subscription_id: Any, prorate: bool = False) -> Subscription:
        """
        Cancel a subscription immediately.

        Cancelling an already canceled subscription is a no-op.

        Args:
            subscription_id: Local UUID or Stripe ID (sub_xxx)
            prorate: Credit the unused part of the period

        Raises:
            SubscriptionNotFoundError: Unknown subscription
            InvalidStateTransitionError: Subscription already expired
            GatewayError: Stripe call failed (nothing changed)
        """
        with self.atomic():
            subscription = get_subscription_for_update(subscription_id)

            if subscription.status == SubscriptionStatus.CANCELED:
                return subscription

            if subscription.status == SubscriptionStatus.EXPIRED:
                raise InvalidStateTransitionError(
                    "Cannot cancel an expired subscription",
                    details={"subscription_id": str(subscription.id)},
                )

            self.gateway.cancel_subscription(subscription.stripe_subscription_id, prorate=prorate)
            move_subscription_to(subscription, SubscriptionStatus.CANCELED)
            subscription.save()

            notify_subscription_canceled(self.fanout, subscription)

        self.get_logger().info(
            "Subscription canceled",
            extra={
                "subscription_id": str(subscription.id),
                "stripe_subscription_id": subscription.stripe_subscription_id,
                "prorate": prorate,
            },
        )
        return subscription

    def _get_or_create_customer(self, payer: AbstractBaseUser) -> str:
        """Reuse the payer's Stripe customer from earlier subscriptions."""
        existing = (
            Subscription.objects.filter(payer=payer)
            .exclude(stripe_customer_id="")
            .values_list("stripe_customer_id", flat=True)
            .first()
        )
        if existing:
            return existing

        return self.gateway.create_customer(
            idempotency_key=IdempotencyKeyGenerator.generate("create_customer", payer.pk),
            email=getattr(payer, "email", None) or None,
            metadata={"user_id": str(payer.pk)},
        )


# =============================================================================
# Helpers shared with webhook handlers
# =============================================================================


def get_subscription_for_update(subscription_id: Any) -> Subscription:
    """
    Lock a subscription by local UUID or Stripe ID.

    Raises:
        SubscriptionNotFoundError: No such subscription
    """
    queryset = Subscription.objects.select_for_update()
    subscription = queryset.filter(stripe_subscription_id=str(subscription_id)).first()

    if subscription is None:
        try:
            local_id = uuid.UUID(str(subscription_id))
        except ValueError:
            local_id = None
        if local_id is not None:
            subscription = queryset.filter(pk=local_id).first()

    if subscription is None:
        raise SubscriptionNotFoundError(
            "Subscription not found",
            details={"subscription_id": str(subscription_id)},
        )
    return subscription


def move_subscription_to(subscription: Subscription, target: str) -> bool:
    """
    Drive the subscription FSM to a target status.

    Returns:
        True if the status changed, False if it already had it

    Raises:
        InvalidStateTransitionError: No transition leads there from the current state
    """
    if subscription.status == target:
        return False

    transitions = {
        SubscriptionStatus.ACTIVE: subscription.activate,
        SubscriptionStatus.PAST_DUE: subscription.mark_past_due,
        SubscriptionStatus.PAUSED: subscription.pause,
        SubscriptionStatus.CANCELED: subscription.cancel,
        SubscriptionStatus.EXPIRED: subscription.expire,
    }
    method = transitions.get(target)
    current = subscription.status

    try:
        if method is None:
            raise TransitionNotAllowed(f"No transition to {target}")
        method()
    except TransitionNotAllowed:
        raise InvalidStateTransitionError(
            f"Cannot move subscription from '{current}' to '{target}'",
            details={
                "subscription_id": str(subscription.id),
                "current_state": current,
                "target_state": target,
            },
        ) from None
    return True


def notify_subscription_canceled(fanout, subscription: Subscription) -> None:
    """Tell the creator a subscription ended, once the change commits."""
    data = {
        "subscription_id": str(subscription.id),
        "tier_name": subscription.tier_name,
        "payer_id": str(subscription.payer_id),
    }
    transaction.on_commit(
        lambda: fanout.notify_creator(
            subscription.creator_id,
            NotificationEvents.SUBSCRIPTION_CANCELED,
            title="Subscription canceled",
            message=f"A {subscription.tier_name} subscriber canceled",
            data=data,
        )
    )
