"""
Subscription model for recurring creator subscriptions.

A Subscription mirrors a Stripe Billing subscription whose invoices carry
the platform's application fee and transfer the rest to the creator.
Status is driven by customer.subscription.* and invoice.* webhooks, plus
explicit cancellation through the API.

Usage:
    from settlement.models import Subscription

    subscription = Subscription.objects.get(stripe_subscription_id="sub_123")
    subscription.activate()
    subscription.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import VersionedModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from settlement.state_machines import BillingInterval, InvoicePaymentStatus, SubscriptionStatus


class Subscription(UUIDPrimaryKeyMixin, MetadataMixin, VersionedModel):
    """
    Tracks a fan's recurring subscription to a creator.

    State Flow:
        INCOMPLETE -> ACTIVE (first invoice paid)
        ACTIVE -> PAST_DUE (repeated payment failures)
        PAST_DUE -> ACTIVE (successful retry payment)
        ACTIVE/PAST_DUE -> PAUSED -> ACTIVE
        any non-terminal -> CANCELED
        ACTIVE/PAST_DUE/INCOMPLETE -> EXPIRED (payment retries exhausted)

    Fields:
        stripe_subscription_id: Stripe Subscription ID (sub_xxx)
        stripe_customer_id: Stripe Customer ID of the payer (cus_xxx)
        stripe_price_id / stripe_product_id: Tier pricing objects
        tier_name: Display name of the subscription tier
        amount_cents: Price per billing interval
        status: Current FSM state
        failed_payment_count: Consecutive failed invoices
        last_payment_status: Latest invoice attempt (succeeded, failed, requires_action)
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="creator_subscriptions",
        help_text="Creator being subscribed to",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="Fan paying for the subscription",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )

    stripe_customer_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    stripe_price_id = models.CharField(
        max_length=255,
        help_text="Stripe Price ID (price_xxx)",
    )

    stripe_product_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Product ID (prod_xxx)",
    )

    # ==========================================================================
    # Pricing
    # ==========================================================================

    tier_name = models.CharField(
        max_length=100,
        help_text="Subscription tier name shown to fans",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Price per interval in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    billing_interval = models.CharField(
        max_length=10,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
        help_text="Billing frequency",
    )

    # ==========================================================================
    # State & Billing Period
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.INCOMPLETE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    current_period_start = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Start of the current billing period",
    )

    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the current billing period",
    )

    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Whether cancellation is scheduled at period end",
    )

    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the subscription was canceled",
    )

    trial_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the free trial ends, if there is one",
    )

    # ==========================================================================
    # Payment Tracking
    # ==========================================================================

    failed_payment_count = models.PositiveIntegerField(
        default=0,
        help_text="Consecutive failed invoice payments",
    )

    last_payment_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the last successful payment occurred",
    )

    last_invoice_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Most recent Stripe invoice ID",
    )

    last_payment_status = models.CharField(
        max_length=20,
        choices=InvoicePaymentStatus.choices,
        blank=True,
        default="",
        help_text="Outcome of the latest invoice payment attempt",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["creator", "status"], name="sub_creator_status_idx"),
            models.Index(fields=["payer", "status"], name="sub_payer_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="subscription_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.stripe_subscription_id}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[
            SubscriptionStatus.INCOMPLETE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.PAUSED,
        ],
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self):
        """
        Transition: INCOMPLETE/PAST_DUE/PAUSED -> ACTIVE

        Resets the failure counter.
        """
        self.failed_payment_count = 0

    @transition(
        field=status,
        source=[SubscriptionStatus.INCOMPLETE, SubscriptionStatus.ACTIVE],
        target=SubscriptionStatus.PAST_DUE,
    )
    def mark_past_due(self):
        """Transition: INCOMPLETE/ACTIVE -> PAST_DUE"""

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE],
        target=SubscriptionStatus.PAUSED,
    )
    def pause(self):
        """Transition: ACTIVE/PAST_DUE -> PAUSED"""

    @transition(
        field=status,
        source=[
            SubscriptionStatus.INCOMPLETE,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.PAUSED,
        ],
        target=SubscriptionStatus.CANCELED,
    )
    def cancel(self):
        """
        Cancel the subscription.

        Transition: INCOMPLETE/ACTIVE/PAST_DUE/PAUSED -> CANCELED
        """
        self.canceled_at = timezone.now()
        self.cancel_at_period_end = False

    @transition(
        field=status,
        source=[
            SubscriptionStatus.INCOMPLETE,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
        ],
        target=SubscriptionStatus.EXPIRED,
    )
    def expire(self):
        """
        Expire after payment retries are exhausted.

        Transition: INCOMPLETE/ACTIVE/PAST_DUE -> EXPIRED
        """

    # ==========================================================================
    # Status Helpers
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in SubscriptionStatus.terminal_states()
