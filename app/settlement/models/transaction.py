"""
Transaction and Order models: the settlement ledger.

A Transaction is created (pending) when a payment intent is created and is
moved through its lifecycle only by webhook handlers and the refund
service. Money fields are integer cents and the split invariant
(platform fee + creator earnings == gross) is enforced in the database.

An Order is the fulfilment record created when a video payment completes.

Usage:
    from settlement.models import Transaction
    from settlement.state_machines import TransactionStatus

    txn = Transaction.objects.select_for_update().get(
        stripe_payment_intent_id="pi_123",
    )
    txn.complete()
    txn.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel, VersionedModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from settlement.state_machines import (
    OrderStatus,
    TransactionStatus,
    TransactionType,
)


class Transaction(UUIDPrimaryKeyMixin, MetadataMixin, VersionedModel):
    """
    One fan payment and its platform/creator split.

    State Flow:
        PENDING -> COMPLETED (payment_intent.succeeded)
        PENDING -> FAILED (payment_intent.payment_failed)
        COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED (partial refund)
        COMPLETED/PARTIALLY_REFUNDED -> REFUNDED (balance exhausted)

    Fields:
        stripe_payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
        creator / payer: The two sides of the payment
        gross_amount_cents: Amount charged to the fan
        platform_fee_cents: Application fee kept by the platform
        creator_earnings_cents: Amount transferred to the creator
        status: Current FSM state
        refund_amount_cents: Cumulative amount refunded to the fan
        platform_fee_refunded_cents: Cumulative application fee returned
        creator_earnings_reversed_cents: Cumulative transfer reversed

    Note:
        Rows are never deleted. The version field is bumped on every save.
    """

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    stripe_invoice_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Invoice ID (in_xxx) - for subscription payments",
    )

    # ==========================================================================
    # Parties
    # ==========================================================================

    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="earning_transactions",
        help_text="Creator receiving the earnings",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
        help_text="Fan making the payment",
    )

    subscription = models.ForeignKey(
        "settlement.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        help_text="Subscription this payment belongs to (for recurring payments)",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    gross_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount charged to the fan in smallest currency unit",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        help_text="Platform application fee in smallest currency unit",
    )

    creator_earnings_cents = models.PositiveBigIntegerField(
        help_text="Creator share (gross minus platform fee)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Type & State
    # ==========================================================================

    transaction_type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        default=TransactionType.VIDEO,
        help_text="What the payment is for",
    )

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current state of the transaction (managed by FSM)",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway failure message if the payment failed",
    )

    # ==========================================================================
    # Refund Bookkeeping
    # ==========================================================================

    refund_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Cumulative amount refunded to the fan",
    )

    platform_fee_refunded_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Cumulative platform fee returned by refunds",
    )

    creator_earnings_reversed_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Cumulative creator transfer reversed by refunds",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment succeeded",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment failed",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the most recent refund was recorded",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(fields=["creator", "status", "created_at"], name="txn_creator_status_idx"),
            models.Index(fields=["payer", "created_at"], name="txn_payer_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(gross_amount_cents__gt=0),
                name="transaction_gross_positive",
            ),
            models.CheckConstraint(
                condition=Q(
                    gross_amount_cents=F("platform_fee_cents") + F("creator_earnings_cents")
                ),
                name="transaction_split_sums_to_gross",
            ),
            models.CheckConstraint(
                condition=Q(refund_amount_cents__lte=F("gross_amount_cents")),
                name="transaction_refund_within_gross",
            ),
            models.CheckConstraint(
                condition=Q(platform_fee_refunded_cents__lte=F("platform_fee_cents")),
                name="transaction_fee_refund_within_fee",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.gross_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Transaction({self.stripe_payment_intent_id}, {self.status}, {amount_display})"

    # ==========================================================================
    # Derived Amounts
    # ==========================================================================

    @property
    def refundable_amount_cents(self) -> int:
        """Amount that can still be refunded."""
        return self.gross_amount_cents - self.refund_amount_cents

    @property
    def net_creator_earnings_cents(self) -> int:
        """Creator earnings after reversals."""
        return self.creator_earnings_cents - self.creator_earnings_reversed_cents

    @property
    def unreturned_platform_fee_cents(self) -> int:
        return self.platform_fee_cents - self.platform_fee_refunded_cents

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.COMPLETED,
    )
    def complete(self):
        """
        Mark payment as succeeded.

        Transition: PENDING -> COMPLETED
        """
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark payment as failed. Money fields are left untouched.

        Transition: PENDING -> FAILED

        Args:
            reason: Gateway failure message
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=TransactionStatus.refundable_states(),
        target=TransactionStatus.REFUNDED,
    )
    def refund_full(
        self,
        amount_cents: int,
        fee_refunded_cents: int = 0,
        earnings_reversed_cents: int = 0,
    ):
        """
        Record the refund that exhausts the balance.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> REFUNDED
        """
        self._record_refund(amount_cents, fee_refunded_cents, earnings_reversed_cents)

    @transition(
        field=status,
        source=TransactionStatus.refundable_states(),
        target=TransactionStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(
        self,
        amount_cents: int,
        fee_refunded_cents: int = 0,
        earnings_reversed_cents: int = 0,
    ):
        """
        Record a refund that leaves part of the balance.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED

        Note:
            Multiple partial refunds are allowed; totals are cumulative.
        """
        self._record_refund(amount_cents, fee_refunded_cents, earnings_reversed_cents)

    def _record_refund(
        self,
        amount_cents: int,
        fee_refunded_cents: int,
        earnings_reversed_cents: int,
    ) -> None:
        self.refund_amount_cents += amount_cents
        self.platform_fee_refunded_cents += fee_refunded_cents
        self.creator_earnings_reversed_cents += earnings_reversed_cents
        self.refunded_at = timezone.now()


class Order(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fulfilment record for a completed video payment.

    Created by the payment_intent.succeeded handler in the same database
    transaction that completes the Transaction.

    Fields:
        transaction: The payment this order was created from
        creator / fan: Parties to the order
        status: Fulfilment status (PENDING on creation)
        details: Request details copied from the payment metadata
    """

    transaction = models.OneToOneField(
        Transaction,
        on_delete=models.PROTECT,
        related_name="order",
        help_text="Payment this order was created from",
    )

    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="creator_orders",
        help_text="Creator fulfilling the order",
    )

    fan = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="fan_orders",
        help_text="Fan who placed the order",
    )

    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
        help_text="Fulfilment status",
    )

    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Request details (occasion, instructions, ...)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["creator", "status"], name="order_creator_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Order({self.id}, {self.status})"
