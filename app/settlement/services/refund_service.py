"""
Refund service for returning money to fans.

Refunds are issued against a completed Transaction. With reverse_transfer
the creator's share is pulled back from their connected account and the
platform's application fee is returned in proportion; without it the
platform absorbs the refund.

Fee reversal:
    Each refund returns fee_share(amount) of the platform fee, except the
    refund that exhausts the balance, which returns whatever fee is still
    unreturned. A full refund (in one or many steps) therefore always
    returns exactly the original fee and leaves the creator's net
    transfer at zero.

Concurrency:
    The Transaction is locked with select_for_update for the whole
    operation, gateway call included, so two concurrent refunds cannot
    both pass the balance check.

Usage:
    from settlement.services import RefundService

    outcome = RefundService().refund(
        "pi_123",
        amount_cents=4000,
        reason="requested_by_customer",
        reverse_transfer=True,
    )
    outcome.status                    # "partially_refunded"
    outcome.platform_fee_refunded_cents   # 1200
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import DatabaseError, transaction
from django_fsm import TransitionNotAllowed

from core.exceptions import ValidationError
from notifications.services import AlertSeverity, NotificationEvents

from settlement.adapters import IdempotencyKeyGenerator
from settlement.exceptions import (
    InvalidAmountError,
    InvalidStateTransitionError,
    RefundExceedsBalanceError,
    TransactionNotFoundError,
)
from settlement.fees import FeeCalculator
from settlement.models import Transaction
from settlement.services.base import SettlementService
from settlement.state_machines import RefundReason, TransactionStatus

if TYPE_CHECKING:
    from notifications.services import NotificationFanout


@dataclass
class RefundOutcome:
    """
    Result of a recorded refund.

    Attributes:
        refund_id: Stripe Refund ID (re_xxx)
        status: Transaction status after the refund
        amount_cents: Amount refunded by this call
        platform_fee_refunded_cents: Fee returned by this call
        creator_earnings_reversed_cents: Creator share reversed by this call
        remaining_cents: Amount still refundable
        transaction: The updated Transaction
    """

    refund_id: str
    status: str
    amount_cents: int
    platform_fee_refunded_cents: int
    creator_earnings_reversed_cents: int
    remaining_cents: int
    transaction: Transaction


class RefundService(SettlementService):
    """Issues refunds and keeps the ledger's refund totals."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fees = FeeCalculator.from_config(self.config)

    def refund(
        self,
        payment_intent_id: str,
        amount_cents: int | None = None,
        reason: str = RefundReason.REQUESTED_BY_CUSTOMER,
        reverse_transfer: bool = True,
    ) -> RefundOutcome:
        """
        Refund a completed payment, fully or in part.

        Args:
            payment_intent_id: Stripe PaymentIntent of the Transaction
            amount_cents: Amount to refund (None for the whole remaining balance)
            reason: duplicate, fraudulent or requested_by_customer
            reverse_transfer: Pull the creator's share and fee back

        Raises:
            ValidationError: Unknown reason
            TransactionNotFoundError: No Transaction for the intent
            InvalidStateTransitionError: Transaction not refundable
            InvalidAmountError: Amount not positive
            RefundExceedsBalanceError: Amount larger than what remains
            GatewayError: Stripe refused or failed (nothing recorded)
        """
        logger = self.get_logger()

        if reason not in RefundReason.values:
            raise ValidationError(
                f"Invalid refund reason: {reason}",
                error_code="INVALID_REFUND_REASON",
                details={"allowed": list(RefundReason.values)},
            )

        with self.atomic():
            txn = self._lock_transaction(payment_intent_id)

            if txn.status not in TransactionStatus.refundable_states():
                raise InvalidStateTransitionError(
                    f"Cannot refund transaction in '{txn.status}' state",
                    details={"payment_intent_id": payment_intent_id, "current_state": txn.status},
                )

            remaining = txn.refundable_amount_cents
            amount = remaining if amount_cents is None else amount_cents
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidAmountError(
                    "Refund amount must be a positive integer number of cents",
                    details={"amount_cents": repr(amount)},
                )
            if amount > remaining:
                raise RefundExceedsBalanceError(
                    "Refund exceeds remaining balance",
                    details={"requested_cents": amount, "remaining_cents": remaining},
                )

            refund = self.gateway.create_refund(
                payment_intent_id=payment_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "refund", f"{txn.id}:{txn.refund_amount_cents}:{amount}"
                ),
                amount_cents=amount,
                reason=reason,
                reverse_transfer=reverse_transfer,
                metadata={"transaction_id": str(txn.id)},
            )

            try:
                fee_refunded, earnings_reversed = apply_refund(
                    txn, amount, reverse_transfer, self.fees
                )
            except DatabaseError:
                # Stripe already moved the money; charge.refunded will book it
                # later without the transfer reversal
                logger.exception(
                    "Refund issued but not recorded",
                    extra={"payment_intent_id": payment_intent_id, "refund_id": refund.id},
                )
                self.fanout.system_alert(
                    "refund_not_recorded",
                    AlertSeverity.CRITICAL,
                    {
                        "message": f"Refund {refund.id} succeeded at Stripe but was not recorded",
                        "payment_intent_id": payment_intent_id,
                        "refund_id": refund.id,
                        "amount_cents": amount,
                        "reverse_transfer": reverse_transfer,
                    },
                )
                raise

            schedule_refund_notifications(self.fanout, txn, amount)

        logger.info(
            "Refund recorded",
            extra={
                "payment_intent_id": payment_intent_id,
                "refund_id": refund.id,
                "amount_cents": amount,
                "platform_fee_refunded_cents": fee_refunded,
                "status": txn.status,
            },
        )

        return RefundOutcome(
            refund_id=refund.id,
            status=txn.status,
            amount_cents=amount,
            platform_fee_refunded_cents=fee_refunded,
            creator_earnings_reversed_cents=earnings_reversed,
            remaining_cents=txn.refundable_amount_cents,
            transaction=txn,
        )

    @staticmethod
    def _lock_transaction(payment_intent_id: str) -> Transaction:
        try:
            return Transaction.objects.select_for_update().get(
                stripe_payment_intent_id=payment_intent_id
            )
        except Transaction.DoesNotExist:
            raise TransactionNotFoundError(
                "Transaction not found",
                details={"payment_intent_id": payment_intent_id},
            ) from None


# =============================================================================
# Refund Bookkeeping
# =============================================================================


def refund_split(
    txn: Transaction,
    amount_cents: int,
    reverse_transfer: bool,
    fees: FeeCalculator,
) -> tuple[int, int]:
    """
    Work out (platform fee returned, creator earnings reversed) for a refund.

    Without reverse_transfer the platform absorbs the refund: (0, 0).
    """
    if not reverse_transfer:
        return 0, 0

    if amount_cents >= txn.refundable_amount_cents:
        fee_refunded = txn.unreturned_platform_fee_cents
    else:
        fee_refunded = min(fees.fee_share(amount_cents), txn.unreturned_platform_fee_cents)

    return fee_refunded, amount_cents - fee_refunded


def apply_refund(
    txn: Transaction,
    amount_cents: int,
    reverse_transfer: bool,
    fees: FeeCalculator,
) -> tuple[int, int]:
    """
    Record a refund on a locked Transaction and save it.

    Moves the Transaction to REFUNDED when the balance reaches zero,
    PARTIALLY_REFUNDED otherwise.

    Returns:
        (platform fee returned, creator earnings reversed)

    Raises:
        InvalidStateTransitionError: Transaction not refundable
    """
    fee_refunded, earnings_reversed = refund_split(txn, amount_cents, reverse_transfer, fees)
    exhausts_balance = amount_cents == txn.refundable_amount_cents

    try:
        if exhausts_balance:
            txn.refund_full(amount_cents, fee_refunded, earnings_reversed)
        else:
            txn.refund_partial(amount_cents, fee_refunded, earnings_reversed)
    except TransitionNotAllowed:
        raise InvalidStateTransitionError(
            f"Cannot refund transaction in '{txn.status}' state",
            details={
                "payment_intent_id": txn.stripe_payment_intent_id,
                "current_state": txn.status,
            },
        ) from None

    txn.save()
    return fee_refunded, earnings_reversed


def schedule_refund_notifications(
    fanout: NotificationFanout,
    txn: Transaction,
    amount_cents: int,
) -> None:
    """Notify fan and creator about a refund once it commits."""
    status = txn.status
    data = {
        "transaction_id": str(txn.id),
        "payment_intent_id": txn.stripe_payment_intent_id,
        "status": status,
        "amount_cents": amount_cents,
        "remaining_cents": txn.refundable_amount_cents,
    }
    fully = status == TransactionStatus.REFUNDED
    title = "Payment refunded" if fully else "Payment partially refunded"

    def _notify() -> None:
        fanout.notify_fan(
            txn.payer_id,
            NotificationEvents.ORDER_STATUS_UPDATE,
            title=title,
            message=f"{amount_cents / 100:.2f} {txn.currency.upper()} has been refunded",
            data=data,
        )
        fanout.notify_creator(
            txn.creator_id,
            NotificationEvents.ORDER_STATUS_UPDATE,
            title=title,
            message=f"An order payment was refunded ({amount_cents / 100:.2f} {txn.currency.upper()})",
            data=data,
        )

    transaction.on_commit(_notify)
