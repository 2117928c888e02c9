"""
Tests for settlement models and their state machines.
"""

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from settlement.models import Transaction
from settlement.state_machines import SubscriptionStatus, TransactionStatus
from settlement.tests.factories import (
    CreatorPayoutAccountFactory,
    SubscriptionFactory,
    TransactionFactory,
    WebhookProcessingRecordFactory,
)


@pytest.mark.django_db
class TestTransactionTransitions:
    def test_pending_to_completed(self):
        txn = TransactionFactory()

        txn.complete()
        txn.save()

        txn = Transaction.objects.get(pk=txn.pk)
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.completed_at is not None

    def test_pending_to_failed_keeps_amounts(self):
        txn = TransactionFactory()

        txn.fail("Your card was declined.")
        txn.save()

        txn = Transaction.objects.get(pk=txn.pk)
        assert txn.status == TransactionStatus.FAILED
        assert txn.failure_reason == "Your card was declined."
        assert txn.gross_amount_cents == 10000
        assert txn.refund_amount_cents == 0

    def test_failed_cannot_complete(self):
        txn = TransactionFactory(status=TransactionStatus.FAILED)

        with pytest.raises(TransitionNotAllowed):
            txn.complete()

    def test_pending_cannot_refund(self):
        txn = TransactionFactory()

        with pytest.raises(TransitionNotAllowed):
            txn.refund_partial(1000)

    def test_partial_refunds_accumulate(self):
        txn = TransactionFactory(status=TransactionStatus.COMPLETED)

        txn.refund_partial(2000, 600, 1400)
        txn.refund_partial(1000, 300, 700)
        txn.save()

        txn = Transaction.objects.get(pk=txn.pk)
        assert txn.status == TransactionStatus.PARTIALLY_REFUNDED
        assert txn.refund_amount_cents == 3000
        assert txn.platform_fee_refunded_cents == 900
        assert txn.creator_earnings_reversed_cents == 2100
        assert txn.refundable_amount_cents == 7000
        assert txn.net_creator_earnings_cents == 4900
        assert txn.unreturned_platform_fee_cents == 2100

    def test_refunded_is_terminal(self):
        txn = TransactionFactory(status=TransactionStatus.COMPLETED)
        txn.refund_full(10000, 3000, 7000)

        with pytest.raises(TransitionNotAllowed):
            txn.refund_partial(1)

    def test_status_is_protected(self):
        txn = TransactionFactory()

        with pytest.raises(AttributeError):
            txn.status = TransactionStatus.COMPLETED

    def test_version_increments_on_save(self):
        txn = TransactionFactory()
        assert txn.version == 1

        txn.complete()
        txn.save()

        assert txn.version == 2

    def test_version_counts_saves_from_stale_copies(self):
        txn = TransactionFactory()
        first = Transaction.objects.get(pk=txn.pk)
        second = Transaction.objects.get(pk=txn.pk)

        first.save(update_fields=["updated_at"])
        second.save(update_fields=["updated_at"])

        assert first.version == 2
        assert second.version == 3
        txn.refresh_from_db(fields=["version"])
        assert txn.version == 3

    def test_str(self):
        txn = TransactionFactory(stripe_payment_intent_id="pi_str")

        assert str(txn) == "Transaction(pi_str, pending, 100.00 USD)"


@pytest.mark.django_db
class TestTransactionConstraints:
    def test_split_must_sum_to_gross(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            TransactionFactory(
                gross_amount_cents=10000,
                platform_fee_cents=3000,
                creator_earnings_cents=6000,
            )

    def test_gross_must_be_positive(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            TransactionFactory(
                gross_amount_cents=0,
                platform_fee_cents=0,
                creator_earnings_cents=0,
            )

    def test_refund_cannot_exceed_gross(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            TransactionFactory(
                status=TransactionStatus.COMPLETED,
                refund_amount_cents=10001,
            )

    def test_payment_intent_is_unique(self):
        TransactionFactory(stripe_payment_intent_id="pi_dup")

        with pytest.raises(IntegrityError), transaction.atomic():
            TransactionFactory(stripe_payment_intent_id="pi_dup")


@pytest.mark.django_db
class TestSubscriptionTransitions:
    def test_activate_resets_failures(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            failed_payment_count=3,
        )

        subscription.activate()

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.failed_payment_count == 0

    def test_cancel_sets_timestamp(self):
        subscription = SubscriptionFactory(cancel_at_period_end=True)

        subscription.cancel()

        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.canceled_at is not None
        assert subscription.cancel_at_period_end is False
        assert subscription.is_terminal

    def test_paused_cannot_expire(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.PAUSED)

        with pytest.raises(TransitionNotAllowed):
            subscription.expire()

    def test_canceled_cannot_reactivate(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.CANCELED)

        with pytest.raises(TransitionNotAllowed):
            subscription.activate()


@pytest.mark.django_db
class TestPayoutAccount:
    @pytest.mark.parametrize(
        "charges,payouts,ready",
        [(True, True, True), (True, False, False), (False, True, False)],
    )
    def test_is_ready(self, charges, payouts, ready):
        account = CreatorPayoutAccountFactory(charges_enabled=charges, payouts_enabled=payouts)

        assert account.is_ready is ready


@pytest.mark.django_db
class TestWebhookProcessingRecord:
    def test_event_id_is_unique(self):
        WebhookProcessingRecordFactory(event_id="evt_once")

        with pytest.raises(IntegrityError), transaction.atomic():
            WebhookProcessingRecordFactory(event_id="evt_once")
