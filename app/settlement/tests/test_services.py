"""
Tests for settlement services.

The gateway is a MagicMock (see conftest.fake_gateway); assertions cover
the ledger rows written, the gateway calls made and the notifications
scheduled after commit.
"""

from unittest.mock import ANY, patch

import pytest
from django.db import DatabaseError

from core.exceptions import ValidationError
from notifications.services import AlertSeverity, NotificationEvents
from settlement.adapters import AccountResult
from settlement.exceptions import (
    AccountNotFoundError,
    AccountNotReadyError,
    GatewayCardDeclinedError,
    GatewayInvalidAccountError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidStateTransitionError,
    RefundExceedsBalanceError,
    SubscriptionNotFoundError,
    TransactionNotFoundError,
)
from settlement.models import Subscription, Transaction
from settlement.services import (
    AccountValidator,
    PaymentIntentService,
    RefundService,
    SubscriptionService,
)
from settlement.state_machines import SubscriptionStatus, TransactionStatus
from settlement.tests.factories import SubscriptionFactory, TransactionFactory


# =============================================================================
# AccountValidator
# =============================================================================


@pytest.mark.django_db
class TestAccountValidator:
    def test_ready_account(self, service_kwargs, payout_account, fake_gateway):
        account = AccountValidator(**service_kwargs).validate(payout_account.creator_id)

        assert account.pk == payout_account.pk
        fake_gateway.retrieve_account.assert_called_once_with(payout_account.stripe_account_id)

    def test_missing_local_account(self, service_kwargs, creator, fake_gateway):
        with pytest.raises(AccountNotFoundError):
            AccountValidator(**service_kwargs).validate(creator.pk)

        fake_gateway.retrieve_account.assert_not_called()

    def test_account_unknown_to_stripe(self, service_kwargs, payout_account, fake_gateway):
        fake_gateway.retrieve_account.side_effect = GatewayInvalidAccountError("No such account")

        with pytest.raises(AccountNotFoundError):
            AccountValidator(**service_kwargs).validate(payout_account.creator_id)

    def test_live_flags_win_over_stored_flags(self, service_kwargs, payout_account, fake_gateway):
        fake_gateway.retrieve_account.side_effect = None
        fake_gateway.retrieve_account.return_value = AccountResult(
            id=payout_account.stripe_account_id,
            charges_enabled=True,
            payouts_enabled=False,
        )

        with pytest.raises(AccountNotReadyError) as exc_info:
            AccountValidator(**service_kwargs).validate(payout_account.creator_id)

        assert exc_info.value.details["payouts_enabled"] is False

    def test_gateway_outage_propagates(self, service_kwargs, payout_account, fake_gateway):
        fake_gateway.retrieve_account.side_effect = GatewayUnavailableError("down")

        with pytest.raises(GatewayUnavailableError):
            AccountValidator(**service_kwargs).validate(payout_account.creator_id)


# =============================================================================
# PaymentIntentService
# =============================================================================


@pytest.mark.django_db
class TestPaymentIntentService:
    def test_creates_pending_transaction(self, service_kwargs, payout_account, fan, fake_gateway):
        pending = PaymentIntentService(**service_kwargs).create_payment(
            gross_amount_cents=10000,
            creator_id=payout_account.creator_id,
            payer=fan,
            metadata={"occasion": "birthday"},
        )

        txn = Transaction.objects.get(pk=pending.transaction.pk)
        assert txn.status == TransactionStatus.PENDING
        assert txn.stripe_payment_intent_id == "pi_created123"
        assert txn.gross_amount_cents == 10000
        assert txn.platform_fee_cents == 3000
        assert txn.creator_earnings_cents == 7000
        assert txn.metadata == {"occasion": "birthday"}
        assert pending.client_secret == "pi_created123_secret_abc"
        assert pending.payment_intent_id == "pi_created123"

    def test_gateway_receives_split_and_destination(
        self, service_kwargs, payout_account, fan, fake_gateway
    ):
        pending = PaymentIntentService(**service_kwargs).create_payment(
            gross_amount_cents=4999,
            creator_id=payout_account.creator_id,
            payer=fan,
        )

        params = fake_gateway.create_payment_intent.call_args.args[0]
        assert params.amount_cents == 4999
        assert params.application_fee_cents == 1500
        assert params.destination_account == payout_account.stripe_account_id
        assert params.idempotency_key.startswith("create_intent:")
        assert params.metadata["transaction_id"] == str(pending.transaction.pk)
        assert params.metadata["payer_id"] == str(fan.pk)

    @pytest.mark.parametrize("amount", [0, -500, 99])
    def test_rejects_small_amounts(self, service_kwargs, payout_account, fan, fake_gateway, amount):
        with pytest.raises(InvalidAmountError):
            PaymentIntentService(**service_kwargs).create_payment(
                gross_amount_cents=amount,
                creator_id=payout_account.creator_id,
                payer=fan,
            )

        fake_gateway.create_payment_intent.assert_not_called()
        assert Transaction.objects.count() == 0

    def test_below_minimum_error_code(self, service_kwargs, payout_account, fan):
        with pytest.raises(InvalidAmountError) as exc_info:
            PaymentIntentService(**service_kwargs).create_payment(
                gross_amount_cents=50,
                creator_id=payout_account.creator_id,
                payer=fan,
            )

        assert exc_info.value.error_code == "AMOUNT_BELOW_MINIMUM"

    def test_creator_not_ready(self, service_kwargs, payout_account, fan, fake_gateway):
        fake_gateway.retrieve_account.side_effect = lambda account_id: AccountResult(
            id=account_id, charges_enabled=False, payouts_enabled=False
        )

        with pytest.raises(AccountNotReadyError):
            PaymentIntentService(**service_kwargs).create_payment(
                gross_amount_cents=10000,
                creator_id=payout_account.creator_id,
                payer=fan,
            )

        fake_gateway.create_payment_intent.assert_not_called()
        assert Transaction.objects.count() == 0

    def test_gateway_failure_persists_nothing(
        self, service_kwargs, payout_account, fan, fake_gateway
    ):
        fake_gateway.create_payment_intent.side_effect = GatewayCardDeclinedError("declined")

        with pytest.raises(GatewayCardDeclinedError):
            PaymentIntentService(**service_kwargs).create_payment(
                gross_amount_cents=10000,
                creator_id=payout_account.creator_id,
                payer=fan,
            )

        assert Transaction.objects.count() == 0


# =============================================================================
# RefundService
# =============================================================================


@pytest.mark.django_db
class TestRefundService:
    def test_full_refund_with_reversal(
        self, service_kwargs, completed_transaction, fake_gateway, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            outcome = RefundService(**service_kwargs).refund(
                completed_transaction.stripe_payment_intent_id
            )

        assert outcome.status == TransactionStatus.REFUNDED
        assert outcome.amount_cents == 10000
        assert outcome.platform_fee_refunded_cents == 3000
        assert outcome.creator_earnings_reversed_cents == 7000
        assert outcome.remaining_cents == 0
        fake_gateway.create_refund.assert_called_once_with(
            payment_intent_id=completed_transaction.stripe_payment_intent_id,
            idempotency_key=ANY,
            amount_cents=10000,
            reason="requested_by_customer",
            reverse_transfer=True,
            metadata={"transaction_id": str(completed_transaction.pk)},
        )

        txn = Transaction.objects.get(pk=completed_transaction.pk)
        assert txn.status == TransactionStatus.REFUNDED
        assert txn.refund_amount_cents == 10000
        assert txn.platform_fee_refunded_cents == 3000

    def test_partial_refund_returns_proportional_fee(self, service_kwargs, completed_transaction):
        outcome = RefundService(**service_kwargs).refund(
            completed_transaction.stripe_payment_intent_id,
            amount_cents=4000,
        )

        assert outcome.status == TransactionStatus.PARTIALLY_REFUNDED
        assert outcome.platform_fee_refunded_cents == 1200
        assert outcome.creator_earnings_reversed_cents == 2800
        assert outcome.remaining_cents == 6000

    def test_partial_refunds_return_exact_fee_in_total(self, service_kwargs, creator, fan):
        # 0.30 * 3333 = 999.9 and 0.30 * 3334 = 1000.2; rounding must not leak
        txn = TransactionFactory(
            creator=creator,
            payer=fan,
            status=TransactionStatus.COMPLETED,
            gross_amount_cents=10001,
            platform_fee_cents=3000,
            creator_earnings_cents=7001,
        )
        service = RefundService(**service_kwargs)

        for amount in (3333, 3333, 3335):
            service.refund(txn.stripe_payment_intent_id, amount_cents=amount)

        txn = Transaction.objects.get(pk=txn.pk)
        assert txn.status == TransactionStatus.REFUNDED
        assert txn.refund_amount_cents == 10001
        assert txn.platform_fee_refunded_cents == 3000
        assert txn.net_creator_earnings_cents == 0

    def test_refund_without_reversal_keeps_split(self, service_kwargs, completed_transaction):
        outcome = RefundService(**service_kwargs).refund(
            completed_transaction.stripe_payment_intent_id,
            amount_cents=5000,
            reverse_transfer=False,
        )

        assert outcome.platform_fee_refunded_cents == 0
        assert outcome.creator_earnings_reversed_cents == 0
        txn = Transaction.objects.get(pk=completed_transaction.pk)
        assert txn.refund_amount_cents == 5000
        assert txn.net_creator_earnings_cents == 7000

    def test_refund_exceeding_balance(self, service_kwargs, completed_transaction, fake_gateway):
        service = RefundService(**service_kwargs)
        service.refund(completed_transaction.stripe_payment_intent_id, amount_cents=6000)

        with pytest.raises(RefundExceedsBalanceError) as exc_info:
            service.refund(completed_transaction.stripe_payment_intent_id, amount_cents=4001)

        assert exc_info.value.details["remaining_cents"] == 4000
        assert fake_gateway.create_refund.call_count == 1

    def test_refund_of_refunded_transaction(self, service_kwargs, completed_transaction):
        service = RefundService(**service_kwargs)
        service.refund(completed_transaction.stripe_payment_intent_id)

        with pytest.raises(InvalidStateTransitionError):
            service.refund(completed_transaction.stripe_payment_intent_id)

    def test_refund_of_pending_transaction(self, service_kwargs, pending_transaction, fake_gateway):
        with pytest.raises(InvalidStateTransitionError):
            RefundService(**service_kwargs).refund(pending_transaction.stripe_payment_intent_id)

        fake_gateway.create_refund.assert_not_called()

    def test_unknown_payment_intent(self, service_kwargs, db):
        with pytest.raises(TransactionNotFoundError):
            RefundService(**service_kwargs).refund("pi_unknown")

    @pytest.mark.parametrize("amount", [0, -100])
    def test_invalid_amount(self, service_kwargs, completed_transaction, amount):
        with pytest.raises(InvalidAmountError):
            RefundService(**service_kwargs).refund(
                completed_transaction.stripe_payment_intent_id,
                amount_cents=amount,
            )

    def test_invalid_reason(self, service_kwargs, completed_transaction):
        with pytest.raises(ValidationError) as exc_info:
            RefundService(**service_kwargs).refund(
                completed_transaction.stripe_payment_intent_id,
                reason="changed_my_mind",
            )

        assert exc_info.value.error_code == "INVALID_REFUND_REASON"

    def test_gateway_failure_records_nothing(
        self, service_kwargs, completed_transaction, fake_gateway
    ):
        fake_gateway.create_refund.side_effect = GatewayUnavailableError("down")

        with pytest.raises(GatewayUnavailableError):
            RefundService(**service_kwargs).refund(completed_transaction.stripe_payment_intent_id)

        txn = Transaction.objects.get(pk=completed_transaction.pk)
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.refund_amount_cents == 0

    def test_notifies_fan_and_creator_after_commit(
        self, service_kwargs, completed_transaction, fake_fanout, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            RefundService(**service_kwargs).refund(
                completed_transaction.stripe_payment_intent_id,
                amount_cents=2500,
            )

        fan_call = fake_fanout.notify_fan.call_args
        creator_call = fake_fanout.notify_creator.call_args
        assert fan_call.args == (completed_transaction.payer_id, NotificationEvents.ORDER_STATUS_UPDATE)
        assert fan_call.kwargs["title"] == "Payment partially refunded"
        assert fan_call.kwargs["data"]["remaining_cents"] == 7500
        assert creator_call.args[0] == completed_transaction.creator_id

    def test_no_notification_when_refund_fails(
        self, service_kwargs, completed_transaction, fake_gateway, fake_fanout,
        django_capture_on_commit_callbacks,
    ):
        fake_gateway.create_refund.side_effect = GatewayUnavailableError("down")

        with django_capture_on_commit_callbacks(execute=True), pytest.raises(GatewayUnavailableError):
            RefundService(**service_kwargs).refund(completed_transaction.stripe_payment_intent_id)

        fake_fanout.notify_fan.assert_not_called()

    def test_unrecorded_refund_raises_critical_alert(
        self, service_kwargs, completed_transaction, fake_fanout
    ):
        with (
            patch(
                "settlement.services.refund_service.apply_refund",
                side_effect=DatabaseError("disk full"),
            ),
            pytest.raises(DatabaseError),
        ):
            RefundService(**service_kwargs).refund(
                completed_transaction.stripe_payment_intent_id,
                amount_cents=4000,
            )

        fake_fanout.system_alert.assert_called_once_with(
            "refund_not_recorded",
            AlertSeverity.CRITICAL,
            ANY,
        )
        alert = fake_fanout.system_alert.call_args.args[2]
        assert alert["refund_id"] == "re_created123"
        assert alert["amount_cents"] == 4000
        assert alert["reverse_transfer"] is True
        assert Transaction.objects.get(pk=completed_transaction.pk).refund_amount_cents == 0


# =============================================================================
# SubscriptionService
# =============================================================================


@pytest.mark.django_db
class TestSubscriptionServiceSubscribe:
    def test_creates_incomplete_subscription(
        self, service_kwargs, payout_account, fan, fake_gateway
    ):
        signup = SubscriptionService(**service_kwargs).subscribe(
            creator_id=payout_account.creator_id,
            payer=fan,
            tier_name="  Gold ",
            amount_cents=999,
        )

        subscription = Subscription.objects.get(pk=signup.subscription.pk)
        assert subscription.status == SubscriptionStatus.INCOMPLETE
        assert subscription.stripe_subscription_id == "sub_created123"
        assert subscription.stripe_customer_id == "cus_created123"
        assert subscription.stripe_price_id == "price_created123"
        assert subscription.tier_name == "Gold"
        assert subscription.current_period_end is not None
        assert signup.client_secret == "pi_sub_secret_abc"

        params = fake_gateway.create_subscription.call_args.args[0]
        assert params.application_fee_percent == 30
        assert params.destination_account == payout_account.stripe_account_id
        assert params.metadata["subscription_ref"] == str(subscription.pk)

    def test_reuses_existing_customer(self, service_kwargs, payout_account, fan, fake_gateway):
        SubscriptionFactory(payer=fan, stripe_customer_id="cus_existing")

        SubscriptionService(**service_kwargs).subscribe(
            creator_id=payout_account.creator_id,
            payer=fan,
            tier_name="Silver",
            amount_cents=499,
        )

        fake_gateway.create_customer.assert_not_called()
        assert fake_gateway.create_subscription.call_args.args[0].customer_id == "cus_existing"

    def test_invalid_interval(self, service_kwargs, payout_account, fan):
        with pytest.raises(ValidationError) as exc_info:
            SubscriptionService(**service_kwargs).subscribe(
                creator_id=payout_account.creator_id,
                payer=fan,
                tier_name="Gold",
                amount_cents=999,
                interval="fortnight",
            )

        assert exc_info.value.error_code == "INVALID_INTERVAL"

    def test_blank_tier_name(self, service_kwargs, payout_account, fan):
        with pytest.raises(ValidationError):
            SubscriptionService(**service_kwargs).subscribe(
                creator_id=payout_account.creator_id,
                payer=fan,
                tier_name="   ",
                amount_cents=999,
            )

    def test_amount_below_minimum(self, service_kwargs, payout_account, fan, fake_gateway):
        with pytest.raises(InvalidAmountError):
            SubscriptionService(**service_kwargs).subscribe(
                creator_id=payout_account.creator_id,
                payer=fan,
                tier_name="Gold",
                amount_cents=10,
            )

        fake_gateway.create_product.assert_not_called()

    def test_creator_without_account(self, service_kwargs, creator, fan):
        with pytest.raises(AccountNotFoundError):
            SubscriptionService(**service_kwargs).subscribe(
                creator_id=creator.pk,
                payer=fan,
                tier_name="Gold",
                amount_cents=999,
            )

        assert Subscription.objects.count() == 0


@pytest.mark.django_db
class TestSubscriptionServiceCancel:
    def test_cancel_by_stripe_id(
        self, service_kwargs, fake_gateway, fake_fanout, django_capture_on_commit_callbacks
    ):
        subscription = SubscriptionFactory()

        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriptionService(**service_kwargs).cancel(
                subscription.stripe_subscription_id,
                prorate=True,
            )

        assert result.status == SubscriptionStatus.CANCELED
        fake_gateway.cancel_subscription.assert_called_once_with(
            subscription.stripe_subscription_id,
            prorate=True,
        )
        assert Subscription.objects.get(pk=subscription.pk).canceled_at is not None
        assert fake_fanout.notify_creator.call_args.args == (
            subscription.creator_id,
            NotificationEvents.SUBSCRIPTION_CANCELED,
        )

    def test_cancel_by_local_id(self, service_kwargs):
        subscription = SubscriptionFactory(status=SubscriptionStatus.PAST_DUE)

        result = SubscriptionService(**service_kwargs).cancel(subscription.pk)

        assert result.status == SubscriptionStatus.CANCELED

    def test_cancel_twice_is_noop(self, service_kwargs, fake_gateway):
        subscription = SubscriptionFactory(status=SubscriptionStatus.CANCELED)

        result = SubscriptionService(**service_kwargs).cancel(subscription.pk)

        assert result.status == SubscriptionStatus.CANCELED
        fake_gateway.cancel_subscription.assert_not_called()

    def test_cancel_expired(self, service_kwargs):
        subscription = SubscriptionFactory(status=SubscriptionStatus.EXPIRED)

        with pytest.raises(InvalidStateTransitionError):
            SubscriptionService(**service_kwargs).cancel(subscription.pk)

    def test_unknown_subscription(self, service_kwargs, db):
        with pytest.raises(SubscriptionNotFoundError):
            SubscriptionService(**service_kwargs).cancel("sub_missing")

    def test_gateway_failure_leaves_subscription_active(self, service_kwargs, fake_gateway):
        subscription = SubscriptionFactory()
        fake_gateway.cancel_subscription.side_effect = GatewayUnavailableError("down")

        with pytest.raises(GatewayUnavailableError):
            SubscriptionService(**service_kwargs).cancel(subscription.pk)

        assert Subscription.objects.get(pk=subscription.pk).status == SubscriptionStatus.ACTIVE
