"""
Pytest fixtures for settlement tests.

Services are built with an explicit SettlementConfig, a MagicMock gateway
standing in for StripeAdapter and a MagicMock notification fan-out, so no
test talks to Stripe or a channel layer.

Usage:
    def test_refund(refund_service, completed_transaction, fake_gateway):
        refund_service.refund(completed_transaction.stripe_payment_intent_id)
        fake_gateway.create_refund.assert_called_once()
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from settlement.adapters import (
    AccountResult,
    PaymentIntentResult,
    RefundResult,
    SubscriptionResult,
)
from settlement.config import SettlementConfig
from settlement.state_machines import TransactionStatus
from settlement.tests.factories import (
    CreatorPayoutAccountFactory,
    TransactionFactory,
    UserFactory,
)


# =============================================================================
# Configuration and Doubles
# =============================================================================


@pytest.fixture
def settlement_config():
    return SettlementConfig(
        stripe_secret_key="sk_test_settlement",
        stripe_webhook_secret="whsec_test_settlement",
        platform_fee_percent=30,
        minimum_amount_cents=100,
    )


@pytest.fixture
def fake_gateway():
    """MagicMock gateway returning well-formed adapter results."""
    gateway = MagicMock(name="StripeAdapter")

    gateway.retrieve_account.side_effect = lambda account_id: AccountResult(
        id=account_id,
        charges_enabled=True,
        payouts_enabled=True,
    )
    gateway.create_payment_intent.side_effect = lambda params: PaymentIntentResult(
        id="pi_created123",
        status="requires_payment_method",
        amount_cents=params.amount_cents,
        currency=params.currency,
        client_secret="pi_created123_secret_abc",
        application_fee_cents=params.application_fee_cents,
        metadata=params.metadata,
    )

    def _refund(payment_intent_id, idempotency_key, amount_cents=None, **kwargs):
        return RefundResult(
            id="re_created123",
            amount_cents=amount_cents,
            currency="usd",
            status="succeeded",
            payment_intent_id=payment_intent_id,
        )

    gateway.create_refund.side_effect = _refund
    gateway.create_customer.return_value = "cus_created123"
    gateway.create_product.return_value = "prod_created123"
    gateway.create_price.return_value = "price_created123"
    gateway.create_subscription.return_value = SubscriptionResult(
        id="sub_created123",
        status="incomplete",
        customer_id="cus_created123",
        client_secret="pi_sub_secret_abc",
        current_period_start=datetime(2026, 1, 1, tzinfo=UTC),
        current_period_end=datetime(2026, 2, 1, tzinfo=UTC),
    )
    gateway.cancel_subscription.side_effect = lambda subscription_id, prorate=False: (
        SubscriptionResult(id=subscription_id, status="canceled", customer_id="cus_created123")
    )
    return gateway


@pytest.fixture
def fake_fanout():
    return MagicMock(name="NotificationFanout")


@pytest.fixture
def service_kwargs(settlement_config, fake_gateway, fake_fanout):
    """Constructor arguments shared by every settlement service."""
    return {"config": settlement_config, "gateway": fake_gateway, "fanout": fake_fanout}


# =============================================================================
# Party Fixtures
# =============================================================================


@pytest.fixture
def creator(db):
    return UserFactory()


@pytest.fixture
def fan(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return UserFactory(is_staff=True)


@pytest.fixture
def payout_account(creator):
    """Creator payout account that is ready for destination charges."""
    return CreatorPayoutAccountFactory(creator=creator)


# =============================================================================
# Transaction Fixtures
# =============================================================================


@pytest.fixture
def pending_transaction(creator, fan):
    return TransactionFactory(creator=creator, payer=fan)


@pytest.fixture
def completed_transaction(creator, fan):
    """Completed 100.00 payment split 30.00 / 70.00."""
    return TransactionFactory(
        creator=creator,
        payer=fan,
        status=TransactionStatus.COMPLETED,
    )
