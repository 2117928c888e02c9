"""
Pytest fixtures for webhook tests.

Sections:
    - Processor Fixtures
    - Ledger Fixtures
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from settlement.config import SettlementConfig
from settlement.fees import FeeCalculator
from settlement.state_machines import SubscriptionStatus, TransactionStatus
from settlement.tests.factories import SubscriptionFactory, TransactionFactory, UserFactory
from settlement.webhooks.handlers import HandlerContext
from settlement.webhooks.processor import WebhookProcessor
from settlement.webhooks.tests.factories import WEBHOOK_SECRET


# =============================================================================
# Processor Fixtures
# =============================================================================


@pytest.fixture
def webhook_config():
    return SettlementConfig(
        stripe_secret_key="sk_test_settlement",
        stripe_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def fake_fanout():
    return MagicMock(name="NotificationFanout")


@pytest.fixture
def handler_context(webhook_config, fake_fanout):
    return HandlerContext(
        config=webhook_config,
        fees=FeeCalculator(Decimal("0.30")),
        fanout=fake_fanout,
    )


@pytest.fixture
def processor(webhook_config, fake_fanout):
    return WebhookProcessor(config=webhook_config, gateway=MagicMock(), fanout=fake_fanout)


# =============================================================================
# Ledger Fixtures
# =============================================================================


@pytest.fixture
def creator(db):
    return UserFactory()


@pytest.fixture
def fan(db):
    return UserFactory()


@pytest.fixture
def pending_transaction(creator, fan):
    return TransactionFactory(
        creator=creator,
        payer=fan,
        metadata={"occasion": "birthday"},
    )


@pytest.fixture
def completed_transaction(creator, fan):
    return TransactionFactory(creator=creator, payer=fan, status=TransactionStatus.COMPLETED)


@pytest.fixture
def active_subscription(creator, fan):
    return SubscriptionFactory(creator=creator, payer=fan, status=SubscriptionStatus.ACTIVE)


@pytest.fixture
def incomplete_subscription(creator, fan):
    return SubscriptionFactory(creator=creator, payer=fan, status=SubscriptionStatus.INCOMPLETE)

