"""
Pytest fixtures for Stripe adapter tests.

Sections:
    - Adapter Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
"""

import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass
from typing import Any
from unittest.mock import MagicMock

import pytest
import stripe

from settlement.adapters import StripeAdapter
from settlement.config import SettlementConfig

WEBHOOK_SECRET = "whsec_adapter_test"


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def adapter_config():
    return SettlementConfig(
        stripe_secret_key="sk_test_adapter",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_api_timeout_seconds=5,
        stripe_max_network_retries=1,
    )


@pytest.fixture
def stripe_client():
    """Mock StripeClient; calls are made through stripe_client.v1.<resource>."""
    return MagicMock()


@pytest.fixture
def adapter(adapter_config, stripe_client):
    return StripeAdapter(adapter_config, client=stripe_client)


@pytest.fixture
def idempotency_key():
    """Generate an idempotency key for testing."""
    return f"test-{uuid.uuid4()}"


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header for a payload."""

    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        timestamp = timestamp or int(time.time())
        signed = f"{timestamp}.{payload}".encode()
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    """Create a mock destination-charge PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_payment_method",
        amount: int = 10000,
        currency: str = "usd",
        client_secret: str = "pi_test123456_secret_abc123",
        application_fee_amount: int = 3000,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "client_secret": client_secret,
                "application_fee_amount": application_fee_amount,
                "transfer_data": {"destination": "acct_creator123"},
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 4000,
        currency: str = "usd",
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_intent": payment_intent,
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_account():
    """Create a mock connected Account response."""

    def _create(
        id: str = "acct_creator123",
        charges_enabled: bool = True,
        payouts_enabled: bool = True,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "account",
                "charges_enabled": charges_enabled,
                "payouts_enabled": payouts_enabled,
            }
        )

    return _create


@pytest.fixture
def mock_subscription():
    """Create a mock Subscription response with an expanded first invoice."""

    def _create(
        id: str = "sub_test123456",
        status: str = "incomplete",
        customer: str = "cus_test123",
        client_secret: str | None = "pi_sub_secret_123",
        period_on_items: bool = False,
        cancel_at_period_end: bool = False,
    ) -> MockStripeObject:
        period = {"current_period_start": 1700000000, "current_period_end": 1702592000}
        data = {
            "id": id,
            "object": "subscription",
            "status": status,
            "customer": customer,
            "cancel_at_period_end": cancel_at_period_end,
            "latest_invoice": {
                "id": "in_test123",
                "payment_intent": {"id": "pi_sub_123", "client_secret": client_secret},
            },
        }
        if period_on_items:
            data["items"] = {"data": [{"id": "si_123", **period}]}
        else:
            data.update(period)
        return MockStripeObject(data)

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "Invalid request",
        param: str | None = None,
        code: str | None = None,
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests")


@pytest.fixture
def api_connection_error():
    """Create a Stripe APIConnectionError."""

    def _create(message: str = "Could not connect to Stripe") -> stripe.APIConnectionError:
        return stripe.APIConnectionError(message=message)

    return _create


@pytest.fixture
def api_error():
    return stripe.APIError(message="Internal server error")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided")
