"""
Settlement services.

Services:
    AccountValidator: Live readiness check of a creator's payout account
    PaymentIntentService: Destination-charge payment intents
    RefundService: Refunds with fee reversal
    SubscriptionService: Creator subscriptions
    EarningsService: Earnings aggregation
"""

from settlement.services.account_validator import AccountValidator
from settlement.services.earnings_service import (
    DailyEarnings,
    EarningsReport,
    EarningsService,
)
from settlement.services.payment_intent_service import PaymentIntentService, PendingPayment
from settlement.services.refund_service import RefundOutcome, RefundService
from settlement.services.subscription_service import SubscriptionService, SubscriptionSignup

__all__ = [
    "AccountValidator",
    "DailyEarnings",
    "EarningsReport",
    "EarningsService",
    "PaymentIntentService",
    "PendingPayment",
    "RefundOutcome",
    "RefundService",
    "SubscriptionService",
    "SubscriptionSignup",
]
