"""
Settlement models.

Models:
    CreatorPayoutAccount: Creator's Stripe Connect destination
    Transaction: Ledger row for one fan payment and its split
    Order: Fulfilment record for a completed video payment
    Subscription: Recurring creator subscription
    WebhookProcessingRecord: Applied Stripe event ids
"""

from settlement.models.payout_account import CreatorPayoutAccount
from settlement.models.subscription import Subscription
from settlement.models.transaction import Order, Transaction
from settlement.models.webhook_record import WebhookProcessingRecord

__all__ = [
    "CreatorPayoutAccount",
    "Order",
    "Subscription",
    "Transaction",
    "WebhookProcessingRecord",
]
