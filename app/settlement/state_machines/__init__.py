"""
State machine enums for settlement models.
"""

from settlement.state_machines.states import (
    BillingInterval,
    InvoicePaymentStatus,
    OrderStatus,
    RefundReason,
    SubscriptionStatus,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "BillingInterval",
    "InvoicePaymentStatus",
    "OrderStatus",
    "RefundReason",
    "SubscriptionStatus",
    "TransactionStatus",
    "TransactionType",
]
