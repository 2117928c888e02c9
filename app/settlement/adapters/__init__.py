"""
Payment gateway adapters.
"""

from settlement.adapters.stripe_adapter import (
    AccountResult,
    CreatePaymentIntentParams,
    CreateSubscriptionParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
    SubscriptionResult,
    is_retryable_gateway_error,
)

__all__ = [
    "AccountResult",
    "CreatePaymentIntentParams",
    "CreateSubscriptionParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "RefundResult",
    "StripeAdapter",
    "SubscriptionResult",
    "is_retryable_gateway_error",
]
