"""
Settlement app for creator marketplace payments.

This app handles:
- Fee calculation (platform fee vs creator earnings)
- Payment intents with destination transfers to creator accounts
- Stripe webhook processing with exactly-once application
- Refunds, including reversal of the creator transfer and platform fee
- Creator subscriptions billed through Stripe Billing
- Earnings aggregation for creators

Related apps:
    - core: ServiceResult, BaseService, exception hierarchy
    - notifications: Real-time fan-out of settlement events

Usage:
    from settlement.services import PaymentIntentService, RefundService

    pending = PaymentIntentService().create_payment(
        gross_amount_cents=10000,
        creator_id=creator.id,
        payer=request.user,
        metadata={"occasion": "birthday"},
    )
    pending.client_secret  # handed to Stripe.js

    RefundService().refund("pi_123", amount_cents=4000, reverse_transfer=True)
"""
