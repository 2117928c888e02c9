"""
URL configuration for the settlement app.

Routes:
    - POST /payment-intents/ - Create a payment intent
    - POST /refunds/ - Refund a payment
    - POST /subscriptions/ - Subscribe to a creator
    - POST /subscriptions/cancel/ - Cancel a subscription
    - GET /creators/<creator_id>/earnings/ - Creator earnings
    - POST /webhooks/stripe/ - Stripe webhook endpoint

All routes are prefixed with /api/v1/settlement/ when included in the main URLconf.
"""

from django.urls import path

from settlement.views import (
    CreatorEarningsView,
    PaymentIntentCreateView,
    RefundCreateView,
    SubscriptionCancelView,
    SubscriptionCreateView,
)
from settlement.webhooks.views import stripe_webhook

app_name = "settlement"

urlpatterns = [
    path("payment-intents/", PaymentIntentCreateView.as_view(), name="payment_intent_create"),
    path("refunds/", RefundCreateView.as_view(), name="refund_create"),
    path("subscriptions/", SubscriptionCreateView.as_view(), name="subscription_create"),
    path("subscriptions/cancel/", SubscriptionCancelView.as_view(), name="subscription_cancel"),
    path(
        "creators/<int:creator_id>/earnings/",
        CreatorEarningsView.as_view(),
        name="creator_earnings",
    ),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
