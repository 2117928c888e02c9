"""
Webhook handling for payment events from Stripe.

Events are verified, deduplicated by event id and applied synchronously
inside one database transaction per event.

Usage:
    # In urls.py
    from settlement.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from settlement.webhooks.events import GatewayEvent, WebhookEventType
from settlement.webhooks.handlers import WEBHOOK_HANDLERS, dispatch, register_handler
from settlement.webhooks.processor import ProcessedEvent, WebhookProcessor
from settlement.webhooks.views import stripe_webhook

__all__ = [
    "GatewayEvent",
    "ProcessedEvent",
    "WEBHOOK_HANDLERS",
    "WebhookEventType",
    "WebhookProcessor",
    "dispatch",
    "register_handler",
    "stripe_webhook",
]
