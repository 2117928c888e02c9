"""
Settlement app configuration.

This app provides the marketplace payment settlement pipeline:
- Platform/creator fee split
- Stripe destination-charge payment intents
- Webhook-driven ledger state machine
- Refunds with application-fee reversal
- Creator subscriptions
- Earnings reporting
"""

from django.apps import AppConfig


class SettlementConfig(AppConfig):
    """Configuration for the settlement application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlement"
    verbose_name = "Settlement"
