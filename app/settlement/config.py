"""
Explicit configuration for the settlement pipeline.

Services receive a SettlementConfig instead of reading settings or
mutating stripe.api_key at import time. Settings themselves are populated
from the environment by django-environ (see config/settings.py).

Usage:
    from settlement.config import SettlementConfig

    config = SettlementConfig.from_settings()
    config.fee_rate            # Decimal("0.3")

    # Tests build one directly
    config = SettlementConfig(stripe_secret_key="sk_test", platform_fee_percent=20)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings

from notifications.channels import ChannelNaming


@dataclass(frozen=True)
class SettlementConfig:
    """
    Immutable settlement settings.

    Attributes:
        stripe_secret_key: Platform secret key, passed per Stripe request
        stripe_webhook_secret: Endpoint secret for signature verification
        stripe_api_timeout_seconds: HTTP timeout for Stripe calls
        stripe_max_network_retries: SDK-level retries for network failures
        platform_fee_percent: Platform share of every gross amount
        minimum_amount_cents: Smallest chargeable amount
        currency: ISO 4217 code (lowercase) for new charges
        channels: Notification channel naming
        past_due_after_failures: Failed invoices before a subscription is past due
        expire_after_failures: Failed invoices before a subscription expires
        webhook_retention_days: How long processed-event records are kept
    """

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_timeout_seconds: int = 10
    stripe_max_network_retries: int = 2
    platform_fee_percent: int = 30
    minimum_amount_cents: int = 100
    currency: str = "usd"
    channels: ChannelNaming = field(default_factory=ChannelNaming)
    past_due_after_failures: int = 3
    expire_after_failures: int = 4
    webhook_retention_days: int = 90

    def __post_init__(self) -> None:
        """Reject configurations that would break the money invariants."""
        if not 0 <= self.platform_fee_percent <= 100:
            raise ValueError(
                f"platform_fee_percent must be between 0 and 100, got {self.platform_fee_percent}"
            )
        if self.minimum_amount_cents <= 0:
            raise ValueError("minimum_amount_cents must be positive")
        if self.past_due_after_failures > self.expire_after_failures:
            raise ValueError("past_due_after_failures must not exceed expire_after_failures")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency!r}")

    @classmethod
    def from_settings(cls) -> SettlementConfig:
        """Build the config from Django settings."""
        return cls(
            stripe_secret_key=getattr(settings, "STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=getattr(settings, "STRIPE_WEBHOOK_SECRET", ""),
            stripe_api_timeout_seconds=getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10),
            stripe_max_network_retries=getattr(settings, "STRIPE_MAX_RETRIES", 2),
            platform_fee_percent=getattr(settings, "PLATFORM_FEE_PERCENT", 30),
            minimum_amount_cents=getattr(settings, "SETTLEMENT_MINIMUM_AMOUNT_CENTS", 100),
            currency=getattr(settings, "SETTLEMENT_CURRENCY", "usd").lower(),
            channels=ChannelNaming.from_settings(),
            past_due_after_failures=getattr(settings, "SUBSCRIPTION_PAST_DUE_AFTER_FAILURES", 3),
            expire_after_failures=getattr(settings, "SUBSCRIPTION_EXPIRE_AFTER_FAILURES", 4),
            webhook_retention_days=getattr(settings, "WEBHOOK_RECORD_RETENTION_DAYS", 90),
        )

    @property
    def fee_rate(self) -> Decimal:
        """Platform fee as a fraction (30 -> Decimal("0.3"))."""
        return Decimal(self.platform_fee_percent) / 100
