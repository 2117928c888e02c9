"""
CreatorPayoutAccount model for Stripe Connect destinations.

Maps a creator to the Stripe connected account that receives the creator's
share of every payment. Onboarding happens elsewhere; settlement only reads
these rows and re-checks the live account state with Stripe before every
charge (see settlement.services.account_validator).

Usage:
    from settlement.models import CreatorPayoutAccount

    account = CreatorPayoutAccount.objects.get(creator_id=creator_id)
    account.stripe_account_id   # "acct_..."
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class CreatorPayoutAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    A creator's Stripe connected account.

    Fields:
        creator: OneToOne link to the creator user
        stripe_account_id: Unique Stripe Account ID (acct_xxx)
        charges_enabled: Last known Stripe flag, refreshed on validation
        payouts_enabled: Last known Stripe flag, refreshed on validation

    Properties:
        is_ready: True if the account can take destination charges

    Note:
        The flags stored here are informational. Eligibility decisions use
        the live values fetched from Stripe.
    """

    creator = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_account",
        help_text="Creator receiving payouts through this account",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Connect Account ID (acct_xxx)",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Creator Payout Account"
        verbose_name_plural = "Creator Payout Accounts"

    def __str__(self) -> str:
        status = "ready" if self.is_ready else "not ready"
        return f"CreatorPayoutAccount({self.stripe_account_id}, {status})"

    @property
    def is_ready(self) -> bool:
        """Both charges and payouts are enabled."""
        return self.charges_enabled and self.payouts_enabled
