"""
Creator payout account validation.

Checks, immediately before money is requested, that a creator has a
connected account and that Stripe currently allows it to take charges and
receive payouts. Nothing is cached: the flags can change at any time on
Stripe's side (verification requests, disabled payouts).

Usage:
    from settlement.services import AccountValidator

    account = AccountValidator().validate(creator_id)
    account.stripe_account_id  # destination for the transfer
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from settlement.exceptions import (
    AccountNotFoundError,
    AccountNotReadyError,
    GatewayInvalidAccountError,
)
from settlement.models import CreatorPayoutAccount
from settlement.services.base import SettlementService

if TYPE_CHECKING:
    from typing import Any


class AccountValidator(SettlementService):
    """Validates creator payout accounts against live Stripe state."""

    def validate(self, creator_id: Any) -> CreatorPayoutAccount:
        """
        Load the creator's payout account and confirm it is ready.

        The returned instance carries the live flags but is not saved.

        Raises:
            AccountNotFoundError: No local row, or Stripe does not know the account
            AccountNotReadyError: Charges or payouts are disabled
            GatewayError: Stripe unreachable
        """
        logger = self.get_logger()

        account = CreatorPayoutAccount.objects.filter(creator_id=creator_id).first()
        if account is None:
            raise AccountNotFoundError(
                "Creator has no payout account",
                details={"creator_id": str(creator_id)},
            )

        try:
            live = self.gateway.retrieve_account(account.stripe_account_id)
        except GatewayInvalidAccountError as e:
            logger.warning(
                "Payout account unknown to Stripe",
                extra={"creator_id": str(creator_id), "account_id": account.stripe_account_id},
            )
            raise AccountNotFoundError(
                "Creator payout account not found at the payment gateway",
                details={"creator_id": str(creator_id)},
            ) from e

        account.charges_enabled = live.charges_enabled
        account.payouts_enabled = live.payouts_enabled

        if not account.is_ready:
            logger.info(
                "Payout account not ready",
                extra={
                    "creator_id": str(creator_id),
                    "charges_enabled": live.charges_enabled,
                    "payouts_enabled": live.payouts_enabled,
                },
            )
            raise AccountNotReadyError(
                "Creator account cannot receive payments yet",
                details={
                    "creator_id": str(creator_id),
                    "charges_enabled": live.charges_enabled,
                    "payouts_enabled": live.payouts_enabled,
                },
            )

        return account
