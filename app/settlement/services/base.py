"""
Shared plumbing for settlement services.

Every settlement service is an instance built from an explicit
SettlementConfig, a gateway adapter and a notification fan-out. Defaults
come from Django settings; tests pass doubles instead.
"""

from __future__ import annotations

from core.services import BaseService
from notifications.services import NotificationFanout

from settlement.adapters import StripeAdapter
from settlement.config import SettlementConfig
from settlement.exceptions import InvalidAmountError


class SettlementService(BaseService):
    """
    Base class for settlement services.

    Attributes:
        config: SettlementConfig in effect
        gateway: StripeAdapter (or a test double)
        fanout: NotificationFanout (or a test double)
    """

    def __init__(
        self,
        config: SettlementConfig | None = None,
        gateway: StripeAdapter | None = None,
        fanout: NotificationFanout | None = None,
    ):
        self.config = config or SettlementConfig.from_settings()
        self.gateway = gateway or StripeAdapter(self.config)
        self.fanout = fanout or NotificationFanout(naming=self.config.channels)


def require_chargeable_amount(amount_cents: int, config: SettlementConfig) -> None:
    """
    Reject amounts that cannot be charged.

    Raises:
        InvalidAmountError: Not a positive integer, or below the minimum
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidAmountError(
            "Amount must be a positive integer number of cents",
            details={"amount_cents": repr(amount_cents)},
        )
    if amount_cents < config.minimum_amount_cents:
        raise InvalidAmountError(
            f"Amount must be at least {config.minimum_amount_cents} cents",
            error_code="AMOUNT_BELOW_MINIMUM",
            details={
                "amount_cents": amount_cents,
                "minimum_amount_cents": config.minimum_amount_cents,
            },
        )


def stringify_metadata(metadata: dict | None) -> dict[str, str]:
    """Stripe metadata values must be strings."""
    return {str(key): str(value) for key, value in (metadata or {}).items()}
