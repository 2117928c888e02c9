"""
Platform fee calculation.

All amounts are integer cents. The platform fee is rounded half-up to the
nearest cent and the creator's earnings are the remainder, so
fee + earnings == gross holds exactly for every amount.

Usage:
    from settlement.fees import FeeCalculator

    calculator = FeeCalculator(Decimal("0.30"))
    split = calculator.split(10000)
    split.platform_fee_cents      # 3000
    split.creator_earnings_cents  # 7000

    calculator.fee_share(4000)    # 1200, fee portion of a refund
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from settlement.exceptions import InvalidAmountError

if TYPE_CHECKING:
    from settlement.config import SettlementConfig


@dataclass(frozen=True)
class FeeSplit:
    """Result of splitting a gross amount between platform and creator."""

    gross_amount_cents: int
    platform_fee_cents: int
    creator_earnings_cents: int


class FeeCalculator:
    """
    Splits gross amounts using a fixed platform fee rate.

    Pure: no I/O and no state beyond the rate.
    """

    def __init__(self, fee_rate: Decimal):
        if not Decimal(0) <= fee_rate <= Decimal(1):
            raise ValueError(f"Fee rate must be between 0 and 1, got {fee_rate}")
        self.fee_rate = fee_rate

    @classmethod
    def from_config(cls, config: SettlementConfig) -> FeeCalculator:
        return cls(config.fee_rate)

    def split(self, gross_amount_cents: int) -> FeeSplit:
        """
        Split a gross amount into platform fee and creator earnings.

        Raises:
            InvalidAmountError: Amount is not a positive integer
        """
        _require_positive_cents(gross_amount_cents, "gross_amount_cents")
        fee = self._round_fee(gross_amount_cents)
        return FeeSplit(
            gross_amount_cents=gross_amount_cents,
            platform_fee_cents=fee,
            creator_earnings_cents=gross_amount_cents - fee,
        )

    def fee_share(self, amount_cents: int) -> int:
        """
        Platform fee portion of an amount (used for refund reversals).

        Raises:
            InvalidAmountError: Amount is not a positive integer
        """
        _require_positive_cents(amount_cents, "amount_cents")
        return self._round_fee(amount_cents)

    def _round_fee(self, amount_cents: int) -> int:
        return int((Decimal(amount_cents) * self.fee_rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _require_positive_cents(value: int, name: str) -> None:
    # bool is an int subclass; True must not be read as one cent
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmountError(
            f"{name} must be a positive integer number of cents",
            details={name: repr(value)},
        )
