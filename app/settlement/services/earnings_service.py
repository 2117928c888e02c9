"""
Earnings read model for creators.

Aggregates completed Transactions over an inclusive date range. Pending,
failed and refunded payments are excluded. Read-only: nothing here writes.

Usage:
    from settlement.services import EarningsService

    report = EarningsService().report(creator.id, date(2026, 1, 1), date(2026, 1, 31))
    report.net_earnings_cents

    days = EarningsService().daily_breakdown(creator.id, start, end)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING

from django.db.models import BigIntegerField, Count, Sum, Value
from django.db.models.functions import Coalesce, TruncDate

from core.exceptions import ValidationError
from core.services import BaseService

from settlement.models import Transaction
from settlement.state_machines import TransactionStatus

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import QuerySet


@dataclass(frozen=True)
class EarningsReport:
    """Totals over a date range, all in cents."""

    creator_id: str
    start_date: date
    end_date: date
    total_revenue_cents: int
    platform_fees_cents: int
    net_earnings_cents: int
    transaction_count: int


@dataclass(frozen=True)
class DailyEarnings:
    """Totals for one calendar day, all in cents."""

    date: date
    total_revenue_cents: int
    platform_fees_cents: int
    net_earnings_cents: int
    transaction_count: int


def _sum(field_name: str) -> Coalesce:
    return Coalesce(Sum(field_name), Value(0), output_field=BigIntegerField())


MAX_BREAKDOWN_DAYS = 366


TOTALS = {
    "total_revenue_cents": _sum("gross_amount_cents"),
    "platform_fees_cents": _sum("platform_fee_cents"),
    "net_earnings_cents": _sum("creator_earnings_cents"),
    "transaction_count": Count("id"),
}


class EarningsService(BaseService):
    """Aggregates completed transactions for a creator."""

    def report(self, creator_id: Any, start_date: date, end_date: date) -> EarningsReport:
        """
        Totals for completed transactions created within [start_date, end_date].

        Raises:
            ValidationError: start_date after end_date
        """
        _validate_range(start_date, end_date)

        totals = _completed(creator_id, start_date, end_date).aggregate(**TOTALS)

        return EarningsReport(
            creator_id=str(creator_id),
            start_date=start_date,
            end_date=end_date,
            **totals,
        )

    def daily_breakdown(
        self,
        creator_id: Any,
        start_date: date,
        end_date: date,
    ) -> list[DailyEarnings]:
        """
        One entry per calendar day in the range, zero-filled.

        Raises:
            ValidationError: start_date after end_date, or a range longer
                than MAX_BREAKDOWN_DAYS
        """
        _validate_range(start_date, end_date)
        days = (end_date - start_date).days + 1
        if days > MAX_BREAKDOWN_DAYS:
            raise ValidationError(
                f"Daily breakdown is limited to {MAX_BREAKDOWN_DAYS} days",
                error_code="DATE_RANGE_TOO_LONG",
                details={"days": days, "max_days": MAX_BREAKDOWN_DAYS},
            )

        rows = (
            _completed(creator_id, start_date, end_date)
            .annotate(day=TruncDate("created_at"))
            .values("day")
            .annotate(**TOTALS)
            .order_by("day")
        )
        by_day = {row["day"]: row for row in rows}

        breakdown = []
        day = start_date
        while day <= end_date:
            row = by_day.get(day, {})
            breakdown.append(
                DailyEarnings(
                    date=day,
                    total_revenue_cents=row.get("total_revenue_cents", 0),
                    platform_fees_cents=row.get("platform_fees_cents", 0),
                    net_earnings_cents=row.get("net_earnings_cents", 0),
                    transaction_count=row.get("transaction_count", 0),
                )
            )
            day += timedelta(days=1)
        return breakdown


def _completed(creator_id: Any, start_date: date, end_date: date) -> QuerySet[Transaction]:
    return Transaction.objects.filter(
        creator_id=creator_id,
        status=TransactionStatus.COMPLETED,
        created_at__date__gte=start_date,
        created_at__date__lte=end_date,
    )


def _validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValidationError(
            "start_date must not be after end_date",
            error_code="INVALID_DATE_RANGE",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
