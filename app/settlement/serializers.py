"""
Serializers for the settlement API.

Amounts travel as decimals in currency units ("49.99") and are converted
to integer cents here, so services only ever see cents.

Provides:
- PaymentIntentCreateSerializer / PaymentIntentResponseSerializer
- RefundCreateSerializer / RefundResponseSerializer
- SubscriptionCreateSerializer / SubscriptionResponseSerializer
- SubscriptionCancelSerializer / SubscriptionCancelResponseSerializer
- EarningsQuerySerializer / EarningsResponseSerializer
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from rest_framework import serializers

from settlement.state_machines import BillingInterval, RefundReason

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer cents."""
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def from_cents(amount_cents: int) -> str:
    """Render integer cents as a two-place decimal string."""
    return str((Decimal(amount_cents) / 100).quantize(CENT))


class AmountField(serializers.DecimalField):
    """Positive currency amount, validated_data holds cents."""

    def __init__(self, **kwargs):
        kwargs.setdefault("max_digits", 12)
        kwargs.setdefault("decimal_places", 2)
        kwargs.setdefault("min_value", CENT)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        return to_cents(super().to_internal_value(data))


# =============================================================================
# Payment Intents
# =============================================================================


class PaymentIntentCreateSerializer(serializers.Serializer):
    """Request body for POST payment-intents/."""

    creatorId = serializers.IntegerField(source="creator_id", help_text="Creator user ID")
    payerId = serializers.IntegerField(
        source="payer_id",
        required=False,
        help_text="Paying user ID (defaults to the caller, staff only otherwise)",
    )
    amount = AmountField(source="amount_cents", help_text="Gross amount, e.g. 49.99")
    metadata = serializers.DictField(
        child=serializers.CharField(allow_blank=True),
        default=dict,
        help_text="Order details stored with the payment",
    )


class PaymentIntentResponseSerializer(serializers.Serializer):
    paymentIntentId = serializers.CharField()
    clientSecret = serializers.CharField()
    amount = serializers.CharField()
    platformFee = serializers.CharField()
    creatorEarnings = serializers.CharField()
    status = serializers.CharField()

    @classmethod
    def from_pending(cls, pending) -> dict:
        txn = pending.transaction
        return {
            "paymentIntentId": txn.stripe_payment_intent_id,
            "clientSecret": pending.client_secret,
            "amount": from_cents(txn.gross_amount_cents),
            "platformFee": from_cents(txn.platform_fee_cents),
            "creatorEarnings": from_cents(txn.creator_earnings_cents),
            "status": txn.status,
        }


# =============================================================================
# Refunds
# =============================================================================


class RefundCreateSerializer(serializers.Serializer):
    """Request body for POST refunds/."""

    paymentIntentId = serializers.CharField(
        source="payment_intent_id",
        max_length=255,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )
    amount = AmountField(
        source="amount_cents",
        required=False,
        help_text="Amount to refund; omit for the whole remaining balance",
    )
    reason = serializers.ChoiceField(
        choices=RefundReason.choices,
        default=RefundReason.REQUESTED_BY_CUSTOMER,
    )
    reverseTransfer = serializers.BooleanField(
        source="reverse_transfer",
        default=True,
        help_text="Reverse the creator transfer and return the platform fee",
    )


class RefundResponseSerializer(serializers.Serializer):
    refundId = serializers.CharField()
    status = serializers.CharField()
    amount = serializers.CharField()
    platformFeeRefunded = serializers.CharField()
    remaining = serializers.CharField()

    @classmethod
    def from_outcome(cls, outcome) -> dict:
        return {
            "refundId": outcome.refund_id,
            "status": outcome.status,
            "amount": from_cents(outcome.amount_cents),
            "platformFeeRefunded": from_cents(outcome.platform_fee_refunded_cents),
            "remaining": from_cents(outcome.remaining_cents),
        }


# =============================================================================
# Subscriptions
# =============================================================================


class SubscriptionCreateSerializer(serializers.Serializer):
    """Request body for POST subscriptions/."""

    creatorId = serializers.IntegerField(source="creator_id")
    payerId = serializers.IntegerField(source="payer_id", required=False)
    tierName = serializers.CharField(source="tier_name", max_length=100)
    amount = AmountField(source="amount_cents", help_text="Price per interval")
    interval = serializers.ChoiceField(
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
    )


class SubscriptionResponseSerializer(serializers.Serializer):
    subscriptionId = serializers.UUIDField()
    stripeSubscriptionId = serializers.CharField()
    status = serializers.CharField()
    clientSecret = serializers.CharField(allow_null=True)

    @classmethod
    def from_signup(cls, signup) -> dict:
        return {
            "subscriptionId": str(signup.subscription.id),
            "stripeSubscriptionId": signup.subscription.stripe_subscription_id,
            "status": signup.subscription.status,
            "clientSecret": signup.client_secret,
        }


class SubscriptionCancelSerializer(serializers.Serializer):
    """Request body for POST subscriptions/cancel/."""

    subscriptionId = serializers.CharField(
        source="subscription_id",
        max_length=255,
        help_text="Subscription UUID or Stripe ID (sub_xxx)",
    )
    prorate = serializers.BooleanField(default=False)


class SubscriptionCancelResponseSerializer(serializers.Serializer):
    subscriptionId = serializers.UUIDField()
    status = serializers.CharField()


# =============================================================================
# Earnings
# =============================================================================


class EarningsQuerySerializer(serializers.Serializer):
    """Query parameters for GET creators/<id>/earnings/."""

    startDate = serializers.DateField(source="start_date")
    endDate = serializers.DateField(source="end_date")
    daily = serializers.BooleanField(default=False)

    def validate(self, attrs: dict) -> dict:
        if attrs["start_date"] > attrs["end_date"]:
            raise serializers.ValidationError("startDate must not be after endDate.")
        return attrs


class DailyEarningsSerializer(serializers.Serializer):
    date = serializers.DateField()
    totalRevenue = serializers.CharField()
    platformFees = serializers.CharField()
    netEarnings = serializers.CharField()
    transactionCount = serializers.IntegerField()


class EarningsResponseSerializer(serializers.Serializer):
    creatorId = serializers.CharField()
    startDate = serializers.DateField()
    endDate = serializers.DateField()
    totalRevenue = serializers.CharField()
    platformFees = serializers.CharField()
    netEarnings = serializers.CharField()
    transactionCount = serializers.IntegerField()
    daily = DailyEarningsSerializer(many=True, required=False)

    @classmethod
    def from_report(cls, report, daily=None) -> dict:
        data = {
            "creatorId": report.creator_id,
            "startDate": report.start_date.isoformat(),
            "endDate": report.end_date.isoformat(),
            **_totals(report),
        }
        if daily is not None:
            data["daily"] = [{"date": day.date.isoformat(), **_totals(day)} for day in daily]
        return data


def _totals(row) -> dict:
    return {
        "totalRevenue": from_cents(row.total_revenue_cents),
        "platformFees": from_cents(row.platform_fees_cents),
        "netEarnings": from_cents(row.net_earnings_cents),
        "transactionCount": row.transaction_count,
    }
