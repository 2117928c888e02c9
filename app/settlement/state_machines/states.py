"""
State enums for settlement models.

These are Django TextChoices for database storage and admin integration,
used by the django-fsm fields on Transaction and Subscription.

State Machines Overview:

Transaction States:
    pending → completed → partially_refunded → refunded
    pending → failed
    completed → refunded
    partially_refunded → partially_refunded (further partial refunds)

Subscription States:
    incomplete → active ⇄ past_due
    active ⇄ paused
    incomplete/active/past_due/paused → canceled
    past_due → expired
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for the Transaction ledger row.

    Terminal states: FAILED, REFUNDED
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"

    @classmethod
    def refundable_states(cls) -> list[str]:
        """States that still allow a refund."""
        return [cls.COMPLETED, cls.PARTIALLY_REFUNDED]


class TransactionType(models.TextChoices):
    """What the fan paid for."""

    VIDEO = "video", "Personalized Video"
    SUBSCRIPTION = "subscription", "Subscription"


class OrderStatus(models.TextChoices):
    """
    Order fulfilment states.

    Only PENDING is set by settlement; fulfilment moves the rest.
    """

    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    COMPLETED = "completed", "Completed"
    REFUNDED = "refunded", "Refunded"


class SubscriptionStatus(models.TextChoices):
    """
    States for the Subscription model lifecycle.

    Terminal states: CANCELED, EXPIRED
    """

    INCOMPLETE = "incomplete", "Incomplete"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    PAUSED = "paused", "Paused"
    CANCELED = "canceled", "Canceled"
    EXPIRED = "expired", "Expired"

    @classmethod
    def terminal_states(cls) -> list[str]:
        return [cls.CANCELED, cls.EXPIRED]


class InvoicePaymentStatus(models.TextChoices):
    """Outcome of the latest invoice payment attempt on a subscription."""

    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    REQUIRES_ACTION = "requires_action", "Requires Action"


class BillingInterval(models.TextChoices):
    """Stripe recurring price intervals."""

    DAY = "day", "Daily"
    WEEK = "week", "Weekly"
    MONTH = "month", "Monthly"
    YEAR = "year", "Yearly"


class RefundReason(models.TextChoices):
    """Refund reasons accepted by Stripe."""

    DUPLICATE = "duplicate", "Duplicate"
    FRAUDULENT = "fraudulent", "Fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer", "Requested by Customer"
