"""
Settlement admin configuration.

The ledger is read-mostly in the admin: money fields and FSM status are
read-only, and transactions cannot be deleted.
"""

from django.contrib import admin

from settlement.models import (
    CreatorPayoutAccount,
    Order,
    Subscription,
    Transaction,
    WebhookProcessingRecord,
)


@admin.register(CreatorPayoutAccount)
class CreatorPayoutAccountAdmin(admin.ModelAdmin):
    """Creator Stripe Connect accounts."""

    list_display = [
        "id",
        "creator",
        "stripe_account_id",
        "charges_enabled",
        "payouts_enabled",
        "created_at",
    ]
    list_filter = ["charges_enabled", "payouts_enabled"]
    search_fields = ["stripe_account_id", "creator__email", "creator__username"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    All amounts and the status are read-only; they change only through
    webhooks and the refund service.
    """

    list_display = [
        "id",
        "stripe_payment_intent_id",
        "creator",
        "payer",
        "transaction_type",
        "status",
        "gross_amount_cents",
        "platform_fee_cents",
        "refund_amount_cents",
        "created_at",
    ]
    list_filter = ["status", "transaction_type", "currency"]
    search_fields = ["id", "stripe_payment_intent_id", "stripe_invoice_id"]
    readonly_fields = [
        "id",
        "stripe_payment_intent_id",
        "stripe_invoice_id",
        "creator",
        "payer",
        "subscription",
        "gross_amount_cents",
        "platform_fee_cents",
        "creator_earnings_cents",
        "currency",
        "transaction_type",
        "status",
        "failure_reason",
        "refund_amount_cents",
        "platform_fee_refunded_cents",
        "creator_earnings_reversed_cents",
        "completed_at",
        "failed_at",
        "refunded_at",
        "created_at",
        "updated_at",
        "version",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "stripe_payment_intent_id", "stripe_invoice_id")}),
        ("Parties", {"fields": ("creator", "payer", "subscription")}),
        (
            "Amounts",
            {
                "fields": (
                    "gross_amount_cents",
                    "platform_fee_cents",
                    "creator_earnings_cents",
                    "currency",
                )
            },
        ),
        ("Status", {"fields": ("transaction_type", "status", "failure_reason")}),
        (
            "Refunds",
            {
                "fields": (
                    "refund_amount_cents",
                    "platform_fee_refunded_cents",
                    "creator_earnings_reversed_cents",
                    "refunded_at",
                )
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("completed_at", "failed_at", "created_at", "updated_at"),
                "classes": ("collapse",),
            },
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
    )

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ["id", "creator", "fan", "status", "created_at"]
    list_filter = ["status"]
    search_fields = ["id", "transaction__stripe_payment_intent_id"]
    readonly_fields = ["id", "transaction", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """Admin configuration for Subscription."""

    list_display = [
        "id",
        "stripe_subscription_id",
        "creator",
        "payer",
        "tier_name",
        "amount_cents",
        "billing_interval",
        "status",
        "failed_payment_count",
        "current_period_end",
    ]
    list_filter = ["status", "billing_interval", "cancel_at_period_end", "last_payment_status"]
    search_fields = ["id", "stripe_subscription_id", "stripe_customer_id", "tier_name"]
    readonly_fields = [
        "id",
        "stripe_subscription_id",
        "stripe_customer_id",
        "stripe_price_id",
        "stripe_product_id",
        "status",
        "failed_payment_count",
        "last_payment_at",
        "last_invoice_id",
        "last_payment_status",
        "trial_end",
        "canceled_at",
        "created_at",
        "updated_at",
        "version",
    ]
    ordering = ["-created_at"]


@admin.register(WebhookProcessingRecord)
class WebhookProcessingRecordAdmin(admin.ModelAdmin):
    list_display = ["event_id", "event_type", "processed_at"]
    list_filter = ["event_type"]
    search_fields = ["event_id"]
    readonly_fields = ["id", "event_id", "event_type", "processed_at", "created_at", "updated_at"]
    ordering = ["-processed_at"]
