"""
WebhookProcessingRecord model: the set of applied Stripe event ids.

A row is inserted in the same database transaction that applies an
event's effects. The unique event_id makes concurrent deliveries of the
same event race on the insert, and only one of them can commit.

Usage:
    from settlement.models import WebhookProcessingRecord

    if WebhookProcessingRecord.objects.filter(event_id=event.id).exists():
        ...  # duplicate, already applied
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class WebhookProcessingRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Marks a Stripe event as applied.

    Fields:
        event_id: Unique Stripe Event ID (evt_xxx)
        event_type: Type of webhook event
        processed_at: When the event was applied

    Note:
        Rows older than WEBHOOK_RECORD_RETENTION_DAYS are pruned by
        settlement.tasks.cleanup_webhook_records. Stripe stops redelivering
        long before that.
    """

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx)",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Type of webhook event (e.g., payment_intent.succeeded)",
    )

    processed_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the event was applied",
    )

    class Meta:
        ordering = ["-processed_at"]
        verbose_name = "Webhook Processing Record"
        verbose_name_plural = "Webhook Processing Records"

    def __str__(self) -> str:
        return f"WebhookProcessingRecord({self.event_id}, {self.event_type})"
