"""
Celery tasks for settlement.

Usage:
    from settlement.tasks import cleanup_webhook_records

    # Typically run daily via celery-beat (see CELERY_BEAT_SCHEDULE)
    cleanup_webhook_records.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from settlement.config import SettlementConfig
from settlement.models import WebhookProcessingRecord

logger = logging.getLogger(__name__)


@shared_task
def cleanup_webhook_records(days: int | None = None) -> dict:
    """
    Delete webhook processing records older than the retention window.

    Once a record is gone a redelivery of that event would be applied
    again, so the window must exceed Stripe's retry horizon (3 days).

    Args:
        days: Retention in days (defaults to WEBHOOK_RECORD_RETENTION_DAYS)

    Returns:
        Dict with the number of deleted records
    """
    if days is None:
        days = SettlementConfig.from_settings().webhook_retention_days
    if days < 1:
        raise ValueError("Retention must be at least one day")

    cutoff = timezone.now() - timedelta(days=days)
    deleted, _ = WebhookProcessingRecord.objects.filter(processed_at__lt=cutoff).delete()

    logger.info(
        f"Deleted {deleted} webhook processing records",
        extra={"retention_days": days, "cutoff": cutoff.isoformat()},
    )
    return {"deleted": deleted, "retention_days": days}
