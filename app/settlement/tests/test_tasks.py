"""
Tests for settlement Celery tasks.
"""

from datetime import timedelta

import pytest
from django.test import override_settings
from django.utils import timezone

from settlement.models import WebhookProcessingRecord
from settlement.tasks import cleanup_webhook_records
from settlement.tests.factories import WebhookProcessingRecordFactory


@pytest.mark.django_db
class TestCleanupWebhookRecords:
    def test_deletes_records_past_retention(self):
        now = timezone.now()
        WebhookProcessingRecordFactory(event_id="evt_old", processed_at=now - timedelta(days=91))
        WebhookProcessingRecordFactory(event_id="evt_recent", processed_at=now - timedelta(days=89))

        result = cleanup_webhook_records()

        assert result == {"deleted": 1, "retention_days": 90}
        assert list(WebhookProcessingRecord.objects.values_list("event_id", flat=True)) == [
            "evt_recent"
        ]

    def test_explicit_retention(self):
        WebhookProcessingRecordFactory(processed_at=timezone.now() - timedelta(days=10))

        result = cleanup_webhook_records(days=7)

        assert result["deleted"] == 1
        assert WebhookProcessingRecord.objects.count() == 0

    @override_settings(WEBHOOK_RECORD_RETENTION_DAYS=5)
    def test_retention_from_settings(self):
        WebhookProcessingRecordFactory(processed_at=timezone.now() - timedelta(days=6))

        assert cleanup_webhook_records()["retention_days"] == 5
        assert WebhookProcessingRecord.objects.count() == 0

    def test_rejects_non_positive_retention(self):
        with pytest.raises(ValueError):
            cleanup_webhook_records(days=0)
