"""
Celery tasks for notification delivery.

Tasks:
    deliver_notification: Publish a queued notification to its channel

Design:
    - Only used when NOTIFICATION_QUEUE_DELIVERY is enabled; otherwise
      NotificationFanout publishes inline
    - A failed publish raises NotificationDeliveryError so Celery retries
      with backoff; the triggering payment/refund has already committed

Usage:
    from notifications.tasks import deliver_notification

    deliver_notification.delay("creator-42", "new_order", {"title": ..., "message": ...})
"""

from __future__ import annotations

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when a queued notification could not be published."""

    def __init__(self, channel: str, event: str):
        super().__init__(f"Failed to deliver {event} to {channel}")
        self.channel = channel
        self.event = event


@shared_task(
    bind=True,
    autoretry_for=(NotificationDeliveryError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def deliver_notification(self, channel: str, event: str, payload: dict) -> dict:
    """
    Publish a notification from a worker.

    Args:
        channel: Channel-layer group name
        event: Event name
        payload: Normalised payload (title, message, data, timestamp)

    Returns:
        ServiceResult response dict ({"success": True})

    Raises:
        NotificationDeliveryError: Publish failed (triggers retry)
    """
    from notifications.services import NotificationFanout

    logger.info(
        f"Delivering queued notification {event} to {channel} "
        f"(attempt {self.request.retries + 1})"
    )

    result = NotificationFanout(queue_delivery=False).notify(channel, event, payload)
    if not result.success:
        raise NotificationDeliveryError(channel, event)

    return result.to_response()
