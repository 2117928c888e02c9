"""
Notification fan-out service.

Publishes typed events to channel-layer groups so connected WebSocket
clients (see notifications.consumers) receive them in near-real time.

Services:
    NotificationFanout: notify / dispatch / system_alert

Design Principles:
    - Fire-and-forget relative to the financial operation that triggered it:
      publishing never raises, failures come back as ServiceResult data
    - Settlement code schedules notifications with transaction.on_commit, so
      a rolled-back ledger change never notifies anyone
    - Payloads always carry title, message, data and an ISO-8601 timestamp
    - Delivery is inline by default; with NOTIFICATION_QUEUE_DELIVERY=True,
      dispatch() hands the publish to a Celery worker instead

Usage:
    from notifications.services import NotificationEvents, NotificationFanout

    fanout = NotificationFanout()

    result = fanout.notify_creator(
        creator_id=42,
        event=NotificationEvents.NEW_ORDER,
        title="New order",
        message="You have a new video request",
        data={"order_id": str(order.id)},
    )
    if not result.success:
        ...  # {"success": False, "error": "Failed to send notification"}

    fanout.system_alert("webhook_consistency_fault", "critical", {"event_id": "evt_1"})
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

from core.services import BaseService, ServiceResult

from notifications.channels import ChannelNaming, is_valid_group_name

if TYPE_CHECKING:
    from typing import Any


NOTIFICATION_FAILED_MESSAGE = "Failed to send notification"

# Consumer handler invoked by the channel layer (notification_message)
NOTIFICATION_MESSAGE_TYPE = "notification.message"


class NotificationEvents:
    """Event names published on notification channels."""

    NEW_ORDER = "new_order"
    ORDER_ACCEPTED = "order_accepted"
    ORDER_STATUS_UPDATE = "order_status_update"
    VIDEO_DELIVERED = "video_delivered"
    PLATFORM_ANNOUNCEMENT = "platform_announcement"
    SYSTEM_ALERT = "system_alert"
    NEW_SUBSCRIBER = "new_subscriber"
    SUBSCRIPTION_PAYMENT = "subscription_payment"
    SUBSCRIPTION_PAYMENT_FAILED = "subscription_payment_failed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_ACTION_REQUIRED = "subscription_action_required"
    SUBSCRIPTION_TRIAL_ENDING = "subscription_trial_ending"


class AlertSeverity(models.TextChoices):
    """Severity tiers for system alerts."""

    INFO = "info", "Info"
    WARNING = "warning", "Warning"
    ERROR = "error", "Error"
    CRITICAL = "critical", "Critical"


SEVERITY_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.ERROR: logging.ERROR,
    # Critical alerts log at ERROR with a marker and also page admins
    AlertSeverity.CRITICAL: logging.ERROR,
}

CRITICAL_MARKER = "[CRITICAL]"


class NotificationFanout(BaseService):
    """
    Publishes notification events to creator, fan, platform and admin channels.

    Attributes:
        naming: ChannelNaming used to derive channel names
        queue_delivery: When True, dispatch() enqueues a Celery task

    Note:
        The channel layer is resolved lazily so that settings overrides
        (tests, management commands) are honoured.
    """

    def __init__(
        self,
        naming: ChannelNaming | None = None,
        channel_layer: Any = None,
        queue_delivery: bool | None = None,
    ):
        self.naming = naming or ChannelNaming.from_settings()
        self._channel_layer = channel_layer
        if queue_delivery is None:
            queue_delivery = getattr(settings, "NOTIFICATION_QUEUE_DELIVERY", False)
        self.queue_delivery = queue_delivery

    @property
    def channel_layer(self):
        """The injected channel layer, or the project's default one."""
        return self._channel_layer or get_channel_layer()

    # =========================================================================
    # Publishing
    # =========================================================================

    def notify(self, channel: str, event: str, payload: dict[str, Any]) -> ServiceResult[None]:
        """
        Publish an event to a channel immediately.

        Publishing to a channel without listeners succeeds; the layer
        simply has nobody to deliver to.

        Args:
            channel: Channel-layer group name (e.g. "creator-42")
            event: Event name (see NotificationEvents)
            payload: Dict with at least "title" and "message"

        Returns:
            ServiceResult.success(None), or a failure whose error is
            "Failed to send notification". Never raises.
        """
        logger = self.get_logger()
        log_context = {"channel": channel, "notification_event": event}

        try:
            message = {
                "type": NOTIFICATION_MESSAGE_TYPE,
                "event": event,
                "payload": build_payload(payload),
            }
            if not is_valid_group_name(channel):
                raise ValueError(f"Invalid channel name: {channel!r}")

            layer = self.channel_layer
            if layer is None:
                raise ImproperlyConfigured("No channel layer configured")

            async_to_sync(layer.group_send)(channel, message)

        except Exception:
            logger.exception("Failed to send notification", extra=log_context)
            return ServiceResult.failure(
                NOTIFICATION_FAILED_MESSAGE,
                error_code="NOTIFICATION_FAILED",
            )

        logger.info("Notification published", extra=log_context)
        return ServiceResult.success(None)

    def dispatch(self, channel: str, event: str, payload: dict[str, Any]) -> ServiceResult[None]:
        """
        Publish inline, or enqueue for a delivery worker when queueing is on.

        Enqueue failures are reported the same way as publish failures.
        """
        if not self.queue_delivery:
            return self.notify(channel, event, payload)

        from notifications.tasks import deliver_notification

        try:
            deliver_notification.delay(channel, event, build_payload(payload))
        except Exception:
            self.get_logger().exception(
                "Failed to enqueue notification",
                extra={"channel": channel, "notification_event": event},
            )
            return ServiceResult.failure(
                NOTIFICATION_FAILED_MESSAGE,
                error_code="NOTIFICATION_FAILED",
            )
        return ServiceResult.success(None)

    # =========================================================================
    # Audience Helpers
    # =========================================================================

    def notify_creator(
        self,
        creator_id: Any,
        event: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> ServiceResult[None]:
        """Send an event to a single creator's channel."""
        return self.dispatch(
            self.naming.creator(creator_id),
            event,
            {"title": title, "message": message, "data": data or {}},
        )

    def notify_fan(
        self,
        fan_id: Any,
        event: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> ServiceResult[None]:
        """Send an event to a single fan's channel."""
        return self.dispatch(
            self.naming.fan(fan_id),
            event,
            {"title": title, "message": message, "data": data or {}},
        )

    def broadcast_to_creators(
        self,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> ServiceResult[None]:
        """Send a platform announcement to every connected creator."""
        return self.dispatch(
            self.naming.all_creators,
            NotificationEvents.PLATFORM_ANNOUNCEMENT,
            {"title": title, "message": message, "data": data or {}},
        )

    # =========================================================================
    # System Alerts
    # =========================================================================

    def system_alert(
        self,
        alert_type: str,
        severity: str,
        data: dict[str, Any] | None = None,
    ) -> ServiceResult[None]:
        """
        Log a system alert and page admins when it is critical.

        Logging level follows severity (info/warning/error). Critical alerts
        log at ERROR with a "[CRITICAL]" marker and are also published to
        the admin-alerts channel; lower severities are only logged.

        Args:
            alert_type: Short machine-readable alert name
            severity: One of info, warning, error, critical
            data: Context attached to the log record and the alert payload

        Raises:
            ValueError: Unknown severity
        """
        level = AlertSeverity(severity)
        data = data or {}
        prefix = f"{CRITICAL_MARKER} " if level == AlertSeverity.CRITICAL else ""

        self.get_logger().log(
            SEVERITY_LOG_LEVELS[level],
            f"{prefix}System alert: {alert_type}",
            extra={
                "alert_type": alert_type,
                "severity": level.value,
                "alert_data": data,
            },
        )

        if level != AlertSeverity.CRITICAL:
            return ServiceResult.success(None)

        return self.notify(
            self.naming.admin_alerts,
            NotificationEvents.SYSTEM_ALERT,
            {
                "title": f"Critical alert: {alert_type}",
                "message": data.get("message") or f"Critical system alert: {alert_type}",
                "data": {"type": alert_type, "severity": level.value, **data},
            },
        )


def build_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Normalise a notification payload.

    Ensures title/message are present, defaults data to {}, stamps an
    ISO-8601 timestamp when missing and converts values (UUIDs, datetimes,
    Decimals) to JSON-safe types for the channel layer.

    Raises:
        ValueError: payload is not a dict or lacks title/message
    """
    if not isinstance(payload, dict):
        raise ValueError("Notification payload must be a dict")
    missing = [key for key in ("title", "message") if not payload.get(key)]
    if missing:
        raise ValueError(f"Notification payload missing {', '.join(missing)}")

    normalised = {
        **payload,
        "data": payload.get("data") or {},
        "timestamp": payload.get("timestamp") or timezone.now().isoformat(),
    }
    return json.loads(json.dumps(normalised, cls=DjangoJSONEncoder))
