"""
Notifications app for real-time event fan-out.

This app provides:
- ChannelNaming for the creator-{id} / fan-{id} / all-creators / admin-alerts scheme
- NotificationFanout for publishing events and system alerts
- deliver_notification Celery task for queued delivery
- NotificationConsumer WebSocket endpoint (ws/notifications/)
- JWTAuthMiddleware for authenticating WebSocket connections

Usage:
    from notifications.services import NotificationEvents, NotificationFanout

    result = NotificationFanout().notify_fan(
        fan_id=user.id,
        event=NotificationEvents.ORDER_STATUS_UPDATE,
        title="Payment confirmed",
        message="Your order is now pending creator acceptance",
    )

    if not result.success:
        logger.warning(result.error)
"""
