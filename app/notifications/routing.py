"""
WebSocket URL routing for notifications.

URL Patterns:
    ws/notifications/ - Receive notifications for the authenticated user

Authentication:
    JWT token should be passed as query parameter: ?token=<jwt_access_token>
    or as the subprotocol pair ["jwt", "<token>"].
"""

from django.urls import path

from notifications import consumers

websocket_urlpatterns = [
    path(
        "ws/notifications/",
        consumers.NotificationConsumer.as_asgi(),
    ),
]
