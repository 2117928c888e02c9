"""
Notifications app configuration.

The app has no models: notifications are published to channel-layer groups
and are not persisted.
"""

from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    """Configuration for the real-time notification fan-out."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "notifications"
    verbose_name = "Notifications"
