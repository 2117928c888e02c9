"""
WebSocket consumer for real-time notifications.

Consumers:
    NotificationConsumer: Streams notification events to a connected user

Authentication:
    Users are authenticated via JWT (see notifications.middleware).
    Unauthenticated connections are closed with code 4001.

Channel Groups:
    On connect the user joins the groups they are entitled to:
        fan-{user_id}        every authenticated user
        creator-{user_id}    users with a creator payout account
        all-creators         users with a creator payout account
        admin-alerts         staff users

Message Types (from client):
    - ping: Keep-alive, answered with pong

Message Types (to client):
    - notification: {"type": "notification", "event": ..., "payload": {...}}
    - pong
    - error
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from notifications.channels import ChannelNaming

logger = logging.getLogger(__name__)


class NotificationConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer that relays notification.message events.

    Attributes:
        groups_joined: Channel-layer groups this connection subscribed to
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.groups_joined: list[str] = []

    async def connect(self):
        """
        Handle WebSocket connection.

        Rejects anonymous users, then joins every group the user may
        listen on and accepts the connection.
        """
        user = self.scope.get("user")

        if not user or isinstance(user, AnonymousUser) or not user.is_authenticated:
            logger.warning("Rejected unauthenticated notification connection")
            await self.close(code=4001)
            return

        self.groups_joined = await self._resolve_groups(user)

        for group in self.groups_joined:
            await self.channel_layer.group_add(group, self.channel_name)

        await self.accept()
        logger.info(
            f"User {user.id} connected to notifications: {', '.join(self.groups_joined)}"
        )

    async def disconnect(self, close_code):
        """Leave every group joined on connect."""
        for group in self.groups_joined:
            await self.channel_layer.group_discard(group, self.channel_name)

        if self.groups_joined:
            user = self.scope.get("user")
            logger.info(f"User {user.id} disconnected from notifications ({close_code})")

    async def receive_json(self, content):
        """
        Handle incoming client messages.

        Expected message format:
            {"type": "ping"}
        """
        message_type = content.get("type") if isinstance(content, dict) else None

        if message_type == "ping":
            await self.send_json({"type": "pong"})
        else:
            await self.send_json(
                {
                    "type": "error",
                    "message": f"Unknown message type: {message_type}",
                }
            )

    async def notification_message(self, event):
        """
        Handle notification.message events from the channel layer.

        Sends the event name and payload to the WebSocket client.
        """
        await self.send_json(
            {
                "type": "notification",
                "event": event["event"],
                "payload": event["payload"],
            }
        )

    @database_sync_to_async
    def _resolve_groups(self, user) -> list[str]:
        """Work out which notification groups a user may join."""
        from settlement.models import CreatorPayoutAccount

        naming = ChannelNaming.from_settings()
        groups = [naming.fan(user.id)]

        if CreatorPayoutAccount.objects.filter(creator=user).exists():
            groups.extend([naming.creator(user.id), naming.all_creators])

        if user.is_staff:
            groups.append(naming.admin_alerts)

        return groups
