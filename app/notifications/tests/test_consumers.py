"""
Tests for NotificationConsumer over the in-memory channel layer.

Connections go through JWTAuthMiddleware with a real access token, the
same stack config.asgi serves.
"""

import pytest
from asgiref.sync import sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from rest_framework_simplejwt.tokens import AccessToken

from notifications.channels import ChannelNaming
from notifications.middleware import JWTAuthMiddleware
from notifications.routing import websocket_urlpatterns
from notifications.services import NotificationEvents, NotificationFanout

application = JWTAuthMiddleware(URLRouter(websocket_urlpatterns))


def communicator_for(user=None):
    path = "/ws/notifications/"
    if user is not None:
        path += f"?token={AccessToken.for_user(user)}"
    return WebsocketCommunicator(application, path)


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
class TestNotificationConsumer:
    async def test_anonymous_connection_rejected(self, in_memory_layer):
        communicator = communicator_for()

        connected, code = await communicator.connect()

        assert not connected
        assert code == 4001

    async def test_fan_receives_own_notifications(self, in_memory_layer, fan_user):
        communicator = communicator_for(fan_user)
        connected, _ = await communicator.connect()
        assert connected

        await in_memory_layer.group_send(
            f"fan-{fan_user.id}",
            {
                "type": "notification.message",
                "event": NotificationEvents.ORDER_STATUS_UPDATE,
                "payload": {"title": "Payment confirmed", "message": "Received", "data": {}},
            },
        )

        message = await communicator.receive_json_from()
        assert message == {
            "type": "notification",
            "event": "order_status_update",
            "payload": {"title": "Payment confirmed", "message": "Received", "data": {}},
        }
        await communicator.disconnect()

    async def test_fan_does_not_join_creator_groups(self, in_memory_layer, fan_user):
        communicator = communicator_for(fan_user)
        await communicator.connect()

        await in_memory_layer.group_send(
            "all-creators",
            {"type": "notification.message", "event": "platform_announcement", "payload": {}},
        )

        assert await communicator.receive_nothing()
        await communicator.disconnect()

    async def test_creator_receives_fanout_events(self, in_memory_layer, creator_user):
        communicator = communicator_for(creator_user)
        await communicator.connect()

        fanout = NotificationFanout(naming=ChannelNaming(), queue_delivery=False)
        result = await sync_to_async(fanout.notify_creator)(
            creator_user.id,
            NotificationEvents.NEW_ORDER,
            title="New order",
            message="You have a new paid request",
            data={"order_id": "o1"},
        )
        assert result.success

        message = await communicator.receive_json_from()
        assert message["event"] == "new_order"
        assert message["payload"]["data"] == {"order_id": "o1"}
        assert "timestamp" in message["payload"]

        await sync_to_async(fanout.broadcast_to_creators)(title="Maintenance", message="Soon")
        announcement = await communicator.receive_json_from()
        assert announcement["event"] == "platform_announcement"

        await communicator.disconnect()

    async def test_staff_receives_critical_alerts(self, in_memory_layer, staff_user):
        communicator = communicator_for(staff_user)
        await communicator.connect()

        fanout = NotificationFanout(naming=ChannelNaming(), queue_delivery=False)
        await sync_to_async(fanout.system_alert)("ledger_mismatch", "critical", {"message": "Mismatch"})

        message = await communicator.receive_json_from()
        assert message["event"] == "system_alert"
        assert message["payload"]["data"]["type"] == "ledger_mismatch"
        await communicator.disconnect()

    async def test_ping_pong(self, in_memory_layer, fan_user):
        communicator = communicator_for(fan_user)
        await communicator.connect()

        await communicator.send_json_to({"type": "ping"})

        assert await communicator.receive_json_from() == {"type": "pong"}
        await communicator.disconnect()

    async def test_unknown_message_type(self, in_memory_layer, fan_user):
        communicator = communicator_for(fan_user)
        await communicator.connect()

        await communicator.send_json_to({"type": "subscribe"})

        response = await communicator.receive_json_from()
        assert response == {"type": "error", "message": "Unknown message type: subscribe"}
        await communicator.disconnect()

    async def test_disconnect_leaves_groups(self, in_memory_layer, fan_user):
        communicator = communicator_for(fan_user)
        await communicator.connect()
        await communicator.disconnect()

        assert not in_memory_layer.groups.get(f"fan-{fan_user.id}")
