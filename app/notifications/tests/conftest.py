"""
Pytest fixtures for notification tests.

Sections:
    - Channel Layer Fixtures
    - User Fixtures
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from notifications.channels import ChannelNaming
from notifications.services import NotificationFanout
from settlement.tests.factories import CreatorPayoutAccountFactory, UserFactory


# =============================================================================
# Channel Layer Fixtures
# =============================================================================


@pytest.fixture
def channel_layer():
    """A mocked channel layer recording group_send calls."""
    layer = MagicMock(name="ChannelLayer")
    layer.group_send = AsyncMock()
    return layer


@pytest.fixture
def fanout(channel_layer):
    return NotificationFanout(
        naming=ChannelNaming(),
        channel_layer=channel_layer,
        queue_delivery=False,
    )


@pytest.fixture
def in_memory_layer():
    """The project's in-memory channel layer, emptied around each test."""
    layer = get_channel_layer()
    async_to_sync(layer.flush)()
    yield layer
    async_to_sync(layer.flush)()


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def fan_user(db):
    return UserFactory()


@pytest.fixture
def creator_user(db):
    user = UserFactory()
    CreatorPayoutAccountFactory(creator=user)
    return user


@pytest.fixture
def staff_user(db):
    return UserFactory(is_staff=True)
