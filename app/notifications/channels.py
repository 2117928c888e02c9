"""
Channel naming for real-time notifications.

Every notification is published to a named channel-layer group. The names
follow a fixed scheme so that publishers (settlement services) and
subscribers (NotificationConsumer) agree without sharing state:

    creator-{id}    events for one creator (new orders, refunds, payouts)
    fan-{id}        events for one fan (payment confirmations, failures)
    all-creators    platform-wide announcements to every creator
    admin-alerts    critical system alerts

The templates are configurable through settings.NOTIFICATION_CHANNELS.

Usage:
    from notifications.channels import ChannelNaming

    naming = ChannelNaming.from_settings()
    naming.creator(42)   # "creator-42"
    naming.fan(7)        # "fan-7"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings

if TYPE_CHECKING:
    from typing import Any

# Group names accepted by the Channels layer
GROUP_NAME_PATTERN = re.compile(r"^[a-zA-Z\d\-_.]{1,99}$")


@dataclass(frozen=True)
class ChannelNaming:
    """
    Templates for notification channel names.

    Attributes:
        creator_template: Per-creator channel, formatted with {id}
        fan_template: Per-fan channel, formatted with {id}
        all_creators: Channel every creator listens on
        admin_alerts: Channel for critical system alerts
    """

    creator_template: str = "creator-{id}"
    fan_template: str = "fan-{id}"
    all_creators: str = "all-creators"
    admin_alerts: str = "admin-alerts"

    def __post_init__(self) -> None:
        """Validate templates and fixed names."""
        for template in (self.creator_template, self.fan_template):
            if "{id}" not in template:
                raise ValueError(f"Channel template {template!r} must contain {{id}}")
        for name in (self.all_creators, self.admin_alerts):
            if not is_valid_group_name(name):
                raise ValueError(f"Invalid channel name: {name!r}")

    @classmethod
    def from_settings(cls) -> ChannelNaming:
        """Build naming from settings.NOTIFICATION_CHANNELS (missing keys use defaults)."""
        overrides: dict[str, Any] = getattr(settings, "NOTIFICATION_CHANNELS", {}) or {}
        return cls(**overrides)

    def creator(self, creator_id: Any) -> str:
        """Channel for a single creator."""
        return self.creator_template.format(id=creator_id)

    def fan(self, fan_id: Any) -> str:
        """Channel for a single fan."""
        return self.fan_template.format(id=fan_id)


def is_valid_group_name(name: str) -> bool:
    """Check whether a name can be used as a channel-layer group."""
    return bool(name) and bool(GROUP_NAME_PATTERN.match(name))
