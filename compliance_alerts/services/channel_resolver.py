import logging
from typing import Optional

from compliance_alerts.core.constants import (
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_SMS,
    CHANNELS,
    ORG_INBOX,
)
from compliance_alerts.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def resolve_channels(tier: str, preferences) -> list[str]:
    """Enabled channels for ``tier``, deduplicated in preference order.

    Channels this engine cannot deliver on are dropped. An empty result
    means no alert is created for the tier at all.
    """
    channels = []
    for channel in preferences.channels_for(tier):
        channel = str(channel).strip().lower()
        if channel not in CHANNELS:
            logger.warning(
                "Ignoring unsupported channel %r for %s tier (org %s)",
                channel,
                tier,
                preferences.org_id,
            )
            continue
        if channel not in channels:
            channels.append(channel)
    return channels


def resolve_destination(
    channel: str,
    preferences,
    *,
    user_id: Optional[str] = None,
    assignee_email: Optional[str] = None,
) -> str:
    if channel == CHANNEL_EMAIL:
        address = (preferences.email_override or assignee_email or "").strip()
        if not address:
            raise ConfigurationError("no email address for email alerts")
        return address
    if channel == CHANNEL_SMS:
        phone = (preferences.phone_number or "").strip()
        if not phone:
            raise ConfigurationError("no phone number configured for SMS alerts")
        return phone
    if channel == CHANNEL_IN_APP:
        return user_id or ORG_INBOX
    raise ConfigurationError("unsupported channel: {}".format(channel))


__all__ = ["resolve_channels", "resolve_destination"]
