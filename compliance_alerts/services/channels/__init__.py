from compliance_alerts.core.constants import CHANNEL_EMAIL, CHANNEL_IN_APP, CHANNEL_SMS
from compliance_alerts.services.channels.base import (
    ChannelAdapter,
    OutboundMessage,
    SendResult,
)
from compliance_alerts.services.channels.email import ResendEmailAdapter
from compliance_alerts.services.channels.in_app import InAppAdapter
from compliance_alerts.services.channels.sms import TwilioSmsAdapter, normalize_phone, phone_digits


def build_adapters(settings) -> dict:
    """One adapter per channel, configured from settings."""
    return {
        CHANNEL_EMAIL: ResendEmailAdapter.from_settings(settings),
        CHANNEL_SMS: TwilioSmsAdapter.from_settings(settings),
        CHANNEL_IN_APP: InAppAdapter(),
    }


__all__ = [
    "ChannelAdapter",
    "InAppAdapter",
    "OutboundMessage",
    "ResendEmailAdapter",
    "SendResult",
    "TwilioSmsAdapter",
    "build_adapters",
    "normalize_phone",
    "phone_digits",
]
