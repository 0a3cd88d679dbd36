import json
from typing import Optional

from compliance_alerts.core.constants import CHANNEL_EMAIL
from compliance_alerts.core.errors import PermanentDeliveryError
from compliance_alerts.services.channels.base import (
    ChannelAdapter,
    OutboundMessage,
    post,
    validate_api_url,
)


def build_email_payload(from_address: str, destination: str, message: OutboundMessage) -> dict:
    payload = {
        "from": from_address,
        "to": [destination],
        "subject": message.subject,
        "text": message.text,
        # Webhook events carry the tags back; this is how receipts find the alert.
        "tags": [{"name": "alert_id", "value": str(message.alert_id)}],
    }
    if message.html:
        payload["html"] = message.html
    return payload


class ResendEmailAdapter(ChannelAdapter):
    channel = CHANNEL_EMAIL

    def __init__(
        self,
        *,
        api_key: Optional[str],
        from_email: str,
        from_name: Optional[str] = None,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 30.0,
    ):
        self.api_key = (api_key or "").strip()
        self.api_url = (api_url or "").strip()
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings):
        return cls(
            api_key=settings.RESEND_API_KEY,
            from_email=settings.RESEND_FROM_EMAIL,
            from_name=settings.RESEND_FROM_NAME,
            api_url=settings.RESEND_API_URL,
            timeout=settings.DELIVERY_TIMEOUT_SECONDS,
        )

    @property
    def from_address(self) -> str:
        if self.from_name:
            return "{} <{}>".format(self.from_name, self.from_email)
        return self.from_email

    def deliver(self, destination: str, message: OutboundMessage) -> Optional[str]:
        if not self.api_key:
            raise PermanentDeliveryError("RESEND_API_KEY is not configured")
        destination = str(destination or "").strip()
        if "@" not in destination:
            raise PermanentDeliveryError("invalid email address: {!r}".format(destination))
        api_url = validate_api_url(self.api_url, "RESEND_API_URL")

        if self.api_key.lower().startswith("bearer "):
            auth_header = self.api_key
        else:
            auth_header = "Bearer {}".format(self.api_key)

        body = json.dumps(build_email_payload(self.from_address, destination, message)).encode("utf-8")
        response = post(
            "Resend",
            api_url,
            body,
            {"Content-Type": "application/json", "Authorization": auth_header},
            timeout=self.timeout,
        )
        return response.get("id")


__all__ = ["ResendEmailAdapter", "build_email_payload"]
