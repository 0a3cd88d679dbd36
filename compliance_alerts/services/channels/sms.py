import base64
import re
from typing import Optional
from urllib.parse import urlencode

from compliance_alerts.core.constants import CHANNEL_SMS
from compliance_alerts.core.errors import PermanentDeliveryError
from compliance_alerts.services.channels.base import (
    ChannelAdapter,
    OutboundMessage,
    post,
    validate_api_url,
)

_NON_DIGIT_RE = re.compile(r"\D+")


def normalize_phone(phone) -> str:
    """E.164-ish form: keep a leading ``+`` and digits only."""
    value = str(phone or "").strip()
    digits = _NON_DIGIT_RE.sub("", value)
    if not digits:
        return ""
    if value.startswith("+"):
        return "+" + digits
    return digits


def phone_digits(phone) -> str:
    return _NON_DIGIT_RE.sub("", str(phone or ""))


class TwilioSmsAdapter(ChannelAdapter):
    channel = CHANNEL_SMS

    def __init__(
        self,
        *,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        api_base_url: str = "https://api.twilio.com/2010-04-01",
        status_callback_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.account_sid = (account_sid or "").strip()
        self.auth_token = (auth_token or "").strip()
        self.from_number = (from_number or "").strip()
        self.api_base_url = (api_base_url or "").rstrip("/")
        self.status_callback_url = status_callback_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings):
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_FROM_NUMBER,
            api_base_url=settings.TWILIO_API_BASE_URL,
            status_callback_url=settings.TWILIO_STATUS_CALLBACK_URL,
            timeout=settings.DELIVERY_TIMEOUT_SECONDS,
        )

    @property
    def messages_url(self) -> str:
        return "{}/Accounts/{}/Messages.json".format(self.api_base_url, self.account_sid)

    def _auth_header(self) -> str:
        credentials = "{}:{}".format(self.account_sid, self.auth_token).encode("utf-8")
        return "Basic {}".format(base64.b64encode(credentials).decode("ascii"))

    def build_form(self, destination: str, message: OutboundMessage) -> dict:
        form = {
            "To": normalize_phone(destination),
            "From": self.from_number,
            "Body": message.text,
        }
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url
        return form

    def deliver(self, destination: str, message: OutboundMessage) -> Optional[str]:
        if not self.account_sid or not self.auth_token:
            raise PermanentDeliveryError("TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN are not configured")
        if not self.from_number:
            raise PermanentDeliveryError("TWILIO_FROM_NUMBER is not configured")
        if not normalize_phone(destination):
            raise PermanentDeliveryError("invalid phone number: {!r}".format(destination))
        url = validate_api_url(self.messages_url, "TWILIO_API_BASE_URL")

        body = urlencode(self.build_form(destination, message)).encode("utf-8")
        response = post(
            "Twilio",
            url,
            body,
            {
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": self._auth_header(),
            },
            timeout=self.timeout,
        )
        return response.get("sid")


__all__ = ["TwilioSmsAdapter", "normalize_phone", "phone_digits"]
