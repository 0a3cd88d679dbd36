from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib import error, request
from urllib.parse import urlparse

from compliance_alerts.core.errors import (
    DeliveryError,
    PermanentDeliveryError,
    TransientDeliveryError,
)

logger = logging.getLogger(__name__)

_ALLOWED_HTTP_SCHEMES = {"http", "https"}
_MAX_ERROR_BODY = 500


@dataclass
class OutboundMessage:
    """Rendered content for one alert on one channel."""

    alert_id: int
    org_id: str
    channel: str
    urgency: str
    subject: str
    text: str
    html: Optional[str] = None
    user_id: Optional[str] = None
    data: dict = field(default_factory=dict)


@dataclass
class SendResult:
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    status_code: Optional[int] = None


class ChannelAdapter:
    """One delivery attempt per call; retrying is the dispatcher's job."""

    channel: str = ""

    def for_session(self, db) -> "ChannelAdapter":
        """Adapter bound to the dispatching session. Stateless adapters return themselves."""
        return self

    def deliver(self, destination: str, message: OutboundMessage) -> Optional[str]:
        """Send once and return the provider message id.

        Raises ``TransientDeliveryError`` or ``PermanentDeliveryError``.
        """
        raise NotImplementedError

    def send(self, destination: str, message: OutboundMessage) -> SendResult:
        try:
            provider_id = self.deliver(destination, message)
        except DeliveryError as exc:
            logger.info(
                "%s delivery attempt for alert %s failed: %s",
                self.channel,
                message.alert_id,
                exc,
                extra={"alert_id": message.alert_id, "channel": self.channel},
            )
            return SendResult(
                success=False,
                error=str(exc),
                retryable=exc.retryable,
                status_code=exc.status_code,
            )
        return SendResult(success=True, provider_message_id=provider_id)

    def send_batch(self, items: Iterable[tuple[str, OutboundMessage]]) -> list[SendResult]:
        return [self.send(destination, message) for destination, message in items]


def validate_api_url(api_url: str, name: str) -> str:
    parsed = urlparse(api_url)
    if parsed.scheme.lower() not in _ALLOWED_HTTP_SCHEMES or not parsed.netloc:
        raise PermanentDeliveryError("{} must be an absolute HTTP(S) URL".format(name))
    return api_url


def _read_error_body(exc: error.HTTPError) -> str:
    try:
        body_bytes = exc.read()
    except (OSError, ValueError):
        return ""
    if not body_bytes:
        return ""
    return body_bytes.decode("utf-8", errors="replace").strip()[:_MAX_ERROR_BODY]


def _raise_http_error(provider: str, exc: error.HTTPError):
    body = _read_error_body(exc)
    message = "{} API error: HTTP {}".format(provider, exc.code)
    if body:
        message = "{} {}".format(message, body)
    if 400 <= exc.code < 500:
        raise PermanentDeliveryError(message, status_code=exc.code) from exc
    raise TransientDeliveryError(message, status_code=exc.code) from exc


def post(
    provider: str,
    url: str,
    data: bytes,
    headers: dict,
    *,
    timeout: float,
) -> dict:
    """POST ``data`` and decode the JSON response.

    4xx responses are permanent; 5xx, network errors and timeouts are
    transient.
    """
    req = request.Request(url, data=data, method="POST", headers=headers)
    try:
        with request.urlopen(req, timeout=timeout) as response:  # nosec B310
            status_code = response.getcode()
            raw = response.read()
    except error.HTTPError as exc:
        _raise_http_error(provider, exc)
    except error.URLError as exc:
        raise TransientDeliveryError("{} API error: {}".format(provider, exc.reason)) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise TransientDeliveryError("{} API timeout after {}s".format(provider, timeout)) from exc

    if status_code >= 500:
        raise TransientDeliveryError("{} API error: HTTP {}".format(provider, status_code), status_code=status_code)
    if status_code < 200 or status_code >= 300:
        raise PermanentDeliveryError("{} API error: HTTP {}".format(provider, status_code), status_code=status_code)
    if not raw:
        return {}
    try:
        return json.loads(raw.decode("utf-8"))
    except ValueError:
        logger.warning("%s API returned a non-JSON body", provider)
        return {}


__all__ = [
    "ChannelAdapter",
    "OutboundMessage",
    "SendResult",
    "post",
    "validate_api_url",
]
