"""Provider callbacks: delivery receipts and SMS acknowledgment replies.

Receipts are applied through the state machine. A receipt for an alert
that has already moved on (a bounce after acknowledgment, a repeated
"delivered") is a ``DuplicateEventError`` and is absorbed here; only a
payload we cannot read at all is rejected.
"""

import logging
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import select

from compliance_alerts.core.constants import (
    ACK_SMS_REPLY,
    CHANNEL_SMS,
    SMS_ACK_KEYWORDS,
    STATUS_DELIVERED,
    STATUS_SENT,
)
from compliance_alerts.core.errors import DuplicateEventError, MalformedWebhookError
from compliance_alerts.models.alert import Alert
from compliance_alerts.models.deadline import Deadline
from compliance_alerts.services import alert_state
from compliance_alerts.services.channels.sms import phone_digits

logger = logging.getLogger(__name__)

RESULT_PROCESSED = "processed"
RESULT_DUPLICATE = "duplicate"
RESULT_IGNORED = "ignored"

RESEND_DELIVERED = "email.delivered"
RESEND_FAILURES = {
    "email.bounced": "bounced",
    "email.complained": "complained",
}

TWILIO_DELIVERED = "delivered"
TWILIO_FAILURES = ("failed", "undelivered")

SMS_ACK_REPLY = "Thank you! Your acknowledgment has been recorded."
SMS_ACK_NOT_FOUND = "We could not find a recent alert to acknowledge."

_INBOUND_LOOKUP_LIMIT = 500


def _result(status: str, alert_id=None, **extra) -> dict:
    payload = {"status": status, "alert_id": alert_id}
    payload.update(extra)
    return payload


def _alert_id_from_tags(tags) -> Optional[str]:
    if isinstance(tags, Mapping):
        value = tags.get("alert_id")
        return str(value) if value is not None else None
    if isinstance(tags, list):
        for tag in tags:
            if isinstance(tag, Mapping) and tag.get("name") == "alert_id":
                value = tag.get("value")
                return str(value) if value is not None else None
    return None


def _find_resend_alert(db, data: Mapping) -> Optional[Alert]:
    tagged = _alert_id_from_tags(data.get("tags"))
    if tagged is not None:
        try:
            return db.get(Alert, int(tagged))
        except ValueError as exc:
            raise MalformedWebhookError("alert_id tag is not an integer: {!r}".format(tagged)) from exc

    email_id = data.get("email_id")
    if email_id:
        stmt = select(Alert).where(Alert.provider_message_id == str(email_id)).limit(1)
        return db.execute(stmt).scalar_one_or_none()
    return None


def _apply(db, alert: Alert, transition, **kwargs) -> dict:
    try:
        transition(db, alert, **kwargs)
    except DuplicateEventError as exc:
        logger.info("Ignoring duplicate receipt: %s", exc, extra={"alert_id": alert.id})
        return _result(RESULT_DUPLICATE, alert.id, current_status=exc.current_status)
    return _result(RESULT_PROCESSED, alert.id, current_status=alert.status)


def handle_resend_event(db, payload, *, now: datetime) -> dict:
    """Apply a Resend webhook event (``email.delivered``, ``email.bounced`` ...)."""
    if not isinstance(payload, Mapping):
        raise MalformedWebhookError("webhook body must be a JSON object")
    event_type = payload.get("type")
    data = payload.get("data")
    if not isinstance(event_type, str) or not isinstance(data, Mapping):
        raise MalformedWebhookError("webhook body needs 'type' and 'data'")

    if event_type != RESEND_DELIVERED and event_type not in RESEND_FAILURES:
        logger.debug("Unhandled Resend event %s", event_type)
        return _result(RESULT_IGNORED)

    alert = _find_resend_alert(db, data)
    if alert is None:
        logger.info("Resend %s does not reference a known alert", event_type)
        return _result(RESULT_IGNORED)

    if event_type == RESEND_DELIVERED:
        return _apply(db, alert, alert_state.mark_delivered, now=now, details={"provider": "resend"})

    reason = RESEND_FAILURES[event_type]
    bounce = data.get("bounce") if isinstance(data.get("bounce"), Mapping) else {}
    error = "email {}".format(reason)
    if bounce.get("message"):
        error = "{}: {}".format(error, bounce["message"])
    return _apply(
        db,
        alert,
        alert_state.mark_failed,
        now=now,
        error=error,
        source="resend",
        details={"provider_event": event_type},
    )


def handle_twilio_status(db, form: Mapping, *, now: datetime) -> dict:
    message_sid = (form.get("MessageSid") or "").strip()
    message_status = (form.get("MessageStatus") or "").strip().lower()
    if not message_sid or not message_status:
        raise MalformedWebhookError("status callback needs MessageSid and MessageStatus")

    if message_status != TWILIO_DELIVERED and message_status not in TWILIO_FAILURES:
        return _result(RESULT_IGNORED)

    stmt = select(Alert).where(Alert.provider_message_id == message_sid).limit(1)
    alert = db.execute(stmt).scalar_one_or_none()
    if alert is None:
        logger.info("Twilio status for unknown message %s", message_sid)
        return _result(RESULT_IGNORED)

    if message_status == TWILIO_DELIVERED:
        return _apply(db, alert, alert_state.mark_delivered, now=now, details={"provider": "twilio"})

    error = "sms {}".format(message_status)
    if form.get("ErrorCode"):
        error = "{} (error {})".format(error, form.get("ErrorCode"))
    return _apply(
        db,
        alert,
        alert_state.mark_failed,
        now=now,
        error=error,
        source="twilio",
        details={"provider_status": message_status},
    )


def is_ack_keyword(body: Optional[str]) -> bool:
    return (body or "").strip().upper() in SMS_ACK_KEYWORDS


def find_alert_for_reply(db, sender: str) -> Optional[Alert]:
    """Most recent sent or delivered SMS alert addressed to ``sender``."""
    digits = phone_digits(sender)
    if not digits:
        return None
    stmt = (
        select(Alert)
        .where(
            Alert.channel == CHANNEL_SMS,
            Alert.status.in_((STATUS_SENT, STATUS_DELIVERED)),
        )
        .order_by(Alert.sent_at.desc(), Alert.id.desc())
        .limit(_INBOUND_LOOKUP_LIMIT)
    )
    for alert in db.execute(stmt).scalars():
        if phone_digits(alert.destination) == digits:
            return alert
    return None


def handle_twilio_inbound(db, form: Mapping, *, now: datetime) -> dict:
    sender = (form.get("From") or "").strip()
    body = form.get("Body")
    if not sender:
        raise MalformedWebhookError("inbound message needs From")

    if not is_ack_keyword(body):
        return _result(RESULT_IGNORED, reply=None)

    alert = find_alert_for_reply(db, sender)
    if alert is None:
        logger.info("SMS acknowledgment with no matching alert")
        return _result(RESULT_IGNORED, reply=SMS_ACK_NOT_FOUND)

    result = _apply(db, alert, alert_state.acknowledge, method=ACK_SMS_REPLY, now=now)
    deadline = db.get(Deadline, alert.deadline_id)
    if deadline is not None and deadline.title:
        result["reply"] = "{} ({})".format(SMS_ACK_REPLY, deadline.title)
    else:
        result["reply"] = SMS_ACK_REPLY
    return result


def handle_twilio_webhook(db, form: Mapping, *, now: datetime) -> dict:
    """Route a Twilio form post to the inbound-reply or status handler."""
    if form.get("Body") is not None and not form.get("MessageStatus"):
        return handle_twilio_inbound(db, form, now=now)
    if form.get("MessageStatus"):
        return handle_twilio_status(db, form, now=now)
    raise MalformedWebhookError("unrecognized Twilio callback")


__all__ = [
    "RESULT_DUPLICATE",
    "RESULT_IGNORED",
    "RESULT_PROCESSED",
    "SMS_ACK_REPLY",
    "find_alert_for_reply",
    "handle_resend_event",
    "handle_twilio_inbound",
    "handle_twilio_status",
    "handle_twilio_webhook",
    "is_ack_keyword",
]
