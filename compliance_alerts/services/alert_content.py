"""Per-channel message text for a deadline alert.

Wording is chosen from the alert's frozen ``scheduled_urgency``; only the
"due in N days" figure is computed at send time.
"""

from datetime import datetime
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from compliance_alerts.config import get_settings
from compliance_alerts.core.constants import (
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_SMS,
    TEMPLATES_DIR,
)
from compliance_alerts.core.dates import ensure_utc
from compliance_alerts.core.security import make_ack_token
from compliance_alerts.core.urgency import (
    URGENCY_CRITICAL,
    URGENCY_EARLY,
    URGENCY_HIGH,
    URGENCY_MEDIUM,
    days_before,
)
from compliance_alerts.services.channels.base import OutboundMessage

BANNERS = {
    URGENCY_CRITICAL: {"bg_color": "#DC2626", "text_color": "#ffffff", "label": "OVERDUE", "emoji": "⚠️"},
    URGENCY_HIGH: {"bg_color": "#F59E0B", "text_color": "#000000", "label": "DUE SOON", "emoji": "🔴"},
    URGENCY_MEDIUM: {"bg_color": "#3B82F6", "text_color": "#ffffff", "label": "UPCOMING", "emoji": "🟡"},
    URGENCY_EARLY: {"bg_color": "#6B7280", "text_color": "#ffffff", "label": "REMINDER", "emoji": "📅"},
}

SMS_ACK_HINT = "Reply DONE to acknowledge."

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def days_text(days: int) -> str:
    if days == 0:
        return "Due today"
    if days < 0:
        return "{} days overdue".format(abs(days))
    if days == 1:
        return "Due tomorrow"
    return "Due in {} days".format(days)


def email_subject(urgency: str, title: str, days: int) -> str:
    if urgency == URGENCY_CRITICAL:
        return "⚠️ OVERDUE: {} - Action Required".format(title)
    if urgency == URGENCY_HIGH:
        return "🔴 Due Tomorrow: {}".format(title)
    if urgency == URGENCY_MEDIUM:
        return "🟡 Due in {} days: {}".format(days, title)
    return "📅 Reminder: {} due in {} days".format(title, days)


def sms_text(urgency: str, title: str, days: int) -> str:
    if urgency == URGENCY_CRITICAL:
        line = "⚠️ OVERDUE: {} - Action required".format(title)
    elif urgency == URGENCY_HIGH:
        line = "🔴 DUE TOMORROW: {}".format(title)
    elif urgency == URGENCY_MEDIUM:
        line = "🟡 Due in {} days: {}".format(days, title)
    else:
        line = "📅 Reminder: {} due in {} days".format(title, days)
    return "{} {}".format(line, SMS_ACK_HINT)


def ack_url(alert_id: int, base_url: Optional[str] = None) -> str:
    base_url = (base_url or get_settings().PUBLIC_BASE_URL).rstrip("/")
    return "{}/alerts/{}/ack?token={}".format(base_url, alert_id, make_ack_token(alert_id))


def render_email_html(alert, deadline, *, days: int, link: Optional[str]) -> str:
    template = _env.get_template("email/deadline_alert.html")
    return template.render(
        title=deadline.title,
        due_date=ensure_utc(deadline.due_at).strftime("%B %d, %Y"),
        days_text=days_text(days),
        banner=BANNERS.get(alert.scheduled_urgency, BANNERS[URGENCY_EARLY]),
        ack_url=link,
        escalated=alert.escalated_from_id is not None,
        app_name=get_settings().APP_NAME,
    )


def build_message(alert, deadline, *, now: datetime) -> OutboundMessage:
    """Render ``alert`` for its channel."""
    urgency = alert.scheduled_urgency
    title = deadline.title or "Untitled deadline"
    days = days_before(deadline.due_at, now)
    data = {
        "deadline_id": deadline.id,
        "due_at": ensure_utc(deadline.due_at).isoformat(),
        "urgency": urgency,
        "days_remaining": days,
    }

    if alert.channel == CHANNEL_EMAIL:
        link = ack_url(alert.id)
        subject = email_subject(urgency, title, days)
        text = "{}\n\n{}: {}\n\nAcknowledge: {}".format(subject, title, days_text(days), link)
        html = render_email_html(alert, deadline, days=days, link=link)
        return OutboundMessage(
            alert_id=alert.id,
            org_id=alert.org_id,
            channel=alert.channel,
            urgency=urgency,
            subject=subject,
            text=text,
            html=html,
            user_id=alert.user_id,
            data=data,
        )

    if alert.channel == CHANNEL_SMS:
        text = sms_text(urgency, title, days)
        return OutboundMessage(
            alert_id=alert.id,
            org_id=alert.org_id,
            channel=alert.channel,
            urgency=urgency,
            subject=text,
            text=text,
            user_id=alert.user_id,
            data=data,
        )

    if alert.channel == CHANNEL_IN_APP:
        return OutboundMessage(
            alert_id=alert.id,
            org_id=alert.org_id,
            channel=alert.channel,
            urgency=urgency,
            subject="Deadline Reminder: {}".format(title),
            text="Due on {}. Priority: {}".format(ensure_utc(deadline.due_at).strftime("%B %d, %Y"), urgency),
            user_id=alert.user_id,
            data=data,
        )

    raise ValueError("unsupported channel: {}".format(alert.channel))


__all__ = [
    "BANNERS",
    "SMS_ACK_HINT",
    "ack_url",
    "build_message",
    "days_text",
    "email_subject",
    "render_email_html",
    "sms_text",
]
