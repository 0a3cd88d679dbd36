import logging
from datetime import datetime, timedelta

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError

from compliance_alerts.core.constants import (
    CHANNEL_EMAIL,
    STATUS_DELIVERED,
    STATUS_SCHEDULED,
    STATUS_SENT,
)
from compliance_alerts.core.dates import ensure_utc
from compliance_alerts.core.errors import EscalationSuppressedError
from compliance_alerts.core.urgency import URGENCY_CRITICAL
from compliance_alerts.models.alert import Alert
from compliance_alerts.models.escalation import AlertEscalation
from compliance_alerts.services.audit_log import record_audit
from compliance_alerts.services.preferences import resolve_preferences

logger = logging.getLogger(__name__)

REASON_DELIVERY_FAILED = "delivery_failed"
REASON_UNACKNOWLEDGED = "unacknowledged"


def _ensure_enabled(preferences, alert: Alert) -> None:
    if not preferences.escalation_enabled:
        raise EscalationSuppressedError(
            "escalation disabled for org {} user {}".format(alert.org_id, alert.user_id)
        )


def _email_contacts(contacts) -> list[str]:
    addresses = []
    for contact in contacts:
        value = str(contact or "").strip()
        if "@" not in value:
            logger.warning("Skipping escalation contact without an email address: %r", value)
            continue
        if value.lower() not in (item.lower() for item in addresses):
            addresses.append(value)
    return addresses


def already_escalated(db, alert_id: int) -> bool:
    stmt = select(AlertEscalation.id).where(AlertEscalation.source_alert_id == alert_id).limit(1)
    return db.execute(stmt).first() is not None


def escalate_alert(db, alert: Alert, *, reason: str, now: datetime) -> list[Alert]:
    """Create email alerts for the escalation contacts of ``alert``.

    Fires at most once per originating alert; escalation alerts never
    escalate again themselves.
    """
    now = ensure_utc(now)
    if alert.escalated_from_id is not None:
        return []
    if alert.scheduled_urgency != URGENCY_CRITICAL:
        return []

    preferences = resolve_preferences(db, alert.org_id, alert.user_id)
    try:
        _ensure_enabled(preferences, alert)
    except EscalationSuppressedError as exc:
        logger.info("Escalation suppressed for alert %s: %s", alert.id, exc, extra={"alert_id": alert.id})
        return []

    if already_escalated(db, alert.id):
        return []

    contacts = _email_contacts(preferences.escalation_contacts)
    try:
        with db.begin_nested():
            db.add(
                AlertEscalation(
                    source_alert_id=alert.id,
                    org_id=alert.org_id,
                    reason=reason,
                    contacts=contacts,
                    created_at=now,
                )
            )
            db.flush()
    except IntegrityError:
        logger.info("Alert %s was escalated concurrently", alert.id, extra={"alert_id": alert.id})
        return []

    created = []
    for address in contacts:
        escalation_alert = Alert(
            deadline_id=alert.deadline_id,
            org_id=alert.org_id,
            user_id=None,
            destination=address,
            channel=CHANNEL_EMAIL,
            scheduled_for=now,
            scheduled_urgency=URGENCY_CRITICAL,
            status=STATUS_SCHEDULED,
            retry_count=0,
            escalated_from_id=alert.id,
            created_at=now,
            updated_at=now,
        )
        db.add(escalation_alert)
        record_audit(
            db,
            escalation_alert,
            "scheduled",
            at=now,
            details={"escalated_from": alert.id, "reason": reason, "channel": CHANNEL_EMAIL},
        )
        created.append(escalation_alert)

    record_audit(
        db,
        alert,
        "escalated",
        at=now,
        details={
            "reason": reason,
            "contacts": contacts,
            "alert_ids": [item.id for item in created],
        },
    )
    logger.info(
        "Escalated alert %s (%s) to %d contact(s)",
        alert.id,
        reason,
        len(created),
        extra={"alert_id": alert.id, "org_id": alert.org_id},
    )
    return created


def escalate_unacknowledged(db, *, now: datetime, grace: timedelta) -> dict:
    """Escalate critical alerts left without acknowledgment past ``grace``."""
    now = ensure_utc(now)
    cutoff = now - grace
    stmt = (
        select(Alert)
        .where(
            Alert.scheduled_urgency == URGENCY_CRITICAL,
            Alert.status.in_((STATUS_SENT, STATUS_DELIVERED)),
            Alert.escalated_from_id.is_(None),
            Alert.sent_at <= cutoff,
            ~exists().where(AlertEscalation.source_alert_id == Alert.id),
        )
        .order_by(Alert.sent_at)
    )
    stats = {"checked": 0, "escalated": 0, "alerts_created": 0}
    for alert in db.execute(stmt).scalars().all():
        stats["checked"] += 1
        created = escalate_alert(db, alert, reason=REASON_UNACKNOWLEDGED, now=now)
        if already_escalated(db, alert.id):
            stats["escalated"] += 1
        stats["alerts_created"] += len(created)
    return stats


__all__ = [
    "REASON_DELIVERY_FAILED",
    "REASON_UNACKNOWLEDGED",
    "already_escalated",
    "escalate_alert",
    "escalate_unacknowledged",
]
