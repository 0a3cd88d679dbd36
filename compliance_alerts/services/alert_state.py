"""Delivery state machine for a single alert.

Every transition is a conditional UPDATE keyed on the statuses it may
leave, so a duplicate or out-of-order event (a bounce after an
acknowledgment, a second delivery receipt) matches no row and raises
``DuplicateEventError`` instead of overwriting history. Each successful
transition appends its audit entry in the same transaction.

    scheduled -> sent | failed | cancelled
    sent      -> delivered | failed | acknowledged
    delivered -> failed | acknowledged

``failed``, ``acknowledged`` and ``cancelled`` are terminal. Snoozing is a
self-loop on ``scheduled`` that only touches ``snoozed_until``.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update

from compliance_alerts.core.constants import (
    ACK_METHODS,
    STATUS_ACKNOWLEDGED,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_SCHEDULED,
    STATUS_SENT,
)
from compliance_alerts.core.dates import ensure_utc
from compliance_alerts.core.errors import AlertNotFoundError, AlertStateError, DuplicateEventError
from compliance_alerts.core.urgency import URGENCY_CRITICAL
from compliance_alerts.models.alert import Alert
from compliance_alerts.services.audit_log import record_audit
from compliance_alerts.services.escalation import REASON_DELIVERY_FAILED, escalate_alert

logger = logging.getLogger(__name__)

ALLOWED_SOURCES = {
    STATUS_SENT: (STATUS_SCHEDULED,),
    STATUS_FAILED: (STATUS_SCHEDULED, STATUS_SENT, STATUS_DELIVERED),
    STATUS_DELIVERED: (STATUS_SENT,),
    STATUS_ACKNOWLEDGED: (STATUS_SENT, STATUS_DELIVERED),
    STATUS_CANCELLED: (STATUS_SCHEDULED,),
}

_MAX_ERROR_LENGTH = 1000


def get_alert(db, alert_id: int) -> Alert:
    alert = db.get(Alert, alert_id)
    if alert is None:
        raise AlertNotFoundError("alert {} not found".format(alert_id))
    return alert


def _truncate_error(value) -> Optional[str]:
    if value is None:
        return None
    return str(value)[:_MAX_ERROR_LENGTH]


def _transition(db, alert: Alert, target: str, values: dict, *, conditions=()):
    allowed = ALLOWED_SOURCES[target]
    stmt = (
        update(Alert)
        .where(Alert.id == alert.id, Alert.status.in_(allowed), *conditions)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        db.refresh(alert)
        raise DuplicateEventError(alert.id, alert.status, target)
    db.refresh(alert)
    return alert


def mark_sent(
    db,
    alert: Alert,
    *,
    now: datetime,
    provider_message_id: Optional[str] = None,
    claimed_by: Optional[str] = None,
    retry_count: Optional[int] = None,
) -> Alert:
    now = ensure_utc(now)
    previous_status = alert.status
    conditions = []
    if claimed_by is not None:
        conditions.append(Alert.claimed_by == claimed_by)
    values = dict(
        sent_at=now,
        provider_message_id=provider_message_id,
        claimed_by=None,
        claimed_at=None,
        updated_at=now,
    )
    if retry_count is not None:
        values["retry_count"] = retry_count
    _transition(db, alert, STATUS_SENT, values, conditions=conditions)
    record_audit(
        db,
        alert,
        "sent",
        at=now,
        details={
            "from": previous_status,
            "channel": alert.channel,
            "provider_message_id": provider_message_id,
            "retry_count": alert.retry_count,
        },
    )
    return alert


def mark_failed(
    db,
    alert: Alert,
    *,
    now: datetime,
    error: str,
    retry_count: Optional[int] = None,
    claimed_by: Optional[str] = None,
    source: str = "dispatcher",
    details: Optional[dict] = None,
) -> Alert:
    now = ensure_utc(now)
    previous_status = alert.status
    conditions = []
    if claimed_by is not None:
        conditions.append(Alert.claimed_by == claimed_by)
    values = dict(
        error_message=_truncate_error(error),
        claimed_by=None,
        claimed_at=None,
        updated_at=now,
    )
    if retry_count is not None:
        values["retry_count"] = retry_count
    _transition(db, alert, STATUS_FAILED, values, conditions=conditions)

    audit_details = {
        "from": previous_status,
        "source": source,
        "error": alert.error_message,
        "retry_count": alert.retry_count,
        "final": True,
    }
    if details:
        audit_details.update(details)
    record_audit(db, alert, "failed", at=now, details=audit_details)
    logger.warning(
        "Alert %s failed (%s): %s",
        alert.id,
        source,
        alert.error_message,
        extra={"alert_id": alert.id, "org_id": alert.org_id, "channel": alert.channel},
    )

    if alert.scheduled_urgency == URGENCY_CRITICAL:
        escalate_alert(db, alert, reason=REASON_DELIVERY_FAILED, now=now)
    return alert


def mark_delivered(db, alert: Alert, *, now: datetime, details: Optional[dict] = None) -> Alert:
    now = ensure_utc(now)
    _transition(db, alert, STATUS_DELIVERED, dict(delivered_at=now, updated_at=now))
    record_audit(db, alert, "delivered", at=now, details=details)
    return alert


def acknowledge(db, alert: Alert, *, method: str, now: datetime) -> Alert:
    if method not in ACK_METHODS:
        raise ValueError("unknown acknowledgment method: {}".format(method))
    now = ensure_utc(now)
    previous_status = alert.status
    _transition(
        db,
        alert,
        STATUS_ACKNOWLEDGED,
        dict(acknowledged_at=now, acknowledged_via=method, updated_at=now),
    )
    record_audit(db, alert, "acknowledged", at=now, details={"via": method, "from": previous_status})
    return alert


def cancel(
    db,
    alert: Alert,
    *,
    now: datetime,
    reason: str,
    future_only: bool = True,
) -> Alert:
    """Cancel an unclaimed scheduled alert.

    With ``future_only`` (rescheduling) an alert whose send time has
    already arrived is left alone.
    """
    now = ensure_utc(now)
    conditions = [Alert.claimed_by.is_(None)]
    if future_only:
        conditions.append(Alert.scheduled_for > now)
    _transition(
        db,
        alert,
        STATUS_CANCELLED,
        dict(cancelled_at=now, snoozed_until=None, updated_at=now),
        conditions=conditions,
    )
    record_audit(db, alert, "cancelled", at=now, details={"reason": reason})
    return alert


def snooze(
    db,
    alert: Alert,
    *,
    until: datetime,
    now: datetime,
    due_at: Optional[datetime] = None,
) -> Alert:
    until = ensure_utc(until)
    now = ensure_utc(now)
    if until <= now:
        raise AlertStateError("snooze time must be in the future")
    if alert.status != STATUS_SCHEDULED:
        raise AlertStateError("only scheduled alerts can be snoozed (alert is {})".format(alert.status))
    # Overdue re-reminders already fire after the due date and may be pushed further.
    if due_at is not None:
        due_at = ensure_utc(due_at)
        if ensure_utc(alert.scheduled_for) <= due_at and until > due_at:
            raise AlertStateError("cannot snooze past the deadline due date")

    stmt = (
        update(Alert)
        .where(
            Alert.id == alert.id,
            Alert.status == STATUS_SCHEDULED,
            Alert.claimed_by.is_(None),
        )
        .values(snoozed_until=until, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        db.refresh(alert)
        raise AlertStateError("alert {} is being delivered and cannot be snoozed".format(alert.id))
    db.refresh(alert)
    record_audit(db, alert, "snoozed", at=now, details={"until": until.isoformat()})
    return alert


def unsnooze(db, alert: Alert, *, now: datetime) -> Alert:
    now = ensure_utc(now)
    if alert.status != STATUS_SCHEDULED:
        raise AlertStateError("only scheduled alerts can be unsnoozed (alert is {})".format(alert.status))
    if alert.snoozed_until is None:
        return alert
    stmt = (
        update(Alert)
        .where(Alert.id == alert.id, Alert.status == STATUS_SCHEDULED)
        .values(snoozed_until=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        db.refresh(alert)
        raise AlertStateError("alert {} is no longer scheduled".format(alert.id))
    db.refresh(alert)
    record_audit(db, alert, "scheduled", at=now, details={"unsnoozed": True})
    return alert


__all__ = [
    "ALLOWED_SOURCES",
    "acknowledge",
    "cancel",
    "get_alert",
    "mark_delivered",
    "mark_failed",
    "mark_sent",
    "snooze",
    "unsnooze",
]
