from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from compliance_alerts.config import get_settings
from compliance_alerts.core.constants import STATUS_CANCELLED, STATUS_SCHEDULED
from compliance_alerts.core.dates import ensure_utc
from compliance_alerts.core.errors import ConfigurationError, DuplicateEventError
from compliance_alerts.core.urgency import classify_urgency
from compliance_alerts.models.alert import Alert
from compliance_alerts.models.deadline import Deadline
from compliance_alerts.services import alert_state
from compliance_alerts.services.audit_log import record_audit
from compliance_alerts.services.channel_resolver import resolve_channels, resolve_destination
from compliance_alerts.services.preferences import resolve_preferences

logger = logging.getLogger(__name__)

EVENT_CREATED = "created"
EVENT_UPDATED = "updated"
EVENT_REOPENED = "reopened"
EVENT_COMPLETED = "completed"
EVENT_DELETED = "deleted"
DEADLINE_EVENTS = (EVENT_CREATED, EVENT_UPDATED, EVENT_REOPENED, EVENT_COMPLETED, EVENT_DELETED)

_DEADLINE_FIELDS = (
    "org_id",
    "title",
    "due_at",
    "recurrence_type",
    "recurrence_interval_days",
    "recurrence_base",
    "assignee_id",
    "assignee_email",
    "completed_at",
    "deleted_at",
)
_DEADLINE_TIMESTAMPS = ("due_at", "completed_at", "deleted_at")


@dataclass(frozen=True)
class PlannedAlert:
    days_before: int
    scheduled_for: datetime
    urgency: str
    channel: str
    destination: str

    @property
    def key(self):
        return (self.channel, self.scheduled_for, self.destination)


def plan_alerts(
    deadline: Deadline,
    preferences,
    *,
    now: Optional[datetime] = None,
    lookback: Optional[timedelta] = None,
) -> list[PlannedAlert]:
    """Expand a deadline into one planned alert per alert-day x channel.

    Urgency comes from the offset (``scheduled_for`` against the due
    date), never from ``now``. ``now``/``lookback`` only drop milestones
    that are already too far in the past to be worth sending.
    """
    due_at = ensure_utc(deadline.due_at)
    completed_at = ensure_utc(deadline.completed_at)
    earliest = None
    if now is not None:
        earliest = ensure_utc(now) - (lookback or timedelta(0))

    planned = []
    seen = set()
    for offset in preferences.alert_days:
        days = int(offset)
        scheduled_for = due_at - timedelta(days=days)
        if earliest is not None and scheduled_for < earliest:
            continue
        if completed_at is not None and completed_at < scheduled_for:
            continue

        urgency = classify_urgency(due_at, scheduled_for)
        channels = resolve_channels(urgency, preferences)
        if not channels:
            logger.info(
                "No channels enabled for %s tier; skipping day %s of deadline %s",
                urgency,
                days,
                deadline.id,
            )
            continue

        for channel in channels:
            try:
                destination = resolve_destination(
                    channel,
                    preferences,
                    user_id=deadline.assignee_id,
                    assignee_email=deadline.assignee_email,
                )
            except ConfigurationError as exc:
                logger.warning(
                    "Skipping %s alert for deadline %s (day %s): %s",
                    channel,
                    deadline.id,
                    days,
                    exc,
                    extra={"org_id": deadline.org_id, "channel": channel},
                )
                continue
            item = PlannedAlert(
                days_before=days,
                scheduled_for=scheduled_for,
                urgency=urgency,
                channel=channel,
                destination=destination,
            )
            if item.key in seen:
                continue
            seen.add(item.key)
            planned.append(item)
    return planned


def _find_existing(db, deadline_id: str, item: PlannedAlert) -> Optional[Alert]:
    stmt = (
        select(Alert)
        .where(
            Alert.deadline_id == deadline_id,
            Alert.channel == item.channel,
            Alert.scheduled_for == item.scheduled_for,
            Alert.destination == item.destination,
            Alert.status != STATUS_CANCELLED,
            Alert.escalated_from_id.is_(None),
        )
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def _insert_planned(db, deadline: Deadline, item: PlannedAlert, now: datetime) -> Optional[Alert]:
    alert = Alert(
        deadline_id=deadline.id,
        org_id=deadline.org_id,
        user_id=deadline.assignee_id,
        destination=item.destination,
        channel=item.channel,
        scheduled_for=item.scheduled_for,
        scheduled_urgency=item.urgency,
        status=STATUS_SCHEDULED,
        retry_count=0,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.begin_nested():
            db.add(alert)
            db.flush()
    except IntegrityError:
        # Another worker created the same alert first.
        return None
    record_audit(
        db,
        alert,
        "scheduled",
        at=now,
        details={
            "days_before": item.days_before,
            "channel": item.channel,
            "urgency": item.urgency,
        },
    )
    return alert


def _lookback() -> timedelta:
    return timedelta(minutes=get_settings().SCHEDULE_LOOKBACK_MINUTES)


def schedule_deadline(db, deadline: Deadline, *, now: datetime, preferences=None) -> list[Alert]:
    """Create the not-yet-existing alerts for ``deadline``. Idempotent."""
    now = ensure_utc(now)
    if deadline.deleted_at is not None:
        return []
    if preferences is None:
        preferences = resolve_preferences(db, deadline.org_id, deadline.assignee_id)

    created = []
    for item in plan_alerts(deadline, preferences, now=now, lookback=_lookback()):
        if _find_existing(db, deadline.id, item) is not None:
            continue
        alert = _insert_planned(db, deadline, item, now)
        if alert is not None:
            created.append(alert)
    if created:
        logger.info(
            "Scheduled %d alert(s) for deadline %s",
            len(created),
            deadline.id,
            extra={"org_id": deadline.org_id},
        )
    return created


def _pending_alerts(db, deadline_id: str) -> list[Alert]:
    stmt = select(Alert).where(
        Alert.deadline_id == deadline_id,
        Alert.status == STATUS_SCHEDULED,
        Alert.claimed_by.is_(None),
        Alert.escalated_from_id.is_(None),
    )
    return list(db.execute(stmt).scalars())


def _cancel_quietly(db, alert: Alert, *, now: datetime, reason: str, future_only: bool) -> bool:
    try:
        alert_state.cancel(db, alert, now=now, reason=reason, future_only=future_only)
    except DuplicateEventError:
        return False
    return True


def reschedule_deadline(
    db,
    deadline: Deadline,
    *,
    now: datetime,
    reason: str = "deadline_rescheduled",
    preferences=None,
) -> dict:
    """Bring a deadline's future, unsent alerts in line with its current plan.

    Future scheduled alerts that the new plan no longer contains are
    cancelled; missing ones are created. Sent, delivered, failed and
    acknowledged alerts are history and are never touched.
    """
    now = ensure_utc(now)
    if not deadline.is_open:
        return {"created": [], "cancelled": close_deadline(db, deadline, now=now)}

    if preferences is None:
        preferences = resolve_preferences(db, deadline.org_id, deadline.assignee_id)
    planned_keys = {
        item.key for item in plan_alerts(deadline, preferences, now=now, lookback=_lookback())
    }

    cancelled = []
    for alert in _pending_alerts(db, deadline.id):
        if ensure_utc(alert.scheduled_for) <= now:
            continue
        key = (alert.channel, ensure_utc(alert.scheduled_for), alert.destination)
        if key in planned_keys:
            continue
        if _cancel_quietly(db, alert, now=now, reason=reason, future_only=True):
            cancelled.append(alert.id)

    created = schedule_deadline(db, deadline, now=now, preferences=preferences)
    return {"created": [alert.id for alert in created], "cancelled": cancelled}


def close_deadline(db, deadline: Deadline, *, now: datetime) -> list[int]:
    """Cancel every unsent alert of a completed or deleted deadline."""
    now = ensure_utc(now)
    reason = "deadline_deleted" if deadline.deleted_at is not None else "deadline_completed"
    cancelled = []
    for alert in _pending_alerts(db, deadline.id):
        if _cancel_quietly(db, alert, now=now, reason=reason, future_only=False):
            cancelled.append(alert.id)
    if cancelled:
        logger.info(
            "Cancelled %d alert(s) for closed deadline %s",
            len(cancelled),
            deadline.id,
            extra={"org_id": deadline.org_id},
        )
    return cancelled


def upsert_deadline(db, deadline_id: str, values: dict, *, now: datetime) -> Deadline:
    deadline = db.get(Deadline, deadline_id)
    if deadline is None:
        deadline = Deadline(id=deadline_id, created_at=now)
        db.add(deadline)
    for name in _DEADLINE_FIELDS:
        if name not in values:
            continue
        value = values[name]
        if name in _DEADLINE_TIMESTAMPS:
            value = ensure_utc(value)
        setattr(deadline, name, value)
    if deadline.title is None:
        deadline.title = ""
    deadline.updated_at = now
    db.flush()
    return deadline


def handle_deadline_event(db, event: str, deadline_id: str, values: dict, *, now: datetime) -> dict:
    """Apply one upstream deadline trigger and return what changed."""
    if event not in DEADLINE_EVENTS:
        raise ValueError("unknown deadline event: {}".format(event))
    now = ensure_utc(now)
    values = dict(values)
    if event == EVENT_COMPLETED and values.get("completed_at") is None:
        values["completed_at"] = now
    if event == EVENT_DELETED and values.get("deleted_at") is None:
        values["deleted_at"] = now
    if event == EVENT_REOPENED:
        values["completed_at"] = None
        values["deleted_at"] = None

    deadline = upsert_deadline(db, deadline_id, values, now=now)
    if event in (EVENT_COMPLETED, EVENT_DELETED) or not deadline.is_open:
        return {"created": [], "cancelled": close_deadline(db, deadline, now=now)}
    if event == EVENT_CREATED:
        created = schedule_deadline(db, deadline, now=now)
        return {"created": [alert.id for alert in created], "cancelled": []}
    return reschedule_deadline(db, deadline, now=now, reason="deadline_{}".format(event))


def open_deadlines(db, *, org_id: Optional[str] = None, assignee_id: Optional[str] = None) -> list[Deadline]:
    stmt = select(Deadline).where(Deadline.completed_at.is_(None), Deadline.deleted_at.is_(None))
    if org_id is not None:
        stmt = stmt.where(Deadline.org_id == org_id)
    if assignee_id is not None:
        stmt = stmt.where(Deadline.assignee_id == assignee_id)
    return list(db.execute(stmt.order_by(Deadline.due_at)).scalars())


def reschedule_for_preferences(db, org_id: str, user_id: Optional[str], *, now: datetime) -> dict:
    """Re-plan the open deadlines whose preferences just changed."""
    stats = {"deadlines": 0, "created": 0, "cancelled": 0}
    for deadline in open_deadlines(db, org_id=org_id, assignee_id=user_id):
        result = reschedule_deadline(db, deadline, now=now, reason="preferences_updated")
        stats["deadlines"] += 1
        stats["created"] += len(result["created"])
        stats["cancelled"] += len(result["cancelled"])
    return stats


def run_scheduling_pass(db, *, now: datetime) -> dict:
    """Daily tick: make sure every open deadline has its alerts."""
    stats = {"deadlines": 0, "created": 0, "cancelled": 0}
    for deadline in open_deadlines(db):
        result = reschedule_deadline(db, deadline, now=now, reason="scheduling_pass")
        stats["deadlines"] += 1
        stats["created"] += len(result["created"])
        stats["cancelled"] += len(result["cancelled"])
    return stats


__all__ = [
    "DEADLINE_EVENTS",
    "PlannedAlert",
    "close_deadline",
    "handle_deadline_event",
    "open_deadlines",
    "plan_alerts",
    "reschedule_deadline",
    "reschedule_for_preferences",
    "run_scheduling_pass",
    "schedule_deadline",
    "upsert_deadline",
]
