"""Delivery dispatcher.

Picks up due alerts, claims each one with a conditional UPDATE so that
concurrent dispatchers never send the same alert twice, sends it through
the channel adapter with bounded retries, and records the outcome through
the state machine. Every alert is handled in its own session and
committed on its own.
"""

from __future__ import annotations

import logging
import os
import socket
import time as time_module
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, select, update

from compliance_alerts.config import get_settings
from compliance_alerts.core.constants import CHANNEL_SMS, STATUS_SCHEDULED
from compliance_alerts.core.dates import ensure_utc, utc_now
from compliance_alerts.core.errors import (
    DeliveryError,
    DuplicateEventError,
    PermanentDeliveryError,
    RateLimitExceeded,
    TerminalDeliveryError,
)
from compliance_alerts.models.alert import Alert
from compliance_alerts.models.deadline import Deadline
from compliance_alerts.services import alert_state
from compliance_alerts.services.alert_content import build_message
from compliance_alerts.services.audit_log import record_audit
from compliance_alerts.services.channels.base import SendResult

logger = logging.getLogger(__name__)

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_SKIPPED = "skipped"
OUTCOME_RATE_LIMITED = "rate_limited"
OUTCOME_ERROR = "errors"
OUTCOMES = (
    OUTCOME_SENT,
    OUTCOME_FAILED,
    OUTCOME_CANCELLED,
    OUTCOME_SKIPPED,
    OUTCOME_RATE_LIMITED,
    OUTCOME_ERROR,
)


def worker_identity() -> str:
    return "{}:{}:{}".format(socket.gethostname(), os.getpid(), uuid.uuid4().hex[:8])


def _due_conditions(now: datetime, claim_timeout: timedelta):
    return (
        Alert.status == STATUS_SCHEDULED,
        Alert.scheduled_for <= now,
        or_(Alert.snoozed_until.is_(None), Alert.snoozed_until <= now),
        or_(Alert.claimed_by.is_(None), Alert.claimed_at < now - claim_timeout),
    )


def find_due_alert_ids(db, *, now: datetime, limit: int, claim_timeout: timedelta) -> list[int]:
    stmt = (
        select(Alert.id)
        .where(*_due_conditions(ensure_utc(now), claim_timeout))
        .order_by(Alert.scheduled_for, Alert.id)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def claim_alert(db, alert_id: int, worker_id: str, *, now: datetime, claim_timeout: timedelta) -> bool:
    """Take the delivery lock on an alert. Exactly one caller wins."""
    now = ensure_utc(now)
    stmt = (
        update(Alert)
        .where(Alert.id == alert_id, *_due_conditions(now, claim_timeout))
        .values(claimed_by=worker_id, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def release_claim(db, alert_id: int, worker_id: str) -> None:
    db.execute(
        update(Alert)
        .where(Alert.id == alert_id, Alert.claimed_by == worker_id)
        .values(claimed_by=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )


@dataclass
class DeliveryOutcome:
    result: SendResult
    attempts: int
    # Retry budget consumed: transient failures only.
    transient_failures: int

    def error(self) -> Optional[DeliveryError]:
        if self.result.success:
            return None
        message = self.result.error or "delivery failed"
        if self.result.retryable:
            return TerminalDeliveryError(
                "{} (after {} attempts)".format(message, self.attempts),
                attempts=self.attempts,
                status_code=self.result.status_code,
            )
        return PermanentDeliveryError(message, status_code=self.result.status_code)


def deliver_with_retry(
    adapter,
    destination: str,
    message,
    *,
    attempts: int,
    backoff: list[float],
    sleep: Callable[[float], None] = time_module.sleep,
    on_transient_failure: Optional[Callable[[int, SendResult], None]] = None,
) -> DeliveryOutcome:
    attempts = max(1, int(attempts))
    failures = 0
    result = None
    for attempt in range(1, attempts + 1):
        result = adapter.send(destination, message)
        if result.success or not result.retryable:
            return DeliveryOutcome(result=result, attempts=attempt, transient_failures=failures)

        failures += 1
        if on_transient_failure is not None:
            on_transient_failure(attempt, result)
        if attempt < attempts:
            delay = backoff[min(attempt - 1, len(backoff) - 1)] if backoff else 0
            sleep(delay)
    return DeliveryOutcome(result=result, attempts=attempts, transient_failures=failures)


def _deadline_closed(deadline: Optional[Deadline], alert: Alert) -> bool:
    if deadline is None or deadline.deleted_at is not None:
        return True
    if deadline.completed_at is None:
        return False
    return ensure_utc(deadline.completed_at) < ensure_utc(alert.scheduled_for)


def dispatch_alert(
    db,
    alert_id: int,
    adapters: dict,
    *,
    now: datetime,
    worker_id: str,
    sleep: Callable[[float], None] = time_module.sleep,
    rate_limiter=None,
    settings=None,
) -> str:
    """Deliver one due alert. Commits; returns the outcome name."""
    settings = settings or get_settings()
    now = ensure_utc(now)
    claim_timeout = timedelta(seconds=settings.DISPATCH_CLAIM_TIMEOUT_SECONDS)

    if not claim_alert(db, alert_id, worker_id, now=now, claim_timeout=claim_timeout):
        db.rollback()
        return OUTCOME_SKIPPED
    db.commit()

    alert = db.get(Alert, alert_id)
    db.refresh(alert)
    log_extra = {"alert_id": alert.id, "org_id": alert.org_id, "channel": alert.channel}
    deadline = db.get(Deadline, alert.deadline_id)

    if _deadline_closed(deadline, alert):
        release_claim(db, alert.id, worker_id)
        db.refresh(alert)
        alert_state.cancel(db, alert, now=now, reason="deadline_closed", future_only=False)
        db.commit()
        logger.info("Alert %s cancelled: deadline closed", alert.id, extra=log_extra)
        return OUTCOME_CANCELLED

    adapter = adapters.get(alert.channel)
    if adapter is None:
        alert_state.mark_failed(
            db,
            alert,
            now=now,
            error="no adapter configured for channel {}".format(alert.channel),
            claimed_by=worker_id,
        )
        db.commit()
        return OUTCOME_FAILED

    if alert.channel == CHANNEL_SMS and rate_limiter is not None:
        try:
            rate_limiter.hit(db, alert.org_id, now=now)
        except RateLimitExceeded:
            db.rollback()
            release_claim(db, alert.id, worker_id)
            db.commit()
            return OUTCOME_RATE_LIMITED

    message = build_message(alert, deadline, now=now)
    # Nothing may hold the write lock while a provider call or backoff is in progress.
    db.commit()

    def record_transient(attempt: int, result: SendResult) -> None:
        record_audit(
            db,
            alert,
            "failed",
            at=now,
            details={
                "final": False,
                "attempt": attempt,
                "retryable": True,
                "error": result.error,
            },
        )
        db.commit()
        logger.info(
            "Alert %s attempt %s failed, will retry: %s",
            alert_id,
            attempt,
            result.error,
            extra=log_extra,
        )

    outcome = deliver_with_retry(
        adapter.for_session(db),
        alert.destination,
        message,
        attempts=settings.DELIVERY_MAX_ATTEMPTS,
        backoff=settings.backoff_schedule,
        sleep=sleep,
        on_transient_failure=record_transient,
    )

    try:
        if outcome.result.success:
            alert_state.mark_sent(
                db,
                alert,
                now=now,
                provider_message_id=outcome.result.provider_message_id,
                claimed_by=worker_id,
                retry_count=outcome.transient_failures,
            )
            db.commit()
            logger.info("Alert %s sent", alert.id, extra=log_extra)
            return OUTCOME_SENT

        error = outcome.error()
        alert_state.mark_failed(
            db,
            alert,
            now=now,
            error=str(error),
            retry_count=outcome.transient_failures,
            claimed_by=worker_id,
            details={
                "attempts": outcome.attempts,
                "error_type": type(error).__name__,
                "status_code": error.status_code,
            },
        )
        db.commit()
        return OUTCOME_FAILED
    except DuplicateEventError as exc:
        # Our claim expired and another worker took the alert over.
        db.rollback()
        logger.warning("Alert %s outcome discarded: %s", alert_id, exc, extra=log_extra)
        return OUTCOME_SKIPPED


def dispatch_due_alerts(
    session_factory,
    adapters: dict,
    *,
    now: Optional[datetime] = None,
    settings=None,
    sleep: Callable[[float], None] = time_module.sleep,
    rate_limiter=None,
    max_workers: Optional[int] = None,
    worker_id: Optional[str] = None,
) -> dict:
    """Dispatch every alert due at ``now``; returns outcome counts."""
    settings = settings or get_settings()
    now = ensure_utc(now) if now is not None else utc_now()
    worker_id = worker_id or worker_identity()
    if max_workers is None:
        max_workers = settings.DISPATCH_MAX_WORKERS

    db = session_factory()
    try:
        alert_ids = find_due_alert_ids(
            db,
            now=now,
            limit=settings.DISPATCH_BATCH_SIZE,
            claim_timeout=timedelta(seconds=settings.DISPATCH_CLAIM_TIMEOUT_SECONDS),
        )
    finally:
        db.close()

    stats = {name: 0 for name in OUTCOMES}
    stats["due"] = len(alert_ids)
    if not alert_ids:
        return stats

    def run(alert_id: int) -> str:
        session = session_factory()
        try:
            return dispatch_alert(
                session,
                alert_id,
                adapters,
                now=now,
                worker_id=worker_id,
                sleep=sleep,
                rate_limiter=rate_limiter,
                settings=settings,
            )
        except Exception:
            session.rollback()
            logger.exception("Dispatch of alert %s failed", alert_id, extra={"alert_id": alert_id})
            return OUTCOME_ERROR
        finally:
            session.close()

    if max_workers <= 1 or len(alert_ids) == 1:
        outcomes = [run(alert_id) for alert_id in alert_ids]
    else:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(alert_ids))) as pool:
            outcomes = list(pool.map(run, alert_ids))

    for outcome in outcomes:
        stats[outcome] += 1
    logger.info(
        "Dispatch pass: %s due, %s sent, %s failed, %s cancelled",
        stats["due"],
        stats[OUTCOME_SENT],
        stats[OUTCOME_FAILED],
        stats[OUTCOME_CANCELLED],
    )
    return stats


__all__ = [
    "DeliveryOutcome",
    "claim_alert",
    "deliver_with_retry",
    "dispatch_alert",
    "dispatch_due_alerts",
    "find_due_alert_ids",
    "release_claim",
    "worker_identity",
]
