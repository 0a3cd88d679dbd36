import logging
from datetime import datetime, timedelta
from typing import Optional

from compliance_alerts.config import get_settings
from compliance_alerts.core.dates import utc_now
from compliance_alerts.database import SessionLocal
from compliance_alerts.services.alert_scheduler import run_scheduling_pass
from compliance_alerts.services.channels import build_adapters
from compliance_alerts.services.dispatcher import dispatch_due_alerts
from compliance_alerts.services.escalation import escalate_unacknowledged
from compliance_alerts.services.rate_limit import SqlRateLimiter

logger = logging.getLogger(__name__)

JOB_SCHEDULING = "daily-alert-scheduling"
JOB_DISPATCH = "alert-dispatch"
JOB_ESCALATION = "alert-escalation-sweep"


def run_scheduling_job(now: Optional[datetime] = None, session_factory=SessionLocal) -> dict:
    now = now or utc_now()
    db = session_factory()
    try:
        stats = run_scheduling_pass(db, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    logger.info("Scheduling pass done: %s", stats, extra={"job": JOB_SCHEDULING})
    return stats


def run_dispatch_job(
    now: Optional[datetime] = None,
    session_factory=SessionLocal,
    adapters: Optional[dict] = None,
) -> dict:
    settings = get_settings()
    stats = dispatch_due_alerts(
        session_factory,
        adapters if adapters is not None else build_adapters(settings),
        now=now or utc_now(),
        settings=settings,
        rate_limiter=SqlRateLimiter.for_sms(settings),
    )
    logger.info("Dispatch pass done: %s", stats, extra={"job": JOB_DISPATCH})
    return stats


def run_escalation_job(now: Optional[datetime] = None, session_factory=SessionLocal) -> dict:
    settings = get_settings()
    db = session_factory()
    try:
        stats = escalate_unacknowledged(
            db,
            now=now or utc_now(),
            grace=timedelta(hours=settings.ESCALATION_GRACE_HOURS),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    logger.info("Escalation sweep done: %s", stats, extra={"job": JOB_ESCALATION})
    return stats


JOBS = {
    JOB_SCHEDULING: run_scheduling_job,
    JOB_DISPATCH: run_dispatch_job,
    JOB_ESCALATION: run_escalation_job,
}


__all__ = [
    "JOBS",
    "JOB_DISPATCH",
    "JOB_ESCALATION",
    "JOB_SCHEDULING",
    "run_dispatch_job",
    "run_escalation_job",
    "run_scheduling_job",
]
