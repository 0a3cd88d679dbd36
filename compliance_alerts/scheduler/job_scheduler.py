from __future__ import annotations

import logging
import os
import socket
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from compliance_alerts.database import Base, SessionLocal, engine, ensure_sqlite_schema
from compliance_alerts.models import import_all_models
from compliance_alerts.models.job_log import JobLog

logger = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

_ERROR_LIMIT = 1000


def ensure_scheduler_schema(bind=None) -> None:
    import_all_models()
    target = bind or engine
    Base.metadata.create_all(bind=target)
    ensure_sqlite_schema(target)


def parse_time(value: str) -> time:
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError("SCHEDULER_RUN_AFTER must be in HH:MM format")
    hour = int(parts[0])
    minute = int(parts[1])
    second = int(parts[2]) if len(parts) > 2 else 0
    return time(hour=hour, minute=minute, second=second)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _owner_id() -> str:
    return "{}:{}".format(socket.gethostname(), os.getpid())


def _schedule_now(timezone_mode: str) -> datetime:
    if timezone_mode.lower() == "utc":
        return datetime.now(timezone.utc)
    return datetime.now()


def _cutoff_datetime(now: datetime, run_after: time) -> datetime:
    return now.replace(
        hour=run_after.hour,
        minute=run_after.minute,
        second=run_after.second,
        microsecond=0,
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_stale(last_heartbeat: Optional[datetime], now: datetime, stale_seconds: int) -> bool:
    if last_heartbeat is None:
        return True
    return now - _aware(last_heartbeat) > timedelta(seconds=stale_seconds)


def interval_run_key(now: datetime, interval_seconds: int) -> str:
    """Start of the interval slot containing ``now``, e.g. ``2025-06-13T10:15:00``."""
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = int((now - day_start).total_seconds())
    slot_start = day_start + timedelta(seconds=elapsed - elapsed % max(1, interval_seconds))
    return slot_start.strftime("%Y-%m-%dT%H:%M:%S")


class JobRunLedger:
    """Claims and records job runs in ``job_logs``.

    One row exists per ``(job_name, run_key)``. Inserting it claims the
    run; a row left behind by a crashed worker (stale heartbeat) or a
    failed run with retries left is taken over by a conditional UPDATE
    on its current status and attempt, so only one worker wins.
    """

    def __init__(self, session_factory=SessionLocal, owner: Optional[str] = None) -> None:
        self.session_factory = session_factory
        self.owner = owner or _owner_id()

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _may_take_over(self, row: JobLog, now: datetime, *, stale_seconds: int, max_retries: int) -> bool:
        if row.status == STATUS_SUCCESS:
            return False
        if row.status == STATUS_RUNNING:
            return _is_stale(row.last_heartbeat_at, now, stale_seconds)
        if row.attempt >= max_retries:
            return False
        return row.next_retry_at is None or now >= _aware(row.next_retry_at)

    def claim(self, job_name: str, run_key: str, *, stale_seconds: int, max_retries: int) -> Optional[JobLog]:
        now = utc_now()
        with self._session() as db:
            row = JobLog(
                job_name=job_name,
                run_key=run_key,
                status=STATUS_RUNNING,
                attempt=1,
                started_at=now,
                last_heartbeat_at=now,
                locked_by=self.owner,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
            else:
                db.refresh(row)
                return row

            existing = db.execute(
                select(JobLog).where(JobLog.job_name == job_name, JobLog.run_key == run_key)
            ).scalar_one()
            if not self._may_take_over(existing, now, stale_seconds=stale_seconds, max_retries=max_retries):
                return None

            taken = db.execute(
                update(JobLog)
                .where(
                    JobLog.id == existing.id,
                    JobLog.status == existing.status,
                    JobLog.attempt == existing.attempt,
                )
                .values(
                    status=STATUS_RUNNING,
                    attempt=existing.attempt + 1,
                    started_at=now,
                    last_heartbeat_at=now,
                    finished_at=None,
                    locked_by=self.owner,
                    error_message=None,
                    next_retry_at=None,
                    updated_at=now,
                )
            ).rowcount
            if taken != 1:
                db.rollback()
                return None
            db.commit()
            db.refresh(existing)
            if existing.attempt > 1:
                logger.info("Took over job %s for %s", job_name, run_key, extra={"job": job_name})
            return existing

    def _update(self, job_id: int, **values) -> None:
        now = utc_now()
        values.setdefault("last_heartbeat_at", now)
        values["updated_at"] = now
        with self._session() as db:
            db.execute(update(JobLog).where(JobLog.id == job_id).values(**values))
            db.commit()

    def succeed(self, job_id: int) -> None:
        self._update(job_id, status=STATUS_SUCCESS, finished_at=utc_now(), error_message=None, next_retry_at=None)

    def fail(self, row: JobLog, error: Exception, *, retry_seconds: int, max_retries: int) -> None:
        now = utc_now()
        next_retry = None
        if row.attempt < max_retries:
            # Back off linearly with the attempt number.
            next_retry = now + timedelta(seconds=retry_seconds * max(1, row.attempt))
        message = "{}: {}".format(type(error).__name__, error)
        self._update(
            row.id,
            status=STATUS_FAILED,
            finished_at=now,
            error_message=message[:_ERROR_LIMIT],
            next_retry_at=next_retry,
        )

    def touch(self, job_id: int) -> None:
        self._update(job_id)


class HeartbeatThread(threading.Thread):
    """Keeps a claimed run's heartbeat fresh until stopped."""

    def __init__(self, ledger: JobRunLedger, job_id: int, interval_seconds: int) -> None:
        super().__init__(name="job-heartbeat-{}".format(job_id), daemon=True)
        self.ledger = ledger
        self.job_id = job_id
        self.interval = max(5, int(interval_seconds))
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.ledger.touch(self.job_id)
            except Exception:
                logger.exception("Heartbeat update failed for job run %s", self.job_id)

    def stop(self) -> None:
        self._stopped.set()
        if self.is_alive():
            self.join(timeout=self.interval + 1)


@dataclass
class SchedulerConfig:
    """Either a daily job (``run_after_time``) or an interval job (``interval_seconds``)."""

    job_name: str
    poll_seconds: int
    heartbeat_seconds: int
    stale_seconds: int
    retry_seconds: int
    max_retries: int
    run_after_time: Optional[time] = None
    interval_seconds: Optional[int] = None
    timezone_mode: str = "utc"

    def __post_init__(self) -> None:
        if (self.run_after_time is None) == (self.interval_seconds is None):
            raise ValueError("{}: set exactly one of run_after_time or interval_seconds".format(self.job_name))


class PeriodicJobScheduler:
    """Runs one job at most once per run key across every process sharing the database."""

    def __init__(
        self,
        *,
        config: SchedulerConfig,
        job_func: Callable[[], object],
        session_factory=SessionLocal,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._job_func = job_func
        self._ledger = JobRunLedger(session_factory)
        self._clock = clock or (lambda: _schedule_now(config.timezone_mode))
        self._stop_event = threading.Event()

    @property
    def job_name(self) -> str:
        return self._config.job_name

    def current_run_key(self) -> Optional[str]:
        now = self._clock()
        if self._config.interval_seconds is not None:
            return interval_run_key(now, self._config.interval_seconds)
        cutoff = _cutoff_datetime(now, self._config.run_after_time)
        if now < cutoff:
            return None
        return now.date().isoformat()

    def run_once(self) -> bool:
        """Run the job if this worker wins the current run key. True on success."""
        run_key = self.current_run_key()
        if run_key is None:
            return False

        config = self._config
        row = self._ledger.claim(
            config.job_name,
            run_key,
            stale_seconds=config.stale_seconds,
            max_retries=config.max_retries,
        )
        if row is None:
            return False

        extra = {"job": config.job_name}
        heartbeat = HeartbeatThread(self._ledger, row.id, config.heartbeat_seconds)
        heartbeat.start()
        logger.info("Running job %s for %s (attempt %s)", config.job_name, run_key, row.attempt, extra=extra)
        try:
            self._job_func()
        except Exception as exc:
            logger.exception("Job %s failed for %s", config.job_name, run_key, extra=extra)
            self._ledger.fail(row, exc, retry_seconds=config.retry_seconds, max_retries=config.max_retries)
            return False
        finally:
            heartbeat.stop()

        self._ledger.succeed(row.id)
        logger.info("Job %s completed for %s", config.job_name, run_key, extra=extra)
        return True

    def run_forever(self) -> None:
        run_schedulers_forever([self], poll_seconds=self._config.poll_seconds, stop_event=self._stop_event)

    def stop(self) -> None:
        self._stop_event.set()


def run_schedulers_forever(
    schedulers: list[PeriodicJobScheduler],
    *,
    poll_seconds: int,
    stop_event: Optional[threading.Event] = None,
) -> None:
    stop_event = stop_event or threading.Event()
    poll_seconds = max(1, int(poll_seconds))
    logger.info("Scheduler started for job(s) %s", ", ".join(s.job_name for s in schedulers))
    while not stop_event.is_set():
        for scheduler in schedulers:
            try:
                scheduler.run_once()
            except Exception:
                logger.exception("Scheduler loop error for %s.", scheduler.job_name)
        stop_event.wait(poll_seconds)


__all__ = [
    "JobRunLedger",
    "PeriodicJobScheduler",
    "SchedulerConfig",
    "ensure_scheduler_schema",
    "interval_run_key",
    "parse_time",
    "run_schedulers_forever",
]
