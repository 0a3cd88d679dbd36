from typing import Iterable, Optional

from compliance_alerts.scheduler.job_scheduler import PeriodicJobScheduler, SchedulerConfig, parse_time
from compliance_alerts.services.jobs import JOB_DISPATCH, JOB_ESCALATION, JOB_SCHEDULING, JOBS


def job_config(settings, job_name: str) -> SchedulerConfig:
    common = dict(
        job_name=job_name,
        poll_seconds=settings.SCHEDULER_POLL_SECONDS,
        heartbeat_seconds=settings.SCHEDULER_HEARTBEAT_SECONDS,
        stale_seconds=settings.SCHEDULER_STALE_SECONDS,
        retry_seconds=settings.SCHEDULER_RETRY_SECONDS,
        max_retries=settings.SCHEDULER_MAX_RETRIES,
        timezone_mode=settings.SCHEDULER_TZ,
    )
    if job_name == JOB_SCHEDULING:
        return SchedulerConfig(run_after_time=parse_time(settings.SCHEDULER_RUN_AFTER), **common)
    if job_name == JOB_DISPATCH:
        return SchedulerConfig(interval_seconds=settings.DISPATCH_INTERVAL_SECONDS, **common)
    if job_name == JOB_ESCALATION:
        return SchedulerConfig(interval_seconds=settings.ESCALATION_SWEEP_SECONDS, **common)
    raise ValueError("unknown job: {}".format(job_name))


def build_schedulers(settings, job_names: Optional[Iterable[str]] = None) -> list[PeriodicJobScheduler]:
    names = list(job_names) if job_names else list(JOBS)
    schedulers = []
    for name in names:
        if name not in JOBS:
            raise ValueError("unknown job: {}".format(name))
        job_func = JOBS[name]
        schedulers.append(PeriodicJobScheduler(config=job_config(settings, name), job_func=job_func))
    return schedulers


__all__ = ["build_schedulers", "job_config"]
