from compliance_alerts.scheduler.job_scheduler import (
    PeriodicJobScheduler,
    SchedulerConfig,
    ensure_scheduler_schema,
    parse_time,
    run_schedulers_forever,
)

__all__ = [
    "PeriodicJobScheduler",
    "SchedulerConfig",
    "ensure_scheduler_schema",
    "parse_time",
    "run_schedulers_forever",
]
