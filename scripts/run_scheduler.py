import argparse
import logging

from compliance_alerts.config import get_settings
from compliance_alerts.core.logging import setup_logging
from compliance_alerts.scheduler import ensure_scheduler_schema, run_schedulers_forever
from compliance_alerts.scheduler.runner import build_schedulers
from compliance_alerts.services.jobs import JOBS

logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Run the deadline alert jobs.")
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run each selected job once (if due) and exit.",
    )
    parser.add_argument(
        "--job",
        action="append",
        choices=sorted(JOBS),
        help="Job to run; repeat for several. Defaults to all jobs.",
    )
    return parser.parse_args()


def main():
    setup_logging()
    args = parse_args()
    settings = get_settings()

    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled by SCHEDULER_ENABLED.")
        return

    ensure_scheduler_schema()
    schedulers = build_schedulers(settings, args.job)

    if args.run_once:
        for scheduler in schedulers:
            scheduler.run_once()
        return

    run_schedulers_forever(schedulers, poll_seconds=settings.SCHEDULER_POLL_SECONDS)


if __name__ == "__main__":
    main()
