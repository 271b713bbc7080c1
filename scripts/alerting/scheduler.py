"""APScheduler-based interval scheduling for monitor runs."""

from __future__ import annotations

import logging

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.alerting.base_store import StateStore
from scripts.alerting.config import AlertingConfig

logger = logging.getLogger("alerting.scheduler")


def _run_monitor(monitor_name: str, config: AlertingConfig, store: StateStore) -> None:
    """Run a single monitor; errors are logged, never raised into the scheduler."""
    from scripts.alerting.cli import run_monitors

    try:
        results = run_monitors([monitor_name], config, store)
        logger.info("Scheduled run finished: %s", results, extra={"monitor": monitor_name})
    except Exception as exc:
        logger.error(
            "Scheduled run of %s failed: %s", monitor_name, exc,
            exc_info=True, extra={"monitor": monitor_name},
        )


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def schedule_intervals(config: AlertingConfig) -> dict[str, int]:
    """Interval in minutes for each monitor job."""
    sched = config.scheduler
    return {
        "stale_devices": sched.stale_devices_interval_min,
        "noncompliant_devices": sched.noncompliant_devices_interval_min,
        "pending_approvals": sched.pending_approvals_interval_min,
        "apple_tokens": sched.apple_tokens_interval_min,
    }


def build_scheduler(config: AlertingConfig, store: StateStore) -> BlockingScheduler:
    """Create the scheduler with one interval job per monitor.

    ``max_instances=1`` keeps a channel from overlapping itself, since the
    notification state has no locking.
    """
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)

    for name, minutes in schedule_intervals(config).items():
        if minutes <= 0:
            logger.info("Monitor %s disabled (interval %d)", name, minutes)
            continue
        scheduler.add_job(
            _run_monitor,
            "interval",
            minutes=minutes,
            args=[name, config, store],
            id=name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=config.scheduler.misfire_grace_time,
        )
    return scheduler


def start_scheduler(config: AlertingConfig, store: StateStore) -> None:
    """Start the blocking scheduler with interval jobs for each monitor."""
    scheduler = build_scheduler(config, store)
    logger.info("Starting scheduler with jobs: %s",
                [j.id for j in scheduler.get_jobs()])
    scheduler.start()
