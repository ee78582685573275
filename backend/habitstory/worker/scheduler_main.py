"""Dedicated APScheduler worker process.

Used where no external timer calls the ``/cron`` endpoints. Both paths go
through the same job guard, so running the worker alongside a timer service
does not double-execute work.
"""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from habitstory.core.config import settings
from habitstory.core.logging import configure_logging
from habitstory.db.session import SessionLocal
from habitstory.observability.client import init_opik
from habitstory.services.jobs import run_schedule_job, run_streak_job


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    init_opik()
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running jobs once on startup")
            schedule_tasks_job()
            update_streaks_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        schedule_tasks_job,
        trigger="cron",
        minute=settings.schedule_job_minute,
        id="schedule_tasks_job",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        update_streaks_job,
        trigger="cron",
        hour=settings.streak_job_hour,
        minute=settings.streak_job_minute,
        id="update_streaks_job",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Registered scheduler jobs (schedule-tasks hourly at :%02d, update-streaks at %02d:%02d %s)",
        settings.schedule_job_minute,
        settings.streak_job_hour,
        settings.streak_job_minute,
        settings.scheduler_timezone,
    )


def schedule_tasks_job() -> None:
    try:
        outcome = run_schedule_job(SessionLocal)
    except Exception:
        logger.exception("Schedule job failed")
        return
    logger.info(
        "Schedule job finished: status=%s retries=%s result=%s", outcome.status, outcome.retries, outcome.result
    )


def update_streaks_job() -> None:
    try:
        outcome = run_streak_job(SessionLocal)
    except Exception:
        logger.exception("Streak job failed")
        return
    logger.info("Streak job finished: status=%s retries=%s result=%s", outcome.status, outcome.retries, outcome.result)


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
