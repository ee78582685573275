"""Recurring job entrypoints shared by the cron routes and the worker."""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.orm import sessionmaker

from habitstory.core.clock import Clock, utcnow
from habitstory.core.config import settings
from habitstory.core.errors import ConfigurationError, TransientIOError, UserNotFoundError
from habitstory.db.models.user import Assignment, User, UserProfile
from habitstory.observability.metrics import log_metric
from habitstory.services.batch import run_bounded
from habitstory.services.habits import zone_or_utc
from habitstory.services.job_runner import JobRunner, JobRunOutcome
from habitstory.services.notifications.base import NotificationDispatcher
from habitstory.services.notifications.factory import get_notification_dispatcher
from habitstory.services.scheduler import ScheduleResult, TaskScheduler
from habitstory.services.streaks import StreakEngine


logger = logging.getLogger(__name__)

SCHEDULE_JOB_NAME = "schedule-tasks"
STREAK_JOB_NAME = "update-streaks"
JOB_NAMES = (SCHEDULE_JOB_NAME, STREAK_JOB_NAME)


@dataclass
class BatchScheduleResult:
    users_processed: int = 0
    users_failed: int = 0
    tasks_created: int = 0
    tasks_expired: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def generate_schedules_for_active_users(
    session_factory: sessionmaker,
    *,
    clock: Clock = utcnow,
    days: Optional[int] = None,
    max_workers: Optional[int] = None,
    force: bool = False,
) -> BatchScheduleResult:
    """Generate the next ``days`` local days (starting tomorrow) for every active user.

    A user whose run fails (missing assignment, unknown house, I/O error) is
    reported in ``errors`` without stopping the others.
    """
    days = days if days is not None else settings.schedule_days_ahead
    max_workers = max_workers if max_workers is not None else settings.batch_max_workers

    with session_factory() as db:
        targets: List[Tuple[UUID, Optional[str]]] = [
            (row[0], row[1])
            for row in db.query(User.id, UserProfile.timezone)
            .join(Assignment, and_(Assignment.user_id == User.id, Assignment.active.is_(True)))
            .outerjoin(UserProfile, UserProfile.user_id == User.id)
            .filter(User.active.is_(True))
            .distinct()
            .all()
        ]
    logger.info("Users to schedule: %s", len(targets))

    def _schedule_one(target: Tuple[UUID, Optional[str]]) -> Tuple[UUID, Optional[ScheduleResult], Optional[str]]:
        user_id, tz_name = target
        start_date = clock().astimezone(zone_or_utc(tz_name)).date() + timedelta(days=1)
        with session_factory() as db:
            try:
                outcome = TaskScheduler(db, clock=clock).generate_schedule(user_id, start_date, days, force=force)
            except (ConfigurationError, UserNotFoundError) as exc:
                logger.error("Cannot schedule user %s: %s", user_id, exc)
                return user_id, None, f"User {user_id}: {exc}"
            except Exception as exc:
                logger.exception("Failed to schedule for user %s", user_id)
                return user_id, None, f"User {user_id}: {exc}"
        return user_id, outcome, None

    result = BatchScheduleResult()
    for user_id, outcome, error in run_bounded(targets, _schedule_one, max_workers):
        if error:
            result.users_failed += 1
            result.errors.append(error)
            continue
        result.users_processed += 1
        result.tasks_created += outcome.created
        result.errors.extend(f"User {user_id}: {message}" for message in outcome.errors)

    with session_factory() as db:
        result.tasks_expired = TaskScheduler(db, clock=clock).expire_overdue_tasks()

    log_metric("scheduler.batch.users_processed", result.users_processed)
    log_metric("scheduler.batch.users_failed", result.users_failed)
    return result


def run_with_retry(
    job_name: str,
    call: Callable[[], JobRunOutcome],
    *,
    max_retries: Optional[int] = None,
    initial_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobRunOutcome:
    """Invoke ``call`` again with exponential backoff while it raises ``TransientIOError``.

    Every other exception (``ConfigurationError`` included) propagates on the
    first attempt. The number of retries taken is stored on the outcome.
    """
    max_retries = max_retries if max_retries is not None else settings.job_max_retries
    initial_delay = initial_delay if initial_delay is not None else settings.job_retry_initial_delay_seconds
    max_delay = max_delay if max_delay is not None else settings.job_retry_max_delay_seconds

    attempt = 0
    while True:
        try:
            outcome = call()
        except TransientIOError as exc:
            if attempt >= max_retries:
                logger.error("Job %s failed after %s retries: %s", job_name, attempt, exc)
                raise
            delay = min(initial_delay * (2 ** attempt), max_delay)
            attempt += 1
            logger.warning("Job %s retry %s in %.1fs after transient error: %s", job_name, attempt, delay, exc)
            log_metric("jobs.retried", 1, metadata={"job": job_name, "attempt": attempt})
            sleep(delay)
            continue
        outcome.retries = attempt
        return outcome


def run_schedule_job(
    session_factory: sessionmaker,
    *,
    runner: Optional[JobRunner] = None,
    clock: Clock = utcnow,
    ignore_interval: bool = False,
    max_retries: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobRunOutcome:
    runner = runner or JobRunner(session_factory, clock=clock)
    return run_with_retry(
        SCHEDULE_JOB_NAME,
        lambda: runner.run(
            SCHEDULE_JOB_NAME,
            settings.schedule_job_min_interval_hours,
            lambda: generate_schedules_for_active_users(session_factory, clock=clock),
            ignore_interval=ignore_interval,
        ),
        max_retries=max_retries,
        sleep=sleep,
    )


def run_streak_job(
    session_factory: sessionmaker,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    runner: Optional[JobRunner] = None,
    clock: Clock = utcnow,
    ignore_interval: bool = False,
    max_retries: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobRunOutcome:
    engine = StreakEngine(session_factory, dispatcher or get_notification_dispatcher(), clock=clock)
    runner = runner or JobRunner(session_factory, clock=clock)
    return run_with_retry(
        STREAK_JOB_NAME,
        lambda: runner.run(
            STREAK_JOB_NAME,
            settings.streak_job_min_interval_hours,
            engine.run_streak_pass,
            ignore_interval=ignore_interval,
        ),
        max_retries=max_retries,
        sleep=sleep,
    )
