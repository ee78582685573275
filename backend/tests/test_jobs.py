from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitstory.core.context import get_job_name, job_context
from habitstory.core.errors import ConfigurationError, TransientIOError
from habitstory.db.base import Base
from habitstory.db.models.job_record import JobRecord
from habitstory.db.models.task_instance import TaskInstance
from habitstory.db.models.user import Assignment, User, UserProfile
from habitstory.services.batch import run_bounded
from habitstory.services.catalog import seed_task_templates
from habitstory.services import jobs
from habitstory.services.job_runner import JobRunner
from habitstory.services.jobs import (
    SCHEDULE_JOB_NAME,
    STREAK_JOB_NAME,
    generate_schedules_for_active_users,
    run_schedule_job,
    run_with_retry,
)
from habitstory.services.scheduler import TaskScheduler

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    Base.metadata.create_all(bind=engine)
    session = TestingSession()
    seed_task_templates(session)
    session.close()
    return TestingSession


def _seed_user(session_factory, *, house="MONK", tz="UTC", active=True, assigned=True):
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, active=active))
        session.flush()
        session.add(UserProfile(user_id=user_id, timezone=tz))
        if assigned:
            session.add(Assignment(user_id=user_id, house=house))
        session.commit()
        return user_id
    finally:
        session.close()


def _task_dates(session_factory, user_id):
    session = session_factory()
    try:
        return sorted({row[0] for row in session.query(TaskInstance.local_date).filter(TaskInstance.user_id == user_id)})
    finally:
        session.close()


def test_batch_schedules_each_active_user_from_local_tomorrow():
    session_factory = _session()
    utc_user = _seed_user(session_factory)
    # 12:00 UTC is already June 2nd in Auckland.
    nz_user = _seed_user(session_factory, tz="Pacific/Auckland")
    inactive = _seed_user(session_factory, active=False)
    unassigned = _seed_user(session_factory, assigned=False)

    result = generate_schedules_for_active_users(session_factory, clock=lambda: NOW, days=3, max_workers=1)

    assert result.users_processed == 2
    assert result.users_failed == 0
    assert result.tasks_created == 12
    assert _task_dates(session_factory, utc_user) == [date(2024, 6, 2), date(2024, 6, 3), date(2024, 6, 4)]
    assert _task_dates(session_factory, nz_user) == [date(2024, 6, 3), date(2024, 6, 4), date(2024, 6, 5)]
    assert _task_dates(session_factory, inactive) == []
    assert _task_dates(session_factory, unassigned) == []


def test_batch_reports_misconfigured_user_and_continues():
    session_factory = _session()
    good = _seed_user(session_factory)
    bad = _seed_user(session_factory, house="PIRATE")

    result = generate_schedules_for_active_users(session_factory, clock=lambda: NOW, days=1, max_workers=1)

    assert result.users_processed == 1
    assert result.users_failed == 1
    assert str(bad) in result.errors[0]
    assert "PIRATE" in result.errors[0]
    assert _task_dates(session_factory, good) == [date(2024, 6, 2)]


def test_batch_expires_overdue_tasks():
    session_factory = _session()
    user_id = _seed_user(session_factory)
    session = session_factory()
    TaskScheduler(session, clock=lambda: NOW).generate_schedule(user_id, date(2024, 5, 1), 1)
    session.close()

    result = generate_schedules_for_active_users(session_factory, clock=lambda: NOW, days=1, max_workers=1)

    assert result.tasks_expired == 2


def test_schedule_job_is_guarded(monkeypatch):
    session_factory = _session()
    _seed_user(session_factory)

    first = run_schedule_job(session_factory, clock=lambda: NOW)
    second = run_schedule_job(session_factory, clock=lambda: NOW)

    assert first.status == "completed"
    assert first.result["users_processed"] == 1
    assert second.skipped
    session = session_factory()
    record = session.query(JobRecord).filter(JobRecord.name == SCHEDULE_JOB_NAME).one()
    session.close()
    assert record.result["tasks_created"] == first.result["tasks_created"]


def test_run_bounded_preserves_order_across_workers():
    assert run_bounded(list(range(10)), lambda n: n * n, max_workers=4) == [n * n for n in range(10)]
    assert run_bounded([], lambda n: n, max_workers=4) == []


def test_run_bounded_carries_job_context_into_workers():
    with job_context(STREAK_JOB_NAME):
        names = run_bounded(list(range(4)), lambda _: get_job_name(), max_workers=2)

    assert names == [STREAK_JOB_NAME] * 4


def _db_down():
    return OperationalError("SELECT 1", {}, Exception("connection reset"))


def test_transient_failure_is_retried_and_counted():
    session_factory = _session()
    runner = JobRunner(session_factory, clock=lambda: NOW)
    attempts = []
    delays = []

    def work():
        attempts.append(1)
        if len(attempts) == 1:
            raise _db_down()
        return {"processed": 1}

    outcome = run_with_retry(
        STREAK_JOB_NAME,
        lambda: runner.run(STREAK_JOB_NAME, 23, work),
        initial_delay=0.5,
        sleep=delays.append,
    )

    assert outcome.status == "completed"
    assert outcome.retries == 1
    assert outcome.result == {"processed": 1}
    assert len(attempts) == 2
    assert delays == [0.5]


def test_retries_back_off_exponentially_then_give_up():
    session_factory = _session()
    runner = JobRunner(session_factory, clock=lambda: NOW)
    attempts = []
    delays = []

    def work():
        attempts.append(1)
        raise _db_down()

    with pytest.raises(TransientIOError):
        run_with_retry(
            STREAK_JOB_NAME,
            lambda: runner.run(STREAK_JOB_NAME, 23, work),
            max_retries=3,
            initial_delay=1.0,
            max_delay=3.0,
            sleep=delays.append,
        )

    assert len(attempts) == 4
    assert delays == [1.0, 2.0, 3.0]


def test_configuration_error_is_not_retried():
    session_factory = _session()
    runner = JobRunner(session_factory, clock=lambda: NOW)
    attempts = []
    delays = []

    def work():
        attempts.append(1)
        raise ConfigurationError("No catalog entry for house PIRATE")

    with pytest.raises(ConfigurationError):
        run_with_retry(STREAK_JOB_NAME, lambda: runner.run(STREAK_JOB_NAME, 23, work), sleep=delays.append)

    assert len(attempts) == 1
    assert delays == []


def test_schedule_job_retries_transient_batch_failure(monkeypatch):
    session_factory = _session()
    _seed_user(session_factory)
    real_batch = jobs.generate_schedules_for_active_users
    calls = []

    def flaky_batch(factory, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise _db_down()
        return real_batch(factory, **kwargs)

    monkeypatch.setattr(jobs, "generate_schedules_for_active_users", flaky_batch)

    outcome = run_schedule_job(session_factory, clock=lambda: NOW, sleep=lambda _: None)

    assert outcome.status == "completed"
    assert outcome.retries == 1
    assert outcome.result["users_processed"] == 1
