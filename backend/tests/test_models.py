from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, StatementError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitstory.db.base import Base
from habitstory.db import models  # noqa: F401  ensure models are loaded
from habitstory.db.models.habit import Habit, HabitEntry
from habitstory.db.models.job_record import JobRecord
from habitstory.db.models.user import User


def test_metadata_contains_core_tables() -> None:
    table_names = set(Base.metadata.tables.keys())
    expected = {
        "users",
        "user_profiles",
        "assignments",
        "task_templates",
        "task_instances",
        "job_records",
        "habits",
        "habit_entries",
    }

    assert expected.issubset(table_names)


def _session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()


def test_habit_entry_unique_per_day() -> None:
    session = _session()
    user_id = uuid4()
    session.add(User(id=user_id))
    session.flush()
    habit = Habit(user_id=user_id, name="Walk")
    session.add(habit)
    session.flush()
    session.add(HabitEntry(habit_id=habit.id, date=date(2024, 6, 1)))
    session.commit()

    session.add(HabitEntry(habit_id=habit.id, date=date(2024, 6, 1)))
    with pytest.raises(IntegrityError):
        session.commit()
    session.close()


def test_job_name_unique() -> None:
    session = _session()
    session.add(JobRecord(name="update-streaks"))
    session.commit()

    session.add(JobRecord(name="update-streaks"))
    with pytest.raises(IntegrityError):
        session.commit()
    session.close()


def test_utc_datetime_round_trip_and_naive_rejected() -> None:
    session = _session()
    aware = datetime(2024, 3, 10, 7, 0, tzinfo=timezone.utc)
    session.add(JobRecord(name="schedule-tasks", last_run_at=aware))
    session.commit()
    session.expire_all()

    record = session.query(JobRecord).filter(JobRecord.name == "schedule-tasks").one()
    assert record.last_run_at == aware
    assert record.last_run_at.tzinfo is not None

    session.add(JobRecord(name="naive", last_run_at=datetime(2024, 3, 10, 7, 0)))
    with pytest.raises(StatementError):
        session.commit()
    session.close()
