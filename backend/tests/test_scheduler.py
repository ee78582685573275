from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitstory.core.errors import ConfigurationError, TaskNotFoundError, TaskStateError, UserNotFoundError
from habitstory.db.base import Base
from habitstory.db.models.task_instance import TaskInstance, TaskStatus
from habitstory.db.models.user import Assignment, User, UserProfile
from habitstory.services.catalog import DEFAULT_TASK_TEMPLATES, seed_task_templates
from habitstory.services.scheduler import TaskScheduler, idempotency_key, local_time_to_utc

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _clock():
    return NOW


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
    return TestingSession


def _seed_user(session, *, house="MONK", house_class=None, tz="UTC", preferences=None):
    user_id = uuid4()
    session.add(User(id=user_id))
    session.flush()
    raw = json.dumps(preferences) if isinstance(preferences, (dict, list)) else preferences
    session.add(UserProfile(user_id=user_id, timezone=tz, schedule_preferences=raw))
    session.add(Assignment(user_id=user_id, house=house, house_class=house_class))
    session.commit()
    return user_id


def _tasks(session, user_id):
    return (
        session.query(TaskInstance)
        .filter(TaskInstance.user_id == user_id)
        .order_by(TaskInstance.scheduled_at.asc())
        .all()
    )


def test_dst_morning_task_uses_offset_of_the_local_day():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(
        session,
        tz="America/New_York",
        preferences={
            "version": 1,
            "windows": {"morning": {"start": "07:00", "end": "09:00"}, "midday": None, "evening": None},
        },
    )

    result = TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 3, 10), 1)

    tasks = _tasks(session, user_id)
    assert result.created == 1
    assert len(tasks) == 1
    task = tasks[0]
    assert task.template_key == "first_breath"
    assert task.status == TaskStatus.SCHEDULED.value
    assert task.scheduled_at == datetime(2024, 3, 10, 7, 0, tzinfo=ZoneInfo("America/New_York"))
    assert task.scheduled_at.astimezone(ZoneInfo("America/New_York")).utcoffset() == timedelta(hours=-4)
    assert task.scheduled_end_at - task.scheduled_at == timedelta(hours=1)
    assert task.duration_sec == 120
    assert task.params["duration"] == 120
    session.close()


def test_spring_forward_gap_uses_pre_transition_offset():
    zone = ZoneInfo("America/New_York")
    instant = local_time_to_utc(date(2024, 3, 10), "02:30", zone)
    assert instant == datetime(2024, 3, 10, 7, 30, tzinfo=timezone.utc)


def test_dnd_suppresses_midnight_candidate_but_not_evening():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(
        session,
        tz="America/Bogota",
        preferences={
            "version": 1,
            "windows": {
                "morning": {"start": "00:00", "end": "02:00"},
                "midday": None,
                "evening": {"start": "21:30", "end": "23:00"},
            },
            "dnd": [{"start": "22:00", "end": "06:00"}],
        },
    )

    result = TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 1), 1)

    tasks = _tasks(session, user_id)
    assert result.created == 1
    assert result.suppressed_dnd == 1
    assert [task.slot for task in tasks] == ["evening"]
    assert tasks[0].scheduled_at == datetime(2024, 6, 2, 2, 30, tzinfo=timezone.utc)
    session.close()


def test_generate_is_idempotent_without_force_and_force_only_adds():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session)
    scheduler = TaskScheduler(session, clock=_clock)

    first = scheduler.generate_schedule(user_id, date(2024, 6, 2), 3)
    second = scheduler.generate_schedule(user_id, date(2024, 6, 2), 3)

    # Default windows: morning and evening; midday has no default.
    assert first.created == 6
    assert second.created == 0
    assert second.skipped_existing == 6
    original_ids = {task.id for task in _tasks(session, user_id)}
    assert len(original_ids) == 6

    forced = scheduler.generate_schedule(user_id, date(2024, 6, 2), 3, force=True)

    tasks = _tasks(session, user_id)
    assert forced.created == 6
    assert len(tasks) == 12
    assert original_ids <= {task.id for task in tasks}
    assert all(task.idempotency_key is None for task in tasks if task.forced)
    session.close()


def test_idempotency_key_is_content_addressed():
    user_id = uuid4()
    assert idempotency_key(user_id, "morning", date(2024, 6, 2)) == idempotency_key(user_id, "morning", date(2024, 6, 2))
    assert idempotency_key(user_id, "morning", date(2024, 6, 2)) != idempotency_key(user_id, "evening", date(2024, 6, 2))
    assert len(idempotency_key(user_id, "morning", date(2024, 6, 2))) == 64


def test_disabled_morning_window_never_schedules_morning():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session, preferences={"morning": None})

    result = TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 2), 3)

    tasks = _tasks(session, user_id)
    assert result.created == 3
    assert tasks
    assert all(task.slot != "morning" for task in tasks)
    session.close()


def test_malformed_preferences_fall_back_to_defaults():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session, preferences="{not json")

    result = TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 2), 1)

    assert result.created == 2
    assert sorted(task.slot for task in _tasks(session, user_id)) == ["evening", "morning"]
    session.close()


def test_class_default_overrides_house_template():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session, house_class="VIPASSANA_FIRST", preferences={"evening": None})

    TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 2), 1)

    tasks = _tasks(session, user_id)
    assert [task.template_key for task in tasks] == ["vipassana_scan_30min"]
    session.close()


def test_missing_user_raises():
    session = _session()()
    with pytest.raises(UserNotFoundError):
        TaskScheduler(session, clock=_clock).generate_schedule(uuid4(), date(2024, 6, 2), 1)
    session.close()


def test_unknown_house_raises_configuration_error():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session, house="PIRATE")

    with pytest.raises(ConfigurationError):
        TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 2), 1)
    assert _tasks(session, user_id) == []
    session.close()


def test_missing_template_is_recorded_and_other_slots_continue():
    session = _session()()
    seed_task_templates(session, tuple(spec for spec in DEFAULT_TASK_TEMPLATES if spec.key != "first_breath"))
    user_id = _seed_user(session)

    result = TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 2), 2)

    assert result.created == 2
    assert len(result.errors) == 2
    assert "first_breath" in result.errors[0]
    assert all(task.slot == "evening" for task in _tasks(session, user_id))
    session.close()


def test_task_lifecycle_transitions():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session)
    scheduler = TaskScheduler(session, clock=_clock)
    result = scheduler.generate_schedule(user_id, date(2024, 6, 2), 1)
    first_id, second_id = result.task_ids

    notified = scheduler.mark_notified(first_id, user_id)
    assert notified.status == TaskStatus.NOTIFIED.value
    with pytest.raises(TaskStateError):
        scheduler.mark_notified(first_id, user_id)

    started = scheduler.start_task(first_id, user_id)
    assert started.status == TaskStatus.STARTED.value
    assert started.started_at == NOW

    completed = scheduler.complete_task(first_id, user_id)
    assert completed.status == TaskStatus.COMPLETED.value
    assert completed.completed_at == NOW
    assert scheduler.complete_task(first_id, user_id).status == TaskStatus.COMPLETED.value

    with pytest.raises(TaskStateError):
        scheduler.start_task(first_id, user_id)

    skipped = scheduler.skip_task(second_id, user_id)
    assert skipped.status == TaskStatus.SKIPPED.value
    with pytest.raises(TaskStateError):
        scheduler.complete_task(second_id, user_id)

    with pytest.raises(TaskNotFoundError):
        scheduler.start_task(first_id, uuid4())
    session.close()


def test_upcoming_tasks_and_expiry():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session)
    scheduler = TaskScheduler(session, clock=_clock)
    scheduler.generate_schedule(user_id, date(2024, 6, 2), 1)

    upcoming = scheduler.get_upcoming_tasks(user_id, days=1)
    assert [task.slot for task in upcoming] == ["morning"]

    later = TaskScheduler(session, clock=lambda: NOW + timedelta(days=2))
    assert later.expire_overdue_tasks() == 2
    assert {task.status for task in _tasks(session, user_id)} == {TaskStatus.EXPIRED.value}
    session.close()


def test_profile_timezone_naming_a_region_directory_schedules_in_utc():
    session = _session()()
    seed_task_templates(session)
    user_id = _seed_user(session, tz="America", preferences={"evening": None})

    result = TaskScheduler(session, clock=_clock).generate_schedule(user_id, date(2024, 6, 2), 1)

    tasks = _tasks(session, user_id)
    assert result.created == 1
    assert tasks[0].scheduled_at == datetime(2024, 6, 2, 7, 0, tzinfo=timezone.utc)
    session.close()
