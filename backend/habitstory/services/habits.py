"""Habit completion path: the only writer that increments streaks."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitstory.core.clock import Clock, utcnow
from habitstory.core.errors import HabitNotFoundError
from habitstory.db.models.habit import Habit, HabitEntry
from habitstory.db.models.user import UserProfile
from habitstory.services.notifications.base import NotificationDispatcher
from habitstory.services.notifications.hooks import notify_streak_milestone

logger = logging.getLogger(__name__)


def user_zone(db: Session, user_id: UUID) -> ZoneInfo:
    tz_name = db.query(UserProfile.timezone).filter(UserProfile.user_id == user_id).scalar()
    return zone_or_utc(tz_name)


def zone_or_utc(tz_name: Optional[str]) -> ZoneInfo:
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            logger.warning("Unknown timezone %r, using UTC", tz_name)
    return ZoneInfo("UTC")


def local_midnight_utc(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=zone).astimezone(timezone.utc)


def compute_streak(completed_days: Iterable[date], today: date) -> int:
    """Length of the completed run, kept at 0 unless yesterday is completed.

    The run ending yesterday counts, plus today when today is completed too.
    Holding the value at 0 while yesterday is open keeps this writer
    consistent with the nightly reset.
    """
    days = set(completed_days)
    yesterday = today - timedelta(days=1)
    if yesterday not in days:
        return 0
    run = 0
    cursor = yesterday
    while cursor in days:
        run += 1
        cursor -= timedelta(days=1)
    if today in days:
        run += 1
    return run


def toggle_habit_completion(
    db: Session,
    habit_id: UUID,
    day: Optional[date] = None,
    *,
    completed: Optional[bool] = None,
    notes: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    clock: Clock = utcnow,
) -> HabitEntry:
    """Set (or flip, when ``completed`` is None) the entry for ``day`` and recompute the streak."""
    habit = db.query(Habit).filter(Habit.id == habit_id).with_for_update().one_or_none()
    if habit is None:
        raise HabitNotFoundError(f"Habit not found: {habit_id}")

    zone = user_zone(db, habit.user_id)
    today = clock().astimezone(zone).date()
    target_day = day or today

    entry = _upsert_entry(db, habit_id, target_day, completed=completed, notes=notes)

    completed_days = [
        row[0]
        for row in db.query(HabitEntry.date)
        .filter(HabitEntry.habit_id == habit_id, HabitEntry.completed.is_(True), HabitEntry.date <= today)
        .all()
    ]
    previous = habit.streak
    habit.streak = compute_streak(completed_days, today)
    habit.longest_streak = max(habit.longest_streak or 0, habit.streak)
    habit.last_completed_at = local_midnight_utc(max(completed_days), zone) if completed_days else None
    db.commit()
    db.refresh(entry)

    logger.info("Habit %s entry %s completed=%s streak %s -> %s", habit_id, target_day, entry.completed, previous, habit.streak)
    if dispatcher is not None and habit.streak > previous:
        notify_streak_milestone(dispatcher, habit_id, habit.streak)
    return entry


def _upsert_entry(
    db: Session,
    habit_id: UUID,
    day: date,
    *,
    completed: Optional[bool],
    notes: Optional[str],
) -> HabitEntry:
    entry = db.query(HabitEntry).filter(HabitEntry.habit_id == habit_id, HabitEntry.date == day).one_or_none()
    if entry is None:
        entry = HabitEntry(habit_id=habit_id, date=day, completed=True if completed is None else completed, notes=notes)
        db.add(entry)
        try:
            db.flush()
            return entry
        except IntegrityError:
            # The nightly placeholder landed first; fall through to update it.
            db.rollback()
            entry = db.query(HabitEntry).filter(HabitEntry.habit_id == habit_id, HabitEntry.date == day).one()
    entry.completed = (not entry.completed) if completed is None else completed
    if notes is not None:
        entry.notes = notes
    db.flush()
    return entry
