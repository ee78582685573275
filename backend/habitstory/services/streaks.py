"""Nightly streak continuity pass.

The pass only detects breaks and back-fills bookkeeping; streak increments
belong to :func:`habitstory.services.habits.toggle_habit_completion`. Resets
are compare-and-swap updates on the streak value so a completion landing
mid-pass is never overwritten.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from time import perf_counter
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from habitstory.core.clock import Clock, utcnow
from habitstory.core.config import settings
from habitstory.db.models.habit import Habit, HabitEntry
from habitstory.db.models.user import UserProfile
from habitstory.observability.metrics import log_metric
from habitstory.observability.tracing import trace
from habitstory.services.batch import run_bounded
from habitstory.services.habits import local_midnight_utc, zone_or_utc
from habitstory.services.notifications.base import NotificationDispatcher
from habitstory.services.notifications.hooks import notify_habit_reminder, notify_streak_broken

logger = logging.getLogger(__name__)


@dataclass
class StreakPassResult:
    processed: int = 0
    updated: int = 0
    broken_streaks: int = 0
    placeholders_created: int = 0
    reminders_sent: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class HabitOutcome:
    habit_id: UUID
    updated: bool = False
    broken: bool = False
    previous_streak: int = 0
    placeholder_created: bool = False
    reminder_sent: bool = False
    error: Optional[str] = None


class StreakEngine:
    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: NotificationDispatcher,
        *,
        clock: Clock = utcnow,
        max_workers: Optional[int] = None,
        broken_threshold: Optional[int] = None,
        reminders_enabled: Optional[bool] = None,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._clock = clock
        self._max_workers = max_workers if max_workers is not None else settings.batch_max_workers
        self._broken_threshold = broken_threshold if broken_threshold is not None else settings.streak_broken_threshold
        self._reminders_enabled = (
            reminders_enabled if reminders_enabled is not None else settings.habit_reminders_enabled
        )

    def run_streak_pass(self) -> StreakPassResult:
        """Process every active habit; per-habit failures land in ``errors``.

        A failure while loading the habit list propagates to the caller.
        """
        start = perf_counter()
        result = StreakPassResult()
        with trace("streaks.pass"):
            with self._session_factory() as db:
                targets: List[Tuple[UUID, Optional[str]]] = [
                    (row[0], row[1])
                    for row in db.query(Habit.id, UserProfile.timezone)
                    .outerjoin(UserProfile, UserProfile.user_id == Habit.user_id)
                    .filter(Habit.active.is_(True))
                    .all()
                ]
            logger.info("Processing %s active habits", len(targets))

            for outcome in run_bounded(targets, self._process_habit_safely, self._max_workers):
                result.processed += 1
                if outcome.error:
                    result.errors.append(outcome.error)
                    continue
                result.updated += int(outcome.updated)
                result.broken_streaks += int(outcome.broken)
                result.placeholders_created += int(outcome.placeholder_created)
                result.reminders_sent += int(outcome.reminder_sent)

        result.duration_ms = round((perf_counter() - start) * 1000, 2)
        logger.info(
            "Streak pass complete: processed=%s updated=%s broken=%s errors=%s",
            result.processed,
            result.updated,
            result.broken_streaks,
            len(result.errors),
        )
        log_metric("streaks.processed", result.processed)
        log_metric("streaks.broken", result.broken_streaks)
        if result.errors:
            log_metric("streaks.errors", len(result.errors))
        return result

    def _process_habit_safely(self, target: Tuple[UUID, Optional[str]]) -> HabitOutcome:
        habit_id, tz_name = target
        try:
            return self.process_habit(habit_id, tz_name)
        except Exception as exc:
            logger.exception("Failed to process habit %s", habit_id)
            return HabitOutcome(habit_id=habit_id, error=f"Failed to process habit {habit_id}: {exc}")

    def process_habit(self, habit_id: UUID, tz_name: Optional[str] = None) -> HabitOutcome:
        outcome = HabitOutcome(habit_id=habit_id)
        zone = zone_or_utc(tz_name)
        today = self._clock().astimezone(zone).date()
        yesterday = today - timedelta(days=1)

        with self._session_factory() as db:
            habit = db.get(Habit, habit_id)
            if habit is None or not habit.active:
                return outcome

            entries = {
                entry.date: entry
                for entry in db.query(HabitEntry)
                .filter(HabitEntry.habit_id == habit_id, HabitEntry.date.in_([yesterday, today]))
                .all()
            }
            yesterday_entry = entries.get(yesterday)
            today_entry = entries.get(today)
            today_completed = bool(today_entry and today_entry.completed)
            reminders_enabled = bool(habit.reminders_enabled)

            if yesterday_entry is None or not yesterday_entry.completed:
                previous = habit.streak or 0
                if previous > 0:
                    reset = db.execute(
                        update(Habit)
                        .where(Habit.id == habit_id, Habit.streak == previous)
                        .values(streak=0)
                        .execution_options(synchronize_session=False)
                    ).rowcount
                    if reset:
                        outcome.broken = True
                        outcome.previous_streak = previous
                        logger.info("Broke streak for habit %s: was %s days", habit_id, previous)
                    else:
                        logger.info("Streak for habit %s changed during the pass; leaving it", habit_id)
            else:
                yesterday_start = local_midnight_utc(yesterday, zone)
                advanced = db.execute(
                    update(Habit)
                    .where(
                        Habit.id == habit_id,
                        or_(Habit.last_completed_at.is_(None), Habit.last_completed_at < yesterday_start),
                    )
                    .values(last_completed_at=yesterday_start)
                    .execution_options(synchronize_session=False)
                ).rowcount
                outcome.updated = bool(advanced)
            db.commit()

            if today_entry is None:
                db.add(HabitEntry(habit_id=habit_id, date=today, completed=False))
                try:
                    db.commit()
                    outcome.placeholder_created = True
                except IntegrityError:
                    # The user created today's entry while we were working.
                    db.rollback()

        if outcome.broken and outcome.previous_streak >= self._broken_threshold:
            notify_streak_broken(self._dispatcher, habit_id, outcome.previous_streak)
        if self._reminders_enabled and reminders_enabled and not today_completed:
            sent = notify_habit_reminder(self._dispatcher, habit_id)
            outcome.reminder_sent = sent.status not in ("skipped", "failed")
        return outcome
