"""Personalized task scheduling engine."""
from __future__ import annotations

import hashlib
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitstory.core.clock import Clock, utcnow
from habitstory.core.errors import TaskNotFoundError, TaskStateError, TemplateNotFoundError, UserNotFoundError
from habitstory.db.models.task_instance import (
    OPEN_STATUSES,
    STARTABLE_STATUSES,
    TaskInstance,
    TaskStatus,
)
from habitstory.db.models.task_template import TaskTemplate
from habitstory.db.models.user import Assignment, User
from habitstory.observability.metrics import log_metric
from habitstory.observability.tracing import trace
from habitstory.services.availability import (
    WINDOW_NAMES,
    SchedulePreferences,
    is_in_dnd,
    resolve_schedule_preferences,
)
from habitstory.services.template_selector import require_house_config, select_template

logger = logging.getLogger(__name__)

TASK_WINDOW_LENGTH = timedelta(hours=1)


@dataclass
class ScheduleResult:
    user_id: UUID
    created: int = 0
    skipped_existing: int = 0
    suppressed_dnd: int = 0
    skipped_unconfigured: int = 0
    errors: List[str] = field(default_factory=list)
    task_ids: List[UUID] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["user_id"] = str(self.user_id)
        data["task_ids"] = [str(task_id) for task_id in self.task_ids]
        return data


def idempotency_key(user_id: UUID, slot: str, local_day: date) -> str:
    """Content address of a generated task row: one per (user, slot, local day)."""
    raw = f"{user_id}|{slot}|{local_day.isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def local_time_to_utc(local_day: date, time_of_day: str, zone: ZoneInfo) -> datetime:
    """Anchor ``HH:mm`` on ``local_day`` in ``zone`` and return the UTC instant.

    The offset is the one in force on ``local_day`` itself. Wall times that
    fall in a spring-forward gap resolve with the pre-transition offset.
    """
    hours, minutes = (int(part) for part in time_of_day.split(":"))
    local = datetime.combine(local_day, time(hours, minutes), tzinfo=zone)
    return local.astimezone(timezone.utc)


def local_time_label(instant: datetime, zone: ZoneInfo) -> str:
    return instant.astimezone(zone).strftime("%H:%M")


def default_personalization(template: TaskTemplate) -> dict:
    return {
        "duration": template.min_duration,
        "intensity": "moderate",
        "guidance": "detailed",
        "music": "ambient",
        "voice": "neutral",
    }


class TaskScheduler:
    """Generates and mutates TaskInstances for one database session."""

    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def generate_schedule(
        self,
        user_id: UUID,
        start_date: date,
        days: int,
        *,
        force: bool = False,
    ) -> ScheduleResult:
        """Create task instances for ``days`` local calendar days from ``start_date``.

        Raises UserNotFoundError when the user or an active assignment is
        missing and ConfigurationError when the user's house is not in the
        catalog; both abort this user's run. Template lookups that fail are
        recorded in ``errors`` and generation carries on with the next slot.
        """
        logger.info("Generating task schedule user=%s start=%s days=%s force=%s", user_id, start_date, days, force)
        result = ScheduleResult(user_id=user_id)
        metadata = {"start_date": start_date.isoformat(), "days": days, "force": force}

        with trace("scheduler.generate", metadata=metadata, user_id=str(user_id)):
            user, assignment = self._load_user(user_id)
            require_house_config(assignment.house)
            profile = user.profile
            preferences = resolve_schedule_preferences(
                profile.schedule_preferences if profile else None,
                profile.timezone if profile else None,
            )
            templates: Dict[str, Optional[TaskTemplate]] = {}

            for offset in range(days):
                local_day = start_date + timedelta(days=offset)
                for window in WINDOW_NAMES:
                    try:
                        self._schedule_slot(
                            result,
                            user_id=user_id,
                            house=assignment.house,
                            house_class=assignment.house_class,
                            local_day=local_day,
                            window=window,
                            preferences=preferences,
                            templates=templates,
                            force=force,
                        )
                    except TemplateNotFoundError as exc:
                        logger.warning("Skipping %s %s for user %s: %s", local_day, window, user_id, exc)
                        result.errors.append(f"{local_day.isoformat()} {window}: {exc}")

        logger.info(
            "Schedule generation complete user=%s created=%s existing=%s dnd=%s errors=%s",
            user_id,
            result.created,
            result.skipped_existing,
            result.suppressed_dnd,
            len(result.errors),
        )
        log_metric("scheduler.tasks_created", result.created, metadata={"user_id": str(user_id)})
        if result.suppressed_dnd:
            log_metric("scheduler.suppressed_dnd", result.suppressed_dnd, metadata={"user_id": str(user_id)})
        return result

    def get_upcoming_tasks(self, user_id: UUID, days: int = 1) -> List[TaskInstance]:
        now = self._clock()
        return (
            self.db.query(TaskInstance)
            .filter(
                TaskInstance.user_id == user_id,
                TaskInstance.scheduled_at >= now,
                TaskInstance.scheduled_at < now + timedelta(days=days),
                TaskInstance.status.in_(STARTABLE_STATUSES),
            )
            .order_by(TaskInstance.scheduled_at.asc())
            .all()
        )

    def mark_notified(self, task_id: UUID, user_id: UUID) -> TaskInstance:
        return self._apply_transition(
            task_id,
            user_id,
            allowed=(TaskStatus.SCHEDULED.value,),
            target=TaskStatus.NOTIFIED,
            action="notified",
        )

    def start_task(self, task_id: UUID, user_id: UUID) -> TaskInstance:
        task = self._apply_transition(
            task_id,
            user_id,
            allowed=STARTABLE_STATUSES,
            target=TaskStatus.STARTED,
            action="started",
            started_at=self._clock(),
        )
        logger.info("Task started task=%s user=%s", task_id, user_id)
        return task

    def complete_task(self, task_id: UUID, user_id: UUID) -> TaskInstance:
        """Complete a task; completing an already-completed task is a no-op."""
        task = self._get_owned_task(task_id, user_id)
        if task.status == TaskStatus.COMPLETED.value:
            return task
        try:
            task = self._apply_transition(
                task_id,
                user_id,
                allowed=OPEN_STATUSES,
                target=TaskStatus.COMPLETED,
                action="completed",
                completed_at=self._clock(),
            )
        except TaskStateError as exc:
            if exc.status == TaskStatus.COMPLETED.value:
                return self._get_owned_task(task_id, user_id)
            raise
        logger.info("Task completed task=%s user=%s", task_id, user_id)
        return task

    def skip_task(self, task_id: UUID, user_id: UUID) -> TaskInstance:
        return self._apply_transition(
            task_id,
            user_id,
            allowed=STARTABLE_STATUSES,
            target=TaskStatus.SKIPPED,
            action="skipped",
        )

    def expire_overdue_tasks(self, user_id: Optional[UUID] = None) -> int:
        """Move SCHEDULED/NOTIFIED tasks whose window has closed to EXPIRED."""
        stmt = (
            update(TaskInstance)
            .where(
                TaskInstance.status.in_(STARTABLE_STATUSES),
                TaskInstance.scheduled_end_at < self._clock(),
            )
            .values(status=TaskStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(TaskInstance.user_id == user_id)
        expired = self.db.execute(stmt).rowcount or 0
        self.db.commit()
        if expired:
            logger.info("Expired %s overdue task instances", expired)
        return expired

    def _schedule_slot(
        self,
        result: ScheduleResult,
        *,
        user_id: UUID,
        house: str,
        house_class: Optional[str],
        local_day: date,
        window: str,
        preferences: SchedulePreferences,
        templates: Dict[str, Optional[TaskTemplate]],
        force: bool,
    ) -> None:
        window_range = preferences.window(window)
        if window_range is None:
            result.skipped_unconfigured += 1
            return
        template_key = select_template(house, house_class, window)
        if template_key is None:
            result.skipped_unconfigured += 1
            return

        zone = preferences.zone
        scheduled_at = local_time_to_utc(local_day, window_range.start, zone)
        if is_in_dnd(local_time_label(scheduled_at, zone), preferences.dnd_ranges):
            logger.debug("Suppressing %s task in DND range user=%s day=%s", window, user_id, local_day)
            result.suppressed_dnd += 1
            return

        if not force and self._slot_taken(user_id, window, local_day):
            logger.debug("Task already exists user=%s slot=%s day=%s", user_id, window, local_day)
            result.skipped_existing += 1
            return

        template = self._get_template(template_key, templates)
        instance = TaskInstance(
            user_id=user_id,
            template_id=template.id,
            template_key=template.key,
            slot=window,
            local_date=local_day,
            scheduled_at=scheduled_at,
            scheduled_end_at=scheduled_at + TASK_WINDOW_LENGTH,
            duration_sec=template.min_duration,
            params=default_personalization(template),
            status=TaskStatus.SCHEDULED.value,
            forced=force,
            idempotency_key=None if force else idempotency_key(user_id, window, local_day),
        )
        self.db.add(instance)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent invocation inserted the same slot first.
            self.db.rollback()
            result.skipped_existing += 1
            return
        result.created += 1
        result.task_ids.append(instance.id)

    def _slot_taken(self, user_id: UUID, slot: str, local_day: date) -> bool:
        return (
            self.db.query(TaskInstance.id)
            .filter(
                TaskInstance.user_id == user_id,
                TaskInstance.slot == slot,
                TaskInstance.local_date == local_day,
            )
            .first()
            is not None
        )

    def _get_template(self, key: str, cache: Dict[str, Optional[TaskTemplate]]) -> TaskTemplate:
        if key not in cache:
            cache[key] = self.db.query(TaskTemplate).filter(TaskTemplate.key == key).one_or_none()
        template = cache[key]
        if template is None:
            raise TemplateNotFoundError(f"Task template not found: {key}")
        return template

    def _load_user(self, user_id: UUID) -> Tuple[User, Assignment]:
        user = self.db.get(User, user_id)
        assignment = None
        if user is not None:
            assignment = (
                self.db.query(Assignment)
                .filter(Assignment.user_id == user_id, Assignment.active.is_(True))
                .order_by(Assignment.created_at.desc())
                .first()
            )
        if user is None or assignment is None:
            raise UserNotFoundError(f"User or active assignment not found: {user_id}")
        return user, assignment

    def _get_owned_task(self, task_id: UUID, user_id: UUID) -> TaskInstance:
        task = (
            self.db.query(TaskInstance)
            .filter(TaskInstance.id == task_id, TaskInstance.user_id == user_id)
            .one_or_none()
        )
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    def _apply_transition(
        self,
        task_id: UUID,
        user_id: UUID,
        *,
        allowed: Iterable[str],
        target: TaskStatus,
        action: str,
        **values,
    ) -> TaskInstance:
        allowed = tuple(allowed)
        task = self._get_owned_task(task_id, user_id)
        if task.status not in allowed:
            raise TaskStateError(task_id, task.status, action)

        stmt = (
            update(TaskInstance)
            .where(TaskInstance.id == task_id, TaskInstance.status.in_(allowed))
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        changed = self.db.execute(stmt).rowcount
        self.db.commit()
        self.db.refresh(task)
        if not changed:
            raise TaskStateError(task_id, task.status, action)
        return task
