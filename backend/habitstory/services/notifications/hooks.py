"""Fire-and-forget notification hooks.

Every hook returns a NotificationResult and never raises: a dispatcher
failure is logged and reported as ``status="failed"`` so that job completion
is never blocked by notification delivery.
"""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Callable
from uuid import UUID

from habitstory.core.config import settings
from habitstory.observability.metrics import log_metric
from habitstory.observability.tracing import trace
from habitstory.services.notifications.base import NotificationDispatcher, NotificationResult


logger = logging.getLogger(__name__)

STREAK_MILESTONES = frozenset({7, 30, 60, 90, 100, 365})


def notify_habit_reminder(dispatcher: NotificationDispatcher, habit_id: UUID) -> NotificationResult:
    return _dispatch(
        "habit_reminder",
        lambda: dispatcher.send_habit_reminder(habit_id),
        metadata={"habit_id": str(habit_id)},
    )


def notify_streak_milestone(dispatcher: NotificationDispatcher, habit_id: UUID, streak: int) -> NotificationResult:
    if streak not in STREAK_MILESTONES:
        return NotificationResult(status="skipped", reason="not a milestone")
    return _dispatch(
        "streak_milestone",
        lambda: dispatcher.send_streak_milestone(habit_id, streak),
        metadata={"habit_id": str(habit_id), "streak": streak},
    )


def notify_streak_broken(dispatcher: NotificationDispatcher, habit_id: UUID, previous_streak: int) -> NotificationResult:
    return _dispatch(
        "streak_broken",
        lambda: dispatcher.send_streak_broken(habit_id, previous_streak),
        metadata={"habit_id": str(habit_id), "previous_streak": previous_streak},
    )


def _dispatch(event: str, send: Callable[[], NotificationResult], *, metadata: dict) -> NotificationResult:
    if not settings.notifications_enabled:
        log_metric("notifications.skipped", 1, metadata={"event": event})
        return NotificationResult(status="skipped", reason="notifications disabled")

    start = perf_counter()
    try:
        with trace(f"notifications.{event}", metadata={**metadata, "provider": settings.notifications_provider}):
            result = send()
    except Exception as exc:
        logger.exception("Notification %s failed (%s)", event, metadata)
        log_metric("notifications.failed", 1, metadata={"event": event})
        return NotificationResult(status="failed", reason=str(exc))

    log_metric("notifications.sent", 1, metadata={"event": event, "provider": settings.notifications_provider})
    log_metric("notifications.duration_ms", (perf_counter() - start) * 1000, metadata={"event": event})
    return result
