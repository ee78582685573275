"""No-op notification provider (logs only)."""
from __future__ import annotations

import logging
from uuid import UUID

from habitstory.services.notifications.base import NotificationDispatcher, NotificationResult


logger = logging.getLogger(__name__)


class NoopNotificationDispatcher(NotificationDispatcher):
    def send_habit_reminder(self, habit_id: UUID) -> NotificationResult:
        logger.info("Notification queued (noop) habit_reminder habit=%s", habit_id)
        return NotificationResult(status="noop", reason="notification provider is noop")

    def send_streak_milestone(self, habit_id: UUID, streak: int) -> NotificationResult:
        logger.info("Notification queued (noop) streak_milestone habit=%s streak=%s", habit_id, streak)
        return NotificationResult(status="noop", reason="notification provider is noop")

    def send_streak_broken(self, habit_id: UUID, previous_streak: int) -> NotificationResult:
        logger.info("Notification queued (noop) streak_broken habit=%s previous=%s", habit_id, previous_streak)
        return NotificationResult(status="noop", reason="notification provider is noop")
