"""Notification dispatcher interface."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass
class NotificationResult:
    status: str
    reason: str


class NotificationDispatcher:
    """Base interface for notification providers.

    Delivery is fire-and-forget from the caller's point of view; callers go
    through :mod:`habitstory.services.notifications.hooks`, which never lets a
    provider failure escape.
    """

    def send_habit_reminder(self, habit_id: UUID) -> NotificationResult:
        raise NotImplementedError

    def send_streak_milestone(self, habit_id: UUID, streak: int) -> NotificationResult:
        raise NotImplementedError

    def send_streak_broken(self, habit_id: UUID, previous_streak: int) -> NotificationResult:
        raise NotImplementedError
