"""Notification dispatcher factory."""
from __future__ import annotations

import logging
from functools import lru_cache

from habitstory.core.config import settings
from habitstory.services.notifications.base import NotificationDispatcher
from habitstory.services.notifications.noop import NoopNotificationDispatcher

logger = logging.getLogger(__name__)


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    provider = settings.notifications_provider.lower()
    if provider != "noop":
        logger.warning("Unknown notification provider %r; falling back to noop", provider)
    return NoopNotificationDispatcher()
