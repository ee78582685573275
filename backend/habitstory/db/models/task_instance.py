"""Task instance ORM model and lifecycle statuses."""
from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, ForeignKey, Index, Integer, String, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from habitstory.db.base import Base
from habitstory.db.types import JSONBCompat, UTCDateTime


class TaskStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    NOTIFIED = "NOTIFIED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    EXPIRED = "EXPIRED"


STARTABLE_STATUSES = (TaskStatus.SCHEDULED.value, TaskStatus.NOTIFIED.value)
OPEN_STATUSES = (TaskStatus.SCHEDULED.value, TaskStatus.NOTIFIED.value, TaskStatus.STARTED.value)


class TaskInstance(Base):
    __tablename__ = "task_instances"
    __table_args__ = (
        Index("ix_task_instances_user_id_scheduled_at", "user_id", "scheduled_at"),
        Index("ix_task_instances_user_slot_day", "user_id", "slot", "local_date"),
        Index("ix_task_instances_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    template_id = Column(UUID(as_uuid=True), ForeignKey("task_templates.id"), nullable=False)
    template_key = Column(String(length=100), nullable=False)
    slot = Column(String(length=20), nullable=False)
    local_date = Column(Date, nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=False)
    scheduled_end_at = Column(UTCDateTime, nullable=False)
    duration_sec = Column(Integer, nullable=False)
    params = Column(JSONBCompat, nullable=False, default=dict)
    status = Column(String(length=20), nullable=False, default=TaskStatus.SCHEDULED.value)
    forced = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    # sha256(user|slot|local_date); NULL for forced rows so they never collide.
    idempotency_key = Column(String(length=64), nullable=True, unique=True)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
