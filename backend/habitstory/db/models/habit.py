"""Habit and habit entry ORM models."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
    text as sa_text,
)
from sqlalchemy.dialects.postgresql import UUID

from habitstory.db.base import Base
from habitstory.db.types import UTCDateTime


class Habit(Base):
    __tablename__ = "habits"
    __table_args__ = (Index("ix_habits_user_id", "user_id"), Index("ix_habits_active", "active"))

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    streak = Column(Integer, nullable=False, server_default=sa_text("0"), default=0)
    longest_streak = Column(Integer, nullable=False, server_default=sa_text("0"), default=0)
    last_completed_at = Column(UTCDateTime, nullable=True)
    active = Column(Boolean, nullable=False, server_default=sa_text("true"), default=True)
    reminders_enabled = Column(Boolean, nullable=False, server_default=sa_text("true"), default=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())


class HabitEntry(Base):
    __tablename__ = "habit_entries"
    __table_args__ = (UniqueConstraint("habit_id", "date", name="uq_habit_entries_habit_id_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    habit_id = Column(UUID(as_uuid=True), ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    completed = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
