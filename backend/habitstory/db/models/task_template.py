"""Task template catalog ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from habitstory.db.base import Base
from habitstory.db.types import JSONBCompat


class TaskTemplate(Base):
    __tablename__ = "task_templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    key = Column(String(length=100), nullable=False, unique=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    modality = Column(String(length=50), nullable=False)
    min_duration = Column(Integer, nullable=False)
    max_duration = Column(Integer, nullable=True)
    difficulty = Column(Integer, nullable=False, server_default=sa_text("1"), default=1)
    house_tags = Column(JSONBCompat, nullable=False, default=list)
    is_core = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
