"""Recurring job bookkeeping ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from habitstory.db.base import Base
from habitstory.db.types import JSONBCompat, UTCDateTime

JOB_STATUS_NONE = "none"
JOB_STATUS_RUNNING = "running"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"


class JobRecord(Base):
    __tablename__ = "job_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(length=100), nullable=False, unique=True)
    status = Column(String(length=20), nullable=False, default=JOB_STATUS_NONE)
    # Token of the invocation that currently owns the record.
    run_id = Column(UUID(as_uuid=True), nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    last_run_at = Column(UTCDateTime, nullable=True)
    result = Column(JSONBCompat, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
