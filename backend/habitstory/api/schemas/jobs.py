"""Schemas for job operations endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    job: Literal["schedule-tasks", "update-streaks"]


class JobRunResponse(BaseModel):
    job: str
    job_id: UUID
    status: str
    skip_reason: Optional[str] = None
    last_run_at: Optional[datetime] = None
    result: Any = None
    retries: int = 0
    request_id: str
