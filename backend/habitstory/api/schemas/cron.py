"""Schemas for the external cron trigger endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CronModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JobSkippedResponse(CronModel):
    success: bool = True
    skipped: bool = True
    message: str
    last_run_at: Optional[datetime] = Field(default=None, alias="lastRunAt")
    hours_since_last_run: Optional[float] = Field(default=None, alias="hoursSinceLastRun")


class StreakJobResponse(CronModel):
    success: bool = True
    job_id: UUID = Field(alias="jobId")
    processed: int
    updated: int
    broken_streaks: int = Field(alias="brokenStreaks")
    errors: List[str]
    duration: int
    retries: int = 0


class ScheduleJobResponse(CronModel):
    success: bool = True
    job_id: UUID = Field(alias="jobId")
    result: Any
    retries: int = 0


class JobStatusResponse(CronModel):
    name: str
    status: str
    healthy: bool
    last_run_at: Optional[datetime] = Field(default=None, alias="lastRunAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    error: Optional[str] = None
    result: Any = None
