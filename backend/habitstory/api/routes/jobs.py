"""Operational endpoints for scheduler jobs."""
from __future__ import annotations

from time import perf_counter

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import sessionmaker

from habitstory.api.schemas.jobs import JobRunRequest, JobRunResponse
from habitstory.core.config import settings
from habitstory.db.deps import get_session_factory
from habitstory.observability.metrics import log_metric
from habitstory.observability.tracing import trace
from habitstory.services.jobs import SCHEDULE_JOB_NAME, run_schedule_job, run_streak_job
from habitstory.services.notifications.base import NotificationDispatcher
from habitstory.services.notifications.factory import get_notification_dispatcher

router = APIRouter()


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "schedule": {
                "timezone": settings.scheduler_timezone,
                "schedule_tasks": f"hourly at :{settings.schedule_job_minute:02d}",
                "update_streaks": f"daily at {settings.streak_job_hour:02d}:{settings.streak_job_minute:02d}",
            },
            "min_interval_hours": {
                "schedule-tasks": settings.schedule_job_min_interval_hours,
                "update-streaks": settings.streak_job_min_interval_hours,
            },
            "schedule_days_ahead": settings.schedule_days_ahead,
        }
    return {**data, "request_id": request_id or ""}


@router.post("/jobs/run-now", response_model=JobRunResponse, tags=["jobs"])
def run_job_now(
    request: Request,
    payload: JobRunRequest,
    session_factory: sessionmaker = Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> JobRunResponse:
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Run-now only allowed in debug mode")

    request_id = getattr(request.state, "request_id", None)
    metadata = {"job": payload.job, "request_id": request_id}
    start = perf_counter()
    with trace("jobs.run_now", metadata=metadata, request_id=request_id):
        if payload.job == SCHEDULE_JOB_NAME:
            outcome = run_schedule_job(session_factory, ignore_interval=True)
        else:
            outcome = run_streak_job(session_factory, dispatcher=dispatcher, ignore_interval=True)

    latency_ms = (perf_counter() - start) * 1000
    log_metric("jobs.run_now.latency_ms", latency_ms, metadata={"job": payload.job})

    return JobRunResponse(
        job=payload.job,
        job_id=outcome.job_id,
        status=outcome.status,
        skip_reason=outcome.skip_reason,
        last_run_at=outcome.last_run_at,
        result=outcome.result,
        retries=outcome.retries,
        request_id=request_id or "",
    )
