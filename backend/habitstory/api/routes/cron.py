"""Endpoints invoked by the external timer service."""
from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from habitstory.api.schemas.cron import (
    JobSkippedResponse,
    JobStatusResponse,
    ScheduleJobResponse,
    StreakJobResponse,
)
from habitstory.core.clock import utcnow
from habitstory.core.config import settings
from habitstory.db.deps import get_db, get_session_factory
from habitstory.db.models.job_record import JOB_STATUS_FAILED, JOB_STATUS_NONE, JOB_STATUS_RUNNING, JobRecord
from habitstory.observability.metrics import log_metric
from habitstory.observability.tracing import trace
from habitstory.services.job_runner import JobRunOutcome
from habitstory.services.jobs import JOB_NAMES, run_schedule_job, run_streak_job
from habitstory.services.notifications.base import NotificationDispatcher
from habitstory.services.notifications.factory import get_notification_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    expected = settings.cron_secret
    if not expected:
        logger.warning("CRON_SECRET is not configured; rejecting cron request")
    if not expected or not authorization or not secrets.compare_digest(authorization, f"Bearer {expected}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route(
    "/cron/update-streaks",
    methods=["GET", "POST"],
    response_model=Union[StreakJobResponse, JobSkippedResponse],
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)
def trigger_update_streaks(
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    request_id = getattr(request.state, "request_id", None)
    try:
        with trace("cron.update_streaks", metadata={"route": "/cron/update-streaks"}, request_id=request_id):
            outcome = run_streak_job(session_factory, dispatcher=dispatcher)
    except Exception as exc:
        logger.exception("Streak update job failed")
        log_metric("cron.update_streaks.failed", 1)
        return _failure("Failed to update streaks", exc)

    if outcome.skipped:
        return _skipped(outcome)
    result = outcome.result
    log_metric("cron.update_streaks.success", 1)
    return StreakJobResponse(
        job_id=outcome.job_id,
        processed=result["processed"],
        updated=result["updated"],
        broken_streaks=result["broken_streaks"],
        errors=result["errors"],
        duration=int(round(result["duration_ms"])),
        retries=outcome.retries,
    )


@router.api_route(
    "/cron/schedule-tasks",
    methods=["GET", "POST"],
    response_model=Union[ScheduleJobResponse, JobSkippedResponse],
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)
def trigger_schedule_tasks(
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    request_id = getattr(request.state, "request_id", None)
    try:
        with trace("cron.schedule_tasks", metadata={"route": "/cron/schedule-tasks"}, request_id=request_id):
            outcome = run_schedule_job(session_factory)
    except Exception as exc:
        logger.exception("Task scheduling job failed")
        log_metric("cron.schedule_tasks.failed", 1)
        return _failure("Failed to schedule tasks", exc)

    if outcome.skipped:
        return _skipped(outcome)
    log_metric("cron.schedule_tasks.success", 1)
    return ScheduleJobResponse(job_id=outcome.job_id, result=outcome.result, retries=outcome.retries)


@router.get(
    "/cron/jobs/{job_name}",
    response_model=JobStatusResponse,
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)
def get_job_status(job_name: str, db: Session = Depends(get_db)) -> JobStatusResponse:
    if job_name not in JOB_NAMES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown job")

    record = db.query(JobRecord).filter(JobRecord.name == job_name).one_or_none()
    if record is None:
        return JobStatusResponse(name=job_name, status=JOB_STATUS_NONE, healthy=True)

    stale_cutoff = utcnow() - timedelta(minutes=settings.job_running_grace_minutes)
    stuck = record.status == JOB_STATUS_RUNNING and record.started_at is not None and record.started_at < stale_cutoff
    return JobStatusResponse(
        name=record.name,
        status=record.status,
        healthy=record.status != JOB_STATUS_FAILED and not stuck,
        last_run_at=record.last_run_at,
        started_at=record.started_at,
        error=record.error,
        result=record.result,
    )


def _skipped(outcome: JobRunOutcome) -> JobSkippedResponse:
    hours = None
    if outcome.last_run_at is not None:
        hours = round((utcnow() - outcome.last_run_at).total_seconds() / 3600, 2)
    return JobSkippedResponse(message=outcome.message, last_run_at=outcome.last_run_at, hours_since_last_run=hours)


def _failure(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": message, "details": str(exc) or type(exc).__name__},
    )
