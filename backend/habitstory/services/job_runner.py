"""Guarded execution for named recurring jobs.

Invocations arrive from an external timer with at-least-once semantics and
may run in separate processes, so the only mutual exclusion is the database:
a job is claimed by one conditional UPDATE on its ``job_records`` row that
checks the guard and flips the status to ``running`` in the same statement.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from habitstory.core.clock import Clock, utcnow
from habitstory.core.config import settings
from habitstory.core.context import job_context
from habitstory.core.errors import ConcurrencyConflict, TransientIOError
from habitstory.db.models.job_record import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_NONE,
    JOB_STATUS_RUNNING,
    JobRecord,
)
from habitstory.observability.metrics import log_metric
from habitstory.observability.tracing import trace


logger = logging.getLogger(__name__)

SKIP_RAN_RECENTLY = "ran_recently"
SKIP_ALREADY_RUNNING = "already_running"


@dataclass
class JobRunOutcome:
    job_name: str
    job_id: UUID
    status: str
    result: Any = None
    skip_reason: Optional[str] = None
    last_run_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    retries: int = 0

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @property
    def message(self) -> str:
        if self.skip_reason == SKIP_RAN_RECENTLY:
            return "Job already ran recently"
        if self.skip_reason == SKIP_ALREADY_RUNNING:
            return "Job is already running"
        return f"Job {self.status}"


class JobRunner:
    """Run ``work`` at most once per interval for a given job name."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        clock: Clock = utcnow,
        running_grace: Optional[timedelta] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._running_grace = running_grace or timedelta(minutes=settings.job_running_grace_minutes)

    def run(
        self,
        job_name: str,
        min_interval_hours: float,
        work: Callable[[], Any],
        *,
        ignore_interval: bool = False,
    ) -> JobRunOutcome:
        """Claim the job, execute ``work`` and persist the outcome.

        Returns a skipped outcome without calling ``work`` when the job
        completed less than ``min_interval_hours`` ago or another invocation
        holds a non-stale ``running`` claim. Exceptions from ``work`` are
        recorded as ``failed`` and re-raised. ``ignore_interval`` drops the
        interval check but still honours a live ``running`` claim.
        """
        with job_context(job_name), self._session_factory() as db:
            try:
                record = self._fetch_or_create(db, job_name)
            except OperationalError as exc:
                db.rollback()
                raise TransientIOError(f"Job {job_name} record unavailable: {exc.orig}") from exc
            previous_status = record.status
            now = self._clock()
            run_id = uuid4()

            try:
                self._claim(db, job_name, run_id, now, min_interval_hours, ignore_interval)
            except OperationalError as exc:
                db.rollback()
                raise TransientIOError(f"Job {job_name} could not be claimed: {exc.orig}") from exc
            except ConcurrencyConflict:
                db.refresh(record)
                reason = SKIP_ALREADY_RUNNING if record.status == JOB_STATUS_RUNNING else SKIP_RAN_RECENTLY
                logger.info("Skipping job %s (%s, last_run_at=%s)", job_name, reason, record.last_run_at)
                log_metric("jobs.skipped", 1, metadata={"reason": reason})
                return JobRunOutcome(
                    job_name=job_name,
                    job_id=record.id,
                    status="skipped",
                    skip_reason=reason,
                    last_run_at=record.last_run_at,
                )

            if previous_status == JOB_STATUS_RUNNING:
                logger.warning("Taking over stale running claim for job %s", job_name)
            logger.info("Job %s started (run_id=%s)", job_name, run_id)

            start = perf_counter()
            try:
                with trace(f"jobs.{job_name}", metadata={"run_id": str(run_id)}):
                    result = work()
            except Exception as exc:
                duration_ms = (perf_counter() - start) * 1000
                db.rollback()
                self._finish(db, job_name, run_id, status=JOB_STATUS_FAILED, result=None, error=str(exc) or type(exc).__name__)
                logger.exception("Job %s failed after %.0fms", job_name, duration_ms)
                log_metric("jobs.failed", 1)
                if isinstance(exc, OperationalError):
                    raise TransientIOError(f"Job {job_name} hit a database error: {exc.orig}") from exc
                raise

            duration_ms = (perf_counter() - start) * 1000
            payload = _to_jsonable(result)
            self._finish(db, job_name, run_id, status=JOB_STATUS_COMPLETED, result=payload, error=None)
            logger.info("Job %s completed in %.0fms", job_name, duration_ms)
            log_metric("jobs.completed", 1)
            log_metric("jobs.duration_ms", duration_ms)
            db.refresh(record)
            return JobRunOutcome(
                job_name=job_name,
                job_id=record.id,
                status=JOB_STATUS_COMPLETED,
                result=payload,
                last_run_at=record.last_run_at,
                duration_ms=duration_ms,
            )

    def _fetch_or_create(self, db: Session, job_name: str) -> JobRecord:
        record = db.query(JobRecord).filter(JobRecord.name == job_name).one_or_none()
        if record is not None:
            return record
        db.add(JobRecord(name=job_name, status=JOB_STATUS_NONE))
        try:
            db.commit()
        except IntegrityError:
            # Another invocation created the row first.
            db.rollback()
        return db.query(JobRecord).filter(JobRecord.name == job_name).one()

    def _claim(
        self,
        db: Session,
        job_name: str,
        run_id: UUID,
        now: datetime,
        min_interval_hours: float,
        ignore_interval: bool,
    ) -> None:
        stale_cutoff = now - self._running_grace
        conditions = [
            JobRecord.name == job_name,
            or_(
                JobRecord.status != JOB_STATUS_RUNNING,
                JobRecord.started_at.is_(None),
                JobRecord.started_at < stale_cutoff,
            ),
        ]
        if not ignore_interval:
            interval_cutoff = now - timedelta(hours=min_interval_hours)
            conditions.append(
                or_(
                    JobRecord.status != JOB_STATUS_COMPLETED,
                    JobRecord.last_run_at.is_(None),
                    JobRecord.last_run_at <= interval_cutoff,
                )
            )
        stmt = (
            update(JobRecord)
            .where(*conditions)
            .values(status=JOB_STATUS_RUNNING, run_id=run_id, started_at=now, error=None)
            .execution_options(synchronize_session=False)
        )
        claimed = db.execute(stmt).rowcount == 1
        db.commit()
        if not claimed:
            raise ConcurrencyConflict(f"Job {job_name} is guarded")

    def _finish(
        self,
        db: Session,
        job_name: str,
        run_id: UUID,
        *,
        status: str,
        result: Any,
        error: Optional[str],
    ) -> None:
        stmt = (
            update(JobRecord)
            .where(JobRecord.name == job_name, JobRecord.run_id == run_id)
            .values(status=status, last_run_at=self._clock(), result=result, error=error)
            .execution_options(synchronize_session=False)
        )
        if not db.execute(stmt).rowcount:
            logger.warning("Job %s run %s lost its claim before finishing; outcome not recorded", job_name, run_id)
        db.commit()


def _to_jsonable(result: Any) -> Any:
    if result is None:
        return None
    as_dict = getattr(result, "as_dict", None)
    if callable(as_dict):
        return as_dict()
    return result
