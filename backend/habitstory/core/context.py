"""Context variables stamped onto log records and traces."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
job_name_ctx_var: ContextVar[str | None] = ContextVar("job_name", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_job_name() -> str | None:
    """Return the name of the job currently executing, if any."""
    return job_name_ctx_var.get()


@contextmanager
def job_context(job_name: str) -> Iterator[None]:
    token = job_name_ctx_var.set(job_name)
    try:
        yield
    finally:
        job_name_ctx_var.reset(token)
