"""Bounded fan-out for batch jobs."""
from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_bounded(items: Sequence[T], fn: Callable[[T], R], max_workers: int) -> List[R]:
    """Apply ``fn`` to every item, on at most ``max_workers`` threads.

    Each item must be an independent unit (one user or one habit) so that no
    two workers ever write the same rows. ``fn`` is expected to handle its own
    errors; results come back in input order. Every call runs in a copy of the
    caller's context so the bound request id and job name reach worker logs.
    """
    if max_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="habitstory-batch") as pool:
        futures = [pool.submit(contextvars.copy_context().run, fn, item) for item in items]
        return [future.result() for future in futures]
