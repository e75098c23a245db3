"""Run independent diffusion tasks serially or on a thread pool."""

from __future__ import annotations

import concurrent.futures
import logging
import os
import threading
from typing import Callable, Iterable, List, Optional, TypeVar

from .errors import InitializationCancelled, InvalidInitParameter

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def resolve_n_jobs(n_jobs: Optional[int]) -> int:
    """Number of worker threads for `n_jobs` (None or 1 serial, -1 all CPUs)."""
    if n_jobs is None:
        return 1
    if n_jobs == -1:
        return os.cpu_count() or 1
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs < 1:
        raise InvalidInitParameter(
            f"n_jobs must be a positive integer or -1; got {n_jobs!r}"
        )
    return n_jobs


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise InitializationCancelled("cancelled between tasks")


def run_tasks(
    fn: Callable[[T], R],
    items: Iterable[T],
    n_jobs: Optional[int] = 1,
    cancel: Optional[threading.Event] = None,
) -> List[R]:
    """Apply `fn` to every item, keeping the input order in the result.

    Tasks share nothing mutable, so they may run on worker threads. The
    cancel event is checked before each task starts; the first error raised
    by a task cancels the tasks not yet started and is re-raised.
    """
    work = list(items)
    workers = min(resolve_n_jobs(n_jobs), max(len(work), 1))

    if workers == 1:
        results: List[R] = []
        for item in work:
            _check_cancel(cancel)
            results.append(fn(item))
        return results

    def guarded(item: T) -> R:
        _check_cancel(cancel)
        return fn(item)

    _LOGGER.debug("run_tasks: %d tasks on %d threads", len(work), workers)
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(guarded, item) for item in work]
        try:
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise
