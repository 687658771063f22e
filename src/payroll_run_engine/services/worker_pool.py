"""Bounded worker pool for per-employee computation.

Database work stays on the event loop. Only pure computation is handed to
the threads, so workers never share a session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, TypeVar
from uuid import UUID

from payroll_run_engine.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Progress:
    """Snapshot of a pass in flight."""

    processed: int
    total: int

    @property
    def ratio(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.processed / self.total

    @property
    def percent(self) -> int:
        return int(self.ratio * 100)


class ProgressTracker:
    """Thread-safe processed/total counters keyed by run id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[UUID, list[int]] = {}

    def start(self, run_id: UUID, total: int) -> None:
        with self._lock:
            self._runs[run_id] = [0, total]

    def advance(self, run_id: UUID) -> None:
        with self._lock:
            counters = self._runs.get(run_id)
            if counters is not None:
                counters[0] += 1

    def get(self, run_id: UUID) -> Progress | None:
        with self._lock:
            counters = self._runs.get(run_id)
            if counters is None:
                return None
            return Progress(processed=counters[0], total=counters[1])

    def finish(self, run_id: UUID) -> None:
        with self._lock:
            self._runs.pop(run_id, None)


class WorkerPool:
    """Runs a function over many items on a bounded thread pool."""

    def __init__(self, max_workers: int = 8):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="payroll-worker"
            )
        return self._executor

    async def map(
        self,
        func: Callable[[T], R],
        items: Iterable[T],
        on_done: Callable[[], None] | None = None,
    ) -> list[R]:
        """Apply ``func`` to every item concurrently, preserving order.

        The first exception raised by ``func`` propagates after all
        submitted work has settled.
        """
        loop = asyncio.get_running_loop()
        executor = self._get_executor()

        def run(item: T) -> R:
            try:
                return func(item)
            finally:
                if on_done is not None:
                    on_done()

        futures = [loop.run_in_executor(executor, run, item) for item in items]
        if not futures:
            return []
        results = await asyncio.gather(*futures, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


_default_pool: WorkerPool | None = None
_default_tracker = ProgressTracker()


def get_worker_pool() -> WorkerPool:
    """Process-wide pool sized from WORKER_POOL_SIZE."""
    global _default_pool
    if _default_pool is None:
        _default_pool = WorkerPool(get_settings().worker_pool_size)
    return _default_pool


def get_progress_tracker() -> ProgressTracker:
    return _default_tracker


def shutdown_worker_pool() -> None:
    global _default_pool
    if _default_pool is not None:
        _default_pool.shutdown()
        _default_pool = None
