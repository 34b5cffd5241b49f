"""Execution strategies: run dispatched tasks inline or on a bounded worker pool."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
import logging
import threading
from typing import Protocol, runtime_checkable

from crawl_orchestrator.domain.failures import CrawlError
from crawl_orchestrator.domain.model import Dispatch


logger = logging.getLogger(__name__)

DispatchWork = Callable[[Dispatch], None]


class RunnerShutdownError(CrawlError):
    """A task was submitted to a runner that no longer accepts work."""


@runtime_checkable
class Runner(Protocol):
    """Concurrency strategy behind the scheduler.

    ``max_in_flight`` is the admission cap the scheduler enforces against
    the in-flight buffer before each dispatch.
    """

    max_in_flight: int

    def execute(self, dispatch: Dispatch, work: DispatchWork) -> None:  # pragma: no cover - Protocol only
        """Run ``work(dispatch)`` now or later."""

    def has_capacity(self, in_flight: int) -> bool:  # pragma: no cover - Protocol only
        """Return True when another dispatch may be admitted."""

    def shutdown(self, wait: bool = True) -> None:  # pragma: no cover - Protocol only
        """Stop accepting work; optionally wait for running work."""


class SingleThreadRunner:
    """Execute each dispatch synchronously on the scheduler thread.

    Ordering is fully deterministic and nothing runs in parallel; the
    scheduler is busy until the task finishes.
    """

    max_in_flight = 1

    def __init__(self) -> None:
        self._closed = False

    def execute(self, dispatch: Dispatch, work: DispatchWork) -> None:
        if self._closed:
            raise RunnerShutdownError("SingleThreadRunner is shut down")
        work(dispatch)

    def has_capacity(self, in_flight: int) -> bool:
        return not self._closed and in_flight < self.max_in_flight

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True


class PooledRunner:
    """Execute dispatches on a fixed-size thread pool with an admission cap.

    ``max_in_flight`` is independent of ``workers``: with more admitted
    tasks than workers the extra ones queue inside the executor, with fewer
    some workers stay idle. Either way the scheduler stops dispatching at
    the cap, which is the run's backpressure.
    """

    def __init__(self, workers: int = 4, max_in_flight: int | None = None, *, name: str = "crawl-worker") -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.workers = workers
        self.max_in_flight = max_in_flight if max_in_flight is not None else workers
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name)
        self._closed = False
        self._lock = threading.Lock()
        self._active = 0

    @classmethod
    def from_settings(cls, settings) -> PooledRunner:
        return cls(workers=settings.worker_count, max_in_flight=settings.max_in_flight)

    def execute(self, dispatch: Dispatch, work: DispatchWork) -> None:
        with self._lock:
            if self._closed:
                raise RunnerShutdownError("PooledRunner is shut down")
            self._active += 1
        try:
            future = self._executor.submit(work, dispatch)
        except RuntimeError as exc:
            with self._lock:
                self._active -= 1
            raise RunnerShutdownError(str(exc)) from exc
        future.add_done_callback(lambda done: self._on_done(dispatch, done))

    def _on_done(self, dispatch: Dispatch, future: Future) -> None:
        with self._lock:
            self._active -= 1
        if future.cancelled():
            logger.info("Dispatch of task %s cancelled before it started", dispatch.task.id)
            return
        error = future.exception()
        if error is not None:
            logger.error("Worker failed while running task %s: %s", dispatch.task.id, error, exc_info=error)

    def has_capacity(self, in_flight: int) -> bool:
        return not self._closed and in_flight < self.max_in_flight

    @property
    def active(self) -> int:
        """Submitted dispatches that have not finished yet."""
        return self._active

    def shutdown(self, wait: bool = True) -> None:
        """Stop admissions. Without ``wait``, dispatches still queued are cancelled."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


def runner_from_settings(settings) -> Runner:
    if settings.is_pooled():
        return PooledRunner.from_settings(settings)
    return SingleThreadRunner()
