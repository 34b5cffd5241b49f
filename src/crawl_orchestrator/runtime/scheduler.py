"""The scheduler loop: drain retries, poll the frontier, reserve politeness slots, dispatch.

One scheduler drives one run. Its thread blocks only in the bounded parked
wait; a politeness reservation in the future sends the task to the delay
queue instead of sleeping, so other origins keep flowing. Per-task failures
are resolved by the processing engine on the executing thread. Only a
failure of the loop itself, such as an unusable state journal, ends the run,
and it leaves frontier, in-flight and retry state in place for recovery.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
import logging
import threading
import time

from crawl_orchestrator.domain.model import Dispatch, ProcessingTask
from crawl_orchestrator.domain.pipeline import RetryLater
from crawl_orchestrator.events.names import CrawlEventName
from crawl_orchestrator.events.payloads import EventPayload, RunPayload, TaskPayload
from crawl_orchestrator.observability.metrics import DISPATCH_DELAY, QUEUE_DEPTH, TASK_EXECUTION_LATENCY
from crawl_orchestrator.persistence.journal import Checkpointer
from crawl_orchestrator.runtime.processing import ProcessingEngine
from crawl_orchestrator.runtime.run_context import RunContext
from crawl_orchestrator.runtime.runners import Runner, RunnerShutdownError, SingleThreadRunner, runner_from_settings


logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    DRAINING_RETRIES = "draining_retries"
    DISPATCHING = "dispatching"
    PARKED = "parked"
    STOPPED = "stopped"


@dataclass(slots=True, frozen=True)
class RunSummary:
    run_id: str
    outcome: str
    elapsed: timedelta
    counts: dict[str, int] = field(default_factory=dict)
    remaining: dict[str, int] = field(default_factory=dict)

    def count(self, name: CrawlEventName) -> int:
        return self.counts.get(name.value, 0)

    @property
    def completed(self) -> int:
        return self.count(CrawlEventName.TASK_COMPLETED)

    @property
    def dead_lettered(self) -> int:
        return self.count(CrawlEventName.TASK_DEAD_LETTERED)


class Scheduler:
    def __init__(
        self,
        run: RunContext,
        engine: ProcessingEngine,
        runner: Runner | None = None,
        *,
        retry_drain_batch: int = 64,
        scan_batch: int = 128,
        max_park: timedelta = timedelta(milliseconds=250),
        checkpointer: Checkpointer | None = None,
    ) -> None:
        if retry_drain_batch < 1 or scan_batch < 1:
            raise ValueError("retry_drain_batch and scan_batch must be at least 1")
        self.run = run
        self.engine = engine
        self.runner = runner or SingleThreadRunner()
        self.retry_drain_batch = retry_drain_batch
        self.scan_batch = scan_batch
        self.max_park = max_park
        self.checkpointer = checkpointer
        self.iterations = 0

        self._state = SchedulerState.IDLE
        self._cancelled = threading.Event()
        self._wakeup = threading.Event()
        self._abandon_in_flight = False
        self._fatal: BaseException | None = None
        self._fatal_lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._counts_lock = threading.Lock()
        run.events.subscribe(self._count_event)

    @classmethod
    def from_settings(
        cls,
        settings,
        run: RunContext,
        engine: ProcessingEngine,
        runner: Runner | None = None,
    ) -> Scheduler:
        checkpointer = None
        if run.journal is not None:
            checkpointer = Checkpointer(run, every_events=settings.snapshot_every_events)
        return cls(
            run,
            engine,
            runner or runner_from_settings(settings),
            retry_drain_batch=settings.retry_drain_batch,
            scan_batch=settings.scan_batch,
            max_park=settings.get_max_park(),
            checkpointer=checkpointer,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def seed(self, urls: Iterable[str], hint: str | None = None, *, priority: int = 0) -> list[ProcessingTask]:
        """Offer root tasks for URLs not yet discovered in this run."""
        seeded: list[ProcessingTask] = []
        for url in urls:
            if not self.run.seen.mark_discovered(url):
                logger.debug("Skipping duplicate seed %s", url)
                continue
            task = self.engine.task_factory.seed(url, hint, priority=priority, now=self.run.clock())
            self.run.frontier.offer(task)
            seeded.append(task)
        logger.info("Seeded %d tasks for run %s", len(seeded), self.run.run_id)
        return seeded

    def cancel(self, *, abandon_in_flight: bool = False) -> None:
        """Stop polling and admissions.

        Running tasks finish unless ``abandon_in_flight`` is set, in which
        case queued dispatches are dropped and stay recorded in the
        in-flight buffer for recovery.
        """
        self._abandon_in_flight = abandon_in_flight
        self._cancelled.set()
        self._wakeup.set()
        logger.info("Cancellation requested for run %s (abandon_in_flight=%s)", self.run.run_id, abandon_in_flight)

    def run_until_drained(self) -> RunSummary:
        """Loop until no work is queued, deferred, retrying or executing, or until cancelled."""
        run = self.run
        started = time.monotonic()
        run.events.publish(CrawlEventName.RUN_STARTED, RunPayload(run_id=run.run_id, at=run.clock()))
        logger.info("Run %s started with %s", run.run_id, type(self.runner).__name__)

        try:
            while not self._cancelled.is_set():
                self._wakeup.clear()
                self._raise_if_fatal()
                progressed = self.run_once()
                self._raise_if_fatal()
                if run.is_idle():
                    self._state = SchedulerState.IDLE
                    break
                if not progressed:
                    self._park()

            self.runner.shutdown(wait=not self._abandon_in_flight)
            self._raise_if_fatal()
            if self.checkpointer is not None:
                self.checkpointer.checkpoint()
        except Exception as exc:
            self._fail(exc, started)
            raise

        self._state = SchedulerState.STOPPED
        cancelled = self._cancelled.is_set()
        summary = self._summary("cancelled" if cancelled else "finished", started)
        name = CrawlEventName.RUN_CANCELLED if cancelled else CrawlEventName.RUN_FINISHED
        run.events.publish(name, RunPayload(run_id=run.run_id, at=run.clock(), counts=summary.counts))
        logger.info(
            "Run %s %s in %.2fs: %s remaining=%s",
            run.run_id,
            summary.outcome,
            summary.elapsed.total_seconds(),
            summary.counts,
            summary.remaining,
        )
        return summary

    def run_once(self) -> bool:
        """Run one loop iteration; return True when any task moved."""
        run = self.run
        now = run.clock()

        self._state = SchedulerState.DRAINING_RETRIES
        due = run.retry_buffer.drain_due(now, self.retry_drain_batch)
        for entry in due:
            run.frontier.offer(entry.task)
        progressed = bool(due)

        self._state = SchedulerState.DISPATCHING
        capacity = self._capacity()
        if capacity > 0:
            for dispatch in run.delay_queue.release_due(now, limit=capacity):
                self._dispatch(dispatch, now)
                progressed = True

        for _ in range(self.scan_batch):
            if self._stopping() or self._capacity() <= 0:
                break
            task = run.frontier.poll()
            if task is None:
                break
            progressed = True
            key = run.politeness.key_of(task)
            reserved_at = run.politeness.eligible_at(task, now)
            if reserved_at > now:
                deferred = run.delay_queue.defer(task, reserved_at, key)
                run.events.publish(
                    CrawlEventName.TASK_DEFERRED,
                    TaskPayload(run_id=run.run_id, task=deferred.task, at=now, reserved_at=reserved_at),
                )
                continue
            self._dispatch(Dispatch(task=task, reserved_at=reserved_at, politeness_key=key), now)

        # Deferred dispatches are durable only once checkpointed
        if self.checkpointer is not None:
            self.checkpointer.maybe_checkpoint()
        self.iterations += 1
        self._update_gauges()
        return progressed

    # ------------------------------------------------------------------
    # Dispatch and completion
    # ------------------------------------------------------------------

    def _capacity(self) -> int:
        in_flight = self.run.in_flight.size()
        if not self.runner.has_capacity(in_flight):
            return 0
        return self.runner.max_in_flight - in_flight

    def _dispatch(self, dispatch: Dispatch, now: datetime) -> None:
        run = self.run
        task = dispatch.task
        run.events.publish(
            CrawlEventName.TASK_SUBMITTED,
            TaskPayload(run_id=run.run_id, task=task, at=now, reserved_at=dispatch.reserved_at),
        )
        DISPATCH_DELAY.labels(run=run.run_id).observe(max((now - dispatch.reserved_at).total_seconds(), 0.0))
        run.in_flight.put(task)
        try:
            self.runner.execute(dispatch, self._execute_dispatch)
        except RunnerShutdownError:
            logger.warning("Runner refused task %s; returning it to the frontier", task.id)
            run.in_flight.remove(task.id)
            run.frontier.offer(task)

    def _execute_dispatch(self, dispatch: Dispatch) -> None:
        """Execution window of one task; runs on the runner's thread."""
        run = self.run
        task = dispatch.task
        try:
            run.events.publish(
                CrawlEventName.TASK_STARTED,
                TaskPayload(run_id=run.run_id, task=task, at=run.clock(), reserved_at=dispatch.reserved_at),
            )
            started = time.perf_counter()
            disposition = self.engine.execute(task)
            TASK_EXECUTION_LATENCY.labels(run=run.run_id, outcome=type(disposition).__name__.lower()).observe(
                time.perf_counter() - started
            )
            self.engine.apply(task, disposition)
            if isinstance(disposition, RetryLater) and self.checkpointer is not None:
                # Capture the retry before the journaled removal drops the task
                self.checkpointer.checkpoint()
            run.in_flight.remove(task.id)
        except Exception as exc:
            self._record_fatal(exc, task)
        finally:
            self._wakeup.set()

    # ------------------------------------------------------------------
    # Loop helpers
    # ------------------------------------------------------------------

    def _park(self) -> None:
        self._state = SchedulerState.PARKED
        timeout = self.max_park
        if self._capacity() > 0:
            now = self.run.clock()
            for upcoming in (self.run.retry_buffer.peek_eligible_at(), self.run.delay_queue.peek_reserved_at()):
                if upcoming is not None:
                    timeout = min(timeout, max(upcoming - now, timedelta(0)))
        self._wakeup.wait(timeout.total_seconds())

    def _stopping(self) -> bool:
        return self._cancelled.is_set() or self._fatal is not None

    def _record_fatal(self, exc: BaseException, task: ProcessingTask) -> None:
        with self._fatal_lock:
            if self._fatal is None:
                self._fatal = exc
        logger.critical("Run %s cannot continue after task %s: %s", self.run.run_id, task.id, exc, exc_info=exc)

    def _raise_if_fatal(self) -> None:
        if self._fatal is not None:
            raise self._fatal

    def _fail(self, exc: Exception, started: float) -> None:
        self._state = SchedulerState.STOPPED
        self._cancelled.set()
        self.runner.shutdown(wait=False)
        summary = self._summary("failed", started)
        logger.critical(
            "Run %s failed: %s; preserved state %s", self.run.run_id, exc, summary.remaining, exc_info=exc
        )
        self.run.events.publish(
            CrawlEventName.RUN_FAILED,
            RunPayload(
                run_id=self.run.run_id,
                at=self.run.clock(),
                reason=type(exc).__name__,
                counts=summary.counts,
                error=exc,
            ),
        )

    def _count_event(self, name: CrawlEventName, payload: EventPayload) -> None:
        if payload.run_id != self.run.run_id:
            return
        with self._counts_lock:
            self._counts[name.value] += 1

    def _summary(self, outcome: str, started: float) -> RunSummary:
        with self._counts_lock:
            counts = dict(self._counts)
        return RunSummary(
            run_id=self.run.run_id,
            outcome=outcome,
            elapsed=timedelta(seconds=time.monotonic() - started),
            counts=counts,
            remaining=self.run.depths(),
        )

    def _update_gauges(self) -> None:
        for buffer, depth in self.run.depths().items():
            QUEUE_DEPTH.labels(run=self.run.run_id, buffer=buffer).set(depth)
