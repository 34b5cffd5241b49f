"""Task execution: fetch, run the routed pipeline, and apply the outcome.

``ProcessingEngine.execute`` turns one attempt of a task into a
``Disposition`` without touching the retry buffer or the dead letter queue;
``ProcessingEngine.apply`` performs those side effects afterwards. The only
scheduler state touched during execution is the frontier, through
``ProcessingContext.enqueue``, which funnels every discovered URL through the
scope policy and the seen store first.
"""

from __future__ import annotations

from datetime import timedelta
import logging
import time
from typing import Any
from urllib.parse import urljoin, urlsplit

from crawl_orchestrator.adapters.fetcher import Fetcher, FetchRequest, FetchResult
from crawl_orchestrator.domain.decisions import DecisionCodes, DecisionEntry, DecisionRecorder
from crawl_orchestrator.domain.failures import (
    DeadLetterEntry,
    DeadLetterItem,
    RouteHopLimitError,
    StateJournalError,
    TaskRejectedError,
)
from crawl_orchestrator.domain.model import ProcessingTask, TaskOrigin
from crawl_orchestrator.domain.pipeline import (
    Completed,
    Continue,
    DeadLettered,
    Discarded,
    Disposition,
    PipelineResult,
    RetryLater,
    Stop,
    Stopped,
    normalize_result,
)
from crawl_orchestrator.events.names import CrawlEventName
from crawl_orchestrator.events.payloads import DecisionPayload, StepPayload, TaskFailedPayload, TaskPayload
from crawl_orchestrator.observability.context import bound_trace_context
from crawl_orchestrator.observability.tracing import create_span
from crawl_orchestrator.runtime.retry_policy import (
    DeadLetter,
    Discard,
    ExponentialBackoffRetryPolicy,
    Retry,
    RetryPolicy,
)
from crawl_orchestrator.runtime.routes import ProcessingRoute, RouteRegistry
from crawl_orchestrator.runtime.run_context import RunContext
from crawl_orchestrator.runtime.scope import DefaultScopePolicy, ScopePolicy, TaskFactory
from crawl_orchestrator.utils.urls import normalize_url


logger = logging.getLogger(__name__)

MAX_ROUTE_HOPS = 8
FETCH_STAGE = "fetch"
PIPELINE_STAGE = "pipeline"


class ProcessingContext:
    """What a pipeline step sees while one task executes.

    ``document`` starts empty; a parsing step may store whatever parsed
    representation later steps need. ``attributes`` is free-form scratch
    space shared by the steps of one execution.
    """

    def __init__(
        self,
        engine: ProcessingEngine,
        task: ProcessingTask,
        fetch_result: FetchResult,
        decisions: DecisionRecorder,
        route_id: str,
    ) -> None:
        self._engine = engine
        self.task = task
        self.fetch_result = fetch_result
        self.decisions = decisions
        self.route_id = route_id
        self.stage_id: str | None = None
        self.document: Any = None
        self.attributes: dict[str, Any] = {}
        self.enqueued: list[ProcessingTask] = []

    def enqueue(self, url: str, hint: str | None = None, *, priority: int | None = None) -> ProcessingTask | None:
        """Offer a discovered URL to the frontier; return the new task or ``None`` when dropped."""
        child = self._engine.enqueue_discovered(self, url, hint, priority=priority)
        if child is not None:
            self.enqueued.append(child)
        return child


class ProcessingEngine:
    def __init__(
        self,
        run: RunContext,
        routes: RouteRegistry,
        fetcher: Fetcher,
        *,
        retry_policy: RetryPolicy | None = None,
        scope: ScopePolicy | None = None,
        task_factory: TaskFactory | None = None,
        request_headers: dict[str, str] | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self.run = run
        self.routes = routes
        self.fetcher = fetcher
        self.retry_policy = retry_policy or ExponentialBackoffRetryPolicy()
        self.scope = scope or DefaultScopePolicy()
        self.task_factory = task_factory or TaskFactory()
        self._request_headers = dict(request_headers or {})
        self._request_timeout = request_timeout

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, task: ProcessingTask) -> Disposition:
        """Run one attempt of ``task``; never raises except for run-fatal journal errors."""
        if self.run.seen.is_processed(task.url):
            return Discarded(reason="already processed")
        deny_reason = self.scope.deny_reason(task)
        if deny_reason is not None:
            return Discarded(reason=f"out of scope: {deny_reason}")

        ctx: ProcessingContext | None = None
        decisions = DecisionRecorder(on_record=lambda entry: self._publish_decision(task, ctx, entry))
        attributes = {"crawl.task_id": task.id, "crawl.url": task.url, "crawl.attempt": task.attempt}

        route: ProcessingRoute | None = None
        stage_id = PIPELINE_STAGE
        with bound_trace_context(task.trace.correlation_id, task.trace.span_id, task_id=task.id):
            try:
                with create_span("crawl.task", attributes=attributes):
                    route = self.routes.resolve(task)
                    stage_id = FETCH_STAGE
                    fetch_result = self.fetcher.fetch(
                        FetchRequest(url=task.url, headers=dict(self._request_headers), timeout=self._request_timeout)
                    )
                    ctx = ProcessingContext(self, task, fetch_result, decisions, route.id)
                    result = self._run_route(ctx, route)
            except StateJournalError:
                raise
            except Exception as exc:
                if ctx is not None:
                    stage_id = ctx.stage_id
                route_id = ctx.route_id if ctx is not None else (route.id if route is not None else None)
                if isinstance(exc, TaskRejectedError):
                    decisions.reject(exc.code or DecisionCodes.STEP_REJECT, exc.reason)
                logger.debug("Task %s failed at %s: %s", task.id, stage_id, exc)
                return self._failure(task, exc, stage_id, route_id, decisions)

        self.run.seen.mark_processed(task.url)
        if isinstance(result, Stop):
            return Stopped(reason=result.reason, route_id=ctx.route_id, decisions=decisions.snapshot())
        return Completed(route_id=ctx.route_id, decisions=decisions.snapshot())

    def _run_route(self, ctx: ProcessingContext, route: ProcessingRoute) -> PipelineResult:
        hops = 0
        while True:
            next_route: ProcessingRoute | None = None
            for step in route.steps:
                result = self._run_step(ctx, step)
                if isinstance(result, Stop):
                    return result
                if isinstance(result, Continue):
                    if result.route_id is not None and result.route_id != route.id:
                        next_route = self.routes.by_id(result.route_id)
                        break
                    continue
                raise TypeError(f"Unsupported pipeline result: {result!r}")

            if next_route is None:
                return Continue(route.id)
            hops += 1
            if hops > MAX_ROUTE_HOPS:
                raise RouteHopLimitError(f"Route hop limit {MAX_ROUTE_HOPS} exceeded at route {next_route.id!r}")
            logger.debug("Task %s hops from route %s to %s", ctx.task.id, route.id, next_route.id)
            route = next_route
            ctx.route_id = route.id

    def _run_step(self, ctx: ProcessingContext, step) -> PipelineResult:
        ctx.stage_id = step.name
        run_id = self.run.run_id
        self.run.events.publish(
            CrawlEventName.STEP_STARTED,
            StepPayload(run_id=run_id, task_id=ctx.task.id, route_id=ctx.route_id, step=step.name),
        )
        started = time.perf_counter()
        try:
            result = normalize_result(step.execute(ctx))
        except Exception as exc:
            self.run.events.publish(
                CrawlEventName.STEP_FAILED,
                StepPayload(
                    run_id=run_id,
                    task_id=ctx.task.id,
                    route_id=ctx.route_id,
                    step=step.name,
                    duration=timedelta(seconds=time.perf_counter() - started),
                    error=exc,
                ),
            )
            raise
        self.run.events.publish(
            CrawlEventName.STEP_COMPLETED,
            StepPayload(
                run_id=run_id,
                task_id=ctx.task.id,
                route_id=ctx.route_id,
                step=step.name,
                duration=timedelta(seconds=time.perf_counter() - started),
            ),
        )
        return result

    def _failure(
        self,
        task: ProcessingTask,
        error: Exception,
        stage_id: str | None,
        route_id: str | None,
        decisions: DecisionRecorder,
    ) -> Disposition:
        decision = self.retry_policy.decide(task, error, self.run.clock())
        if isinstance(decision, Retry):
            return RetryLater(
                eligible_at=decision.eligible_at,
                reason=decision.reason,
                error=error,
                stage_id=stage_id,
                route_id=route_id,
                decisions=decisions.snapshot(),
            )
        if isinstance(decision, DeadLetter):
            return DeadLettered(
                reason=decision.reason,
                error=error,
                stage_id=stage_id,
                route_id=route_id,
                decisions=decisions.snapshot(),
            )
        if isinstance(decision, Discard):
            return Discarded(reason=decision.reason)
        raise TypeError(f"Unsupported retry decision: {decision!r}")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def enqueue_discovered(
        self,
        ctx: ProcessingContext,
        url: str,
        hint: str | None,
        *,
        priority: int | None = None,
    ) -> ProcessingTask | None:
        parent = ctx.task
        base = ctx.fetch_result.uri or parent.url
        resolved = urljoin(base, str(url).strip())
        parts = urlsplit(resolved)
        if not parts.scheme or not parts.netloc:
            ctx.decisions.reject(DecisionCodes.INVALID_URL, f"cannot resolve {url!r}")
            return None

        if normalize_url(resolved) in (normalize_url(parent.url), normalize_url(base)):
            ctx.decisions.reject(DecisionCodes.DUPLICATE_SELF, resolved)
            return None

        origin = TaskOrigin.discovered(
            publisher=ctx.stage_id or "pipeline",
            route_id=ctx.route_id,
            parent_task_id=parent.id,
        )
        child = self.task_factory.child_of(parent, resolved, hint, origin, priority=priority, now=self.run.clock())

        deny_reason = self.scope.deny_reason(child)
        if deny_reason is not None:
            ctx.decisions.reject(DecisionCodes.SCOPE_DENY, f"{resolved}: {deny_reason}")
            return None

        if not self.run.seen.mark_discovered(resolved):
            ctx.decisions.reject(DecisionCodes.DUPLICATE_DISCOVERED, resolved)
            self.run.events.publish(
                CrawlEventName.TASK_DISCARDED,
                TaskPayload(run_id=self.run.run_id, task=child, reason="duplicate", route_id=ctx.route_id),
            )
            return None

        self.run.frontier.offer(child)
        ctx.decisions.accept(DecisionCodes.ENQUEUE_ACCEPT, resolved)
        return child

    def _publish_decision(self, task: ProcessingTask, ctx: ProcessingContext | None, entry: DecisionEntry) -> None:
        name = CrawlEventName.DECISION_ACCEPTED if entry.accepted else CrawlEventName.DECISION_REJECTED
        self.run.events.publish(
            name,
            DecisionPayload(
                run_id=self.run.run_id,
                task_id=task.id,
                entry=entry,
                route_id=ctx.route_id if ctx is not None else None,
                stage_id=ctx.stage_id if ctx is not None else None,
            ),
        )

    # ------------------------------------------------------------------
    # Outcome
    # ------------------------------------------------------------------

    def apply(self, task: ProcessingTask, disposition: Disposition) -> None:
        """Apply the side effects of ``disposition`` and publish its events."""
        run = self.run
        now = run.clock()

        if isinstance(disposition, Completed):
            run.events.publish(
                CrawlEventName.TASK_COMPLETED,
                TaskPayload(run_id=run.run_id, task=task, at=now, route_id=disposition.route_id),
            )
        elif isinstance(disposition, Stopped):
            run.events.publish(
                CrawlEventName.TASK_STOPPED,
                TaskPayload(
                    run_id=run.run_id, task=task, at=now, reason=disposition.reason, route_id=disposition.route_id
                ),
            )
        elif isinstance(disposition, Discarded):
            run.events.publish(
                CrawlEventName.TASK_DISCARDED,
                TaskPayload(run_id=run.run_id, task=task, at=now, reason=disposition.reason),
            )
        elif isinstance(disposition, RetryLater):
            run.events.publish(
                CrawlEventName.TASK_FAILED,
                TaskFailedPayload(
                    run_id=run.run_id,
                    task=task,
                    error=disposition.error,
                    stage_id=disposition.stage_id,
                    route_id=disposition.route_id,
                    will_retry=True,
                    at=now,
                    eligible_at=disposition.eligible_at,
                    reason=disposition.reason,
                    decisions=disposition.decisions,
                ),
            )
            retried = task.next_attempt(now)
            run.retry_buffer.schedule(retried, disposition.eligible_at, disposition.reason, disposition.error)
            run.events.publish(
                CrawlEventName.TASK_RETRY_SCHEDULED,
                TaskPayload(
                    run_id=run.run_id,
                    task=retried,
                    at=now,
                    reason=disposition.reason,
                    route_id=disposition.route_id,
                    reserved_at=disposition.eligible_at,
                ),
            )
        elif isinstance(disposition, DeadLettered):
            run.events.publish(
                CrawlEventName.TASK_FAILED,
                TaskFailedPayload(
                    run_id=run.run_id,
                    task=task,
                    error=disposition.error,
                    stage_id=disposition.stage_id,
                    route_id=disposition.route_id,
                    will_retry=False,
                    at=now,
                    reason=disposition.reason,
                    decisions=disposition.decisions,
                ),
            )
            entry = DeadLetterEntry(
                task=task,
                item=DeadLetterItem(
                    failed_at=now,
                    reason=disposition.reason,
                    stage_id=disposition.stage_id,
                    route_id=disposition.route_id,
                    attempt=task.attempt + 1,
                    error=disposition.error,
                ),
                decisions=disposition.decisions,
            )
            run.dead_letters.put(entry)
            run.events.publish(
                CrawlEventName.TASK_DEAD_LETTERED,
                TaskPayload(
                    run_id=run.run_id, task=task, at=now, reason=disposition.reason, route_id=disposition.route_id
                ),
            )
        else:
            raise TypeError(f"Unsupported disposition: {disposition!r}")
