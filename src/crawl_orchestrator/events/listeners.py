"""Built-in event listeners: logging, Prometheus metrics and in-memory capture."""

from __future__ import annotations

import logging
import threading

from crawl_orchestrator.events.names import CrawlEventName
from crawl_orchestrator.events.payloads import (
    DecisionPayload,
    EventPayload,
    RunPayload,
    StepPayload,
    TaskFailedPayload,
    TaskPayload,
)
from crawl_orchestrator.observability.metrics import TASK_EVENTS


logger = logging.getLogger(__name__)

_WARNING_EVENTS = frozenset(
    {
        CrawlEventName.RUN_FAILED,
        CrawlEventName.TASK_FAILED,
        CrawlEventName.TASK_DEAD_LETTERED,
        CrawlEventName.STEP_FAILED,
    }
)
_INFO_EVENTS = frozenset(
    {
        CrawlEventName.RUN_STARTED,
        CrawlEventName.RUN_FINISHED,
        CrawlEventName.RUN_CANCELLED,
        CrawlEventName.TASK_COMPLETED,
        CrawlEventName.TASK_RETRY_SCHEDULED,
    }
)


class LoggingListener:
    """Log every event with its payload as structured ``extra`` fields."""

    def __init__(self, event_logger: logging.Logger | None = None) -> None:
        self._logger = event_logger or logger

    def __call__(self, name: CrawlEventName, payload: EventPayload) -> None:
        if name in _WARNING_EVENTS:
            level = logging.WARNING
        elif name in _INFO_EVENTS:
            level = logging.INFO
        else:
            level = logging.DEBUG
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, "%s %s", name.value, _describe(payload), extra={"event": payload.to_dict()})


def _describe(payload: EventPayload) -> str:
    if isinstance(payload, RunPayload):
        return f"run={payload.run_id}" + (f" reason={payload.reason}" if payload.reason else "")
    if isinstance(payload, (TaskPayload, TaskFailedPayload)):
        text = f"task={payload.task.id} url={payload.task.url} attempt={payload.task.attempt}"
        if payload.reason:
            text += f" reason={payload.reason}"
        return text
    if isinstance(payload, StepPayload):
        return f"task={payload.task_id} route={payload.route_id} step={payload.step}"
    if isinstance(payload, DecisionPayload):
        return f"task={payload.task_id} code={payload.entry.code} message={payload.entry.message}"
    raise TypeError(f"Unsupported event payload: {payload!r}")


class MetricsListener:
    """Count task and run events per run in ``crawl_task_events_total``."""

    def __call__(self, name: CrawlEventName, payload: EventPayload) -> None:
        run_id = payload.run_id
        TASK_EVENTS.labels(run=run_id, event=name.value).inc()


class RecordingListener:
    """Capture events in memory for inspection."""

    def __init__(self) -> None:
        self._events: list[tuple[CrawlEventName, EventPayload]] = []
        self._lock = threading.Lock()

    def __call__(self, name: CrawlEventName, payload: EventPayload) -> None:
        with self._lock:
            self._events.append((name, payload))

    @property
    def events(self) -> list[tuple[CrawlEventName, EventPayload]]:
        with self._lock:
            return list(self._events)

    def names(self) -> list[CrawlEventName]:
        return [name for name, _payload in self.events]

    def payloads(self, name: CrawlEventName) -> list[EventPayload]:
        return [payload for event_name, payload in self.events if event_name is name]

    def count(self, name: CrawlEventName) -> int:
        return len(self.payloads(name))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
