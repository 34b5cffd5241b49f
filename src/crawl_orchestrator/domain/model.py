"""Domain model for crawl work units.

Value objects here are immutable: a retried or deferred task is a new
``ProcessingTask`` value, never a mutation of the original. All instants are
timezone-aware UTC datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from crawl_orchestrator.observability.context import generate_span_id, generate_trace_id


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


@dataclass(slots=True, frozen=True)
class TraceContext:
    """Correlation data propagated alongside a task.

    Never consulted by scheduling decisions; only copied into log and span
    context while the task executes.
    """

    correlation_id: str
    span_id: str
    parent_span_id: str | None = None
    depth: int = 0
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def root(cls) -> TraceContext:
        return cls(correlation_id=generate_trace_id(), span_id=generate_span_id())

    def child(self) -> TraceContext:
        return TraceContext(
            correlation_id=self.correlation_id,
            span_id=generate_span_id(),
            parent_span_id=self.span_id,
            depth=self.depth + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "depth": self.depth,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceContext:
        return cls(
            correlation_id=data["correlation_id"],
            span_id=data["span_id"],
            parent_span_id=data.get("parent_span_id"),
            depth=int(data.get("depth", 0)),
            timestamp=parse_instant(data["timestamp"]) if data.get("timestamp") else utc_now(),
        )


@dataclass(slots=True, frozen=True)
class TaskOrigin:
    """Who produced a task and why."""

    publisher: str
    route_id: str | None = None
    parent_task_id: str | None = None
    reason: str | None = None
    source: str | None = None

    @classmethod
    def seed(cls, source: str = "seed") -> TaskOrigin:
        return cls(publisher="seed", reason="seed", source=source)

    @classmethod
    def discovered(cls, publisher: str, route_id: str | None, parent_task_id: str) -> TaskOrigin:
        return cls(
            publisher=publisher,
            route_id=route_id,
            parent_task_id=parent_task_id,
            reason="discovered",
            source="pipeline",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "publisher": self.publisher,
            "route_id": self.route_id,
            "parent_task_id": self.parent_task_id,
            "reason": self.reason,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskOrigin:
        return cls(
            publisher=data.get("publisher", "unknown"),
            route_id=data.get("route_id"),
            parent_task_id=data.get("parent_task_id"),
            reason=data.get("reason"),
            source=data.get("source"),
        )


@dataclass(slots=True, frozen=True)
class ProcessingTask:
    """Immutable unit of crawl work.

    ``parent_url`` is a lineage back-reference for debugging only. ``hint``
    selects the route that processes the task; ``None`` means the default
    route.
    """

    id: str
    url: str
    depth: int = 0
    parent_url: str | None = None
    origin: TaskOrigin = field(default_factory=TaskOrigin.seed)
    priority: int = 0
    scheduled_at: datetime = field(default_factory=utc_now)
    attempt: int = 0
    hint: str | None = None
    trace: TraceContext = field(default_factory=TraceContext.root)

    def next_attempt(self, now: datetime) -> ProcessingTask:
        """Return a copy representing the next execution attempt."""
        return replace(self, scheduled_at=now, attempt=self.attempt + 1)

    def deferred(self, scheduled_at: datetime) -> ProcessingTask:
        return replace(self, scheduled_at=scheduled_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "depth": self.depth,
            "parent_url": self.parent_url,
            "origin": self.origin.to_dict(),
            "priority": self.priority,
            "scheduled_at": self.scheduled_at.isoformat(),
            "attempt": self.attempt,
            "hint": self.hint,
            "trace": self.trace.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessingTask:
        return cls(
            id=data["id"],
            url=data["url"],
            depth=int(data.get("depth", 0)),
            parent_url=data.get("parent_url"),
            origin=TaskOrigin.from_dict(data.get("origin") or {}),
            priority=int(data.get("priority", 0)),
            scheduled_at=parse_instant(data["scheduled_at"]),
            attempt=int(data.get("attempt", 0)),
            hint=data.get("hint"),
            trace=TraceContext.from_dict(data["trace"]) if data.get("trace") else TraceContext.root(),
        )


@dataclass(slots=True, frozen=True)
class RetryEntry:
    """A task waiting in the retry buffer until ``eligible_at``."""

    eligible_at: datetime
    task: ProcessingTask
    reason: str
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible_at": self.eligible_at.isoformat(),
            "task": self.task.to_dict(),
            "reason": self.reason,
            "error": repr(self.error) if self.error is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryEntry:
        return cls(
            eligible_at=parse_instant(data["eligible_at"]),
            task=ProcessingTask.from_dict(data["task"]),
            reason=data.get("reason", "retry"),
        )


@dataclass(slots=True, frozen=True)
class Dispatch:
    """A task handed to a runner together with its committed reservation."""

    task: ProcessingTask
    reserved_at: datetime
    politeness_key: object | None = None
