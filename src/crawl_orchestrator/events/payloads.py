"""Typed payloads carried by lifecycle events.

Payloads are immutable snapshots taken when the event is published; the bus
hands the same object to every listener.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeAlias

from crawl_orchestrator.domain.decisions import DecisionEntry, DecisionSnapshot
from crawl_orchestrator.domain.failures import describe_error
from crawl_orchestrator.domain.model import ProcessingTask, utc_now


@dataclass(slots=True, frozen=True)
class RunPayload:
    run_id: str
    at: datetime = field(default_factory=utc_now)
    reason: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        error_type, error_message = describe_error(self.error)
        return {
            "run_id": self.run_id,
            "at": self.at.isoformat(),
            "reason": self.reason,
            "counts": dict(self.counts),
            "error_type": error_type,
            "error_message": error_message,
        }


@dataclass(slots=True, frozen=True)
class TaskPayload:
    run_id: str
    task: ProcessingTask
    at: datetime = field(default_factory=utc_now)
    reason: str | None = None
    route_id: str | None = None
    reserved_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "task_id": self.task.id,
            "url": self.task.url,
            "attempt": self.task.attempt,
            "depth": self.task.depth,
            "at": self.at.isoformat(),
            "reason": self.reason,
            "route_id": self.route_id,
            "reserved_at": self.reserved_at.isoformat() if self.reserved_at else None,
        }


@dataclass(slots=True, frozen=True)
class TaskFailedPayload:
    run_id: str
    task: ProcessingTask
    error: BaseException | None
    stage_id: str | None
    route_id: str | None
    will_retry: bool
    at: datetime = field(default_factory=utc_now)
    eligible_at: datetime | None = None
    reason: str | None = None
    decisions: DecisionSnapshot = field(default_factory=DecisionSnapshot)

    def to_dict(self) -> dict[str, Any]:
        error_type, error_message = describe_error(self.error)
        return {
            "run_id": self.run_id,
            "task_id": self.task.id,
            "url": self.task.url,
            "attempt": self.task.attempt,
            "stage_id": self.stage_id,
            "route_id": self.route_id,
            "will_retry": self.will_retry,
            "eligible_at": self.eligible_at.isoformat() if self.eligible_at else None,
            "reason": self.reason,
            "error_type": error_type,
            "error_message": error_message,
            "decisions": self.decisions.to_dict()["entries"],
            "at": self.at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class StepPayload:
    run_id: str
    task_id: str
    route_id: str
    step: str
    at: datetime = field(default_factory=utc_now)
    duration: timedelta | None = None
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        error_type, error_message = describe_error(self.error)
        return {
            "run_id": self.run_id,
            "task_id": self.task_id,
            "route_id": self.route_id,
            "step": self.step,
            "at": self.at.isoformat(),
            "duration_ms": self.duration.total_seconds() * 1000 if self.duration is not None else None,
            "error_type": error_type,
            "error_message": error_message,
        }


@dataclass(slots=True, frozen=True)
class DecisionPayload:
    run_id: str
    task_id: str
    entry: DecisionEntry
    route_id: str | None = None
    stage_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "task_id": self.task_id,
            "route_id": self.route_id,
            "stage_id": self.stage_id,
            **self.entry.to_dict(),
        }


EventPayload: TypeAlias = RunPayload | TaskPayload | TaskFailedPayload | StepPayload | DecisionPayload
