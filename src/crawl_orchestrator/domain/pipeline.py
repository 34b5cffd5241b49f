"""Closed result variants for pipeline steps and task executions.

``PipelineResult`` is what a single step returns; ``Disposition`` is what a
whole task execution resolves to before its side effects are applied.
Consumers dispatch on these with ``isinstance`` chains that end in
``raise TypeError`` so an unhandled variant fails loudly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeAlias

from crawl_orchestrator.domain.decisions import DecisionSnapshot


@dataclass(slots=True, frozen=True)
class Continue:
    """Proceed; a ``route_id`` other than the current route requests a hop."""

    route_id: str | None = None


@dataclass(slots=True, frozen=True)
class Stop:
    """End processing for this lineage; nothing further is enqueued."""

    reason: str = "stopped"


PipelineResult: TypeAlias = Continue | Stop


def normalize_result(result: PipelineResult | None) -> PipelineResult:
    if result is None:
        return Continue()
    if isinstance(result, (Continue, Stop)):
        return result
    raise TypeError(f"Unsupported pipeline result: {result!r}")


@dataclass(slots=True, frozen=True)
class Completed:
    route_id: str | None = None
    decisions: DecisionSnapshot = field(default_factory=DecisionSnapshot)


@dataclass(slots=True, frozen=True)
class Stopped:
    reason: str
    route_id: str | None = None
    decisions: DecisionSnapshot = field(default_factory=DecisionSnapshot)


@dataclass(slots=True, frozen=True)
class Discarded:
    reason: str


@dataclass(slots=True, frozen=True)
class RetryLater:
    eligible_at: datetime
    reason: str
    error: BaseException | None
    stage_id: str | None
    route_id: str | None
    decisions: DecisionSnapshot = field(default_factory=DecisionSnapshot)


@dataclass(slots=True, frozen=True)
class DeadLettered:
    reason: str
    error: BaseException | None
    stage_id: str | None
    route_id: str | None
    decisions: DecisionSnapshot = field(default_factory=DecisionSnapshot)


Disposition: TypeAlias = Completed | Stopped | Discarded | RetryLater | DeadLettered
