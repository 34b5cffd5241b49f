"""State-mutation events, point-in-time snapshots and pure replay.

Frontier and in-flight mutations are journaled as events synchronously with
the in-memory change they describe. Recovery loads the latest snapshot and
folds the events appended after it through ``apply_frontier_event`` and
``apply_in_flight_event``; both are pure and deterministic, so recovery can
be tested without any I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeAlias

from crawl_orchestrator.domain.model import ProcessingTask, RetryEntry, parse_instant, utc_now


@dataclass(slots=True, frozen=True)
class FrontierOffer:
    task: ProcessingTask


@dataclass(slots=True, frozen=True)
class FrontierPoll:
    task_id: str


@dataclass(slots=True, frozen=True)
class InFlightPut:
    task: ProcessingTask


@dataclass(slots=True, frozen=True)
class InFlightRemove:
    task_id: str


FrontierEvent: TypeAlias = FrontierOffer | FrontierPoll
InFlightEvent: TypeAlias = InFlightPut | InFlightRemove
StateEvent: TypeAlias = FrontierEvent | InFlightEvent


@dataclass(slots=True, frozen=True)
class JournalRecord:
    """An event together with its position in the append-only log."""

    sequence: int
    event: StateEvent
    recorded_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True, frozen=True)
class FrontierSnapshot:
    tasks: tuple[ProcessingTask, ...] = ()


@dataclass(slots=True, frozen=True)
class InFlightSnapshot:
    tasks: tuple[ProcessingTask, ...] = ()


@dataclass(slots=True, frozen=True)
class RetrySnapshot:
    entries: tuple[RetryEntry, ...] = ()


@dataclass(slots=True, frozen=True)
class StateSnapshot:
    """Snapshots of all three buffers, valid up to and including ``sequence``."""

    sequence: int = 0
    taken_at: datetime = field(default_factory=utc_now)
    frontier: FrontierSnapshot = field(default_factory=FrontierSnapshot)
    in_flight: InFlightSnapshot = field(default_factory=InFlightSnapshot)
    retry: RetrySnapshot = field(default_factory=RetrySnapshot)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "taken_at": self.taken_at.isoformat(),
            "frontier": [task.to_dict() for task in self.frontier.tasks],
            "in_flight": [task.to_dict() for task in self.in_flight.tasks],
            "retry": [entry.to_dict() for entry in self.retry.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateSnapshot:
        return cls(
            sequence=int(data.get("sequence", 0)),
            taken_at=parse_instant(data["taken_at"]) if data.get("taken_at") else utc_now(),
            frontier=FrontierSnapshot(tuple(ProcessingTask.from_dict(item) for item in data.get("frontier", []))),
            in_flight=InFlightSnapshot(tuple(ProcessingTask.from_dict(item) for item in data.get("in_flight", []))),
            retry=RetrySnapshot(tuple(RetryEntry.from_dict(item) for item in data.get("retry", []))),
        )


def apply_frontier_event(tasks: tuple[ProcessingTask, ...], event: FrontierEvent) -> tuple[ProcessingTask, ...]:
    """Return frontier membership after ``event``; ``tasks`` keeps offer order."""
    if isinstance(event, FrontierOffer):
        return (*tasks, event.task)
    if isinstance(event, FrontierPoll):
        for index, task in enumerate(tasks):
            if task.id == event.task_id:
                return tasks[:index] + tasks[index + 1 :]
        return tasks
    raise TypeError(f"Unsupported frontier event: {event!r}")


def apply_in_flight_event(tasks: tuple[ProcessingTask, ...], event: InFlightEvent) -> tuple[ProcessingTask, ...]:
    if isinstance(event, InFlightPut):
        remaining = tuple(task for task in tasks if task.id != event.task.id)
        return (*remaining, event.task)
    if isinstance(event, InFlightRemove):
        return tuple(task for task in tasks if task.id != event.task_id)
    raise TypeError(f"Unsupported in-flight event: {event!r}")


def replay(snapshot: StateSnapshot, records: Iterable[JournalRecord]) -> StateSnapshot:
    """Fold journal records appended after ``snapshot`` onto it.

    Records at or below ``snapshot.sequence`` are already reflected in the
    snapshot and are skipped. The retry snapshot is carried over untouched.
    """
    frontier = snapshot.frontier.tasks
    in_flight = snapshot.in_flight.tasks
    sequence = snapshot.sequence
    for record in sorted(records, key=lambda item: item.sequence):
        if record.sequence <= snapshot.sequence:
            continue
        event = record.event
        if isinstance(event, (FrontierOffer, FrontierPoll)):
            frontier = apply_frontier_event(frontier, event)
        elif isinstance(event, (InFlightPut, InFlightRemove)):
            in_flight = apply_in_flight_event(in_flight, event)
        else:
            raise TypeError(f"Unsupported state event: {event!r}")
        sequence = record.sequence
    return StateSnapshot(
        sequence=sequence,
        taken_at=snapshot.taken_at,
        frontier=FrontierSnapshot(frontier),
        in_flight=InFlightSnapshot(in_flight),
        retry=snapshot.retry,
    )
