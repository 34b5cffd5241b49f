"""orjson encoding for journaled state events and snapshots."""

from __future__ import annotations

from typing import Any

import orjson

from crawl_orchestrator.domain.events import (
    FrontierOffer,
    FrontierPoll,
    InFlightPut,
    InFlightRemove,
    StateEvent,
    StateSnapshot,
)
from crawl_orchestrator.domain.failures import StateJournalError
from crawl_orchestrator.domain.model import ProcessingTask


FRONTIER_OFFER = "frontier.offer"
FRONTIER_POLL = "frontier.poll"
IN_FLIGHT_PUT = "in_flight.put"
IN_FLIGHT_REMOVE = "in_flight.remove"


def event_to_dict(event: StateEvent) -> dict[str, Any]:
    if isinstance(event, FrontierOffer):
        return {"type": FRONTIER_OFFER, "task": event.task.to_dict()}
    if isinstance(event, FrontierPoll):
        return {"type": FRONTIER_POLL, "task_id": event.task_id}
    if isinstance(event, InFlightPut):
        return {"type": IN_FLIGHT_PUT, "task": event.task.to_dict()}
    if isinstance(event, InFlightRemove):
        return {"type": IN_FLIGHT_REMOVE, "task_id": event.task_id}
    raise TypeError(f"Unsupported state event: {event!r}")


def event_from_dict(data: dict[str, Any]) -> StateEvent:
    kind = data.get("type")
    if kind == FRONTIER_OFFER:
        return FrontierOffer(ProcessingTask.from_dict(data["task"]))
    if kind == FRONTIER_POLL:
        return FrontierPoll(data["task_id"])
    if kind == IN_FLIGHT_PUT:
        return InFlightPut(ProcessingTask.from_dict(data["task"]))
    if kind == IN_FLIGHT_REMOVE:
        return InFlightRemove(data["task_id"])
    raise StateJournalError(f"Unknown journal event type: {kind!r}")


def encode_event(event: StateEvent) -> bytes:
    return orjson.dumps(event_to_dict(event))


def decode_event(payload: bytes | str) -> StateEvent:
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as exc:
        raise StateJournalError(f"Corrupt journal event payload: {exc}") from exc
    return event_from_dict(data)


def encode_snapshot(snapshot: StateSnapshot) -> bytes:
    return orjson.dumps(snapshot.to_dict())


def decode_snapshot(payload: bytes | str) -> StateSnapshot:
    try:
        return StateSnapshot.from_dict(orjson.loads(payload))
    except (orjson.JSONDecodeError, KeyError, ValueError) as exc:
        raise StateJournalError(f"Corrupt state snapshot payload: {exc}") from exc
