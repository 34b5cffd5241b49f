"""Pure replay of frontier and in-flight events onto snapshots."""

from __future__ import annotations

import pytest

from crawl_orchestrator.domain.events import (
    FrontierOffer,
    FrontierPoll,
    FrontierSnapshot,
    InFlightPut,
    InFlightRemove,
    InFlightSnapshot,
    JournalRecord,
    StateSnapshot,
    apply_frontier_event,
    apply_in_flight_event,
    replay,
)
from crawl_orchestrator.domain.model import ProcessingTask


def _task(task_id: str) -> ProcessingTask:
    return ProcessingTask(id=task_id, url=f"https://example.com/{task_id}")


A, B, C = _task("a"), _task("b"), _task("c")


@pytest.mark.unit
def test_apply_frontier_event_is_pure() -> None:
    start = (A,)

    offered = apply_frontier_event(start, FrontierOffer(B))
    polled = apply_frontier_event(offered, FrontierPoll("a"))

    assert start == (A,)
    assert offered == (A, B)
    assert polled == (B,)
    assert apply_frontier_event(polled, FrontierPoll("missing")) == (B,)


@pytest.mark.unit
def test_apply_in_flight_event_replaces_same_id() -> None:
    retried = A.next_attempt(A.scheduled_at)

    tasks = apply_in_flight_event((A,), InFlightPut(retried))

    assert tasks == (retried,)
    assert apply_in_flight_event(tasks, InFlightRemove("a")) == ()


@pytest.mark.unit
def test_apply_rejects_foreign_events() -> None:
    with pytest.raises(TypeError):
        apply_frontier_event((), InFlightPut(A))  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        apply_in_flight_event((), FrontierOffer(A))  # type: ignore[arg-type]


@pytest.mark.unit
def test_replay_reproduces_membership_after_snapshot() -> None:
    snapshot = StateSnapshot(
        sequence=10,
        frontier=FrontierSnapshot((A, B)),
        in_flight=InFlightSnapshot(()),
    )
    records = [
        JournalRecord(11, FrontierPoll("a")),
        JournalRecord(12, InFlightPut(A)),
        JournalRecord(13, FrontierOffer(C)),
        JournalRecord(14, FrontierPoll("b")),
        JournalRecord(15, InFlightPut(B)),
        JournalRecord(16, InFlightRemove("a")),
    ]

    state = replay(snapshot, records)

    assert [task.id for task in state.frontier.tasks] == ["c"]
    assert [task.id for task in state.in_flight.tasks] == ["b"]
    assert state.sequence == 16


@pytest.mark.unit
def test_replay_skips_records_covered_by_snapshot_and_sorts_by_sequence() -> None:
    snapshot = StateSnapshot(sequence=5, frontier=FrontierSnapshot((A,)))
    records = [
        JournalRecord(7, FrontierPoll("b")),
        JournalRecord(4, FrontierOffer(C)),
        JournalRecord(6, FrontierOffer(B)),
    ]

    state = replay(snapshot, records)

    assert [task.id for task in state.frontier.tasks] == ["a"]
    assert state.sequence == 7


@pytest.mark.unit
def test_snapshot_dict_round_trip() -> None:
    snapshot = StateSnapshot(sequence=3, frontier=FrontierSnapshot((A,)), in_flight=InFlightSnapshot((B,)))

    restored = StateSnapshot.from_dict(snapshot.to_dict())

    assert restored.sequence == 3
    assert restored.frontier == snapshot.frontier
    assert restored.in_flight == snapshot.in_flight
    assert restored.taken_at == snapshot.taken_at
