from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.state.retry_buffer import RetryBuffer


T = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
MS = timedelta(milliseconds=1)


def _task(task_id: str) -> ProcessingTask:
    return ProcessingTask(id=task_id, url=f"https://example.com/{task_id}", attempt=1)


@pytest.mark.unit
def test_entry_is_absent_before_due_and_present_at_due() -> None:
    buffer = RetryBuffer()
    buffer.schedule(_task("a"), T, "timeout")

    assert buffer.drain_due(T - MS, 10) == []
    assert buffer.size() == 1

    drained = buffer.drain_due(T, 10)

    assert [entry.task.id for entry in drained] == ["a"]
    assert drained[0].reason == "timeout"
    assert buffer.size() == 0


@pytest.mark.unit
def test_drain_due_returns_ascending_eligible_at_and_respects_batch() -> None:
    buffer = RetryBuffer()
    buffer.schedule(_task("late"), T + 3 * MS, "x")
    buffer.schedule(_task("early"), T + MS, "x")
    buffer.schedule(_task("middle"), T + 2 * MS, "x")
    buffer.schedule(_task("future"), T + timedelta(seconds=10), "x")

    first = buffer.drain_due(T + 5 * MS, 2)
    second = buffer.drain_due(T + 5 * MS, 2)

    assert [entry.task.id for entry in first] == ["early", "middle"]
    assert [entry.task.id for entry in second] == ["late"]
    assert buffer.peek_eligible_at() == T + timedelta(seconds=10)
    assert buffer.contains("future")


@pytest.mark.unit
def test_equal_eligible_at_drains_in_schedule_order() -> None:
    buffer = RetryBuffer()
    for task_id in ("a", "b", "c"):
        buffer.schedule(_task(task_id), T, "x")

    assert [entry.task.id for entry in buffer.drain_due(T, 10)] == ["a", "b", "c"]


@pytest.mark.unit
def test_zero_batch_drains_nothing() -> None:
    buffer = RetryBuffer()
    buffer.schedule(_task("a"), T, "x")

    assert buffer.drain_due(T, 0) == []
    assert buffer.size() == 1


@pytest.mark.unit
def test_snapshot_and_restore_round_trip() -> None:
    buffer = RetryBuffer()
    buffer.schedule(_task("b"), T + MS, "x")
    buffer.schedule(_task("a"), T, "y")

    snapshot = buffer.snapshot()
    restored = RetryBuffer()
    restored.restore(snapshot)

    assert [entry.task.id for entry in snapshot.entries] == ["a", "b"]
    assert [entry.task.id for entry in restored.drain_due(T + MS, 10)] == ["a", "b"]


@pytest.mark.unit
def test_revision_changes_on_every_mutation() -> None:
    buffer = RetryBuffer()
    start = buffer.revision

    buffer.schedule(_task("a"), T, "x")
    after_schedule = buffer.revision
    buffer.drain_due(T - MS, 10)
    after_empty_drain = buffer.revision
    buffer.drain_due(T, 10)

    assert after_schedule > start
    assert after_empty_drain == after_schedule
    assert buffer.revision > after_empty_drain
