"""Journaled buffers, checkpoints and recovery over the in-memory repository."""

from __future__ import annotations

from datetime import timedelta

from prometheus_client import REGISTRY
import pytest

from crawl_orchestrator.domain.events import FrontierOffer, FrontierPoll, InFlightPut, InFlightRemove
from crawl_orchestrator.domain.failures import StateJournalError
from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.persistence.journal import (
    POLITENESS_REASON,
    Checkpointer,
    JournaledFrontier,
    StateJournal,
    checkpoint,
    recover,
)
from crawl_orchestrator.persistence.repository import InMemoryStateRepository
from crawl_orchestrator.state.frontier import FifoFrontier


def _task(task_id: str) -> ProcessingTask:
    return ProcessingTask(id=task_id, url=f"https://example.com/{task_id}")


class FailingRepository(InMemoryStateRepository):
    def __init__(self) -> None:
        super().__init__()
        self.fail_appends = False

    def append(self, record) -> None:
        if self.fail_appends:
            raise StateJournalError("disk full")
        super().append(record)


@pytest.mark.unit
def test_journaled_frontier_records_offer_and_poll_in_order() -> None:
    repository = InMemoryStateRepository()
    frontier = JournaledFrontier(FifoFrontier(), StateJournal(repository))

    frontier.offer(_task("a"))
    frontier.offer(_task("b"))
    assert frontier.poll().id == "a"
    assert frontier.poll().id == "b"
    assert frontier.poll() is None

    events = [record.event for record in repository.events_after(0)]
    assert [type(event) for event in events] == [FrontierOffer, FrontierOffer, FrontierPoll, FrontierPoll]
    assert [record.sequence for record in repository.events_after(0)] == [1, 2, 3, 4]


@pytest.mark.unit
def test_failed_poll_append_keeps_task_in_frontier() -> None:
    repository = FailingRepository()
    frontier = JournaledFrontier(FifoFrontier(), StateJournal(repository))
    frontier.offer(_task("a"))
    repository.fail_appends = True

    with pytest.raises(StateJournalError):
        frontier.poll()

    assert frontier.size() == 1


@pytest.mark.unit
def test_failed_offer_append_does_not_mutate_memory() -> None:
    repository = FailingRepository()
    frontier = JournaledFrontier(FifoFrontier(), StateJournal(repository))
    repository.fail_appends = True

    with pytest.raises(StateJournalError):
        frontier.offer(_task("a"))

    assert frontier.size() == 0


@pytest.mark.unit
def test_journaled_in_flight_records_put_and_remove(make_run) -> None:
    repository = InMemoryStateRepository()
    run = make_run(repository=repository)
    task = _task("a")

    run.in_flight.put(task)
    assert run.in_flight.remove("missing") is None
    run.in_flight.remove("a")

    events = [record.event for record in repository.events_after(0)]
    assert events == [InFlightPut(task), InFlightRemove("a")]


@pytest.mark.unit
def test_journal_continues_sequence_after_existing_log() -> None:
    repository = InMemoryStateRepository()
    StateJournal(repository).record(FrontierOffer(_task("a")))

    record = StateJournal(repository).record(FrontierOffer(_task("b")))

    assert record.sequence == 2


@pytest.mark.unit
def test_checkpoint_snapshots_all_buffers_and_truncates_log(make_run, clock) -> None:
    repository = InMemoryStateRepository()
    run = make_run(repository=repository)
    run.frontier.offer(_task("running"))
    run.frontier.offer(_task("waiting"))
    run.in_flight.put(run.frontier.poll())
    run.retry_buffer.schedule(_task("retrying"), clock() + timedelta(seconds=5), "timeout")
    run.delay_queue.defer(_task("deferred"), clock() + timedelta(seconds=1), "example.com")

    snapshot = checkpoint(run)

    assert snapshot.sequence == 4
    assert [task.id for task in snapshot.frontier.tasks] == ["waiting"]
    assert [task.id for task in snapshot.in_flight.tasks] == ["running"]
    assert [entry.task.id for entry in snapshot.retry.entries] == ["deferred", "retrying"]
    assert snapshot.retry.entries[0].reason == POLITENESS_REASON
    assert len(repository) == 0
    assert repository.load_snapshot() == snapshot


@pytest.mark.unit
def test_checkpoint_requires_journal(make_run) -> None:
    with pytest.raises(StateJournalError):
        checkpoint(make_run())


@pytest.mark.unit
def test_recover_replays_events_after_snapshot(make_run) -> None:
    repository = InMemoryStateRepository()
    run = make_run(repository=repository)
    run.frontier.offer(_task("a"))
    checkpoint(run)
    run.frontier.offer(_task("b"))
    run.in_flight.put(run.frontier.poll())

    recovered = recover(repository)

    assert recovered.replayed_events == 3
    assert [task.id for task in recovered.frontier] == ["b"]
    assert [task.id for task in recovered.in_flight] == ["a"]
    assert not recovered.is_empty()


@pytest.mark.unit
def test_recover_from_empty_repository_is_empty() -> None:
    recovered = recover(InMemoryStateRepository())

    assert recovered.is_empty()
    assert recovered.replayed_events == 0


@pytest.mark.unit
def test_restore_into_reoffers_in_flight_and_skips_retry_duplicates(make_run, clock) -> None:
    repository = InMemoryStateRepository()
    crashed = make_run(repository=repository)
    for task_id in ("a", "b", "c"):
        crashed.frontier.offer(_task(task_id))
    crashed.in_flight.put(crashed.frontier.poll())
    crashed.in_flight.put(crashed.frontier.poll())
    crashed.retry_buffer.schedule(_task("b").next_attempt(clock()), clock(), "timeout")
    checkpoint(crashed)

    fresh_repository = InMemoryStateRepository()
    fresh = make_run(repository=fresh_repository)
    restored = recover(repository).restore_into(fresh)

    assert restored == 3
    assert [task.id for task in fresh.frontier.snapshot().tasks] == ["c", "a"]
    assert [entry.task.id for entry in fresh.retry_buffer.snapshot().entries] == ["b"]
    assert fresh.seen.is_discovered("https://example.com/a")
    assert fresh.seen.is_discovered("https://example.com/b")
    assert fresh_repository.events_after(0) == []
    assert [task.id for task in fresh_repository.load_snapshot().frontier.tasks] == ["c", "a"]


@pytest.mark.unit
def test_checkpointer_due_after_event_threshold(make_run) -> None:
    run = make_run(repository=InMemoryStateRepository())
    checkpointer = Checkpointer(run, every_events=3)

    run.frontier.offer(_task("a"))
    run.frontier.offer(_task("b"))
    assert not checkpointer.is_due()
    run.frontier.offer(_task("c"))
    assert checkpointer.maybe_checkpoint() is not None
    assert checkpointer.checkpoints_taken == 1
    assert not checkpointer.is_due()
    assert REGISTRY.get_sample_value("crawl_checkpoint_seconds_count", {"run": "test-run"}) >= 1


@pytest.mark.unit
def test_checkpointer_due_at_once_when_retry_buffer_grows(make_run, clock) -> None:
    run = make_run(repository=InMemoryStateRepository())
    checkpointer = Checkpointer(run, every_events=1000, min_interval=timedelta(seconds=1))

    run.retry_buffer.schedule(_task("a"), clock(), "x")
    assert checkpointer.is_due()
    checkpointer.checkpoint()

    run.retry_buffer.schedule(_task("b"), clock(), "x")
    assert checkpointer.is_due()


@pytest.mark.unit
def test_checkpointer_rate_limits_drains(make_run, clock) -> None:
    run = make_run(repository=InMemoryStateRepository())
    checkpointer = Checkpointer(run, every_events=1000, min_interval=timedelta(seconds=1))
    run.retry_buffer.schedule(_task("a"), clock(), "x")
    checkpointer.checkpoint()

    assert len(run.retry_buffer.drain_due(clock(), 10)) == 1
    assert not checkpointer.is_due()
    clock.advance(seconds=1)
    assert checkpointer.is_due()


@pytest.mark.unit
def test_checkpointer_due_at_once_when_task_deferred(make_run, clock) -> None:
    run = make_run(repository=InMemoryStateRepository())
    checkpointer = Checkpointer(run, every_events=1000)
    checkpointer.checkpoint()

    run.delay_queue.defer(_task("a"), clock() + timedelta(seconds=5))

    snapshot = checkpointer.maybe_checkpoint()
    assert snapshot is not None
    assert [(entry.task.id, entry.reason) for entry in snapshot.retry.entries] == [("a", POLITENESS_REASON)]


@pytest.mark.unit
def test_checkpointer_never_due_without_journal(make_run) -> None:
    run = make_run()
    checkpointer = Checkpointer(run, every_events=1)

    run.retry_buffer.schedule(_task("a"), run.now(), "x")

    assert not checkpointer.is_due()
    with pytest.raises(ValueError):
        Checkpointer(run, every_events=0)
