"""Write-ahead journaling of frontier and in-flight mutations, checkpoints and recovery.

Every frontier and in-flight mutation is appended to the repository while the
journal lock is held, in the same critical section as the in-memory change,
so the log order always matches the mutation order. A checkpoint takes the
same lock, snapshots all buffers at the current sequence and truncates the
log prefix it covers. Recovery loads that snapshot and replays what follows.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import threading
from typing import TYPE_CHECKING

from crawl_orchestrator.domain.events import (
    FrontierOffer,
    FrontierPoll,
    FrontierSnapshot,
    InFlightPut,
    InFlightRemove,
    JournalRecord,
    RetrySnapshot,
    StateEvent,
    StateSnapshot,
    replay,
)
from crawl_orchestrator.domain.failures import StateJournalError
from crawl_orchestrator.domain.model import ProcessingTask, RetryEntry
from crawl_orchestrator.observability.metrics import CHECKPOINT_LATENCY, track_latency
from crawl_orchestrator.persistence.repository import StateRepository
from crawl_orchestrator.state.frontier import Frontier
from crawl_orchestrator.state.in_flight import InFlightBuffer


if TYPE_CHECKING:
    from crawl_orchestrator.runtime.run_context import RunContext

logger = logging.getLogger(__name__)

POLITENESS_REASON = "politeness"


class StateJournal:
    """Assign sequence numbers and append records synchronously."""

    def __init__(self, repository: StateRepository) -> None:
        self.repository = repository
        # Re-entrant: journaled wrappers hold it across mutate-and-record
        self._lock = threading.RLock()
        self._sequence = repository.last_sequence()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._lock:
            yield

    def record(self, event: StateEvent) -> JournalRecord:
        with self._lock:
            record = JournalRecord(sequence=self._sequence + 1, event=event)
            self.repository.append(record)
            self._sequence = record.sequence
        return record

    @property
    def last_sequence(self) -> int:
        return self._sequence


class JournaledFrontier:
    """Frontier wrapper that journals every offer and successful poll."""

    def __init__(self, inner: Frontier, journal: StateJournal) -> None:
        self.inner = inner
        self._journal = journal

    def offer(self, task: ProcessingTask) -> None:
        with self._journal.exclusive():
            self._journal.record(FrontierOffer(task))
            self.inner.offer(task)

    def poll(self) -> ProcessingTask | None:
        with self._journal.exclusive():
            task = self.inner.poll()
            if task is None:
                return None
            try:
                self._journal.record(FrontierPoll(task.id))
            except StateJournalError:
                # Keep memory consistent with the durable log
                self.inner.offer(task)
                raise
            return task

    def size(self) -> int:
        return self.inner.size()

    def snapshot(self) -> FrontierSnapshot:
        return self.inner.snapshot()

    def __len__(self) -> int:
        return self.size()


class JournaledInFlightBuffer(InFlightBuffer):
    """In-flight buffer whose ``put`` and ``remove`` are journaled before they apply."""

    def __init__(self, journal: StateJournal) -> None:
        super().__init__()
        self._journal = journal

    def put(self, task: ProcessingTask) -> None:
        with self._journal.exclusive():
            self._journal.record(InFlightPut(task))
            super().put(task)

    def remove(self, task_id: str) -> ProcessingTask | None:
        with self._journal.exclusive():
            if not self.contains(task_id):
                return None
            self._journal.record(InFlightRemove(task_id))
            return super().remove(task_id)

    def drain_all(self) -> list[ProcessingTask]:
        with self._journal.exclusive():
            drained = super().drain_all()
            for task in drained:
                self._journal.record(InFlightRemove(task.id))
        return drained


def _unwrap(frontier: Frontier) -> Frontier:
    return frontier.inner if isinstance(frontier, JournaledFrontier) else frontier


def checkpoint(run: RunContext) -> StateSnapshot:
    """Snapshot frontier, in-flight and retry state and truncate the covered log prefix.

    Delay-queue dispatches are folded into the retry snapshot with reason
    ``politeness`` so a recovered run re-offers them once their reservation
    has passed.
    """
    journal = run.journal
    if journal is None:
        raise StateJournalError("checkpoint requires a journaled run")

    with journal.exclusive():
        sequence = journal.last_sequence
        deferred = tuple(
            RetryEntry(eligible_at=item.reserved_at, task=item.task, reason=POLITENESS_REASON)
            for item in run.delay_queue.snapshot()
        )
        retry_entries = tuple(
            sorted((*run.retry_buffer.snapshot().entries, *deferred), key=lambda entry: entry.eligible_at)
        )
        snapshot = StateSnapshot(
            sequence=sequence,
            taken_at=run.clock(),
            frontier=run.frontier.snapshot(),
            in_flight=run.in_flight.snapshot(),
            retry=RetrySnapshot(retry_entries),
        )
        with track_latency(CHECKPOINT_LATENCY, run=run.run_id):
            journal.repository.save_snapshot(snapshot)
            removed = journal.repository.truncate(sequence)

    logger.info(
        "Checkpoint at sequence %d: frontier=%d in_flight=%d retry=%d truncated=%d",
        sequence,
        len(snapshot.frontier.tasks),
        len(snapshot.in_flight.tasks),
        len(snapshot.retry.entries),
        removed,
    )
    return snapshot


class Checkpointer:
    """Decide when to checkpoint a journaled run.

    A checkpoint is due after ``every_events`` journaled events, or as soon
    as the retry buffer or delay queue gained an entry, since neither is
    event-journaled and a task moved there has already left the journaled
    frontier or in-flight buffer. Drains alone are checkpointed at most once
    per ``min_interval``. Safe to call from the scheduler and worker threads.
    """

    def __init__(
        self,
        run: RunContext,
        *,
        every_events: int = 1000,
        min_interval: timedelta = timedelta(seconds=1),
    ) -> None:
        if every_events < 1:
            raise ValueError("every_events must be at least 1")
        self._run = run
        self._every_events = every_events
        self._min_interval = min_interval
        self._lock = threading.Lock()
        self._last_sequence = run.journal.last_sequence if run.journal else 0
        self._last_at: datetime | None = None
        self._last_additions = self._additions()
        self._last_revisions = self._revisions()
        self.checkpoints_taken = 0

    def _additions(self) -> tuple[int, int]:
        return self._run.retry_buffer.additions, self._run.delay_queue.additions

    def _revisions(self) -> tuple[int, int]:
        return self._run.retry_buffer.revision, self._run.delay_queue.revision

    def is_due(self) -> bool:
        journal = self._run.journal
        if journal is None:
            return False
        if journal.last_sequence - self._last_sequence >= self._every_events:
            return True
        if self._additions() != self._last_additions:
            return True
        if self._revisions() == self._last_revisions:
            return False
        return self._last_at is None or self._run.clock() - self._last_at >= self._min_interval

    def maybe_checkpoint(self) -> StateSnapshot | None:
        with self._lock:
            if not self.is_due():
                return None
            return self._checkpoint()

    def checkpoint(self) -> StateSnapshot:
        with self._lock:
            return self._checkpoint()

    def _checkpoint(self) -> StateSnapshot:
        additions, revisions = self._additions(), self._revisions()
        snapshot = checkpoint(self._run)
        self._last_sequence = snapshot.sequence
        self._last_at = snapshot.taken_at
        self._last_additions = additions
        self._last_revisions = revisions
        self.checkpoints_taken += 1
        return snapshot


@dataclass(slots=True, frozen=True)
class RecoveredState:
    """Frontier, in-flight and retry state reconstructed from a repository."""

    state: StateSnapshot
    replayed_events: int = 0

    @property
    def frontier(self) -> tuple[ProcessingTask, ...]:
        return self.state.frontier.tasks

    @property
    def in_flight(self) -> tuple[ProcessingTask, ...]:
        return self.state.in_flight.tasks

    @property
    def retries(self) -> tuple[RetryEntry, ...]:
        return self.state.retry.entries

    def is_empty(self) -> bool:
        return not (self.frontier or self.in_flight or self.retries)

    def restore_into(self, run: RunContext) -> int:
        """Load recovered work into ``run`` and return the number of tasks restored.

        Recovered in-flight tasks never confirmed as completed go back to the
        frontier after the recovered frontier tasks (at-least-once). A task
        that also sits in the retry snapshot is restored only as the retry.
        Restored URLs are marked discovered so rediscovery deduplicates.
        When the run is journaled, a checkpoint follows immediately so the
        log describes the restored state instead of the replayed history.
        """
        retry_ids = {entry.task.id for entry in self.retries}
        frontier_ids = {task.id for task in self.frontier}
        reoffered = [
            task for task in self.in_flight if task.id not in retry_ids and task.id not in frontier_ids
        ]
        target = _unwrap(run.frontier)

        for task in (*self.frontier, *reoffered):
            run.seen.mark_discovered(task.url)
            target.offer(task)
        for entry in self.retries:
            run.seen.mark_discovered(entry.task.url)
            run.retry_buffer.put(entry)

        restored = len(self.frontier) + len(reoffered) + len(self.retries)
        logger.info(
            "Restored %d tasks (frontier=%d, re-offered in-flight=%d, retry=%d) from %d replayed events",
            restored,
            len(self.frontier),
            len(reoffered),
            len(self.retries),
            self.replayed_events,
        )
        if run.journal is not None:
            checkpoint(run)
        return restored


def recover(repository: StateRepository) -> RecoveredState:
    """Load the latest snapshot and replay the events appended after it."""
    snapshot = repository.load_snapshot() or StateSnapshot()
    records = repository.events_after(snapshot.sequence)
    state = replay(snapshot, records)
    logger.info(
        "Recovered state from snapshot %d plus %d events: frontier=%d in_flight=%d retry=%d",
        snapshot.sequence,
        len(records),
        len(state.frontier.tasks),
        len(state.in_flight.tasks),
        len(state.retry.entries),
    )
    return RecoveredState(state=state, replayed_events=len(records))
