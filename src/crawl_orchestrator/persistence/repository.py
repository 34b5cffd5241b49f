"""Storage contract for the state event log and snapshots."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from crawl_orchestrator.domain.events import JournalRecord, StateSnapshot


@runtime_checkable
class StateRepository(Protocol):
    """Append-only event log plus the latest snapshot.

    ``append`` must be durable (as far as the backend allows) before it
    returns; the journal relies on that to make every in-memory mutation
    recoverable.
    """

    def append(self, record: JournalRecord) -> None:  # pragma: no cover - Protocol only
        """Persist one journal record."""

    def events_after(self, sequence: int) -> list[JournalRecord]:  # pragma: no cover - Protocol only
        """Return records with a sequence greater than ``sequence`` in append order."""

    def last_sequence(self) -> int:  # pragma: no cover - Protocol only
        """Return the highest sequence ever appended or snapshotted, or 0."""

    def save_snapshot(self, snapshot: StateSnapshot) -> None:  # pragma: no cover - Protocol only
        """Persist ``snapshot`` as the latest snapshot."""

    def load_snapshot(self) -> StateSnapshot | None:  # pragma: no cover - Protocol only
        """Return the latest snapshot, if any."""

    def truncate(self, upto: int) -> int:  # pragma: no cover - Protocol only
        """Delete records with a sequence at or below ``upto``; return the count deleted."""


class InMemoryStateRepository:
    """Process-local repository for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._records: list[JournalRecord] = []
        self._snapshot: StateSnapshot | None = None
        self._lock = threading.Lock()

    def append(self, record: JournalRecord) -> None:
        with self._lock:
            self._records.append(record)

    def events_after(self, sequence: int) -> list[JournalRecord]:
        with self._lock:
            return [record for record in self._records if record.sequence > sequence]

    def last_sequence(self) -> int:
        with self._lock:
            highest = self._records[-1].sequence if self._records else 0
            if self._snapshot is not None:
                highest = max(highest, self._snapshot.sequence)
            return highest

    def save_snapshot(self, snapshot: StateSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def load_snapshot(self) -> StateSnapshot | None:
        return self._snapshot

    def truncate(self, upto: int) -> int:
        with self._lock:
            before = len(self._records)
            self._records = [record for record in self._records if record.sequence > upto]
            return before - len(self._records)

    def __len__(self) -> int:
        return len(self._records)
