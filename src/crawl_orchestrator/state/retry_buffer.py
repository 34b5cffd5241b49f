"""Retry buffer: tasks waiting for a future re-attempt."""

from __future__ import annotations

from datetime import datetime
import heapq
import itertools
import logging
import threading

from crawl_orchestrator.domain.events import RetrySnapshot
from crawl_orchestrator.domain.model import ProcessingTask, RetryEntry


logger = logging.getLogger(__name__)


class RetryBuffer:
    """Min-heap of retry entries ordered by ``eligible_at``.

    Entries with equal ``eligible_at`` drain in the order they were
    scheduled. Only due entries are removed by ``drain_due``.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[datetime, int, RetryEntry]] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._revision = 0
        self._additions = 0

    def schedule(
        self,
        task: ProcessingTask,
        eligible_at: datetime,
        reason: str,
        error: BaseException | None = None,
    ) -> RetryEntry:
        entry = RetryEntry(eligible_at=eligible_at, task=task, reason=reason, error=error)
        self.put(entry)
        return entry

    def put(self, entry: RetryEntry) -> None:
        with self._lock:
            heapq.heappush(self._heap, (entry.eligible_at, next(self._counter), entry))
            self._revision += 1
            self._additions += 1
        logger.debug(
            "retry.scheduled task=%s attempt=%d eligible_at=%s reason=%s",
            entry.task.id,
            entry.task.attempt,
            entry.eligible_at.isoformat(),
            entry.reason,
        )

    def drain_due(self, now: datetime, max_batch: int) -> list[RetryEntry]:
        """Remove and return up to ``max_batch`` entries with ``eligible_at <= now``."""
        drained: list[RetryEntry] = []
        if max_batch <= 0:
            return drained
        with self._lock:
            while self._heap and len(drained) < max_batch and self._heap[0][0] <= now:
                drained.append(heapq.heappop(self._heap)[2])
            self._revision += len(drained)
        return drained

    def peek_eligible_at(self) -> datetime | None:
        with self._lock:
            return self._heap[0][0] if self._heap else None

    @property
    def revision(self) -> int:
        """Count of mutations so far; changes whenever membership changes."""
        return self._revision

    @property
    def additions(self) -> int:
        """Count of entries ever added; only grows."""
        return self._additions

    def size(self) -> int:
        return len(self._heap)

    def snapshot(self) -> RetrySnapshot:
        with self._lock:
            ordered = sorted(self._heap)
        return RetrySnapshot(tuple(item[2] for item in ordered))

    def restore(self, snapshot: RetrySnapshot) -> None:
        for entry in snapshot.entries:
            self.put(entry)

    def contains(self, task_id: str) -> bool:
        with self._lock:
            return any(item[2].task.id == task_id for item in self._heap)

    def __len__(self) -> int:
        return self.size()
