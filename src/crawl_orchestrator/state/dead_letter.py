"""Terminal store for tasks that exhausted their retries."""

from __future__ import annotations

from collections.abc import Iterator
import logging
import threading

from crawl_orchestrator.domain.failures import DeadLetterEntry


logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """Append-only, inspectable list of dead-letter entries.

    Entries never re-enter the frontier; the queue only grows for the
    lifetime of a run.
    """

    def __init__(self) -> None:
        self._entries: list[DeadLetterEntry] = []
        self._lock = threading.Lock()

    def put(self, entry: DeadLetterEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        logger.warning(
            "Dead-lettered task %s (%s) after attempt %d: %s",
            entry.task.id,
            entry.task.url,
            entry.item.attempt,
            entry.item.reason,
        )

    def entries(self) -> list[DeadLetterEntry]:
        with self._lock:
            return list(self._entries)

    def find(self, task_id: str) -> DeadLetterEntry | None:
        with self._lock:
            for entry in self._entries:
                if entry.task.id == task_id:
                    return entry
        return None

    def size(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DeadLetterEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        return self.size()
