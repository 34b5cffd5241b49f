"""Record of tasks currently executing."""

from __future__ import annotations

import threading

from crawl_orchestrator.domain.events import InFlightSnapshot
from crawl_orchestrator.domain.model import ProcessingTask


class InFlightBuffer:
    """Map of task id to task, one entry per executing task.

    ``high_water_mark`` records the largest size ever observed, which makes
    admission-cap violations visible after the fact.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, ProcessingTask] = {}
        self._lock = threading.Lock()
        self._high_water_mark = 0

    def put(self, task: ProcessingTask) -> None:
        with self._lock:
            self._tasks[task.id] = task
            self._high_water_mark = max(self._high_water_mark, len(self._tasks))

    def remove(self, task_id: str) -> ProcessingTask | None:
        with self._lock:
            return self._tasks.pop(task_id, None)

    def drain_all(self) -> list[ProcessingTask]:
        """Remove and return every entry; used for snapshot and recovery only."""
        with self._lock:
            drained = list(self._tasks.values())
            self._tasks.clear()
        return drained

    def contains(self, task_id: str) -> bool:
        return task_id in self._tasks

    def size(self) -> int:
        return len(self._tasks)

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    def snapshot(self) -> InFlightSnapshot:
        with self._lock:
            return InFlightSnapshot(tuple(self._tasks.values()))

    def __len__(self) -> int:
        return self.size()
