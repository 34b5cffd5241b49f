"""Frontier implementations: holding areas for tasks awaiting dispatch."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
import heapq
import itertools
import threading
from typing import Protocol, runtime_checkable

from crawl_orchestrator.domain.events import FrontierSnapshot
from crawl_orchestrator.domain.model import ProcessingTask


@runtime_checkable
class Frontier(Protocol):
    """Ordering-aware queue shared by the scheduler and worker threads."""

    def offer(self, task: ProcessingTask) -> None:  # pragma: no cover - Protocol only
        """Add a task for later dispatch."""

    def poll(self) -> ProcessingTask | None:  # pragma: no cover - Protocol only
        """Remove and return the next task, or ``None`` when empty."""

    def size(self) -> int:  # pragma: no cover - Protocol only
        """Return the number of held tasks."""

    def snapshot(self) -> FrontierSnapshot:  # pragma: no cover - Protocol only
        """Return held tasks in dispatch order."""


class FifoFrontier:
    """First-in, first-out frontier."""

    def __init__(self, tasks: Iterable[ProcessingTask] = ()) -> None:
        self._queue: deque[ProcessingTask] = deque(tasks)
        self._lock = threading.Lock()

    def offer(self, task: ProcessingTask) -> None:
        with self._lock:
            self._queue.append(task)

    def poll(self) -> ProcessingTask | None:
        with self._lock:
            if not self._queue:
                return None
            return self._queue.popleft()

    def size(self) -> int:
        return len(self._queue)

    def snapshot(self) -> FrontierSnapshot:
        with self._lock:
            return FrontierSnapshot(tuple(self._queue))

    def __len__(self) -> int:
        return self.size()


class PriorityFrontier:
    """Frontier ordered by descending ``priority``; equal priorities keep insertion order."""

    def __init__(self, tasks: Iterable[ProcessingTask] = ()) -> None:
        self._heap: list[tuple[int, int, ProcessingTask]] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()
        for task in tasks:
            self.offer(task)

    def offer(self, task: ProcessingTask) -> None:
        with self._lock:
            heapq.heappush(self._heap, (-task.priority, next(self._counter), task))

    def poll(self) -> ProcessingTask | None:
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[2]

    def size(self) -> int:
        return len(self._heap)

    def snapshot(self) -> FrontierSnapshot:
        with self._lock:
            ordered = sorted(self._heap)
        return FrontierSnapshot(tuple(item[2] for item in ordered))

    def __len__(self) -> int:
        return self.size()
