"""Delay queue for tasks holding a future politeness reservation.

When a politeness gate grants an instant in the future, the reservation is
already committed. The scheduler parks the task here together with that
instant and dispatches it once the instant elapses, without asking the gate
again. The scheduler thread never sleeps on a single origin.
"""

from __future__ import annotations

from datetime import datetime
import heapq
import itertools
import threading

from crawl_orchestrator.domain.model import Dispatch, ProcessingTask


class DelayQueue:
    def __init__(self) -> None:
        self._heap: list[tuple[datetime, int, Dispatch]] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._revision = 0
        self._additions = 0

    def defer(self, task: ProcessingTask, reserved_at: datetime, politeness_key: object | None = None) -> Dispatch:
        dispatch = Dispatch(task=task.deferred(reserved_at), reserved_at=reserved_at, politeness_key=politeness_key)
        with self._lock:
            heapq.heappush(self._heap, (reserved_at, next(self._counter), dispatch))
            self._revision += 1
            self._additions += 1
        return dispatch

    def release_due(self, now: datetime, limit: int | None = None) -> list[Dispatch]:
        """Remove and return dispatches whose reservation is ``<= now``, earliest first."""
        released: list[Dispatch] = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                if limit is not None and len(released) >= limit:
                    break
                released.append(heapq.heappop(self._heap)[2])
            self._revision += len(released)
        return released

    def peek_reserved_at(self) -> datetime | None:
        with self._lock:
            return self._heap[0][0] if self._heap else None

    def snapshot(self) -> tuple[Dispatch, ...]:
        with self._lock:
            ordered = sorted(self._heap)
        return tuple(item[2] for item in ordered)

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def additions(self) -> int:
        return self._additions

    def size(self) -> int:
        return len(self._heap)

    def __len__(self) -> int:
        return self.size()
