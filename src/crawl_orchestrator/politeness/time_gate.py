"""Per-key rate limiting by slot reservation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import threading
from typing import Generic, TypeVar


T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class AtomicReference(Generic[T]):
    """A cell with compare-and-set over immutable values.

    ``compare_and_set`` compares by identity, so callers must pass the exact
    object they read. The internal lock guards only the compare and the
    assignment; nothing else ever runs while it is held.
    """

    __slots__ = ("_lock", "_value")

    def __init__(self, value: T) -> None:
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> T:
        return self._value

    def compare_and_set(self, expected: T, new: T) -> bool:
        with self._lock:
            if self._value is not expected:
                return False
            self._value = new
            return True


class TimeGate:
    """Reserve the next instant a key may be dispatched.

    Each ``eligible_at`` call commits a reservation: the caller gets
    ``max(previous_reservation, now)`` and the gate advances to that instant
    plus ``interval``. Reservations are monotonically non-decreasing, two
    grants on one gate are never closer than ``interval``, and a gate idle
    for longer than ``interval`` grants ``now`` immediately.
    """

    def __init__(self, interval: timedelta, *, initial: datetime = _EPOCH) -> None:
        if interval < timedelta(0):
            raise ValueError("interval must not be negative")
        self.interval = interval
        self._next = AtomicReference(initial)
        self._contended = 0

    def eligible_at(self, now: datetime) -> datetime:
        while True:
            previous = self._next.get()
            allowed = previous if previous > now else now
            if self._next.compare_and_set(previous, allowed + self.interval):
                return allowed
            # Lost the race to another reservation; re-read and retry
            self._contended += 1

    @property
    def next_reservation(self) -> datetime:
        return self._next.get()

    @property
    def contended_retries(self) -> int:
        return self._contended

    def __repr__(self) -> str:
        return f"TimeGate(interval={self.interval!r}, next={self._next.get().isoformat()})"
