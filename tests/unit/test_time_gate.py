from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from crawl_orchestrator.politeness.time_gate import AtomicReference, TimeGate


NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
INTERVAL = timedelta(milliseconds=50)


@pytest.mark.unit
def test_idle_gate_grants_now() -> None:
    gate = TimeGate(INTERVAL)

    assert gate.eligible_at(NOW) == NOW
    assert gate.next_reservation == NOW + INTERVAL


@pytest.mark.unit
def test_consecutive_calls_are_spaced_by_interval() -> None:
    gate = TimeGate(INTERVAL)

    first = gate.eligible_at(NOW)
    second = gate.eligible_at(NOW)
    third = gate.eligible_at(NOW + timedelta(milliseconds=10))

    assert second >= first + INTERVAL
    assert third >= second + INTERVAL
    assert third == NOW + 2 * INTERVAL


@pytest.mark.unit
def test_gate_idle_longer_than_interval_grants_now_again() -> None:
    gate = TimeGate(INTERVAL)
    gate.eligible_at(NOW)

    later = NOW + timedelta(seconds=5)

    assert gate.eligible_at(later) == later


@pytest.mark.unit
def test_reservations_never_decrease_even_with_older_now() -> None:
    gate = TimeGate(INTERVAL)
    gate.eligible_at(NOW + timedelta(seconds=1))

    granted = gate.eligible_at(NOW)

    assert granted == NOW + timedelta(seconds=1) + INTERVAL


@pytest.mark.unit
def test_zero_interval_gate_never_delays() -> None:
    gate = TimeGate(timedelta(0))

    assert [gate.eligible_at(NOW) for _ in range(3)] == [NOW, NOW, NOW]


@pytest.mark.unit
def test_negative_interval_is_rejected() -> None:
    with pytest.raises(ValueError, match="negative"):
        TimeGate(timedelta(milliseconds=-1))


@pytest.mark.unit
def test_concurrent_reservations_are_unique_and_spaced() -> None:
    gate = TimeGate(INTERVAL)

    with ThreadPoolExecutor(max_workers=8) as pool:
        granted = list(pool.map(lambda _i: gate.eligible_at(NOW), range(200)))

    ordered = sorted(granted)
    assert len(set(ordered)) == 200
    assert all(later - earlier >= INTERVAL for earlier, later in zip(ordered, ordered[1:]))
    assert ordered[0] == NOW
    assert ordered[-1] == NOW + 199 * INTERVAL


@pytest.mark.unit
def test_atomic_reference_compares_by_identity() -> None:
    first = datetime(2024, 1, 1, tzinfo=timezone.utc)
    equal_copy = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cell = AtomicReference(first)

    assert first is not equal_copy
    assert cell.compare_and_set(equal_copy, NOW) is False
    assert cell.get() is first
    assert cell.compare_and_set(cell.get(), NOW + INTERVAL) is True
    assert cell.get() == NOW + INTERVAL


@pytest.mark.unit
def test_lost_race_is_retried(monkeypatch) -> None:
    gate = TimeGate(INTERVAL)
    original = AtomicReference.compare_and_set
    calls = {"count": 0}

    def flaky(self, expected, new):
        calls["count"] += 1
        if calls["count"] == 1:
            return False
        return original(self, expected, new)

    monkeypatch.setattr(AtomicReference, "compare_and_set", flaky)

    assert gate.eligible_at(NOW) == NOW
    assert gate.contended_retries == 1
