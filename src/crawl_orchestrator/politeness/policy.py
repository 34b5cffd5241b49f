"""Politeness policies: map a task to a rate-limiting key and reserve a slot."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
import logging
from typing import Generic, Protocol, TypeVar, runtime_checkable

from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.politeness.time_gate import TimeGate
from crawl_orchestrator.utils.urls import host_of


logger = logging.getLogger(__name__)

K = TypeVar("K")


@runtime_checkable
class PolitenessPolicy(Protocol):
    def eligible_at(self, task: ProcessingTask, now: datetime) -> datetime:  # pragma: no cover - Protocol only
        """Commit a reservation for ``task`` and return the instant it may run."""

    def key_of(self, task: ProcessingTask) -> object | None:  # pragma: no cover - Protocol only
        """Return the rate-limiting key for ``task``."""


def host_key(task: ProcessingTask) -> str:
    return host_of(task.url)


def fixed_interval_gates(
    interval: timedelta,
    overrides: Mapping[str, timedelta] | None = None,
) -> Callable[[str], TimeGate]:
    """Gate factory giving every key ``interval`` unless ``overrides`` names it."""
    per_key = dict(overrides or {})

    def _factory(key: str) -> TimeGate:
        return TimeGate(per_key.get(key, interval))

    return _factory


class KeyedPolitenessPolicy(Generic[K]):
    """Compose a key resolver with lazily created per-key time gates.

    Gates are created on first use. Two threads racing on a new key may both
    build a gate, but ``dict.setdefault`` stores exactly one and both callers
    use the stored instance, so at most one gate is ever used per key.
    """

    def __init__(self, key_resolver: Callable[[ProcessingTask], K], gate_factory: Callable[[K], TimeGate]) -> None:
        self._key_resolver = key_resolver
        self._gate_factory = gate_factory
        self._gates: dict[K, TimeGate] = {}

    @classmethod
    def by_host(cls, interval: timedelta) -> KeyedPolitenessPolicy[str]:
        return cls(host_key, fixed_interval_gates(interval))

    def key_of(self, task: ProcessingTask) -> K:
        return self._key_resolver(task)

    def gate_for(self, key: K) -> TimeGate:
        gate = self._gates.get(key)
        if gate is None:
            gate = self._gates.setdefault(key, self._gate_factory(key))
            logger.debug("politeness.gate.created key=%s interval=%s", key, gate.interval)
        return gate

    def eligible_at(self, task: ProcessingTask, now: datetime) -> datetime:
        return self.gate_for(self.key_of(task)).eligible_at(now)

    def gate_count(self) -> int:
        return len(self._gates)


class NoPolitenessPolicy:
    """Grant every task ``now``; for tests and trusted targets."""

    def eligible_at(self, task: ProcessingTask, now: datetime) -> datetime:
        return now

    def key_of(self, task: ProcessingTask) -> object | None:
        return None
