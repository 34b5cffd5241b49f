"""Per-origin rate limiting."""

from crawl_orchestrator.politeness.policy import (
    KeyedPolitenessPolicy,
    NoPolitenessPolicy,
    PolitenessPolicy,
    fixed_interval_gates,
    host_key,
)
from crawl_orchestrator.politeness.time_gate import AtomicReference, TimeGate


__all__ = [
    "AtomicReference",
    "KeyedPolitenessPolicy",
    "NoPolitenessPolicy",
    "PolitenessPolicy",
    "TimeGate",
    "fixed_interval_gates",
    "host_key",
]
