"""Durable event log, snapshots and crash recovery for scheduler state."""

from crawl_orchestrator.persistence.journal import (
    Checkpointer,
    JournaledFrontier,
    JournaledInFlightBuffer,
    RecoveredState,
    StateJournal,
    checkpoint,
    recover,
)
from crawl_orchestrator.persistence.repository import InMemoryStateRepository, StateRepository
from crawl_orchestrator.persistence.sqlite_repository import SqliteStateRepository


__all__ = [
    "Checkpointer",
    "InMemoryStateRepository",
    "JournaledFrontier",
    "JournaledInFlightBuffer",
    "RecoveredState",
    "SqliteStateRepository",
    "StateJournal",
    "StateRepository",
    "checkpoint",
    "recover",
]
