"""Per-run state container.

Everything a run mutates lives on one ``RunContext`` passed explicitly to the
scheduler and the processing engine, so several runs can coexist in one
process and each test builds its own.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging
from uuid import uuid4

from crawl_orchestrator.config import Settings
from crawl_orchestrator.domain.model import utc_now
from crawl_orchestrator.events.bus import EventBus
from crawl_orchestrator.events.listeners import LoggingListener, MetricsListener
from crawl_orchestrator.persistence.journal import JournaledFrontier, JournaledInFlightBuffer, StateJournal
from crawl_orchestrator.persistence.repository import StateRepository
from crawl_orchestrator.persistence.sqlite_repository import SqliteStateRepository
from crawl_orchestrator.politeness.policy import KeyedPolitenessPolicy, NoPolitenessPolicy, PolitenessPolicy
from crawl_orchestrator.state.dead_letter import DeadLetterQueue
from crawl_orchestrator.state.delay_queue import DelayQueue
from crawl_orchestrator.state.frontier import FifoFrontier, Frontier, PriorityFrontier
from crawl_orchestrator.state.in_flight import InFlightBuffer
from crawl_orchestrator.state.retry_buffer import RetryBuffer
from crawl_orchestrator.state.seen_store import SeenStore


logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    run_id: str
    frontier: Frontier
    politeness: PolitenessPolicy
    events: EventBus
    seen: SeenStore = field(default_factory=SeenStore)
    retry_buffer: RetryBuffer = field(default_factory=RetryBuffer)
    dead_letters: DeadLetterQueue = field(default_factory=DeadLetterQueue)
    in_flight: InFlightBuffer = field(default_factory=InFlightBuffer)
    delay_queue: DelayQueue = field(default_factory=DelayQueue)
    clock: Callable[[], datetime] = utc_now
    journal: StateJournal | None = None

    @classmethod
    def create(
        cls,
        *,
        run_id: str | None = None,
        frontier: Frontier | None = None,
        politeness: PolitenessPolicy | None = None,
        events: EventBus | None = None,
        repository: StateRepository | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> RunContext:
        """Build a run; with a ``repository`` the frontier and in-flight buffer are journaled."""
        frontier = frontier if frontier is not None else FifoFrontier()
        journal = None
        in_flight = InFlightBuffer()
        if repository is not None:
            journal = StateJournal(repository)
            frontier = JournaledFrontier(frontier, journal)
            in_flight = JournaledInFlightBuffer(journal)

        return cls(
            run_id=run_id or uuid4().hex[:12],
            frontier=frontier,
            politeness=politeness if politeness is not None else NoPolitenessPolicy(),
            events=events if events is not None else EventBus(),
            in_flight=in_flight,
            clock=clock,
            journal=journal,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        run_id: str | None = None,
        events: EventBus | None = None,
        repository: StateRepository | None = None,
        prioritized: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> RunContext:
        interval = settings.get_politeness_interval()
        politeness: PolitenessPolicy = (
            KeyedPolitenessPolicy.by_host(interval) if interval.total_seconds() > 0 else NoPolitenessPolicy()
        )
        if repository is None and settings.state_db_path is not None:
            repository = SqliteStateRepository(settings.state_db_path)
        if events is None:
            events = EventBus([LoggingListener(), MetricsListener()])

        run = cls.create(
            run_id=run_id,
            frontier=PriorityFrontier() if prioritized else FifoFrontier(),
            politeness=politeness,
            events=events,
            repository=repository,
            clock=clock,
        )
        logger.info(
            "Run %s configured: politeness=%s journal=%s",
            run.run_id,
            interval,
            settings.state_db_path or ("memory" if repository is not None else "disabled"),
        )
        return run

    def now(self) -> datetime:
        return self.clock()

    def is_idle(self) -> bool:
        """True when no task is queued, waiting, deferred or executing.

        In-flight is read first. Only the scheduler thread adds to it, and a
        worker enqueues follow-up work before leaving it, so once it reads
        empty the other buffers can no longer grow behind the caller.
        """
        return (
            self.in_flight.size() == 0
            and self.frontier.size() == 0
            and self.retry_buffer.size() == 0
            and self.delay_queue.size() == 0
        )

    def depths(self) -> dict[str, int]:
        return {
            "frontier": self.frontier.size(),
            "retry": self.retry_buffer.size(),
            "delayed": self.delay_queue.size(),
            "in_flight": self.in_flight.size(),
            "dead_letter": self.dead_letters.size(),
        }
