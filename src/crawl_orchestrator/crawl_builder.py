"""Assemble a runnable crawl from ``Settings``.

The builder configures logging, metrics and tracing from the settings, then
wires a run context, processing engine and scheduler the same way for every
entry point.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from crawl_orchestrator.adapters.fetcher import Fetcher, HttpxFetcher
from crawl_orchestrator.config import Settings
from crawl_orchestrator.events.bus import EventBus
from crawl_orchestrator.observability.logging import configure_logging
from crawl_orchestrator.observability.metrics import init_metrics
from crawl_orchestrator.observability.tracing import configure_trace_exporter, init_tracing
from crawl_orchestrator.persistence.repository import StateRepository
from crawl_orchestrator.runtime.processing import ProcessingEngine
from crawl_orchestrator.runtime.retry_policy import ExponentialBackoffRetryPolicy
from crawl_orchestrator.runtime.routes import RouteRegistry
from crawl_orchestrator.runtime.run_context import RunContext
from crawl_orchestrator.runtime.scheduler import RunSummary, Scheduler
from crawl_orchestrator.runtime.scope import DefaultScopePolicy


logger = logging.getLogger(__name__)

SERVICE_NAME = "crawl-orchestrator"


def configure_observability(settings: Settings) -> None:
    """Install logging, metrics and tracing as configured by ``settings``."""
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    init_metrics(service_name=SERVICE_NAME)
    provider = init_tracing(service_name=SERVICE_NAME)
    configure_trace_exporter(settings.observability, provider)


@dataclass
class Crawl:
    """A wired crawl: run state, engine and scheduler, plus what must be closed afterwards."""

    run: RunContext
    engine: ProcessingEngine
    scheduler: Scheduler
    fetcher: Fetcher
    owns_fetcher: bool = False

    def start(self, seeds: list[str], hint: str | None = None) -> RunSummary:
        self.scheduler.seed(seeds, hint)
        return self.scheduler.run_until_drained()

    def close(self) -> None:
        if self.owns_fetcher and isinstance(self.fetcher, HttpxFetcher):
            self.fetcher.close()
        repository = self.run.journal.repository if self.run.journal is not None else None
        close = getattr(repository, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> Crawl:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class CrawlBuilder:
    def __init__(self, settings: Settings | None = None, *, observability: bool = True) -> None:
        self.settings = settings or Settings()
        self._observability = observability

    def build(
        self,
        routes: RouteRegistry,
        fetcher: Fetcher | None = None,
        *,
        run_id: str | None = None,
        events: EventBus | None = None,
        repository: StateRepository | None = None,
        prioritized: bool = False,
    ) -> Crawl:
        settings = self.settings
        if self._observability:
            configure_observability(settings)

        owns_fetcher = fetcher is None
        if fetcher is None:
            fetcher = HttpxFetcher.from_settings(settings)

        run = RunContext.from_settings(
            settings, run_id=run_id, events=events, repository=repository, prioritized=prioritized
        )
        engine = ProcessingEngine(
            run,
            routes,
            fetcher,
            retry_policy=ExponentialBackoffRetryPolicy.from_settings(settings),
            scope=DefaultScopePolicy.from_settings(settings),
            request_timeout=settings.http_timeout,
        )
        scheduler = Scheduler.from_settings(settings, run, engine)
        logger.info("Built crawl %s (runner=%s)", run.run_id, settings.runner_mode)
        return Crawl(run=run, engine=engine, scheduler=scheduler, fetcher=fetcher, owns_fetcher=owns_fetcher)
