"""Shared test fixtures and configuration."""

from datetime import timedelta
import os
from pathlib import Path
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from crawl_orchestrator.events.bus import EventBus
from crawl_orchestrator.events.listeners import RecordingListener
from crawl_orchestrator.runtime.processing import ProcessingEngine
from crawl_orchestrator.runtime.retry_policy import ExponentialBackoffRetryPolicy
from crawl_orchestrator.runtime.routes import RouteRegistry
from crawl_orchestrator.runtime.run_context import RunContext
from tests.fixtures.crawl_doubles import LINK_STEP, ManualClock, StubFetcher


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep ambient CRAWL_* variables out of settings under test."""
    for key in list(os.environ):
        if key.startswith("CRAWL_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def recorder() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def make_run(clock, recorder):
    def _make(**overrides) -> RunContext:
        overrides.setdefault("clock", clock)
        overrides.setdefault("events", EventBus([recorder]))
        overrides.setdefault("run_id", "test-run")
        return RunContext.create(**overrides)

    return _make


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def make_engine(fetcher):
    def _make(run: RunContext, *steps, **kwargs) -> ProcessingEngine:
        routes = kwargs.pop("routes", None) or RouteRegistry.single("default", *(steps or (LINK_STEP,)))
        kwargs.setdefault(
            "retry_policy",
            ExponentialBackoffRetryPolicy(max_attempts=3, base_delay=timedelta(0), max_delay=timedelta(0), jitter=False),
        )
        return ProcessingEngine(run, routes, kwargs.pop("fetcher", fetcher), **kwargs)

    return _make
