"""Wiring a crawl from settings."""

from __future__ import annotations

from datetime import timedelta

import pytest

from crawl_orchestrator import crawl_builder
from crawl_orchestrator.config import ObservabilityCollectorConfig, Settings
from crawl_orchestrator.crawl_builder import CrawlBuilder, configure_observability
from crawl_orchestrator.events.bus import EventBus
from crawl_orchestrator.events.names import CrawlEventName
from crawl_orchestrator.persistence.repository import InMemoryStateRepository
from crawl_orchestrator.runtime.routes import RouteRegistry
from crawl_orchestrator.runtime.runners import SingleThreadRunner
from tests.fixtures.crawl_doubles import LINK_STEP


@pytest.mark.unit
def test_configure_observability_uses_logging_and_collector_settings(monkeypatch) -> None:
    calls: dict[str, object] = {}
    provider = object()
    monkeypatch.setattr(crawl_builder, "configure_logging", lambda **kwargs: calls.update(logging=kwargs))
    monkeypatch.setattr(crawl_builder, "init_metrics", lambda **kwargs: calls.update(metrics=kwargs))
    monkeypatch.setattr(crawl_builder, "init_tracing", lambda **kwargs: provider)
    monkeypatch.setattr(
        crawl_builder, "configure_trace_exporter", lambda config, active: calls.update(exporter=(config, active))
    )
    settings = Settings(
        log_level="debug",
        log_json=False,
        observability=ObservabilityCollectorConfig(enabled=True, otlp_protocol="http"),
    )

    configure_observability(settings)

    assert calls["logging"] == {"level": "debug", "json_output": False}
    assert calls["metrics"] == {"service_name": "crawl-orchestrator"}
    assert calls["exporter"] == (settings.observability, provider)


@pytest.mark.unit
def test_build_wires_settings_into_every_component(fetcher, recorder) -> None:
    settings = Settings(
        runner_mode="single",
        politeness_interval_ms=0,
        max_attempts=5,
        retry_discard_statuses="404,410",
        max_depth=2,
        allowed_hosts="example.com",
        http_timeout=7.5,
        max_park_ms=15,
    )
    fetcher.links = {"https://example.com/": ["/a", "https://elsewhere.org/"]}

    with CrawlBuilder(settings, observability=False).build(
        RouteRegistry.single("default", LINK_STEP),
        fetcher,
        run_id="built",
        events=EventBus([recorder]),
        repository=InMemoryStateRepository(),
    ) as crawl:
        assert isinstance(crawl.scheduler.runner, SingleThreadRunner)
        assert crawl.scheduler.max_park == timedelta(milliseconds=15)
        assert crawl.scheduler.checkpointer is not None
        assert crawl.engine.retry_policy.max_attempts == 5
        assert crawl.engine.retry_policy.discard_statuses == frozenset({404, 410})
        assert crawl.engine.scope.max_depth == 2
        assert crawl.owns_fetcher is False

        summary = crawl.start(["https://example.com/"])

    assert summary.run_id == "built"
    assert summary.completed == 2
    assert fetcher.urls() == ["https://example.com/", "https://example.com/a"]
    assert CrawlEventName.DECISION_REJECTED in recorder.names()
