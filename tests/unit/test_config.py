from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError
import pytest

from crawl_orchestrator.config import Settings


@pytest.mark.unit
def test_defaults() -> None:
    settings = Settings()

    assert settings.is_pooled()
    assert settings.max_in_flight == 8
    assert settings.get_politeness_interval() == timedelta(seconds=1)
    assert settings.get_max_park() == timedelta(milliseconds=250)
    assert settings.get_allowed_hosts() == []
    assert settings.state_db_path is None
    assert settings.observability.enabled is False


@pytest.mark.unit
def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRAWL_RUNNER_MODE", "single")
    monkeypatch.setenv("CRAWL_POLITENESS_INTERVAL_MS", "50")
    monkeypatch.setenv("CRAWL_ALLOWED_HOSTS", "Example.com, docs.example.org ,")
    monkeypatch.setenv("CRAWL_STATE_DB_PATH", "/tmp/crawl/state.db")
    monkeypatch.setenv("CRAWL_OBSERVABILITY__ENABLED", "true")
    monkeypatch.setenv("CRAWL_OBSERVABILITY__OTLP_PROTOCOL", "http")

    settings = Settings()

    assert not settings.is_pooled()
    assert settings.get_politeness_interval() == timedelta(milliseconds=50)
    assert settings.get_allowed_hosts() == ["example.com", "docs.example.org"]
    assert settings.state_db_path == Path("/tmp/crawl/state.db")
    assert settings.observability.enabled is True
    assert settings.observability.otlp_protocol == "http"


@pytest.mark.unit
def test_retry_delays_must_be_ordered() -> None:
    with pytest.raises(ValidationError, match="CRAWL_RETRY_MAX_DELAY_MS"):
        Settings(retry_base_delay_ms=1000, retry_max_delay_ms=10)


@pytest.mark.unit
@pytest.mark.parametrize(
    "overrides",
    [
        {"runner_mode": "forked"},
        {"worker_count": 0},
        {"max_in_flight": 0},
        {"max_attempts": 0},
        {"politeness_interval_ms": -1},
    ],
)
def test_invalid_values_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)


@pytest.mark.unit
def test_zero_politeness_is_allowed() -> None:
    assert Settings(politeness_interval_ms=0).get_politeness_interval() == timedelta(0)
