from __future__ import annotations

from datetime import datetime, timedelta, timezone
import random

import pytest

from crawl_orchestrator.config import Settings
from crawl_orchestrator.domain.failures import FetchError, RouteNotFoundError, TaskRejectedError
from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.runtime.retry_policy import (
    DeadLetter,
    Discard,
    ExponentialBackoffRetryPolicy,
    Retry,
    RetryPolicy,
)


T = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def _task(attempt: int) -> ProcessingTask:
    return ProcessingTask(id="a", url="https://example.com/", attempt=attempt)


@pytest.fixture
def policy() -> ExponentialBackoffRetryPolicy:
    return ExponentialBackoffRetryPolicy(
        max_attempts=3,
        base_delay=timedelta(milliseconds=100),
        max_delay=timedelta(milliseconds=250),
        jitter=False,
    )


@pytest.mark.unit
def test_retries_until_attempts_exhausted(policy) -> None:
    error = FetchError("https://example.com/", "timed out")

    first = policy.decide(_task(0), error, T)
    second = policy.decide(_task(1), error, T)
    third = policy.decide(_task(2), error, T)

    assert isinstance(policy, RetryPolicy)
    assert first == Retry(eligible_at=T + timedelta(milliseconds=100), reason=f"FetchError: {error}")
    assert isinstance(second, Retry)
    assert second.eligible_at == T + timedelta(milliseconds=200)
    assert isinstance(third, DeadLetter)
    assert "3 attempts" in third.reason


@pytest.mark.unit
def test_backoff_is_capped(policy) -> None:
    assert policy.backoff(0) == timedelta(milliseconds=100)
    assert policy.backoff(2) == timedelta(milliseconds=250)
    assert policy.backoff(1000) == timedelta(milliseconds=250)


@pytest.mark.unit
def test_rejection_dead_letters_immediately(policy) -> None:
    decision = policy.decide(_task(0), TaskRejectedError("robots disallow"), T)

    assert decision == DeadLetter(reason="rejected: robots disallow")


@pytest.mark.unit
def test_missing_route_dead_letters_immediately(policy) -> None:
    decision = policy.decide(_task(0), RouteNotFoundError("No route for hint 'feed'"), T)

    assert isinstance(decision, DeadLetter)
    assert decision.reason.startswith("no route resolved")


@pytest.mark.unit
def test_discard_statuses_drop_instead_of_retrying() -> None:
    policy = ExponentialBackoffRetryPolicy(jitter=False, discard_statuses=frozenset({404}))

    gone = policy.decide(_task(0), FetchError("https://example.com/", "not found", status_code=404), T)
    flaky = policy.decide(_task(0), FetchError("https://example.com/", "unavailable", status_code=503), T)

    assert gone == Discard(reason="discarded on HTTP 404")
    assert isinstance(flaky, Retry)


@pytest.mark.unit
def test_single_attempt_never_retries() -> None:
    policy = ExponentialBackoffRetryPolicy(max_attempts=1, jitter=False)

    assert isinstance(policy.decide(_task(0), RuntimeError("x"), T), DeadLetter)


@pytest.mark.unit
def test_jitter_stays_within_ceiling() -> None:
    policy = ExponentialBackoffRetryPolicy(
        base_delay=timedelta(seconds=1), max_delay=timedelta(seconds=10), jitter=True, rng=random.Random(7)
    )

    delays = [policy.backoff(2) for _ in range(50)]

    assert all(timedelta(0) <= delay <= timedelta(seconds=4) for delay in delays)
    assert len(set(delays)) > 1


@pytest.mark.unit
@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"max_attempts": 0}, "max_attempts"),
        ({"base_delay": timedelta(seconds=2), "max_delay": timedelta(seconds=1)}, "max_delay"),
    ],
)
def test_invalid_configuration_rejected(kwargs, message) -> None:
    with pytest.raises(ValueError, match=message):
        ExponentialBackoffRetryPolicy(**kwargs)


@pytest.mark.unit
def test_from_settings_uses_millisecond_fields() -> None:
    settings = Settings(
        max_attempts=5,
        retry_base_delay_ms=10,
        retry_max_delay_ms=40,
        retry_jitter=False,
        retry_discard_statuses="404, 410",
    )

    policy = ExponentialBackoffRetryPolicy.from_settings(settings)

    assert policy.max_attempts == 5
    assert policy.backoff(5) == timedelta(milliseconds=40)
    assert policy.jitter is False
    assert policy.discard_statuses == frozenset({404, 410})
