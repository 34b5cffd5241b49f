"""Retry policy: decide between another attempt and the dead letter queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import random
from typing import Protocol, TypeAlias, runtime_checkable

from crawl_orchestrator.domain.failures import FetchError, RouteNotFoundError, TaskRejectedError
from crawl_orchestrator.domain.model import ProcessingTask


@dataclass(slots=True, frozen=True)
class Retry:
    eligible_at: datetime
    reason: str


@dataclass(slots=True, frozen=True)
class DeadLetter:
    reason: str


@dataclass(slots=True, frozen=True)
class Discard:
    reason: str


RetryDecision: TypeAlias = Retry | DeadLetter | Discard


@runtime_checkable
class RetryPolicy(Protocol):
    def decide(self, task: ProcessingTask, error: BaseException, now: datetime) -> RetryDecision:  # pragma: no cover
        """Classify a failed attempt of ``task``."""


class ExponentialBackoffRetryPolicy:
    """Retry with exponential backoff until ``max_attempts`` executions failed.

    ``task.attempt`` counts prior executions, so the failing execution is
    number ``attempt + 1``. Backoff for retry ``n`` is ``base_delay * 2**n``
    capped at ``max_delay``; with ``jitter`` the delay is drawn uniformly
    from ``[0, backoff]``. ``TaskRejectedError`` and ``RouteNotFoundError``
    are permanent. A ``FetchError`` whose status is in ``discard_statuses``
    drops the task without dead-lettering it.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: timedelta = timedelta(milliseconds=500),
        max_delay: timedelta = timedelta(seconds=60),
        *,
        jitter: bool = True,
        discard_statuses: frozenset[int] = frozenset(),
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if max_delay < base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.discard_statuses = frozenset(discard_statuses)
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings) -> ExponentialBackoffRetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.get_retry_base_delay(),
            max_delay=settings.get_retry_max_delay(),
            jitter=settings.retry_jitter,
            discard_statuses=settings.get_retry_discard_statuses(),
        )

    def backoff(self, attempt: int) -> timedelta:
        ceiling = min(self.base_delay * (2 ** min(attempt, 32)), self.max_delay)
        if not self.jitter:
            return ceiling
        return ceiling * self._rng.random()

    def decide(self, task: ProcessingTask, error: BaseException, now: datetime) -> RetryDecision:
        if isinstance(error, TaskRejectedError):
            return DeadLetter(reason=f"rejected: {error.reason}")
        if isinstance(error, RouteNotFoundError):
            return DeadLetter(reason=f"no route resolved: {error}")
        if isinstance(error, FetchError) and error.status_code in self.discard_statuses:
            return Discard(reason=f"discarded on HTTP {error.status_code}")

        executions = task.attempt + 1
        if executions >= self.max_attempts:
            return DeadLetter(reason=f"retries exhausted after {executions} attempts: {type(error).__name__}")

        delay = self.backoff(task.attempt)
        return Retry(eligible_at=now + delay, reason=f"{type(error).__name__}: {error}")
