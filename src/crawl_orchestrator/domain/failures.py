"""Failure taxonomy and dead-letter records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from crawl_orchestrator.domain.decisions import DecisionSnapshot
from crawl_orchestrator.domain.model import ProcessingTask


class CrawlError(Exception):
    """Base error for the crawl orchestration core."""


class TaskRejectedError(CrawlError):
    """Raised by a pipeline step to reject a task permanently.

    Rejected tasks are dead-lettered on the first failure, regardless of the
    remaining retry budget.
    """

    def __init__(self, reason: str, *, code: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code


class FetchError(CrawlError):
    """Transport-level failure reported by a fetcher."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RouteNotFoundError(CrawlError):
    """No route is registered for a task hint or route hop."""


class RouteHopLimitError(CrawlError):
    """Pipelines kept hopping between routes past the hop limit."""


class StateJournalError(CrawlError):
    """Persistence of scheduler state failed; the run cannot continue safely."""


def describe_error(error: BaseException | None) -> tuple[str | None, str | None]:
    if error is None:
        return None, None
    return type(error).__name__, str(error)


@dataclass(slots=True, frozen=True)
class DeadLetterItem:
    """Failure context captured when a task exhausts its retries."""

    failed_at: datetime
    reason: str
    stage_id: str | None
    route_id: str | None
    attempt: int
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        error_type, error_message = describe_error(self.error)
        return {
            "failed_at": self.failed_at.isoformat(),
            "reason": self.reason,
            "stage_id": self.stage_id,
            "route_id": self.route_id,
            "attempt": self.attempt,
            "error_type": error_type,
            "error_message": error_message,
        }


@dataclass(slots=True, frozen=True)
class DeadLetterEntry:
    task: ProcessingTask
    item: DeadLetterItem
    decisions: DecisionSnapshot = field(default_factory=DecisionSnapshot)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "item": self.item.to_dict(),
            "decisions": self.decisions.to_dict(),
        }
