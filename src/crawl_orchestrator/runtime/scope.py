"""Crawl scope rules and construction of seed and child tasks."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit
from uuid import uuid4

from crawl_orchestrator.domain.model import ProcessingTask, TaskOrigin, TraceContext, utc_now
from crawl_orchestrator.utils.urls import host_of, hostname_of


@runtime_checkable
class ScopePolicy(Protocol):
    def deny_reason(self, task: ProcessingTask) -> str | None:  # pragma: no cover - Protocol only
        """Return why ``task`` is out of scope, or ``None`` when allowed."""

    def is_disallowed(self, task: ProcessingTask) -> bool:  # pragma: no cover - Protocol only
        """Return True when ``task`` must not be crawled."""


class DefaultScopePolicy:
    """Depth, host and scheme limits.

    ``allowed_hosts`` matches a host exactly or any of its subdomains; an
    empty collection allows every host.
    """

    def __init__(
        self,
        max_depth: int | None = None,
        allowed_hosts: Iterable[str] = (),
        allowed_schemes: Iterable[str] = ("http", "https"),
    ) -> None:
        self.max_depth = max_depth
        self.allowed_hosts = frozenset(host.lower().strip(".") for host in allowed_hosts if host)
        self.allowed_schemes = frozenset(scheme.lower() for scheme in allowed_schemes)

    @classmethod
    def from_settings(cls, settings) -> DefaultScopePolicy:
        return cls(max_depth=settings.max_depth, allowed_hosts=settings.get_allowed_hosts())

    def deny_reason(self, task: ProcessingTask) -> str | None:
        scheme = urlsplit(task.url).scheme.lower()
        if scheme not in self.allowed_schemes:
            return f"scheme {scheme or '<none>'} not allowed"
        if self.max_depth is not None and task.depth > self.max_depth:
            return f"depth {task.depth} exceeds max depth {self.max_depth}"
        if self.allowed_hosts and not self._host_allowed(hostname_of(task.url)):
            return f"host {host_of(task.url) or '<none>'} not allowed"
        return None

    def is_disallowed(self, task: ProcessingTask) -> bool:
        return self.deny_reason(task) is not None

    def _host_allowed(self, host: str) -> bool:
        return any(host == allowed or host.endswith(f".{allowed}") for allowed in self.allowed_hosts)


class TaskFactory:
    """Create tasks with fresh ids and consistent lineage."""

    def __init__(self, id_factory=None) -> None:
        self._id_factory = id_factory or (lambda: uuid4().hex)

    def seed(
        self,
        url: str,
        hint: str | None = None,
        *,
        priority: int = 0,
        source: str = "seed",
        now: datetime | None = None,
    ) -> ProcessingTask:
        return ProcessingTask(
            id=self._id_factory(),
            url=url,
            depth=0,
            origin=TaskOrigin.seed(source),
            priority=priority,
            scheduled_at=now or utc_now(),
            hint=hint,
            trace=TraceContext.root(),
        )

    def child_of(
        self,
        parent: ProcessingTask,
        url: str,
        hint: str | None,
        origin: TaskOrigin,
        *,
        priority: int | None = None,
        now: datetime | None = None,
    ) -> ProcessingTask:
        return ProcessingTask(
            id=self._id_factory(),
            url=url,
            depth=parent.depth + 1,
            parent_url=parent.url,
            origin=origin,
            priority=parent.priority if priority is None else priority,
            scheduled_at=now or utc_now(),
            hint=hint,
            trace=parent.trace.child(),
        )
