"""Test doubles for the crawl core: a manual clock, a scripted fetcher and link steps."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
import threading
import time

from crawl_orchestrator.adapters.fetcher import FetchRequest, FetchResult
from crawl_orchestrator.domain.model import utc_now
from crawl_orchestrator.runtime.routes import FunctionStep


START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now += step
            return self._now


class StubFetcher:
    """Serve scripted pages; each page body lists one link per line.

    ``fail(url, *errors)`` queues exceptions raised by successive fetches of
    ``url`` before it starts succeeding. Every call is recorded with the
    wall-clock instant it happened.
    """

    def __init__(self, links: dict[str, list[str]] | None = None, *, delay: float = 0.0) -> None:
        self.links = dict(links or {})
        self.delay = delay
        self.calls: list[tuple[str, datetime]] = []
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self._lock = threading.Lock()

    def fail(self, url: str, *errors: BaseException) -> None:
        with self._lock:
            self._failures[url].extend(errors)

    def fetch(self, request: FetchRequest) -> FetchResult:
        with self._lock:
            self.calls.append((request.url, utc_now()))
            pending = self._failures.get(request.url)
            error = pending.pop(0) if pending else None
        if self.delay:
            time.sleep(self.delay)
        if error is not None:
            raise error
        body = "\n".join(self.links.get(request.url, [])).encode("utf-8")
        return FetchResult(uri=request.url, status_code=200, body=body, content_type="text/plain")

    def urls(self) -> list[str]:
        with self._lock:
            return [url for url, _at in self.calls]

    def times_for(self, url: str) -> list[datetime]:
        with self._lock:
            return [at for called, at in self.calls if called == url]


def enqueue_links(ctx) -> None:
    for line in ctx.fetch_result.text.splitlines():
        if line.strip():
            ctx.enqueue(line.strip())


LINK_STEP = FunctionStep("links", enqueue_links)
