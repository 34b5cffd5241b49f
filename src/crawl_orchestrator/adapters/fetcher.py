"""Fetcher boundary: request/result values and an httpx-backed implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol, runtime_checkable

import httpx

from crawl_orchestrator.domain.failures import FetchError


logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en,en-US;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}


@dataclass(slots=True, frozen=True)
class FetchRequest:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


@dataclass(slots=True, frozen=True)
class FetchResult:
    uri: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    content_type: str | None = None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@runtime_checkable
class Fetcher(Protocol):
    def fetch(self, request: FetchRequest) -> FetchResult:  # pragma: no cover - Protocol only
        """Fetch ``request.url``; raise on transport failure."""


class HttpxFetcher:
    """Blocking fetcher on a shared ``httpx.Client``.

    The client is thread-safe, so one instance serves every pool worker.
    Responses with status >= 400 and transport errors raise ``FetchError``,
    which the retry policy treats like any other task failure.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = "crawl-orchestrator/0.1",
        headers: dict[str, str] | None = None,
        retries: int = 0,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or self._create_client(timeout, user_agent, headers, retries)

    @classmethod
    def from_settings(cls, settings) -> HttpxFetcher:
        return cls(timeout=settings.http_timeout, user_agent=settings.user_agent)

    @staticmethod
    def _create_client(
        timeout: float,
        user_agent: str,
        headers: dict[str, str] | None,
        retries: int,
    ) -> httpx.Client:
        merged = {**DEFAULT_HEADERS, "User-Agent": user_agent, **(headers or {})}
        return httpx.Client(
            transport=httpx.HTTPTransport(retries=retries),
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            headers=merged,
            follow_redirects=True,
            verify=True,
        )

    def fetch(self, request: FetchRequest) -> FetchResult:
        try:
            response = self._client.get(
                request.url,
                headers=request.headers or None,
                timeout=request.timeout if request.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as exc:
            logger.debug("HTTP error for %s: %s", request.url, exc)
            raise FetchError(request.url, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code >= 400:
            raise FetchError(
                request.url,
                f"HTTP {response.status_code} for {request.url}",
                status_code=response.status_code,
            )

        return FetchResult(
            uri=str(response.url),
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            content_type=response.headers.get("content-type"),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpxFetcher:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
