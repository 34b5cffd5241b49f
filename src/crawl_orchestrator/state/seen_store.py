"""Deduplication ledger for discovered and processed URLs."""

from __future__ import annotations

from collections.abc import Callable

from crawl_orchestrator.utils.urls import normalize_url


class SeenStore:
    """Concurrent first-writer-wins sets keyed by normalized URL.

    ``dict.setdefault`` is a single atomic operation on the builtin dict, so
    add-and-test needs no lock: each call inserts a fresh sentinel and wins
    only if its own sentinel is the one stored. Entries live for the whole
    run; there is no eviction.
    """

    def __init__(self, normalizer: Callable[[str], str] = normalize_url) -> None:
        self._normalize = normalizer
        self._discovered: dict[str, object] = {}
        self._processed: dict[str, object] = {}

    def mark_discovered(self, url: str) -> bool:
        return self._mark(self._discovered, url)

    def mark_processed(self, url: str) -> bool:
        return self._mark(self._processed, url)

    def is_discovered(self, url: str) -> bool:
        return self._normalize(url) in self._discovered

    def is_processed(self, url: str) -> bool:
        return self._normalize(url) in self._processed

    def discovered_count(self) -> int:
        return len(self._discovered)

    def processed_count(self) -> int:
        return len(self._processed)

    def _mark(self, ledger: dict[str, object], url: str) -> bool:
        marker = object()
        return ledger.setdefault(self._normalize(url), marker) is marker
