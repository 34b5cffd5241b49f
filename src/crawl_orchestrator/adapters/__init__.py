"""Adapters for collaborators outside the orchestration core."""

from crawl_orchestrator.adapters.fetcher import Fetcher, FetchRequest, FetchResult, HttpxFetcher


__all__ = ["FetchRequest", "FetchResult", "Fetcher", "HttpxFetcher"]
