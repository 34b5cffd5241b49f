"""Centralized configuration for crawl-orchestrator using Pydantic Settings."""

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(raw_value: str | None) -> list[str]:
    """Split comma-separated config strings into trimmed entries."""

    if not raw_value:
        return []
    return [entry.strip() for entry in raw_value.split(",") if entry.strip()]


class ObservabilityCollectorConfig(BaseModel):
    """Configuration for OTLP trace export."""

    model_config = {"extra": "forbid"}

    enabled: Annotated[bool, Field(description="Enable OTLP trace export to an external collector")] = False

    otlp_protocol: Annotated[Literal["http", "grpc"], Field(description="OTLP transport protocol")] = "grpc"

    collector_endpoint: Annotated[
        str,
        Field(
            description="OTLP collector endpoint (HTTP uses /v1/traces)",
            examples=["http://localhost:4317", "http://localhost:4318/v1/traces"],
        ),
    ] = "http://localhost:4317"

    headers: Annotated[
        dict[str, str],
        Field(description="Optional headers to include with OTLP requests"),
    ] = Field(default_factory=dict)

    timeout_seconds: Annotated[int, Field(ge=1, le=60, description="OTLP exporter timeout in seconds")] = 10

    grpc_insecure: Annotated[bool, Field(description="Use an insecure channel for gRPC export")] = True


class Settings(BaseSettings):
    """Strictly typed run configuration loaded from ``CRAWL_*`` environment variables.

    Millisecond fields are exposed as ``timedelta`` through the helper
    accessors so callers never juggle units.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRAWL_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Runner
    runner_mode: Literal["single", "pooled"] = Field(
        default="pooled", description="Execute tasks on the scheduler thread or on a worker pool"
    )
    worker_count: int = Field(default=4, ge=1, description="Worker threads in the pooled runner")
    max_in_flight: int = Field(default=8, ge=1, description="Maximum tasks executing or queued for execution")

    # Scheduler loop
    retry_drain_batch: int = Field(default=64, ge=1, description="Due retries moved to the frontier per iteration")
    scan_batch: int = Field(default=128, ge=1, description="Frontier polls per scheduler iteration")
    max_park_ms: int = Field(default=250, ge=1, description="Upper bound for one parked wait in milliseconds")

    # Politeness
    politeness_interval_ms: int = Field(
        default=1000, ge=0, description="Minimum spacing between dispatches to the same host in milliseconds"
    )

    # Retry
    max_attempts: int = Field(default=3, ge=1, description="Executions allowed before a task is dead-lettered")
    retry_base_delay_ms: int = Field(default=500, ge=0, description="Backoff for the first retry in milliseconds")
    retry_max_delay_ms: int = Field(default=60_000, ge=0, description="Backoff ceiling in milliseconds")
    retry_jitter: bool = Field(default=True, description="Apply full jitter to retry backoff")
    retry_discard_statuses: str = Field(
        default="", description="Comma-separated HTTP statuses that drop a task instead of retrying it"
    )

    # Scope
    max_depth: int | None = Field(default=None, ge=0, description="Maximum crawl depth from a seed")
    allowed_hosts: str = Field(default="", description="Comma-separated hosts the crawl may visit")

    # HTTP
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds")
    user_agent: str = Field(default="crawl-orchestrator/0.1", description="User-Agent header for fetches")

    # Persistence
    state_db_path: Path | None = Field(default=None, description="SQLite file for the state journal")
    snapshot_every_events: int = Field(
        default=1000, ge=1, description="Journaled events between automatic snapshots"
    )

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    observability: ObservabilityCollectorConfig = Field(default_factory=ObservabilityCollectorConfig)

    @model_validator(mode="after")
    def _check_delays(self) -> "Settings":
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError("CRAWL_RETRY_MAX_DELAY_MS must be greater than or equal to CRAWL_RETRY_BASE_DELAY_MS")
        return self

    def get_allowed_hosts(self) -> list[str]:
        """Get list of allowed hosts, lowercased; empty means no host restriction."""
        return [host.lower() for host in _split_csv(self.allowed_hosts)]

    def get_max_park(self) -> timedelta:
        return timedelta(milliseconds=self.max_park_ms)

    def get_politeness_interval(self) -> timedelta:
        return timedelta(milliseconds=self.politeness_interval_ms)

    def get_retry_base_delay(self) -> timedelta:
        return timedelta(milliseconds=self.retry_base_delay_ms)

    def get_retry_max_delay(self) -> timedelta:
        return timedelta(milliseconds=self.retry_max_delay_ms)

    def get_retry_discard_statuses(self) -> frozenset[int]:
        return frozenset(int(status) for status in _split_csv(self.retry_discard_statuses))

    def is_pooled(self) -> bool:
        return self.runner_mode == "pooled"
