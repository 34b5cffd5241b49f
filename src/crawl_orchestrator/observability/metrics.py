"""Prometheus metrics for crawl scheduling, bridged to OpenTelemetry instruments."""

from __future__ import annotations

from contextlib import contextmanager
import threading
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics as otel_metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Gauge, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


_meter_holder: dict[str, Any] = {"meter": None, "provider": None}


def init_metrics(
    service_name: str = "crawl-orchestrator",
    resource_attributes: dict[str, str] | None = None,
    metric_readers: list[MetricReader] | None = None,
) -> MeterProvider:
    """Initialize OpenTelemetry metrics."""
    provider = _meter_holder.get("provider")
    if isinstance(provider, MeterProvider):
        return provider

    attributes = {"service.name": service_name}
    if resource_attributes:
        attributes.update(resource_attributes)
    resource = Resource.create(attributes)
    provider = MeterProvider(resource=resource, metric_readers=metric_readers or [])
    otel_metrics.set_meter_provider(provider)
    _meter_holder["provider"] = provider
    _meter_holder["meter"] = otel_metrics.get_meter(__name__)
    return provider


def _get_meter():
    meter = _meter_holder.get("meter")
    if meter is None:
        init_metrics()
        meter = _meter_holder.get("meter")
    return meter


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items()))


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)

    def set(self, value: float) -> None:
        self._wrapper.set(self._labels, value)


class MetricBridge:
    """Bridge Prometheus metrics to optional OTel instruments."""

    def __init__(
        self,
        prom_metric: Counter | Histogram | Gauge,
        *,
        otel_name: str,
        otel_description: str,
        otel_kind: str,
    ) -> None:
        self._prom_metric = prom_metric
        self._otel_name = otel_name
        self._otel_description = otel_description
        self._otel_kind = otel_kind
        self._otel_instrument = None
        self._last_values: dict[tuple[tuple[str, str], ...], float] = {}
        # Worker threads update gauges concurrently; deltas must not interleave
        self._gauge_lock = threading.Lock()

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def _ensure_otel_instrument(self):
        if self._otel_instrument is not None:
            return self._otel_instrument
        meter = _get_meter()
        if self._otel_kind == "counter":
            self._otel_instrument = meter.create_counter(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "histogram":
            self._otel_instrument = meter.create_histogram(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "gauge":
            self._otel_instrument = meter.create_up_down_counter(self._otel_name, description=self._otel_description)
        else:
            raise ValueError(f"Unknown metric kind: {self._otel_kind}")
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        otel = self._ensure_otel_instrument()
        otel.add(amount, labels)

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        otel = self._ensure_otel_instrument()
        otel.record(value, labels)

    def set(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).set(value)
        otel = self._ensure_otel_instrument()
        key = _label_key(labels)
        with self._gauge_lock:
            last = self._last_values.get(key, 0.0)
            delta = value - last
            if delta:
                otel.add(delta, labels)
            self._last_values[key] = value


_TASK_EVENTS_PROM = Counter(
    "crawl_task_events_total",
    "Task lifecycle events by event name",
    ["run", "event"],
)

_TASK_EXECUTION_LATENCY_PROM = Histogram(
    "crawl_task_execution_seconds",
    "Wall time of one task execution (fetch + pipeline)",
    ["run", "outcome"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

_CHECKPOINT_LATENCY_PROM = Histogram(
    "crawl_checkpoint_seconds",
    "Time to persist one state snapshot and truncate the event log",
    ["run"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

_DISPATCH_DELAY_PROM = Histogram(
    "crawl_dispatch_delay_seconds",
    "Delay between a politeness reservation and the actual dispatch",
    ["run"],
    buckets=(0.0, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)

_QUEUE_DEPTH_PROM = Gauge(
    "crawl_queue_depth",
    "Tasks held per scheduler buffer",
    ["run", "buffer"],
)

TASK_EVENTS = MetricBridge(
    _TASK_EVENTS_PROM,
    otel_name="crawl_task_events_total",
    otel_description="Task lifecycle events by event name",
    otel_kind="counter",
)

TASK_EXECUTION_LATENCY = MetricBridge(
    _TASK_EXECUTION_LATENCY_PROM,
    otel_name="crawl_task_execution_seconds",
    otel_description="Wall time of one task execution (fetch + pipeline)",
    otel_kind="histogram",
)

DISPATCH_DELAY = MetricBridge(
    _DISPATCH_DELAY_PROM,
    otel_name="crawl_dispatch_delay_seconds",
    otel_description="Delay between a politeness reservation and the actual dispatch",
    otel_kind="histogram",
)

CHECKPOINT_LATENCY = MetricBridge(
    _CHECKPOINT_LATENCY_PROM,
    otel_name="crawl_checkpoint_seconds",
    otel_description="Time to persist one state snapshot and truncate the event log",
    otel_kind="histogram",
)

QUEUE_DEPTH = MetricBridge(
    _QUEUE_DEPTH_PROM,
    otel_name="crawl_queue_depth",
    otel_description="Tasks held per scheduler buffer",
    otel_kind="gauge",
)


@contextmanager
def track_latency(histogram: MetricBridge, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
