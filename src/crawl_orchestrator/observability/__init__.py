"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from crawl_orchestrator.observability.context import (
    bound_trace_context,
    get_trace_context,
    set_trace_context,
    trace_context,
)
from crawl_orchestrator.observability.logging import JsonFormatter, configure_logging
from crawl_orchestrator.observability.metrics import (
    CHECKPOINT_LATENCY,
    DISPATCH_DELAY,
    QUEUE_DEPTH,
    TASK_EVENTS,
    TASK_EXECUTION_LATENCY,
    get_metrics,
    init_metrics,
    track_latency,
)
from crawl_orchestrator.observability.tracing import (
    configure_trace_exporter,
    create_span,
    get_tracer,
    init_tracing,
)


__all__ = [
    "CHECKPOINT_LATENCY",
    "DISPATCH_DELAY",
    "QUEUE_DEPTH",
    "TASK_EVENTS",
    "TASK_EXECUTION_LATENCY",
    "JsonFormatter",
    "bound_trace_context",
    "configure_logging",
    "configure_trace_exporter",
    "create_span",
    "get_metrics",
    "get_trace_context",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "track_latency",
]
