"""Lifecycle event bus for observability; never authoritative state."""

from crawl_orchestrator.events.bus import EventBus, EventListener
from crawl_orchestrator.events.listeners import LoggingListener, MetricsListener, RecordingListener
from crawl_orchestrator.events.names import CrawlEventName
from crawl_orchestrator.events.payloads import (
    DecisionPayload,
    EventPayload,
    RunPayload,
    StepPayload,
    TaskFailedPayload,
    TaskPayload,
)


__all__ = [
    "CrawlEventName",
    "DecisionPayload",
    "EventBus",
    "EventListener",
    "EventPayload",
    "LoggingListener",
    "MetricsListener",
    "RecordingListener",
    "RunPayload",
    "StepPayload",
    "TaskFailedPayload",
    "TaskPayload",
]
