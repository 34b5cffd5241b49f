"""In-memory scheduler buffers shared by the scheduler thread and workers."""

from crawl_orchestrator.state.dead_letter import DeadLetterQueue
from crawl_orchestrator.state.delay_queue import DelayQueue
from crawl_orchestrator.state.frontier import FifoFrontier, Frontier, PriorityFrontier
from crawl_orchestrator.state.in_flight import InFlightBuffer
from crawl_orchestrator.state.retry_buffer import RetryBuffer
from crawl_orchestrator.state.seen_store import SeenStore


__all__ = [
    "DeadLetterQueue",
    "DelayQueue",
    "FifoFrontier",
    "Frontier",
    "InFlightBuffer",
    "PriorityFrontier",
    "RetryBuffer",
    "SeenStore",
]
