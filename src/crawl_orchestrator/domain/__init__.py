"""Domain layer - immutable crawl values with no infrastructure dependencies.

This layer contains:
- Work units: ProcessingTask and its origin/trace metadata
- Closed result variants: PipelineResult and Disposition
- Decisions and dead-letter records
- State events, snapshots and the pure replay functions used for recovery
"""

from crawl_orchestrator.domain.decisions import (
    DecisionCodes,
    DecisionEntry,
    DecisionKind,
    DecisionRecorder,
    DecisionSnapshot,
)
from crawl_orchestrator.domain.events import (
    FrontierEvent,
    FrontierOffer,
    FrontierPoll,
    FrontierSnapshot,
    InFlightEvent,
    InFlightPut,
    InFlightRemove,
    InFlightSnapshot,
    JournalRecord,
    RetrySnapshot,
    StateEvent,
    StateSnapshot,
    apply_frontier_event,
    apply_in_flight_event,
    replay,
)
from crawl_orchestrator.domain.failures import (
    CrawlError,
    DeadLetterEntry,
    DeadLetterItem,
    FetchError,
    RouteHopLimitError,
    RouteNotFoundError,
    StateJournalError,
    TaskRejectedError,
)
from crawl_orchestrator.domain.model import Dispatch, ProcessingTask, RetryEntry, TaskOrigin, TraceContext
from crawl_orchestrator.domain.pipeline import (
    Completed,
    Continue,
    DeadLettered,
    Discarded,
    Disposition,
    PipelineResult,
    RetryLater,
    Stop,
    Stopped,
)


__all__ = [
    "Completed",
    "Continue",
    "CrawlError",
    "DeadLetterEntry",
    "DeadLetterItem",
    "DeadLettered",
    "DecisionCodes",
    "DecisionEntry",
    "DecisionKind",
    "DecisionRecorder",
    "DecisionSnapshot",
    "Discarded",
    "Dispatch",
    "Disposition",
    "FetchError",
    "FrontierEvent",
    "FrontierOffer",
    "FrontierPoll",
    "FrontierSnapshot",
    "InFlightEvent",
    "InFlightPut",
    "InFlightRemove",
    "InFlightSnapshot",
    "JournalRecord",
    "PipelineResult",
    "ProcessingTask",
    "RetryEntry",
    "RetryLater",
    "RetrySnapshot",
    "RouteHopLimitError",
    "RouteNotFoundError",
    "StateEvent",
    "StateJournalError",
    "StateSnapshot",
    "Stop",
    "Stopped",
    "TaskOrigin",
    "TaskRejectedError",
    "TraceContext",
    "apply_frontier_event",
    "apply_in_flight_event",
    "replay",
]
