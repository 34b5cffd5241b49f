"""Lifecycle event names published on the event bus."""

from enum import Enum


class CrawlEventName(str, Enum):
    RUN_STARTED = "run.started"
    RUN_FINISHED = "run.finished"
    RUN_CANCELLED = "run.cancelled"
    RUN_FAILED = "run.failed"

    TASK_SUBMITTED = "task.submitted"
    TASK_STARTED = "task.started"
    TASK_COMPLETED = "task.completed"
    TASK_STOPPED = "task.stopped"
    TASK_FAILED = "task.failed"
    TASK_RETRY_SCHEDULED = "task.retry_scheduled"
    TASK_DEAD_LETTERED = "task.dead_lettered"
    TASK_DISCARDED = "task.discarded"
    TASK_DEFERRED = "task.deferred"

    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"

    DECISION_ACCEPTED = "decision.accepted"
    DECISION_REJECTED = "decision.rejected"

    @property
    def is_terminal(self) -> bool:
        """True for the task events that end a task's lifecycle in this run."""
        return self in _TERMINAL_TASK_EVENTS


_TERMINAL_TASK_EVENTS = frozenset(
    {
        CrawlEventName.TASK_COMPLETED,
        CrawlEventName.TASK_STOPPED,
        CrawlEventName.TASK_DISCARDED,
        CrawlEventName.TASK_DEAD_LETTERED,
    }
)
