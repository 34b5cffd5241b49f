"""Accept/reject decisions recorded by pipeline steps during one execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from crawl_orchestrator.domain.model import parse_instant, utc_now


class DecisionCodes:
    """Stable decision codes shared by the engine and pipeline steps."""

    ENQUEUE_ACCEPT = "enqueue.accept"
    DUPLICATE_DISCOVERED = "enqueue.duplicate_discovered"
    DUPLICATE_SELF = "enqueue.duplicate_self"
    SCOPE_DENY = "enqueue.scope_deny"
    INVALID_URL = "enqueue.invalid_url"
    STEP_REJECT = "step.reject"


class DecisionKind(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(slots=True, frozen=True)
class DecisionEntry:
    kind: DecisionKind
    code: str
    message: str
    at: datetime = field(default_factory=utc_now)

    @property
    def accepted(self) -> bool:
        return self.kind is DecisionKind.ACCEPT

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecisionEntry:
        return cls(
            kind=DecisionKind(data["kind"]),
            code=data["code"],
            message=data.get("message", ""),
            at=parse_instant(data["at"]),
        )


@dataclass(slots=True, frozen=True)
class DecisionSnapshot:
    entries: tuple[DecisionEntry, ...] = ()

    @property
    def rejected(self) -> tuple[DecisionEntry, ...]:
        return tuple(entry for entry in self.entries if not entry.accepted)

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {"entries": [entry.to_dict() for entry in self.entries]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecisionSnapshot:
        return cls(entries=tuple(DecisionEntry.from_dict(item) for item in data.get("entries", [])))


class DecisionRecorder:
    """Per-execution decision accumulator.

    Confined to the thread executing the task. An optional ``on_record``
    callback observes each entry as it is recorded (the engine uses it to
    publish decision events).
    """

    def __init__(self, on_record=None) -> None:
        self._entries: list[DecisionEntry] = []
        self._on_record = on_record

    def accept(self, code: str, message: str = "") -> DecisionEntry:
        return self._record(DecisionEntry(kind=DecisionKind.ACCEPT, code=code, message=message))

    def reject(self, code: str, message: str = "") -> DecisionEntry:
        return self._record(DecisionEntry(kind=DecisionKind.REJECT, code=code, message=message))

    def snapshot(self) -> DecisionSnapshot:
        return DecisionSnapshot(entries=tuple(self._entries))

    def _record(self, entry: DecisionEntry) -> DecisionEntry:
        self._entries.append(entry)
        if self._on_record is not None:
            self._on_record(entry)
        return entry
