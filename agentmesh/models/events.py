"""Event-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class FieldError:
    """One offending field found while validating a payload."""

    field: str  # dotted path, e.g. "specification.id"
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"

    def to_dict(self) -> dict:
        return {"field": self.field, "reason": self.reason}


@dataclass(frozen=True)
class Event:
    """A validated event as delivered to a subscriber.

    ``payload`` is the frozen payload model produced at the bus boundary.
    Each subscriber receives its own deep copy.
    """

    type: str  # canonical type
    payload: Any
    source_agent: str
    trace_id: str
    timestamp: datetime
    correlation_id: str | None = None
    raw_type: str | None = None
    target_agent: str | None = None


@dataclass(frozen=True)
class Subscription:
    """Handle returned by EventBus.subscribe."""

    id: str
    agent_id: str
    event_type: str


@dataclass(frozen=True)
class HandlerFault:
    """A subscriber raised while an event was dispatched to it."""

    agent_id: str
    event_type: str
    trace_id: str
    error: str


@dataclass
class EventRecord:
    """History entry kept by the bus for inspection."""

    trace_id: str
    event_type: str
    raw_type: str
    payload: dict
    source_agent: str
    timestamp: datetime
    correlation_id: str | None = None
    accepted: bool = True
    unknown: bool = False
    delivered_to: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "event_type": self.event_type,
            "raw_type": self.raw_type,
            "payload": self.payload,
            "source_agent": self.source_agent,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "accepted": self.accepted,
            "unknown": self.unknown,
            "delivered_to": list(self.delivered_to),
            "errors": list(self.errors),
        }


@dataclass
class PublishResult:
    """Outcome of one publish call."""

    trace_id: str
    event_type: str
    accepted: bool
    delivered_to: list[str] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)  # agent_id -> handler return
    faults: list[HandlerFault] = field(default_factory=list)
    errors: list[FieldError] = field(default_factory=list)

    def fault_for(self, agent_id: str) -> HandlerFault | None:
        for fault in self.faults:
            if fault.agent_id == agent_id:
                return fault
        return None
