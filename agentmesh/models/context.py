"""Context propagation data models."""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Priority(str, Enum):
    """Context slice priority. Higher rank wins conflicts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class PropagationMode(str, Enum):
    """How a slice selects its recipients."""

    BROADCAST = "broadcast"
    TARGETED = "targeted"
    FILTERED = "filtered"


@dataclass(frozen=True)
class ContextSlice:
    """A scoped, TTL-bounded bundle of shared state."""

    id: str
    owner_agent: str | None = None
    domain: str | None = None
    state: str | None = None
    priority: Priority = Priority.MEDIUM
    ttl_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    # Monotonic deadline in seconds; None means no expiry
    expires_at: float | None = field(default=None, compare=False, repr=False)
    # Creation order within one propagator; breaks priority ties
    sequence: int = field(default=0, compare=False, repr=False)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def outranks(self, other: "ContextSlice") -> bool:
        """Higher priority wins; equal priority goes to the later slice."""
        if self.priority.rank != other.priority.rank:
            return self.priority.rank > other.priority.rank
        if self.sequence != other.sequence:
            return self.sequence > other.sequence
        if self.created_at is None or other.created_at is None:
            return False
        return self.created_at > other.created_at

    def snapshot(self) -> "ContextSlice":
        """Independent copy safe to hand to a subscriber."""
        return copy.deepcopy(self)

    def to_payload(self) -> dict[str, Any]:
        """Wire shape used inside context.propagate events."""
        payload: dict[str, Any] = {"id": self.id}
        if self.owner_agent is not None:
            payload["ownerAgent"] = self.owner_agent
        if self.domain is not None:
            payload["domain"] = self.domain
        if self.state is not None:
            payload["state"] = self.state
        if self.metadata:
            payload["metadata"] = copy.deepcopy(self.metadata)
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_agent": self.owner_agent,
            "domain": self.domain,
            "state": self.state,
            "priority": self.priority.value,
            "ttl_ms": self.ttl_ms,
            "metadata": copy.deepcopy(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class PropagationResult:
    """Outcome of propagating one slice."""

    context_id: str
    mode: PropagationMode
    propagated_to: list[str] = field(default_factory=list)
    failed_agents: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)  # lost to a higher-ranked slice
    expired: bool = False
    elapsed_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.expired and not self.failed_agents

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_id": self.context_id,
            "mode": self.mode.value,
            "propagated_to": list(self.propagated_to),
            "failed_agents": list(self.failed_agents),
            "conflicts": list(self.conflicts),
            "expired": self.expired,
            "elapsed_ms": self.elapsed_ms,
        }
