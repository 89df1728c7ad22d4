"""Agent-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AgentState(str, Enum):
    """Lifecycle states reported by an agent."""

    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class AgentStatus:
    """Snapshot returned by get_status()."""

    status: AgentState
    health: str  # "healthy", "degraded", "unhealthy"
    last_event: str | None
    uptime: float  # seconds since initialize()

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "health": self.health,
            "last_event": self.last_event,
            "uptime": self.uptime,
        }


@dataclass(frozen=True)
class HandledResult:
    """Terminal response of handle_event.

    ``approved`` is only meaningful for consensus votes.
    """

    success: bool = True
    approved: bool | None = None
    output: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None


@dataclass(frozen=True)
class AgentInfo:
    """What filtered propagation predicates see about an agent."""

    agent_id: str
    capabilities: frozenset[str]
    status: AgentStatus
