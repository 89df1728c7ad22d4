"""Tracker implementation for creating TraceEvents."""

import uuid
from datetime import datetime, timezone
from typing import Protocol

from ..models import TraceEvent
from ..storage import IStorage

# Trace kinds written by the coordination core
EVENT_PUBLISHED = "event_published"
EVENT_REJECTED = "event_rejected"
HANDLER_FAULT = "handler_fault"
CONTEXT_PROPAGATED = "context_propagated"
CONTEXT_EXPIRED = "context_expired"
NODE_STATE_CHANGED = "node_state_changed"
CONSENSUS_RESOLVED = "consensus_resolved"
WORKFLOW_FINISHED = "workflow_finished"
AGENT_REGISTERED = "agent_registered"
AGENT_INTERACTION = "agent_interaction"


class ITracker(Protocol):
    """Creating TraceEvents through direct calls from the core components."""

    async def track(self, event_type: str, actor: str, data: dict) -> None:
        """Create TraceEvent and save to Storage."""
        ...

    async def track_interaction(
        self,
        source: str,
        target: str,
        event_type: str,
        duration_ms: float,
        success: bool,
        trace_id: str | None = None,
    ) -> None:
        """Record one agent-to-agent call."""
        ...


class Tracker:
    """Creates TraceEvents from direct track() calls."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def track(self, event_type: str, actor: str, data: dict) -> None:
        """Create TraceEvent and save to Storage."""
        trace_event = TraceEvent(
            id=str(uuid.uuid4()),
            event_type=event_type,
            actor=actor,
            data=data,
            timestamp=datetime.now(timezone.utc),
        )
        await self._storage.save_trace_event(trace_event)

    async def track_interaction(
        self,
        source: str,
        target: str,
        event_type: str,
        duration_ms: float,
        success: bool,
        trace_id: str | None = None,
    ) -> None:
        """Record one agent-to-agent call (node dispatch or consensus vote)."""
        await self.track(
            event_type=AGENT_INTERACTION,
            actor=source,
            data={
                "source": source,
                "target": target,
                "event_type": event_type,
                "duration_ms": duration_ms,
                "success": success,
                "trace_id": trace_id,
            },
        )
