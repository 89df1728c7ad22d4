"""Tracing and observability data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TraceEvent:
    """A single observability event."""

    id: str
    event_type: str  # e.g. "event_published", "node_state_changed"
    actor: str  # who created this event
    data: dict  # full self-contained data for display
    timestamp: datetime
