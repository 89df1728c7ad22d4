"""EventBus module."""

from .event_bus import BUS_ACTOR, EventBus, EventHandler, IEventBus

__all__ = ["BUS_ACTOR", "EventBus", "EventHandler", "IEventBus"]
