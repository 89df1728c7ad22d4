"""Context propagation module."""

from .propagator import (
    CONTEXT_EVENT_TYPE,
    AgentPredicate,
    ContextPropagator,
    IAgentDirectory,
)

__all__ = [
    "CONTEXT_EVENT_TYPE",
    "AgentPredicate",
    "ContextPropagator",
    "IAgentDirectory",
]
