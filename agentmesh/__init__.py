"""Core module."""

from .agents import AgentRegistry, BaseAgent, EchoAgent, IAgent, IAgentRegistry
from .app import Application, IApplication
from .context import ContextPropagator
from .event_bus import EventBus, IEventBus
from .models import (
    ContextSlice,
    DAGRun,
    Event,
    FailurePolicy,
    FieldError,
    HandledResult,
    PropagationMode,
    RunState,
    TraceEvent,
    WorkflowDefinition,
)
from .orchestrator import ConsensusGate, DAGOrchestrator
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker
from .validation import (
    EventNormalizer,
    EventValidationEngine,
    IEventNormalizer,
    IEventValidationEngine,
    SchemaRegistry,
)

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Models
    "ContextSlice",
    "DAGRun",
    "Event",
    "FailurePolicy",
    "FieldError",
    "HandledResult",
    "PropagationMode",
    "RunState",
    "TraceEvent",
    "WorkflowDefinition",
    # Components
    "IStorage",
    "Storage",
    "ITracker",
    "Tracker",
    "IEventNormalizer",
    "EventNormalizer",
    "SchemaRegistry",
    "IEventValidationEngine",
    "EventValidationEngine",
    "IEventBus",
    "EventBus",
    "IAgent",
    "BaseAgent",
    "EchoAgent",
    "IAgentRegistry",
    "AgentRegistry",
    "ContextPropagator",
    "ConsensusGate",
    "DAGOrchestrator",
]
