"""Core data models for agentmesh."""

from .agents import AgentInfo, AgentState, AgentStatus, HandledResult
from .context import ContextSlice, PropagationMode, PropagationResult, Priority
from .events import (
    Event,
    EventRecord,
    FieldError,
    HandlerFault,
    PublishResult,
    Subscription,
)
from .tracing import TraceEvent
from .workflow import (
    PHASE_EVENT_TYPE,
    ConsensusRequest,
    ConsensusResult,
    DAGRun,
    FailurePolicy,
    NodeRun,
    NodeState,
    Phase,
    RunState,
    WorkflowDefinition,
    WorkflowMetrics,
)

__all__ = [
    # Events
    "Event",
    "EventRecord",
    "FieldError",
    "HandlerFault",
    "PublishResult",
    "Subscription",
    # Agents
    "AgentInfo",
    "AgentState",
    "AgentStatus",
    "HandledResult",
    # Context
    "ContextSlice",
    "PropagationMode",
    "PropagationResult",
    "Priority",
    # Workflows
    "PHASE_EVENT_TYPE",
    "ConsensusRequest",
    "ConsensusResult",
    "DAGRun",
    "FailurePolicy",
    "NodeRun",
    "NodeState",
    "Phase",
    "RunState",
    "WorkflowDefinition",
    "WorkflowMetrics",
    # Tracing
    "TraceEvent",
]
