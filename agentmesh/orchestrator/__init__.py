"""DAG orchestration module."""

from .consensus import VOTE_EVENT_TYPE, ConsensusGate
from .dag import DependencyGraph, build_graph
from .orchestrator import ORCHESTRATOR_ACTOR, DAGOrchestrator

__all__ = [
    "ORCHESTRATOR_ACTOR",
    "VOTE_EVENT_TYPE",
    "ConsensusGate",
    "DAGOrchestrator",
    "DependencyGraph",
    "build_graph",
]
