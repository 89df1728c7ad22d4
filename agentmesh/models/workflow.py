"""Workflow (DAG) data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import WorkflowDefinitionError

PHASE_EVENT_TYPE = "workflow.phase.execute"


def _milliseconds(value: Any, label: str) -> int | None:
    """Parse an optional, non-negative millisecond count."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise WorkflowDefinitionError(f"{label} must be a number of milliseconds")
    try:
        ms = int(value)
    except (TypeError, ValueError, OverflowError):
        raise WorkflowDefinitionError(
            f"{label} must be a number of milliseconds, got {value!r}"
        ) from None
    if ms < 0:
        raise WorkflowDefinitionError(f"{label} must be >= 0")
    return ms


class NodeState(str, Enum):
    """Per-node lifecycle inside a DAG run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeState.COMPLETED, NodeState.FAILED, NodeState.SKIPPED)


class RunState(str, Enum):
    """Aggregate state of a DAG run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"
    CANCELLED = "cancelled"


class FailurePolicy(str, Enum):
    """What happens to the rest of the graph when a node fails."""

    ABORT_DEPENDENTS = "abort_dependents"
    CONTINUE_INDEPENDENT = "continue_independent"


@dataclass(frozen=True)
class ConsensusRequest:
    """Quorum requirement for a consensus gate."""

    required_agents: frozenset[str]
    threshold: int
    timeout_ms: int

    def __post_init__(self) -> None:
        if not self.required_agents:
            raise WorkflowDefinitionError("consensus requires at least one agent")
        if not 1 <= self.threshold <= len(self.required_agents):
            raise WorkflowDefinitionError(
                f"consensus threshold {self.threshold} must be between 1 and "
                f"{len(self.required_agents)}"
            )
        if self.timeout_ms < 0:
            raise WorkflowDefinitionError("consensus timeout must be >= 0")

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_timeout_ms: int | None = None
    ) -> "ConsensusRequest":
        if not isinstance(data, dict):
            raise WorkflowDefinitionError("consensus must be an object")
        agents = data.get("required_agents", data.get("requiredAgents"))
        if not isinstance(agents, (list, tuple, set, frozenset)):
            raise WorkflowDefinitionError("consensus.required_agents must be a list")
        timeout = _milliseconds(
            data.get("timeout_ms", data.get("timeoutMs")), "consensus.timeout_ms"
        )
        if timeout is None:
            timeout = default_timeout_ms
        if timeout is None:
            raise WorkflowDefinitionError("consensus.timeout_ms is required")
        threshold = data.get("threshold")
        if not isinstance(threshold, int) or isinstance(threshold, bool):
            raise WorkflowDefinitionError("consensus.threshold must be an integer")
        return cls(
            required_agents=frozenset(str(a) for a in agents),
            threshold=threshold,
            timeout_ms=int(timeout),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "required_agents": sorted(self.required_agents),
            "threshold": self.threshold,
            "timeout_ms": self.timeout_ms,
        }


@dataclass(frozen=True)
class ConsensusResult:
    """Resolution of a consensus gate."""

    approvals: frozenset[str]
    reached: bool
    elapsed_ms: float
    rejections: frozenset[str] = frozenset()
    timed_out: bool = False
    abandoned: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "approvals": sorted(self.approvals),
            "rejections": sorted(self.rejections),
            "reached": self.reached,
            "elapsed_ms": self.elapsed_ms,
            "timed_out": self.timed_out,
            "abandoned": self.abandoned,
        }


@dataclass(frozen=True)
class Phase:
    """One declared workflow phase (a DAG node)."""

    name: str
    agent: str
    action: str = PHASE_EVENT_TYPE
    parameters: dict[str, Any] = field(default_factory=dict)
    timeout_ms: int | None = None
    consensus: ConsensusRequest | None = None

    def agents(self) -> set[str]:
        agents = {self.agent}
        if self.consensus:
            agents |= set(self.consensus.required_agents)
        return agents


@dataclass(frozen=True)
class WorkflowDefinition:
    """Ordered phases plus dependency pairs."""

    phases: tuple[Phase, ...]
    dependencies: tuple[tuple[str, str], ...] = ()
    workflow_id: str | None = None
    name: str | None = None
    timeout_ms: int | None = None
    context: dict[str, Any] | None = None

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_consensus_timeout_ms: int | None = None
    ) -> "WorkflowDefinition":
        """Parse the workflow definition format.

        Raises:
            WorkflowDefinitionError: if the definition is structurally invalid
        """
        if not isinstance(data, dict):
            raise WorkflowDefinitionError("workflow definition must be an object")
        raw_phases = data.get("phases")
        if not isinstance(raw_phases, list) or not raw_phases:
            raise WorkflowDefinitionError("workflow must declare a non-empty phases list")

        phases = []
        for raw in raw_phases:
            if not isinstance(raw, dict):
                raise WorkflowDefinitionError("each phase must be an object")
            name, agent = raw.get("name"), raw.get("agent")
            if not name or not isinstance(name, str):
                raise WorkflowDefinitionError("phase.name is required")
            if not agent or not isinstance(agent, str):
                raise WorkflowDefinitionError(f"phase {name!r} has no agent")
            action = raw.get("action", PHASE_EVENT_TYPE)
            if not action or not isinstance(action, str):
                raise WorkflowDefinitionError(f"phase {name!r} has an invalid action")
            parameters = raw.get("parameters") or {}
            if not isinstance(parameters, dict):
                raise WorkflowDefinitionError(f"phase {name!r} parameters must be an object")
            consensus = raw.get("consensus")
            phases.append(
                Phase(
                    name=name,
                    agent=agent,
                    action=action,
                    parameters=dict(parameters),
                    timeout_ms=_milliseconds(
                        raw.get("timeout_ms", raw.get("timeoutMs")), f"phase {name!r} timeout_ms"
                    ),
                    consensus=(
                        ConsensusRequest.from_dict(consensus, default_consensus_timeout_ms)
                        if consensus
                        else None
                    ),
                )
            )

        dependencies = []
        raw_dependencies = data.get("dependencies") or []
        if not isinstance(raw_dependencies, (list, tuple)):
            raise WorkflowDefinitionError("dependencies must be a list")
        for raw in raw_dependencies:
            if isinstance(raw, dict):
                pair = (raw.get("from"), raw.get("to"))
            elif isinstance(raw, (list, tuple)) and len(raw) == 2:
                pair = (raw[0], raw[1])
            else:
                raise WorkflowDefinitionError(f"invalid dependency {raw!r}")
            if not all(isinstance(p, str) and p for p in pair):
                raise WorkflowDefinitionError(f"invalid dependency {raw!r}")
            dependencies.append(pair)

        context = data.get("context")
        if context is not None and not isinstance(context, dict):
            raise WorkflowDefinitionError("workflow context must be an object")
        return cls(
            phases=tuple(phases),
            dependencies=tuple(dependencies),
            workflow_id=data.get("id") or data.get("workflow_id"),
            name=data.get("name"),
            timeout_ms=_milliseconds(data.get("timeout_ms", data.get("timeoutMs")), "timeout_ms"),
            context=context,
        )


@dataclass
class NodeRun:
    """Mutable per-run state of one node. Owned by the orchestrator."""

    name: str
    agent: str
    depends_on: frozenset[str]
    state: NodeState = NodeState.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None
    skip_reason: str | None = None
    output: Any = None
    consensus: ConsensusResult | None = None
    trace_ids: list[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "agent": self.agent,
            "depends_on": sorted(self.depends_on),
            "state": self.state.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "skip_reason": self.skip_reason,
            "output": self.output,
            "consensus": self.consensus.to_dict() if self.consensus else None,
            "trace_ids": list(self.trace_ids),
        }


@dataclass(frozen=True)
class WorkflowMetrics:
    """Per-run summary."""

    total_nodes: int
    completed_nodes: int
    failed_nodes: int
    skipped_nodes: int
    average_node_duration_ms: float
    success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "completed_nodes": self.completed_nodes,
            "failed_nodes": self.failed_nodes,
            "skipped_nodes": self.skipped_nodes,
            "average_node_duration_ms": self.average_node_duration_ms,
            "success_rate": self.success_rate,
        }


@dataclass
class DAGRun:
    """One execution of a workflow definition."""

    run_id: str
    trace_id: str
    policy: FailurePolicy
    nodes: dict[str, NodeRun]
    workflow_id: str | None = None
    state: RunState = RunState.PENDING
    created_at: datetime | None = None
    finished_at: datetime | None = None
    errors: list[str] = field(default_factory=list)

    def node_states(self) -> dict[str, NodeState]:
        return {name: node.state for name, node in self.nodes.items()}

    def metrics(self) -> WorkflowMetrics:
        nodes = list(self.nodes.values())
        completed = [n for n in nodes if n.state == NodeState.COMPLETED]
        failed = [n for n in nodes if n.state == NodeState.FAILED]
        skipped = [n for n in nodes if n.state == NodeState.SKIPPED]
        durations = [n.duration_ms for n in nodes if n.duration_ms is not None]
        return WorkflowMetrics(
            total_nodes=len(nodes),
            completed_nodes=len(completed),
            failed_nodes=len(failed),
            skipped_nodes=len(skipped),
            average_node_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            success_rate=(len(completed) / len(nodes) * 100) if nodes else 0.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "trace_id": self.trace_id,
            "policy": self.policy.value,
            "state": self.state.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "errors": list(self.errors),
            "nodes": {name: node.to_dict() for name, node in self.nodes.items()},
            "metrics": self.metrics().to_dict(),
        }
