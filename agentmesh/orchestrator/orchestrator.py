"""DAG orchestrator: dependency-ordered execution of workflow phases."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from ..context import ContextPropagator
from ..errors import (
    ContextError,
    NodeExecutionError,
    UnknownAgentError,
    WorkflowDefinitionError,
    WorkflowNotFoundError,
)
from ..event_bus import IEventBus
from ..logging_config import get_logger, trace_context
from ..models import (
    PHASE_EVENT_TYPE,
    ConsensusResult,
    DAGRun,
    FailurePolicy,
    HandledResult,
    NodeRun,
    NodeState,
    Phase,
    PropagationMode,
    PublishResult,
    RunState,
    WorkflowDefinition,
)
from ..storage import IStorage
from ..tracker import ITracker
from ..tracker.tracker import (
    CONSENSUS_RESOLVED,
    NODE_STATE_CHANGED,
    WORKFLOW_FINISHED,
)
from .consensus import ConsensusGate
from .dag import DependencyGraph, build_graph

logger = get_logger(__name__)

ORCHESTRATOR_ACTOR = "orchestrator"


class IAgentLookup(Protocol):
    def __contains__(self, agent_id: object) -> bool:
        ...


class _Execution:
    """Bookkeeping for one in-flight run. Never leaves the orchestrator."""

    def __init__(self, run: DAGRun, definition: WorkflowDefinition, graph: DependencyGraph):
        self.run = run
        self.definition = definition
        self.graph = graph
        self.phases = {phase.name: phase for phase in definition.phases}
        self.context_id: str | None = None
        self.task: asyncio.Task | None = None
        self.cancel_requested = False


class DAGOrchestrator:
    """Runs workflow definitions as DAGs.

    One coordinator task per run drives all state transitions. Node
    executions are tasks bounded by ``max_concurrency``; the coordinator
    observes their completion and schedules newly eligible nodes.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        agents: IAgentLookup,
        propagator: ContextPropagator | None = None,
        storage: IStorage | None = None,
        tracker: ITracker | None = None,
        max_concurrency: int = 4,
        node_timeout_ms: int = 30_000,
        consensus_timeout_ms: int = 5_000,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._event_bus = event_bus
        self._agents = agents
        self._propagator = propagator
        self._storage = storage
        self._tracker = tracker
        self._max_concurrency = max_concurrency
        self._node_timeout_ms = node_timeout_ms
        self._consensus_timeout_ms = consensus_timeout_ms
        self._gate = ConsensusGate(event_bus, tracker, source_agent=ORCHESTRATOR_ACTOR)
        self._executions: dict[str, _Execution] = {}

    # Submission

    def parse(self, definition: WorkflowDefinition | dict[str, Any]) -> WorkflowDefinition:
        if isinstance(definition, WorkflowDefinition):
            return definition
        return WorkflowDefinition.from_dict(
            definition, default_consensus_timeout_ms=self._consensus_timeout_ms
        )

    def check(self, definition: WorkflowDefinition) -> DependencyGraph:
        """Validate a definition without running it.

        Raises:
            WorkflowDefinitionError: structural problems
            CycleDetected: the dependencies contain a cycle
            UnknownAgentError: a phase or consensus names an unregistered agent
        """
        graph = build_graph(definition)
        referenced: set[str] = set()
        for phase in definition.phases:
            referenced |= phase.agents()
        missing = sorted(a for a in referenced if a not in self._agents)
        if missing:
            raise UnknownAgentError(missing)
        return graph

    async def submit(
        self,
        definition: WorkflowDefinition | dict[str, Any],
        policy: FailurePolicy | str = FailurePolicy.ABORT_DEPENDENTS,
    ) -> DAGRun:
        """Validate a workflow and start running it in the background.

        Nothing runs if validation fails.

        Returns:
            The live DAGRun. Use wait() for its final state.
        """
        definition = self.parse(definition)
        graph = self.check(definition)
        policy = FailurePolicy(policy)

        run_id = str(uuid.uuid4())
        nodes = {
            phase.name: NodeRun(
                name=phase.name,
                agent=phase.agent,
                depends_on=graph.dependencies_of(phase.name),
            )
            for phase in definition.phases
        }
        run = DAGRun(
            run_id=run_id,
            trace_id=str(uuid.uuid4()),
            policy=policy,
            nodes=nodes,
            workflow_id=definition.workflow_id,
            created_at=datetime.now(timezone.utc),
        )
        execution = _Execution(run, definition, graph)
        if definition.context is not None:
            execution.context_id = await self._prepare_context(run, definition.context)

        self._executions[run_id] = execution
        if self._storage:
            await self._storage.save_workflow_run(run)
        execution.task = asyncio.create_task(self._coordinate(execution))
        logger.info(
            "Submitted workflow run %s (%d phases, policy=%s)",
            run_id,
            len(nodes),
            policy.value,
            extra=trace_context(run_id=run_id, trace_id=run.trace_id, workflow_id=run.workflow_id),
        )
        return run

    async def _prepare_context(self, run: DAGRun, context: dict[str, Any]) -> str | None:
        if self._propagator is None:
            logger.warning("Run %s declares context but no propagator is configured", run.run_id)
            return None
        data = dict(context)
        data.setdefault("id", f"workflow-{run.run_id}")
        data.setdefault("owner_agent", ORCHESTRATOR_ACTOR)
        existing = await self._propagator.get_slice(data["id"])
        if existing is not None:
            return existing.id
        try:
            created = await self._propagator.create_slice(data)
        except ContextError as e:
            raise WorkflowDefinitionError(f"invalid workflow context: {e}") from e
        return created.id

    async def run(
        self,
        definition: WorkflowDefinition | dict[str, Any],
        policy: FailurePolicy | str = FailurePolicy.ABORT_DEPENDENTS,
    ) -> DAGRun:
        """Submit a workflow and wait for it to finish."""
        run = await self.submit(definition, policy)
        return await self.wait(run.run_id)

    async def wait(self, run_id: str) -> DAGRun:
        """Wait for a run to reach a final state."""
        execution = self._get_execution(run_id)
        if execution.task is not None:
            # Shielded: cancelling the waiter must not cancel the run
            try:
                await asyncio.shield(execution.task)
            except asyncio.CancelledError:
                if not execution.task.cancelled():
                    raise
        return execution.run

    async def cancel(self, run_id: str) -> bool:
        """Cancel a run. Returns False if it had already finished."""
        execution = self._get_execution(run_id)
        task = execution.task
        if task is None or task.done():
            return False
        execution.cancel_requested = True
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if execution.run.finished_at is None:
            # Cancelled before the coordinator got to run
            await self._abandon(execution, "cancelled")
            execution.run.state = RunState.CANCELLED
            await self._finish(execution)
        return True

    def get_run(self, run_id: str) -> DAGRun:
        return self._get_execution(run_id).run

    def list_runs(self) -> list[DAGRun]:
        return [e.run for e in self._executions.values()]

    def _get_execution(self, run_id: str) -> _Execution:
        execution = self._executions.get(run_id)
        if execution is None:
            raise WorkflowNotFoundError(run_id)
        return execution

    async def shutdown(self) -> None:
        """Cancel every unfinished run."""
        for run_id, execution in list(self._executions.items()):
            if execution.task is not None and not execution.task.done():
                await self.cancel(run_id)

    def clear(self) -> None:
        """Forget finished runs."""
        for run_id in [
            run_id
            for run_id, e in self._executions.items()
            if e.task is None or e.task.done()
        ]:
            del self._executions[run_id]

    # Coordination

    async def _coordinate(self, execution: _Execution) -> None:
        run = execution.run
        run.state = RunState.RUNNING
        timeout_ms = execution.definition.timeout_ms
        try:
            if timeout_ms is not None:
                await asyncio.wait_for(self._drive(execution), timeout_ms / 1000)
            else:
                await self._drive(execution)
        except asyncio.TimeoutError:
            run.errors.append(f"workflow timed out after {timeout_ms} ms")
            await self._abandon(execution, "timeout")
            run.state = RunState.CANCELLED
        except asyncio.CancelledError:
            await self._abandon(execution, "cancelled")
            run.state = RunState.CANCELLED
            await self._finish(execution)
            if not execution.cancel_requested:
                raise
            return
        else:
            run.state = self._aggregate(run)
        await self._finish(execution)

    async def _drive(self, execution: _Execution) -> None:
        run, graph = execution.run, execution.graph
        running: dict[asyncio.Task, str] = {}
        try:
            while True:
                for name in graph.order:
                    if len(running) >= self._max_concurrency:
                        break
                    node = run.nodes[name]
                    if node.state != NodeState.PENDING:
                        continue
                    if all(
                        run.nodes[dep].state == NodeState.COMPLETED
                        for dep in node.depends_on
                    ):
                        await self._transition(run, node, NodeState.RUNNING)
                        task = asyncio.create_task(self._run_node(execution, node))
                        running[task] = name

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    node = run.nodes[running.pop(task)]
                    cause = task.result()
                    if cause is None:
                        await self._transition(run, node, NodeState.COMPLETED)
                    else:
                        error = NodeExecutionError(node.name, cause)
                        node.error = cause
                        run.errors.append(str(error))
                        logger.warning(
                            "%s",
                            error,
                            extra=trace_context(
                                run_id=run.run_id, trace_id=run.trace_id, node=node.name
                            ),
                        )
                        await self._transition(run, node, NodeState.FAILED)
                        await self._cascade(execution, node.name)
        finally:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

    async def _cascade(self, execution: _Execution, failed: str) -> None:
        run = execution.run
        downstream = execution.graph.descendants(failed)
        for name in execution.graph.order:
            if name in downstream:
                node = run.nodes[name]
                if node.state == NodeState.PENDING:
                    await self._transition(run, node, NodeState.SKIPPED, "dependency failed")
        if run.policy == FailurePolicy.ABORT_DEPENDENTS:
            for node in run.nodes.values():
                if node.state == NodeState.PENDING:
                    await self._transition(run, node, NodeState.SKIPPED, "aborted")

    async def _abandon(self, execution: _Execution, reason: str) -> None:
        for node in execution.run.nodes.values():
            if node.state.is_terminal:
                continue
            phase = execution.phases[node.name]
            if node.state == NodeState.RUNNING and phase.consensus and node.consensus is None:
                node.consensus = ConsensusResult(
                    approvals=frozenset(),
                    reached=False,
                    elapsed_ms=_elapsed_ms(node.started_at),
                    abandoned=True,
                )
            await self._transition(execution.run, node, NodeState.SKIPPED, reason)

    @staticmethod
    def _aggregate(run: DAGRun) -> RunState:
        states = [node.state for node in run.nodes.values()]
        if all(s == NodeState.COMPLETED for s in states):
            return RunState.COMPLETED
        if run.policy == FailurePolicy.CONTINUE_INDEPENDENT and NodeState.COMPLETED in states:
            return RunState.PARTIALLY_FAILED
        return RunState.FAILED

    async def _finish(self, execution: _Execution) -> None:
        run = execution.run
        run.finished_at = datetime.now(timezone.utc)
        metrics = run.metrics()
        logger.info(
            "Workflow run %s finished: %s (%d/%d nodes completed)",
            run.run_id,
            run.state.value,
            metrics.completed_nodes,
            metrics.total_nodes,
            extra=trace_context(
                run_id=run.run_id, trace_id=run.trace_id, state=run.state.value
            ),
        )
        if self._storage:
            await self._storage.save_workflow_run(run)
        if self._tracker:
            await self._tracker.track(
                event_type=WORKFLOW_FINISHED,
                actor=ORCHESTRATOR_ACTOR,
                data={
                    "run_id": run.run_id,
                    "workflow_id": run.workflow_id,
                    "trace_id": run.trace_id,
                    "state": run.state.value,
                    "metrics": metrics.to_dict(),
                    "errors": list(run.errors),
                },
            )

    async def _transition(
        self, run: DAGRun, node: NodeRun, state: NodeState, reason: str | None = None
    ) -> None:
        previous = node.state
        node.state = state
        now = datetime.now(timezone.utc)
        if state == NodeState.RUNNING:
            node.started_at = now
        elif state.is_terminal and node.started_at is not None:
            node.finished_at = now
        if state == NodeState.SKIPPED:
            node.skip_reason = reason
        logger.debug(
            "Run %s node %s: %s -> %s", run.run_id, node.name, previous.value, state.value
        )
        if self._tracker:
            await self._tracker.track(
                event_type=NODE_STATE_CHANGED,
                actor=ORCHESTRATOR_ACTOR,
                data={
                    "run_id": run.run_id,
                    "trace_id": run.trace_id,
                    "node": node.name,
                    "agent": node.agent,
                    "from": previous.value,
                    "to": state.value,
                    "reason": reason or node.error,
                },
            )

    # Node execution

    async def _run_node(self, execution: _Execution, node: NodeRun) -> str | None:
        """Execute one phase. Returns None on success, else the failure cause."""
        run = execution.run
        phase = execution.phases[node.name]
        try:
            if phase.consensus is not None:
                result = await self._gate.collect(
                    phase.consensus,
                    run_id=run.run_id,
                    phase=phase.name,
                    parameters=phase.parameters,
                    correlation_id=run.trace_id,
                )
                node.consensus = result
                if self._tracker:
                    await self._tracker.track(
                        event_type=CONSENSUS_RESOLVED,
                        actor=ORCHESTRATOR_ACTOR,
                        data={
                            "run_id": run.run_id,
                            "trace_id": run.trace_id,
                            "node": node.name,
                            "threshold": phase.consensus.threshold,
                            **result.to_dict(),
                        },
                    )
                if not result.reached:
                    suffix = " (timed out)" if result.timed_out else ""
                    return (
                        f"consensus not reached: {len(result.approvals)}/"
                        f"{phase.consensus.threshold} approvals{suffix}"
                    )

            context = await self._propagate_context(execution, phase)
            return await self._dispatch(run, node, phase, context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Node %s of run %s raised: %s",
                node.name,
                run.run_id,
                e,
                exc_info=True,
                extra=trace_context(run_id=run.run_id, trace_id=run.trace_id, node=node.name),
            )
            return f"{type(e).__name__}: {e}"

    async def _propagate_context(
        self, execution: _Execution, phase: Phase
    ) -> dict[str, Any] | None:
        if execution.context_id is None or self._propagator is None:
            return None
        result = await self._propagator.propagate(
            execution.context_id,
            PropagationMode.TARGETED,
            targets=[phase.agent],
            correlation_id=execution.run.trace_id,
        )
        if result.expired:
            logger.info(
                "Context %s expired before phase %s", execution.context_id, phase.name
            )
            return None
        current = await self._propagator.get_slice(execution.context_id)
        return current.to_payload() if current else None

    async def _dispatch(
        self,
        run: DAGRun,
        node: NodeRun,
        phase: Phase,
        context: dict[str, Any] | None,
    ) -> str | None:
        if phase.action == PHASE_EVENT_TYPE:
            payload: dict[str, Any] = {
                "runId": run.run_id,
                "phase": phase.name,
                "parameters": dict(phase.parameters),
            }
            if context is not None:
                payload["context"] = context
        else:
            payload = dict(phase.parameters)

        timeout_ms = (
            phase.timeout_ms if phase.timeout_ms is not None else self._node_timeout_ms
        )
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            publish = await asyncio.wait_for(
                self._event_bus.send(
                    phase.action,
                    payload,
                    ORCHESTRATOR_ACTOR,
                    target_agent=phase.agent,
                    correlation_id=run.trace_id,
                ),
                timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            await self._track_interaction(run, phase, loop.time() - started, False)
            return f"timed out after {timeout_ms} ms"

        node.trace_ids.append(publish.trace_id)
        cause = self._evaluate(publish, phase)
        if cause is None:
            handled = publish.results.get(phase.agent)
            if isinstance(handled, HandledResult):
                node.output = dict(handled.output)
        await self._track_interaction(run, phase, loop.time() - started, cause is None)
        return cause

    @staticmethod
    def _evaluate(publish: PublishResult, phase: Phase) -> str | None:
        if not publish.accepted:
            return "payload rejected: " + "; ".join(str(e) for e in publish.errors)
        fault = publish.fault_for(phase.agent)
        if fault is not None:
            return fault.error
        if phase.agent not in publish.delivered_to:
            return f"agent {phase.agent!r} does not handle {publish.event_type!r}"
        handled = publish.results.get(phase.agent)
        if isinstance(handled, HandledResult) and not handled.success:
            return handled.reason or "agent reported failure"
        return None

    async def _track_interaction(
        self, run: DAGRun, phase: Phase, elapsed: float, success: bool
    ) -> None:
        if self._tracker:
            await self._tracker.track_interaction(
                source=ORCHESTRATOR_ACTOR,
                target=phase.agent,
                event_type=phase.action,
                duration_ms=elapsed * 1000,
                success=success,
                trace_id=run.trace_id,
            )


def _elapsed_ms(started_at: datetime | None) -> float:
    if started_at is None:
        return 0.0
    return (datetime.now(timezone.utc) - started_at).total_seconds() * 1000
