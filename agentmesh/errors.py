"""Exception hierarchy for the coordination core.

Only malformed input raises: bad configuration, bad schema registrations,
refused context slices and refused workflow submissions. Event-level and
node-level failures are recorded as data (see ``models``), not raised.
"""


class MeshError(Exception):
    """Base class for all agentmesh errors."""


class ConfigurationError(MeshError):
    """An environment setting could not be parsed."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"{name}: {reason}")


class SchemaRegistrationError(MeshError):
    """A schema could not be registered for an event type."""

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Cannot register schema for {event_type!r}: {reason}")


# Context


class ContextError(MeshError):
    """Base class for context slice errors."""


class MissingContextField(ContextError):
    """A mandatory context slice field was absent."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Context slice is missing required field {field!r}")


class InvalidContextField(ContextError):
    """A context slice field had an unusable value."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid context slice field {field!r}: {reason}")


# Workflows


class WorkflowDefinitionError(MeshError):
    """A workflow definition was refused before execution."""


class CycleDetected(WorkflowDefinitionError):
    """The dependency graph of a workflow contains a cycle."""

    def __init__(self, nodes: list[str]):
        self.nodes = nodes
        super().__init__(f"Dependency cycle detected: {' -> '.join(nodes)}")


class UnknownAgentError(WorkflowDefinitionError):
    """A workflow references agents that are not registered."""

    def __init__(self, agent_ids: list[str]):
        self.agent_ids = agent_ids
        super().__init__(f"Unknown agent(s): {', '.join(agent_ids)}")


class WorkflowNotFoundError(MeshError):
    """No run exists for the given id."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Workflow run {run_id!r} not found")


class NodeExecutionError(MeshError):
    """An agent call for a workflow node failed or timed out."""

    def __init__(self, node: str, cause: str):
        self.node = node
        self.cause = cause
        super().__init__(f"Node {node!r} failed: {cause}")


# Agents


class AgentError(MeshError):
    """Base class for errors raised by agents."""


class AgentInitError(AgentError):
    """An agent failed to initialize."""

    def __init__(self, agent_id: str, reason: str):
        self.agent_id = agent_id
        self.reason = reason
        super().__init__(f"Agent {agent_id!r} failed to initialize: {reason}")


class HandlerError(AgentError):
    """An agent could not handle an event."""


class UnsupportedEventError(HandlerError):
    """An agent received an event type outside its dispatch table."""

    def __init__(self, agent_id: str, event_type: str):
        self.agent_id = agent_id
        self.event_type = event_type
        super().__init__(f"Agent {agent_id!r} does not handle {event_type!r}")
