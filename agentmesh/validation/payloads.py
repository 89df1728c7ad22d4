"""Typed payload variants, one per canonical event type.

Payloads are validated once at the bus boundary and handed to agents as
frozen model instances. Field names are snake_case in Python and camelCase
on the wire. Unknown extra fields are kept but never validated.
"""

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    PlainValidator,
    StrictBool,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic.alias_generators import to_camel

Level = Literal["low", "medium", "high", "critical"]


def describe_type(value: Any) -> str:
    """JSON-flavoured name of a value's type, used in error reasons."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected number, got {describe_type(value)}")
    return value


# Plain validator keeps error locations free of union member tags
Number = Annotated[Any, PlainValidator(_number)]


class EventPayload(BaseModel):
    """Base class for every payload variant."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump the fields that were actually supplied, in wire shape."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class PassthroughPayload(EventPayload):
    """Permissive payload for unknown event types. Accepts anything."""


class BaseContext(EventPayload):
    id: StrictStr
    user_id: StrictStr | None = None
    session_id: StrictStr | None = None
    domain: StrictStr | None = None
    state: StrictStr | None = None
    metadata: dict[str, Any] | None = None


# Specification


class SpecificationDescriptor(EventPayload):
    id: StrictStr
    name: StrictStr
    description: StrictStr
    capabilities: list[StrictStr] | None = None
    interfaces: list[StrictStr] | None = None
    requirements: list[StrictStr] | None = None
    constraints: list[StrictStr] | None = None
    contracts: list[StrictStr] | None = None


class SpecificationValidatePayload(EventPayload):
    specification_id: StrictStr
    specification: SpecificationDescriptor
    context: BaseContext | None = None


class SpecificationVerdict(EventPayload):
    valid: StrictBool
    errors: list[StrictStr] | None = None
    warnings: list[StrictStr] | None = None
    recommendations: list[StrictStr] | None = None


class SpecificationValidatedPayload(EventPayload):
    specification_id: StrictStr
    result: SpecificationVerdict
    context: BaseContext | None = None


# Integrity


class IntegrityContext(EventPayload):
    operation: StrictStr
    security_level: Level
    compliance_required: StrictBool | None = None
    agent_id: StrictStr | None = None


class IntegrityValidatePayload(EventPayload):
    output: Any
    context: IntegrityContext
    validation_rules: list[StrictStr] | None = None


# DAG orchestration


class DAGNodeSpec(EventPayload):
    id: StrictStr
    type: Literal["agent", "service", "gateway"]
    role: StrictStr
    status: Literal["active", "inactive", "error"]
    dependencies: list[StrictStr]
    metadata: dict[str, Any] | None = None


class DAGEdgeSpec(EventPayload):
    id: StrictStr
    source: StrictStr
    target: StrictStr
    type: Literal["data", "control", "event"]
    metadata: dict[str, Any] | None = None


class DAGSpec(EventPayload):
    id: StrictStr
    nodes: list[DAGNodeSpec]
    edges: list[DAGEdgeSpec]
    metadata: dict[str, Any] | None = None


class DAGOrchestratePayload(EventPayload):
    dag_spec: DAGSpec
    workflow_id: StrictStr
    context: BaseContext | None = None


# Context propagation


class ContextPropagatePayload(EventPayload):
    context_slice: BaseContext
    target_agents: list[StrictStr]
    propagation_type: Literal["broadcast", "targeted", "filtered"] | None = None
    priority: Level | None = None
    ttl: Number | None = None


class ContextPropagatedPayload(EventPayload):
    context_id: StrictStr
    propagated_to: list[StrictStr]
    failed_agents: list[StrictStr] | None = None
    propagation_time: Number
    context: BaseContext


# Knowledge retrieval


class RagContext(EventPayload):
    domain: StrictStr | None = None
    complexity: Literal["basic", "intermediate", "advanced"] | None = None
    max_tokens: StrictInt | None = None
    confidence_threshold: Number | None = None

    @field_validator("confidence_threshold")
    @classmethod
    def _ratio(cls, value):
        if value is not None and not 0 <= value <= 1:
            raise ValueError("must be between 0 and 1")
        return value


class RagRetrievePayload(EventPayload):
    query: StrictStr
    context: RagContext
    filters: dict[str, Any] | None = None


# Business rules


class BusinessRuleContext(EventPayload):
    user_id: StrictStr | None = None
    user_role: StrictStr | None = None
    department: StrictStr | None = None
    amount: Number | None = None


class BusinessRuleExecutePayload(EventPayload):
    rule_id: StrictStr
    data: dict[str, Any]
    context: BusinessRuleContext
    parameters: dict[str, Any] | None = None


# Compliance


class ComplianceContext(EventPayload):
    data_type: StrictStr
    jurisdiction: StrictStr
    industry: StrictStr | None = None
    risk_level: Literal["low", "medium", "high"] | None = None


class ComplianceValidatePayload(EventPayload):
    requirements: list[StrictStr]
    context: ComplianceContext
    policies: list[StrictStr] | None = None


# Security


class SecurityContext(EventPayload):
    security_level: Level
    encryption_required: StrictBool | None = None
    audit_required: StrictBool | None = None


class SecurityOperatePayload(EventPayload):
    operation: StrictStr
    data: dict[str, Any]
    context: SecurityContext
    parameters: dict[str, Any] | None = None


# Network


class NetworkContext(EventPayload):
    network_type: StrictStr | None = None
    optimization_target: StrictStr | None = None
    constraints: dict[str, Any] | None = None


class NetworkOptimizePayload(EventPayload):
    operation: StrictStr
    metrics: dict[str, Any]
    context: NetworkContext
    parameters: dict[str, Any] | None = None


# Composition


class CompositionContext(EventPayload):
    domain: StrictStr
    scale: Literal["small", "medium", "large", "enterprise"]
    constraints: dict[str, Any] | None = None


class CompositionCreatePayload(EventPayload):
    requirements: list[StrictStr]
    context: CompositionContext
    parameters: dict[str, Any] | None = None


# Coordination core


class FieldErrorPayload(EventPayload):
    field: StrictStr
    reason: StrictStr


class ValidationFailedPayload(EventPayload):
    original_type: StrictStr
    normalized_type: StrictStr
    errors: list[FieldErrorPayload]
    source_agent: StrictStr | None = None


class PhaseExecutePayload(EventPayload):
    run_id: StrictStr
    phase: StrictStr
    parameters: dict[str, Any] | None = None
    context: dict[str, Any] | None = None


class ConsensusVotePayload(EventPayload):
    run_id: StrictStr
    phase: StrictStr
    required_agents: list[StrictStr]
    threshold: StrictInt
    parameters: dict[str, Any] | None = None


DEFAULT_SCHEMAS: dict[str, type[EventPayload]] = {
    "specification.validate": SpecificationValidatePayload,
    "specification.validated": SpecificationValidatedPayload,
    "integrity.validate": IntegrityValidatePayload,
    "dag.orchestrate": DAGOrchestratePayload,
    "context.propagate": ContextPropagatePayload,
    "context.propagated": ContextPropagatedPayload,
    "rag.retrieve": RagRetrievePayload,
    "business.rule.execute": BusinessRuleExecutePayload,
    "compliance.validate": ComplianceValidatePayload,
    "security.operate": SecurityOperatePayload,
    "network.optimize": NetworkOptimizePayload,
    "composition.create": CompositionCreatePayload,
    "validation.failed": ValidationFailedPayload,
    "workflow.phase.execute": PhaseExecutePayload,
    "consensus.vote": ConsensusVotePayload,
}
