"""Event type normalization.

Maps external event type strings to canonical operation identifiers. The
table is append-only; canonical identifiers map to themselves so that
normalization is idempotent.
"""

from types import MappingProxyType
from typing import Mapping, Protocol

from ..logging_config import get_logger

logger = get_logger(__name__)

UNKNOWN_PREFIX = "unknown."
VALIDATION_FAILED = "validation.failed"

# raw/external type -> canonical type
EVENT_TYPES: Mapping[str, str] = MappingProxyType(
    {
        # Semantic validation
        "semantic.validation.request": "specification.validate",
        "semantic.validation.response": "specification.validated",
        "semantic.validation.error": "specification.validation.error",
        # Integrity validation
        "integrity.validation.request": "integrity.validate",
        "integrity.validation.response": "integrity.validated",
        "integrity.validation.error": "integrity.validation.error",
        # DAG orchestration
        "dag.orchestration.request": "dag.orchestrate",
        "dag.orchestration.response": "dag.orchestrated",
        "dag.orchestration.error": "dag.orchestration.error",
        # Context propagation
        "context.propagation.request": "context.propagate",
        "context.propagation.response": "context.propagated",
        "context.propagation.error": "context.propagation.error",
        # RAG knowledge
        "rag.knowledge.request": "rag.retrieve",
        "rag.knowledge.response": "rag.retrieved",
        "rag.knowledge.error": "rag.retrieval.error",
        # Business logic
        "business.rule.request": "business.rule.execute",
        "business.rule.response": "business.rule.executed",
        "business.rule.error": "business.rule.error",
        # Compliance
        "compliance.validation.request": "compliance.validate",
        "compliance.validation.response": "compliance.validated",
        "compliance.validation.error": "compliance.validation.error",
        # Security
        "security.operation.request": "security.operate",
        "security.operation.response": "security.operated",
        "security.operation.error": "security.operation.error",
        # Network performance
        "network.optimization.request": "network.optimize",
        "network.optimization.response": "network.optimized",
        "network.optimization.error": "network.optimization.error",
        # Composition
        "composition.request": "composition.create",
        "composition.response": "composition.created",
        "composition.error": "composition.error",
        # System
        "agent.initialized": "agent.initialized",
        "agent.shutdown": "agent.shutdown",
        "system.health.check": "system.health.check",
        "system.ready": "system.ready",
        # Coordination core
        "validation.error": VALIDATION_FAILED,
        "workflow.phase.request": "workflow.phase.execute",
        "consensus.vote.request": "consensus.vote",
    }
)


class IEventNormalizer(Protocol):
    """Raw event type -> canonical event type."""

    def normalize(self, raw_type: str) -> str:
        """Return the canonical type, or raw_type itself when unresolved."""
        ...

    def is_canonical(self, event_type: str) -> bool:
        """Whether event_type is a known canonical type."""
        ...


class EventNormalizer:
    """Static-table normalizer. Pure and total."""

    def __init__(self, table: Mapping[str, str] | None = None):
        self._table: dict[str, str] = dict(EVENT_TYPES if table is None else table)
        self._canonical: set[str] = set(self._table.values())

    def normalize(self, raw_type: str) -> str:
        """Return the canonical type, or raw_type itself when unresolved."""
        if raw_type in self._canonical:
            return raw_type
        return self._table.get(raw_type, raw_type)

    def is_canonical(self, event_type: str) -> bool:
        """Whether event_type is a known canonical type."""
        return event_type in self._canonical

    def add_mapping(self, raw_type: str, canonical_type: str) -> None:
        """Append a mapping. Existing entries are never rewritten."""
        existing = self._table.get(raw_type)
        if existing is not None and existing != canonical_type:
            raise ValueError(
                f"{raw_type!r} is already mapped to {existing!r}"
            )
        if raw_type in self._canonical and raw_type != canonical_type:
            raise ValueError(f"{raw_type!r} is itself a canonical type")
        self._table[raw_type] = canonical_type
        self._canonical.add(canonical_type)
        logger.debug("Mapped event type %s -> %s", raw_type, canonical_type)

    @property
    def canonical_types(self) -> frozenset[str]:
        return frozenset(self._canonical)
