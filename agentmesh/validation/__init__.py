"""Event normalization and payload validation."""

from .engine import (
    EventValidationEngine,
    IEventValidationEngine,
    ValidationResult,
    fingerprint,
)
from .normalizer import (
    EVENT_TYPES,
    UNKNOWN_PREFIX,
    VALIDATION_FAILED,
    EventNormalizer,
    IEventNormalizer,
)
from .payloads import DEFAULT_SCHEMAS, EventPayload, PassthroughPayload
from .registry import (
    ISchemaRegistry,
    SchemaEntry,
    SchemaRegistry,
    register_default_schemas,
)

__all__ = [
    "EVENT_TYPES",
    "UNKNOWN_PREFIX",
    "VALIDATION_FAILED",
    "DEFAULT_SCHEMAS",
    "EventNormalizer",
    "IEventNormalizer",
    "EventPayload",
    "PassthroughPayload",
    "EventValidationEngine",
    "IEventValidationEngine",
    "ValidationResult",
    "fingerprint",
    "ISchemaRegistry",
    "SchemaEntry",
    "SchemaRegistry",
    "register_default_schemas",
]
