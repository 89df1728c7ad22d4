"""Schema registry: one payload schema per canonical event type."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from pydantic import ConfigDict, create_model

from ..errors import SchemaRegistrationError
from ..logging_config import get_logger
from .payloads import DEFAULT_SCHEMAS, EventPayload

logger = get_logger(__name__)


class DescriptorPayload(EventPayload):
    """Base for mapping descriptors: field names are used verbatim on the wire."""

    model_config = ConfigDict(alias_generator=None)


@dataclass(frozen=True)
class SchemaEntry:
    """Immutable registration record."""

    event_type: str
    model: type[EventPayload]
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...]

    @classmethod
    def from_model(cls, event_type: str, model: type[EventPayload]) -> "SchemaEntry":
        required, optional = [], []
        for name, info in model.model_fields.items():
            wire_name = info.alias or name
            (required if info.is_required() else optional).append(wire_name)
        return cls(
            event_type=event_type,
            model=model,
            required_fields=tuple(required),
            optional_fields=tuple(optional),
        )


class ISchemaRegistry(Protocol):
    """Lookup table of canonical event type -> SchemaEntry."""

    def register_schema(self, event_type: str, descriptor: Any) -> SchemaEntry:
        """Register a schema. Additive only."""
        ...

    def get(self, event_type: str) -> SchemaEntry | None:
        """Return the entry for event_type, if any."""
        ...

    def mark_observed(self, event_type: str) -> None:
        """Record that an event of this type went through validation."""
        ...


def _model_from_mapping(event_type: str, descriptor: Mapping[str, Any]) -> type[EventPayload]:
    """Build a payload model from {"required": {...}, "optional": {...}}."""
    unknown_keys = set(descriptor) - {"required", "optional"}
    if unknown_keys:
        raise SchemaRegistrationError(
            event_type, f"unexpected descriptor keys {sorted(unknown_keys)}"
        )
    fields: dict[str, Any] = {}
    for name, annotation in (descriptor.get("required") or {}).items():
        fields[name] = (annotation, ...)
    for name, annotation in (descriptor.get("optional") or {}).items():
        if name in fields:
            raise SchemaRegistrationError(
                event_type, f"field {name!r} is both required and optional"
            )
        fields[name] = (Optional[annotation], None)
    model_name = "".join(part.title() for part in event_type.split(".")) + "Payload"
    return create_model(model_name, __base__=DescriptorPayload, **fields)


class SchemaRegistry:
    """Read-mostly registry. Entries never change once registered."""

    def __init__(self) -> None:
        self._entries: dict[str, SchemaEntry] = {}
        self._observed: set[str] = set()

    def register_schema(self, event_type: str, descriptor: Any) -> SchemaEntry:
        """Register a schema for a canonical event type.

        Args:
            event_type: Canonical event type
            descriptor: EventPayload subclass, or a mapping with "required"
                and "optional" field-name -> type maps

        Raises:
            SchemaRegistrationError: if the type already has a schema, an
                event of this type was already validated, or the descriptor
                is unusable
        """
        if event_type in self._entries:
            raise SchemaRegistrationError(event_type, "schema already registered")
        if event_type in self._observed:
            raise SchemaRegistrationError(
                event_type, "events of this type were already validated"
            )

        if isinstance(descriptor, type) and issubclass(descriptor, EventPayload):
            model = descriptor
        elif isinstance(descriptor, Mapping):
            model = _model_from_mapping(event_type, descriptor)
        else:
            raise SchemaRegistrationError(
                event_type, f"unsupported descriptor {type(descriptor).__name__}"
            )

        entry = SchemaEntry.from_model(event_type, model)
        self._entries[event_type] = entry
        logger.debug(
            "Registered schema %s (required=%s)", event_type, entry.required_fields
        )
        return entry

    def get(self, event_type: str) -> SchemaEntry | None:
        """Return the entry for event_type, if any."""
        return self._entries.get(event_type)

    def mark_observed(self, event_type: str) -> None:
        """Record that an event of this type went through validation."""
        self._observed.add(event_type)

    def event_types(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._entries


def register_default_schemas(registry: SchemaRegistry) -> None:
    """Register the built-in payload variants."""
    for event_type, model in DEFAULT_SCHEMAS.items():
        registry.register_schema(event_type, model)
