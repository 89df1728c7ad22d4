"""Event validation engine.

Normalizes the event type, looks up the payload schema and validates the
payload structurally. Results are cached by (normalized type, payload
fingerprint) in a bounded LRU.
"""

import copy
import hashlib
import json
import threading
from collections import Counter, OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from ..logging_config import get_logger
from ..models import FieldError
from .normalizer import UNKNOWN_PREFIX, IEventNormalizer
from .payloads import EventPayload, PassthroughPayload, describe_type
from .registry import ISchemaRegistry

logger = get_logger(__name__)

_EXPECTED_TYPES = {
    "string_type": "string",
    "int_type": "integer",
    "float_type": "number",
    "bool_type": "boolean",
    "list_type": "array",
    "tuple_type": "array",
    "dict_type": "object",
    "model_type": "object",
    "model_attributes_type": "object",
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one payload."""

    is_valid: bool
    raw_type: str
    normalized_type: str
    normalized_payload: dict[str, Any] | None = None
    payload_model: EventPayload | None = None
    errors: tuple[FieldError, ...] = ()
    unknown: bool = False
    warnings: tuple[str, ...] = ()


@dataclass
class ValidationStats:
    """Counters exposed for observability."""

    total_validations: int = 0
    cache_hits: int = 0
    valid: int = 0
    invalid: int = 0
    unknown: int = 0
    error_counts: Counter = field(default_factory=Counter)

    def to_dict(self) -> dict[str, Any]:
        computed = self.valid + self.invalid
        return {
            "total_validations": self.total_validations,
            "cache_hits": self.cache_hits,
            "valid": self.valid,
            "invalid": self.invalid,
            "unknown": self.unknown,
            "success_rate": (self.valid / computed * 100) if computed else 0.0,
            "most_common_errors": [e for e, _ in self.error_counts.most_common(5)],
        }


class IEventValidationEngine(Protocol):
    """Validate raw events against registered schemas."""

    def resolve_type(self, raw_type: str) -> tuple[str, bool]:
        """Return (normalized type, is_unknown) for raw_type."""
        ...

    def routing_key(self, event_type: str) -> str:
        """Subscription key for event_type."""
        ...

    def validate(self, raw_type: str, payload: Any) -> ValidationResult:
        """Validate payload for raw_type."""
        ...


def _canonical(value: Any) -> Any:
    """Type-tagged, order-independent encoding of a payload value."""
    if isinstance(value, EventPayload):
        value = value.to_wire()
    if isinstance(value, Mapping):
        items = [[_canonical(k), _canonical(v)] for k, v in value.items()]
        items.sort(key=lambda kv: json.dumps(kv[0]))
        return ["object", items]
    if isinstance(value, (list, tuple)):
        return ["array", [_canonical(v) for v in value]]
    if isinstance(value, (set, frozenset)):
        return ["set", sorted((_canonical(v) for v in value), key=json.dumps)]
    if value is None or isinstance(value, (str, int, float)):
        # bool keeps its own tag, apart from int
        return [type(value).__name__, value]
    return [type(value).__name__, repr(value)]


def fingerprint(payload: Any) -> str:
    """Stable content hash of a payload.

    Key order does not matter. Key and value types do, so ``{1: "x"}`` and
    ``{"1": "x"}`` get different fingerprints.
    """
    encoded = json.dumps(_canonical(payload), separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _field_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "payload"


def _to_field_errors(exc: PydanticValidationError) -> list[FieldError]:
    errors = []
    for err in exc.errors():
        path = _field_path(err["loc"])
        kind = err["type"]
        if kind == "missing":
            reason = "required field missing"
        elif kind in _EXPECTED_TYPES:
            reason = f"expected {_EXPECTED_TYPES[kind]}, got {describe_type(err.get('input'))}"
        elif kind == "value_error" and "error" in err.get("ctx", {}):
            reason = str(err["ctx"]["error"])
        else:
            reason = err["msg"]
        errors.append(FieldError(field=path, reason=reason))
    return errors


class EventValidationEngine:
    """Validates payloads and caches the results."""

    def __init__(
        self,
        registry: ISchemaRegistry,
        normalizer: IEventNormalizer,
        cache_size: int = 1024,
    ):
        self._registry = registry
        self._normalizer = normalizer
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[str, str], ValidationResult] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = ValidationStats()

    def resolve_type(self, raw_type: str) -> tuple[str, bool]:
        """Return (normalized type, is_unknown) for raw_type."""
        if raw_type.startswith(UNKNOWN_PREFIX):
            return raw_type, True
        normalized = self._normalizer.normalize(raw_type)
        if self._registry.get(normalized) is not None:
            return normalized, False
        if self._normalizer.is_canonical(normalized):
            # Canonical but schemaless: passthrough, flagged
            return normalized, True
        return f"{UNKNOWN_PREFIX}{raw_type}", True

    def routing_key(self, event_type: str) -> str:
        """Subscription key for event_type.

        Independent of schema registration: a type routes the same way
        before and after its schema is registered.
        """
        if event_type.startswith(UNKNOWN_PREFIX):
            event_type = event_type[len(UNKNOWN_PREFIX):]
        return self._normalizer.normalize(event_type)

    def validate(self, raw_type: str, payload: Any) -> ValidationResult:
        """Validate payload for raw_type.

        Unknown types are never failures: the payload is passed through
        and the result is flagged ``unknown``. Each call returns its own
        copy of ``normalized_payload``.
        """
        normalized_type, unknown = self.resolve_type(raw_type)
        key = (normalized_type, fingerprint(payload))

        with self._lock:
            self._stats.total_validations += 1
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self._stats.cache_hits += 1
                return self._rebind(cached, raw_type)

        if unknown:
            result = self._passthrough(raw_type, normalized_type, payload)
        else:
            result = self._validate_structure(raw_type, normalized_type, payload)

        # Schemas may not appear for a type after its first event
        self._registry.mark_observed(self._normalizer.normalize(raw_type))

        with self._lock:
            self._cache[key] = result
            self._cache.move_to_end(key)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
            self._record(result)

        if not result.is_valid:
            logger.info(
                "Rejected %s payload: %s",
                normalized_type,
                "; ".join(str(e) for e in result.errors),
            )
        return self._rebind(result, raw_type)

    def _passthrough(self, raw_type: str, normalized_type: str, payload: Any) -> ValidationResult:
        if isinstance(payload, Mapping):
            data = copy.deepcopy(dict(payload))
        else:
            data = {"value": copy.deepcopy(payload)}
        logger.debug("Passing through unknown event type %s", normalized_type)
        return ValidationResult(
            is_valid=True,
            raw_type=raw_type,
            normalized_type=normalized_type,
            normalized_payload=data,
            payload_model=PassthroughPayload.model_validate(data),
            unknown=True,
            warnings=(f"unknown event type: {raw_type}",),
        )

    def _validate_structure(self, raw_type: str, normalized_type: str, payload: Any) -> ValidationResult:
        entry = self._registry.get(normalized_type)
        if not isinstance(payload, Mapping):
            errors: list[FieldError] = [
                FieldError("payload", f"expected object, got {describe_type(payload)}")
            ]
        else:
            try:
                model = entry.model.model_validate(copy.deepcopy(dict(payload)))
            except PydanticValidationError as e:
                errors = _to_field_errors(e)
            else:
                return ValidationResult(
                    is_valid=True,
                    raw_type=raw_type,
                    normalized_type=normalized_type,
                    normalized_payload=model.to_wire(),
                    payload_model=model,
                )
        return ValidationResult(
            is_valid=False,
            raw_type=raw_type,
            normalized_type=normalized_type,
            errors=tuple(errors),
        )

    @staticmethod
    def _rebind(result: ValidationResult, raw_type: str) -> ValidationResult:
        """Copy of a cached result for the caller.

        Cached results are shared between raw aliases of one type, and the
        caller never gets the cached payload dict itself.
        """
        warnings = result.warnings
        if result.unknown and result.raw_type != raw_type:
            warnings = (f"unknown event type: {raw_type}",)
        return ValidationResult(
            is_valid=result.is_valid,
            raw_type=raw_type,
            normalized_type=result.normalized_type,
            normalized_payload=copy.deepcopy(result.normalized_payload),
            payload_model=result.payload_model,
            errors=result.errors,
            unknown=result.unknown,
            warnings=warnings,
        )

    def _record(self, result: ValidationResult) -> None:
        if result.is_valid:
            self._stats.valid += 1
        else:
            self._stats.invalid += 1
            self._stats.error_counts.update(str(e) for e in result.errors)
        if result.unknown:
            self._stats.unknown += 1

    def get_stats(self) -> dict[str, Any]:
        """Validation statistics, including the five most common errors."""
        with self._lock:
            return self._stats.to_dict()

    def clear_cache(self) -> None:
        """Drop every cached result."""
        with self._lock:
            self._cache.clear()

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)
