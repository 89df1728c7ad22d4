"""Context propagation: TTL-bounded slices delivered through the event bus."""

import asyncio
import itertools
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Protocol

from ..errors import InvalidContextField, MissingContextField
from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import (
    AgentInfo,
    ContextSlice,
    Priority,
    PropagationMode,
    PropagationResult,
)
from ..tracker import ITracker
from ..tracker.tracker import CONTEXT_EXPIRED, CONTEXT_PROPAGATED

logger = get_logger(__name__)

CONTEXT_EVENT_TYPE = "context.propagate"
PROPAGATOR_ACTOR = "context_propagator"

AgentPredicate = Callable[[AgentInfo], bool]
Clock = Callable[[], float]


class IAgentDirectory(Protocol):
    """What the propagator needs to know about registered agents."""

    def agent_ids(self) -> list[str]:
        ...

    def describe(self) -> list[AgentInfo]:
        ...


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


class ContextPropagator:
    """Creates, stores and delivers context slices.

    Expiry is checked lazily on every read and delivery, and eagerly by a
    periodic sweep running between start() and stop(). The clock is a
    monotonic seconds counter and can be replaced in tests.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        agents: IAgentDirectory,
        tracker: ITracker | None = None,
        default_ttl_ms: int | None = None,
        sweep_interval_ms: int = 1000,
        clock: Clock = time.monotonic,
    ):
        self._event_bus = event_bus
        self._agents = agents
        self._tracker = tracker
        self._default_ttl_ms = default_ttl_ms
        self._sweep_interval = sweep_interval_ms / 1000
        self._clock = clock
        self._slices: dict[str, ContextSlice] = {}
        self._sequence = itertools.count(1)
        # (domain, agent_id) -> id of the slice currently in force
        self._assignments: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()
        self._running = False
        self._sweep_task: asyncio.Task | None = None

    # Slice store

    async def create_slice(self, data: Mapping[str, Any]) -> ContextSlice:
        """Validate input and store a new slice.

        Raises:
            MissingContextField: if ``id`` is absent or empty
            InvalidContextField: if a field has an unusable value or a live
                slice with the same id exists
        """
        slice_id = data.get("id")
        if slice_id is None or slice_id == "":
            raise MissingContextField("id")
        if not isinstance(slice_id, str):
            raise InvalidContextField("id", "must be a string")

        raw_priority = data.get("priority")
        try:
            priority = Priority(raw_priority) if raw_priority is not None else Priority.MEDIUM
        except ValueError as e:
            raise InvalidContextField("priority", f"unknown priority {raw_priority!r}") from e

        ttl_ms = _pick(data, "ttl_ms", "ttl")
        if ttl_ms is None:
            ttl_ms = self._default_ttl_ms
        if ttl_ms is not None:
            if isinstance(ttl_ms, bool) or not isinstance(ttl_ms, (int, float)):
                raise InvalidContextField("ttl", "must be a number of milliseconds")
            if ttl_ms < 0:
                raise InvalidContextField("ttl", "must be >= 0")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise InvalidContextField("metadata", "must be an object")

        for name in ("domain", "state"):
            value = data.get(name)
            if value is not None and not isinstance(value, str):
                raise InvalidContextField(name, "must be a string")

        now = self._clock()
        context_slice = ContextSlice(
            id=slice_id,
            owner_agent=_pick(data, "owner_agent", "ownerAgent"),
            domain=data.get("domain"),
            state=data.get("state"),
            priority=priority,
            ttl_ms=ttl_ms,
            metadata=dict(metadata),
            created_at=datetime.now(timezone.utc),
            expires_at=now + ttl_ms / 1000 if ttl_ms is not None else None,
            sequence=next(self._sequence),
        )

        async with self._lock:
            existing = self._slices.get(slice_id)
            if existing is not None and not existing.is_expired(now):
                raise InvalidContextField("id", f"slice {slice_id!r} already exists")
            self._slices[slice_id] = context_slice

        logger.debug("Created context slice %s (ttl=%s ms)", slice_id, ttl_ms)
        return context_slice.snapshot()

    async def get_slice(self, slice_id: str) -> ContextSlice | None:
        """Return a copy of the slice, or None if missing or expired."""
        async with self._lock:
            context_slice = self._slices.get(slice_id)
            if context_slice is None:
                return None
            if not context_slice.is_expired(self._clock()):
                return context_slice.snapshot()
            self._evict(slice_id)
        await self._track_expired([slice_id])
        return None

    async def current_assignment(self, domain: str, agent_id: str) -> ContextSlice | None:
        """The live slice in force for (domain, agent), if any."""
        async with self._lock:
            slice_id = self._assignments.get((domain, agent_id))
            if slice_id is None:
                return None
            context_slice = self._slices.get(slice_id)
            if context_slice is None or context_slice.is_expired(self._clock()):
                return None
            return context_slice.snapshot()

    def _evict(self, slice_id: str) -> None:
        """Drop a slice and its assignments. Caller holds the lock."""
        self._slices.pop(slice_id, None)
        stale = [key for key, sid in self._assignments.items() if sid == slice_id]
        for key in stale:
            del self._assignments[key]

    # Propagation

    @staticmethod
    def check_request(
        mode: PropagationMode | str,
        targets: Iterable[str] | None = None,
        predicate: AgentPredicate | None = None,
    ) -> PropagationMode:
        """Check that mode has what it needs to pick recipients.

        Raises:
            InvalidContextField: if targeted mode has no targets or
                filtered mode has no predicate
        """
        try:
            mode = PropagationMode(mode)
        except ValueError as e:
            raise InvalidContextField("mode", f"unknown propagation mode {mode!r}") from e
        if mode == PropagationMode.TARGETED and targets is None:
            raise InvalidContextField("target_agents", "required for targeted propagation")
        if mode == PropagationMode.FILTERED and predicate is None:
            raise InvalidContextField("predicate", "required for filtered propagation")
        return mode

    def _recipients(
        self,
        mode: PropagationMode,
        targets: Iterable[str] | None,
        predicate: AgentPredicate | None,
    ) -> list[str]:
        mode = self.check_request(mode, targets, predicate)
        if mode == PropagationMode.BROADCAST:
            return self._agents.agent_ids()
        if mode == PropagationMode.TARGETED:
            return list(dict.fromkeys(targets))
        return [info.agent_id for info in self._agents.describe() if predicate(info)]

    async def propagate(
        self,
        context_slice: ContextSlice | str,
        mode: PropagationMode | str = PropagationMode.TARGETED,
        targets: Iterable[str] | None = None,
        predicate: AgentPredicate | None = None,
        correlation_id: str | None = None,
    ) -> PropagationResult:
        """Deliver a stored slice to its recipients as context.propagate events.

        Each delivery is a normal validated publish targeted at one agent.
        Expiry is re-checked before every delivery. For slices with a
        domain, an agent keeps the higher-priority (then later) slice;
        recipients where this slice loses are reported as conflicts.
        """
        mode = self.check_request(mode, targets, predicate)
        slice_id = context_slice if isinstance(context_slice, str) else context_slice.id
        started = self._clock()
        result = PropagationResult(context_id=slice_id, mode=mode)
        recipients = self._recipients(mode, targets, predicate)

        current = await self.get_slice(slice_id)
        if current is None:
            result.expired = True
            result.failed_agents = list(recipients)
            logger.info("Context slice %s not found or expired; nothing propagated", slice_id)
            await self._track_result(result)
            return result

        for index, agent_id in enumerate(recipients):
            async with self._lock:
                stored = self._slices.get(slice_id)
                if stored is None or stored.is_expired(self._clock()):
                    result.expired = True
                    result.failed_agents.extend(recipients[index:])
                    break
                if stored.domain is not None:
                    key = (stored.domain, agent_id)
                    holder_id = self._assignments.get(key)
                    holder = self._slices.get(holder_id) if holder_id else None
                    if (
                        holder is not None
                        and holder.id != stored.id
                        and not holder.is_expired(self._clock())
                        and not stored.outranks(holder)
                    ):
                        result.conflicts.append(agent_id)
                        continue
                    self._assignments[key] = stored.id
                remaining_ms = (
                    max(0.0, (stored.expires_at - self._clock()) * 1000)
                    if stored.expires_at is not None
                    else None
                )
                payload = {
                    "contextSlice": stored.to_payload(),
                    "targetAgents": list(recipients),
                    "propagationType": mode.value,
                    "priority": stored.priority.value,
                    "ttl": remaining_ms,
                }

            publish = await self._event_bus.send(
                CONTEXT_EVENT_TYPE,
                payload,
                stored.owner_agent or PROPAGATOR_ACTOR,
                target_agent=agent_id,
                correlation_id=correlation_id or slice_id,
            )
            handled = publish.results.get(agent_id)
            if (
                publish.accepted
                and agent_id in publish.delivered_to
                and getattr(handled, "success", True)
            ):
                result.propagated_to.append(agent_id)
            else:
                result.failed_agents.append(agent_id)

        if result.expired:
            # Evicts the slice and records the expiry
            await self.get_slice(slice_id)

        result.elapsed_ms = (self._clock() - started) * 1000
        logger.info(
            "Propagated context %s (%s): delivered=%s failed=%s conflicts=%s",
            slice_id,
            mode.value,
            result.propagated_to,
            result.failed_agents,
            result.conflicts,
        )
        await self._track_result(result)
        return result

    # Expiry sweep

    async def sweep(self) -> list[str]:
        """Evict every expired slice. Returns the evicted ids."""
        async with self._lock:
            now = self._clock()
            expired = [sid for sid, s in self._slices.items() if s.is_expired(now)]
            for slice_id in expired:
                self._evict(slice_id)
        if expired:
            logger.debug("Swept %d expired context slice(s)", len(expired))
            await self._track_expired(expired)
        return expired

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._running:
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the sweep."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._sweep_interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Context sweep error: %s", e, exc_info=True)

    async def clear(self) -> None:
        """Forget every slice and assignment."""
        async with self._lock:
            self._slices.clear()
            self._assignments.clear()

    def slice_count(self) -> int:
        return len(self._slices)

    async def _track_expired(self, slice_ids: list[str]) -> None:
        if not self._tracker:
            return
        for slice_id in slice_ids:
            await self._tracker.track(
                event_type=CONTEXT_EXPIRED,
                actor=PROPAGATOR_ACTOR,
                data={"context_id": slice_id},
            )

    async def _track_result(self, result: PropagationResult) -> None:
        if self._tracker:
            await self._tracker.track(
                event_type=CONTEXT_PROPAGATED,
                actor=PROPAGATOR_ACTOR,
                data=result.to_dict(),
            )
