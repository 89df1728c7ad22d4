"""EventBus implementation for validated pub/sub messaging."""

import asyncio
import copy
import uuid
from collections import deque
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from ..logging_config import get_logger, trace_context
from ..models import (
    Event,
    EventRecord,
    HandlerFault,
    PublishResult,
    Subscription,
)
from ..storage import IStorage
from ..tracker import ITracker
from ..tracker.tracker import EVENT_PUBLISHED, EVENT_REJECTED, HANDLER_FAULT
from ..validation import VALIDATION_FAILED, IEventValidationEngine, ValidationResult

logger = get_logger(__name__)

BUS_ACTOR = "event_bus"

EventHandler = Callable[[Event], Awaitable[Any]]


class IEventBus(Protocol):
    """In-process pub/sub that validates every event before delivery."""

    def subscribe(self, agent_id: str, event_type: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler to an event type."""
        ...

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns False if it was not active."""
        ...

    async def publish(
        self,
        event_type: str,
        payload: Any,
        source_agent: str,
        *,
        correlation_id: str | None = None,
    ) -> str:
        """Validate and deliver an event. Returns its trace id."""
        ...

    async def send(
        self,
        event_type: str,
        payload: Any,
        source_agent: str,
        *,
        target_agent: str | None = None,
        correlation_id: str | None = None,
    ) -> PublishResult:
        """Validate and deliver an event, optionally to one agent only."""
        ...


class EventBus:
    """In-memory pub/sub event bus.

    A single publish runs its handlers sequentially in registration order.
    A handler that raises is reported and skipped; the others still run.

    Each subscription has a delivery lock, so concurrent publishes of one
    type reach every subscriber in publish order while different
    subscribers still run concurrently. A handler must not wait on a
    publish that is routed back to its own subscription.
    """

    def __init__(
        self,
        engine: IEventValidationEngine,
        storage: IStorage | None = None,
        tracker: ITracker | None = None,
        history_size: int = 1000,
    ):
        self._engine = engine
        self._storage = storage
        self._tracker = tracker
        self._subscribers: dict[str, list[tuple[Subscription, EventHandler]]] = {}
        self._delivery_locks: dict[str, asyncio.Lock] = {}
        self._history: deque[EventRecord] = deque(maxlen=history_size)
        self._metrics = {
            "published": 0,
            "delivered": 0,
            "rejected": 0,
            "unknown": 0,
            "handler_faults": 0,
        }

    def subscribe(self, agent_id: str, event_type: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler to an event type.

        Raw types are normalized, so subscribing to an alias is the same as
        subscribing to its canonical type. The key does not depend on
        whether a schema exists yet.
        """
        key = self._engine.routing_key(event_type)
        subscription = Subscription(
            id=str(uuid.uuid4()), agent_id=agent_id, event_type=key
        )
        self._subscribers.setdefault(key, []).append((subscription, handler))
        self._delivery_locks[subscription.id] = asyncio.Lock()
        logger.debug("%s subscribed to %s", agent_id, key)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns False if it was not active."""
        entries = self._subscribers.get(subscription.event_type, [])
        for i, (sub, _) in enumerate(entries):
            if sub.id == subscription.id:
                del entries[i]
                self._delivery_locks.pop(sub.id, None)
                return True
        return False

    def subscribers(self, event_type: str) -> list[str]:
        """Agent ids subscribed to event_type, in registration order."""
        key = self._engine.routing_key(event_type)
        return [sub.agent_id for sub, _ in self._subscribers.get(key, [])]

    async def publish(
        self,
        event_type: str,
        payload: Any,
        source_agent: str,
        *,
        correlation_id: str | None = None,
    ) -> str:
        """Validate and deliver an event. Returns its trace id."""
        result = await self.send(
            event_type, payload, source_agent, correlation_id=correlation_id
        )
        return result.trace_id

    async def send(
        self,
        event_type: str,
        payload: Any,
        source_agent: str,
        *,
        target_agent: str | None = None,
        correlation_id: str | None = None,
    ) -> PublishResult:
        """Validate and deliver an event.

        When target_agent is given, only that agent's subscriptions receive
        the event. Rejected events reach no handler; a validation.failed
        event carrying the same trace id is published in their place.
        """
        trace_id = str(uuid.uuid4())
        return await self._dispatch(
            event_type,
            payload,
            source_agent,
            trace_id=trace_id,
            target_agent=target_agent,
            correlation_id=correlation_id,
            report_failure=True,
        )

    async def _dispatch(
        self,
        event_type: str,
        payload: Any,
        source_agent: str,
        *,
        trace_id: str,
        target_agent: str | None,
        correlation_id: str | None,
        report_failure: bool,
    ) -> PublishResult:
        timestamp = datetime.now(timezone.utc)
        self._metrics["published"] += 1

        validation = self._engine.validate(event_type, payload)
        if validation.unknown:
            self._metrics["unknown"] += 1

        if not validation.is_valid:
            self._metrics["rejected"] += 1
            logger.warning(
                "Rejected %s event from %s",
                validation.normalized_type,
                source_agent,
                extra=trace_context(
                    trace_id=trace_id,
                    correlation_id=correlation_id,
                    errors=[str(e) for e in validation.errors],
                ),
            )
            await self._record(
                validation, payload, source_agent, trace_id, timestamp, correlation_id, []
            )
            if self._tracker:
                await self._tracker.track(
                    event_type=EVENT_REJECTED,
                    actor=source_agent,
                    data={
                        "trace_id": trace_id,
                        "raw_type": event_type,
                        "event_type": validation.normalized_type,
                        "errors": [e.to_dict() for e in validation.errors],
                    },
                )
            if report_failure:
                await self._publish_failure(validation, source_agent, trace_id, correlation_id)
            else:
                logger.error(
                    "Dropping invalid %s event",
                    validation.normalized_type,
                    extra=trace_context(trace_id=trace_id),
                )
            return PublishResult(
                trace_id=trace_id,
                event_type=validation.normalized_type,
                accepted=False,
                errors=list(validation.errors),
            )

        result = PublishResult(
            trace_id=trace_id, event_type=validation.normalized_type, accepted=True
        )

        # Snapshot: subscriptions made during dispatch see the next event only
        entries = list(self._subscribers.get(self._engine.routing_key(event_type), []))
        for subscription, handler in entries:
            if target_agent is not None and subscription.agent_id != target_agent:
                continue
            lock = self._delivery_locks.get(subscription.id)
            if lock is None:
                # Unsubscribed while this event was being dispatched
                continue
            event = Event(
                type=validation.normalized_type,
                payload=validation.payload_model.model_copy(deep=True),
                source_agent=source_agent,
                trace_id=trace_id,
                timestamp=timestamp,
                correlation_id=correlation_id,
                raw_type=event_type,
                target_agent=target_agent,
            )
            # Held through fault reporting so a later publish cannot overtake
            async with lock:
                await self._deliver(subscription, handler, event, result)

        await self._record(
            validation,
            payload,
            source_agent,
            trace_id,
            timestamp,
            correlation_id,
            result.delivered_to,
        )
        if self._tracker:
            await self._tracker.track(
                event_type=EVENT_PUBLISHED,
                actor=source_agent,
                data={
                    "trace_id": trace_id,
                    "event_type": validation.normalized_type,
                    "raw_type": event_type,
                    "unknown": validation.unknown,
                    "delivered_to": list(result.delivered_to),
                    "faults": len(result.faults),
                },
            )
        return result

    async def _deliver(
        self,
        subscription: Subscription,
        handler: EventHandler,
        event: Event,
        result: PublishResult,
    ) -> None:
        try:
            result.results[subscription.agent_id] = await handler(event)
        except Exception as e:
            fault = HandlerFault(
                agent_id=subscription.agent_id,
                event_type=event.type,
                trace_id=event.trace_id,
                error=f"{type(e).__name__}: {e}",
            )
            result.faults.append(fault)
            self._metrics["handler_faults"] += 1
            logger.error(
                "Error in handler of %s for %s: %s",
                subscription.agent_id,
                event.type,
                e,
                extra=trace_context(
                    trace_id=event.trace_id,
                    agent_id=subscription.agent_id,
                    correlation_id=event.correlation_id,
                ),
            )
            if self._tracker:
                await self._tracker.track(
                    event_type=HANDLER_FAULT,
                    actor=subscription.agent_id,
                    data={
                        "trace_id": event.trace_id,
                        "event_type": event.type,
                        "error": fault.error,
                    },
                )
        else:
            result.delivered_to.append(subscription.agent_id)
            self._metrics["delivered"] += 1

    async def _publish_failure(
        self,
        validation: ValidationResult,
        source_agent: str,
        trace_id: str,
        correlation_id: str | None,
    ) -> None:
        payload = {
            "originalType": validation.raw_type,
            "normalizedType": validation.normalized_type,
            "errors": [e.to_dict() for e in validation.errors],
            "sourceAgent": source_agent,
        }
        # A failing validation.failed event is dropped, never re-reported
        await self._dispatch(
            VALIDATION_FAILED,
            payload,
            BUS_ACTOR,
            trace_id=trace_id,
            target_agent=None,
            correlation_id=correlation_id,
            report_failure=False,
        )

    async def _record(
        self,
        validation: ValidationResult,
        payload: Any,
        source_agent: str,
        trace_id: str,
        timestamp: datetime,
        correlation_id: str | None,
        delivered_to: list[str],
    ) -> None:
        if validation.is_valid:
            data = copy.deepcopy(validation.normalized_payload)
        elif isinstance(payload, Mapping):
            data = copy.deepcopy(dict(payload))
        else:
            data = {"value": copy.deepcopy(payload)}
        record = EventRecord(
            trace_id=trace_id,
            event_type=validation.normalized_type,
            raw_type=validation.raw_type,
            payload=data,
            source_agent=source_agent,
            timestamp=timestamp,
            correlation_id=correlation_id,
            accepted=validation.is_valid,
            unknown=validation.unknown,
            delivered_to=list(delivered_to),
            errors=[str(e) for e in validation.errors],
        )
        self._history.append(record)
        if self._storage:
            await self._storage.save_event(record)

    def get_history(self, limit: int | None = None) -> list[EventRecord]:
        """Recorded events, oldest first. limit keeps the newest ones."""
        records = list(self._history)
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def clear_history(self) -> None:
        self._history.clear()

    def get_metrics(self) -> dict[str, Any]:
        """Counters plus subscription and history sizes."""
        return {
            **self._metrics,
            "subscriptions": sum(len(v) for v in self._subscribers.values()),
            "history_size": len(self._history),
            "history_capacity": self._history.maxlen,
        }
