"""Agent contract and a dispatch-table base implementation."""

import time
from typing import Awaitable, Callable, Iterable, Protocol

from ..errors import AgentInitError, HandlerError, UnsupportedEventError
from ..logging_config import get_logger
from ..models import AgentState, AgentStatus, HandledResult
from ..validation import EventPayload

logger = get_logger(__name__)

EventCallback = Callable[[EventPayload], Awaitable[HandledResult | None]]


class IAgent(Protocol):
    """Uniform interface implemented by every agent."""

    @property
    def agent_id(self) -> str:
        """Agent identifier."""
        ...

    @property
    def capabilities(self) -> frozenset[str]:
        """Free-form capability tags used by filtered propagation."""
        ...

    @property
    def handled_types(self) -> frozenset[str]:
        """Canonical event types this agent subscribes to."""
        ...

    async def initialize(self) -> None:
        """Prepare the agent. Raises AgentInitError on failure."""
        ...

    async def handle_event(self, event_type: str, payload: EventPayload) -> HandledResult:
        """Handle a validated event. Raises HandlerError on failure."""
        ...

    def get_status(self) -> AgentStatus:
        """Current lifecycle status."""
        ...

    async def shutdown(self) -> None:
        """Release resources. Idempotent."""
        ...


class BaseAgent:
    """Status bookkeeping plus a dispatch table keyed by canonical type.

    Subclasses register handlers with ``self.on(event_type, handler)`` and
    may override ``on_initialize`` / ``on_shutdown``. A handler returning
    None counts as success.
    """

    def __init__(self, agent_id: str, capabilities: Iterable[str] = ()):
        self._agent_id = agent_id
        self._capabilities = frozenset(capabilities)
        self._handlers: dict[str, EventCallback] = {}
        self._state = AgentState.INITIALIZING
        self._started_at: float | None = None
        self._last_event: str | None = None
        self._failures = 0

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def capabilities(self) -> frozenset[str]:
        return self._capabilities

    @property
    def handled_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    @property
    def state(self) -> AgentState:
        return self._state

    def on(self, event_type: str, handler: EventCallback) -> None:
        """Add an entry to the dispatch table."""
        self._handlers[event_type] = handler

    async def on_initialize(self) -> None:
        """Hook for subclasses."""

    async def on_shutdown(self) -> None:
        """Hook for subclasses."""

    async def initialize(self) -> None:
        """Run on_initialize and move to READY."""
        self._state = AgentState.INITIALIZING
        try:
            await self.on_initialize()
        except AgentInitError:
            self._state = AgentState.ERROR
            raise
        except Exception as e:
            self._state = AgentState.ERROR
            raise AgentInitError(self._agent_id, str(e)) from e
        self._state = AgentState.READY
        self._started_at = time.monotonic()
        logger.info("Agent %s ready", self._agent_id)

    async def handle_event(self, event_type: str, payload: EventPayload) -> HandledResult:
        """Dispatch to the handler registered for event_type."""
        if self._state != AgentState.READY:
            raise HandlerError(
                f"Agent {self._agent_id!r} is {self._state.value}, not ready"
            )
        handler = self._handlers.get(event_type)
        if handler is None:
            raise UnsupportedEventError(self._agent_id, event_type)

        self._last_event = event_type
        try:
            result = await handler(payload)
        except Exception:
            self._failures += 1
            raise
        if result is None:
            return HandledResult()
        if not result.success:
            self._failures += 1
        return result

    def get_status(self) -> AgentStatus:
        if self._state in (AgentState.ERROR, AgentState.TERMINATED):
            health = "unhealthy"
        elif self._state == AgentState.READY and self._failures == 0:
            health = "healthy"
        else:
            health = "degraded"
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return AgentStatus(
            status=self._state,
            health=health,
            last_event=self._last_event,
            uptime=uptime,
        )

    async def shutdown(self) -> None:
        """Run on_shutdown and move to TERMINATED."""
        if self._state == AgentState.TERMINATED:
            return
        self._state = AgentState.SHUTTING_DOWN
        try:
            await self.on_shutdown()
        finally:
            self._state = AgentState.TERMINATED
            logger.info("Agent %s terminated", self._agent_id)
