"""Application bootstrap and lifecycle management."""

import os
from typing import Any, Iterable, Protocol

from .agents import AgentRegistry, EchoAgent, IAgent
from .config import MeshSettings, resolve_db_path
from .context import ContextPropagator
from .event_bus import EventBus
from .logging_config import get_logger
from .orchestrator import DAGOrchestrator
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker
from .validation import (
    EventNormalizer,
    EventValidationEngine,
    SchemaRegistry,
    register_default_schemas,
)

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...

    def health(self) -> dict[str, Any]:
        """System integrity report."""
        ...


class Application:
    """Main application bootstrap.

    Builds one instance of every component and passes them to each other
    explicitly. Nothing in the package is a global singleton.
    """

    def __init__(
        self,
        db_path: str | None = None,
        settings: MeshSettings | None = None,
        agents: Iterable[IAgent] | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._settings = settings or MeshSettings.from_env()
        self._initial_agents: list[IAgent] = (
            list(agents) if agents is not None else [EchoAgent("echo_agent")]
        )

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._tracker: ITracker | None = None
        self._schemas: SchemaRegistry | None = None
        self._normalizer: EventNormalizer | None = None
        self._engine: EventValidationEngine | None = None
        self._event_bus: EventBus | None = None
        self._agents: AgentRegistry | None = None
        self._propagator: ContextPropagator | None = None
        self._orchestrator: DAGOrchestrator | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Tracker (depends on Storage)
        self._tracker = Tracker(self._storage)

        # 3. Validation (schemas + normalizer + engine)
        self._schemas = SchemaRegistry()
        register_default_schemas(self._schemas)
        self._normalizer = EventNormalizer()
        self._engine = EventValidationEngine(
            self._schemas,
            self._normalizer,
            cache_size=settings.validation_cache_size,
        )

        # 4. EventBus (depends on the engine, Storage, Tracker)
        self._event_bus = EventBus(
            self._engine,
            storage=self._storage,
            tracker=self._tracker,
            history_size=settings.history_size,
        )
        logger.info("EventBus initialized")

        # 5. Agents (depend on EventBus)
        self._agents = AgentRegistry(self._event_bus, self._tracker)
        await self._agents.start(self._initial_agents)
        logger.info("Agents registered: %s", ", ".join(self._agents.agent_ids()) or "none")

        # 6. ContextPropagator (depends on EventBus + Agents)
        self._propagator = ContextPropagator(
            self._event_bus,
            self._agents,
            tracker=self._tracker,
            default_ttl_ms=settings.context_ttl_ms,
            sweep_interval_ms=settings.sweep_interval_ms,
        )
        await self._propagator.start()

        # 7. Orchestrator (depends on everything above)
        self._orchestrator = DAGOrchestrator(
            self._event_bus,
            self._agents,
            propagator=self._propagator,
            storage=self._storage,
            tracker=self._tracker,
            max_concurrency=settings.max_concurrency,
            node_timeout_ms=settings.node_timeout_ms,
            consensus_timeout_ms=settings.consensus_timeout_ms,
        )
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._orchestrator:
            await self._orchestrator.shutdown()
        if self._propagator:
            await self._propagator.stop()
        if self._agents:
            await self._agents.stop()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs. Registered agents are kept."""
        if self._orchestrator:
            await self._orchestrator.shutdown()
            self._orchestrator.clear()
        if self._propagator:
            await self._propagator.clear()
        if self._event_bus:
            self._event_bus.clear_history()
        if self._engine:
            self._engine.clear_cache()
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        logger.info("Reset complete")

    def health(self) -> dict[str, Any]:
        """System integrity report: agent health, bus and validation counters."""
        integrity = self.agents.check_integrity()
        return {
            "status": "ok" if integrity["healthy"] else "degraded",
            **integrity,
            "event_bus": self.event_bus.get_metrics(),
            "validation": self.engine.get_stats(),
        }

    @property
    def settings(self) -> MeshSettings:
        return self._settings

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def tracker(self) -> ITracker:
        if not self._tracker:
            raise RuntimeError("Application not started")
        return self._tracker

    @property
    def schemas(self) -> SchemaRegistry:
        if not self._schemas:
            raise RuntimeError("Application not started")
        return self._schemas

    @property
    def engine(self) -> EventValidationEngine:
        if not self._engine:
            raise RuntimeError("Application not started")
        return self._engine

    @property
    def event_bus(self) -> EventBus:
        """Get event bus instance."""
        if not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def agents(self) -> AgentRegistry:
        """Get agent registry instance."""
        if not self._agents:
            raise RuntimeError("Application not started")
        return self._agents

    @property
    def propagator(self) -> ContextPropagator:
        if not self._propagator:
            raise RuntimeError("Application not started")
        return self._propagator

    @property
    def orchestrator(self) -> DAGOrchestrator:
        """Get orchestrator instance."""
        if not self._orchestrator:
            raise RuntimeError("Application not started")
        return self._orchestrator
