"""AgentRegistry: lifecycle and bus wiring of agents."""

from typing import Any, Iterable, Protocol

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import AgentInfo, AgentState, Event, HandledResult, Subscription
from ..tracker import ITracker
from ..tracker.tracker import AGENT_REGISTERED
from .contract import IAgent

logger = get_logger(__name__)


class IAgentRegistry(Protocol):
    """Managing agent lifecycle."""

    async def register(self, agent: IAgent) -> None:
        """Initialize an agent and subscribe it to its event types."""
        ...

    async def unregister(self, agent_id: str) -> bool:
        """Unsubscribe and shut down an agent."""
        ...

    def get(self, agent_id: str) -> IAgent | None:
        """Look up a registered agent."""
        ...

    def describe(self) -> list[AgentInfo]:
        """Id, capabilities and status of every registered agent."""
        ...


class AgentRegistry:
    """Manages agent lifecycle and their bus subscriptions."""

    def __init__(self, event_bus: IEventBus, tracker: ITracker | None = None):
        self._event_bus = event_bus
        self._tracker = tracker
        self._agents: dict[str, IAgent] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}

    async def register(self, agent: IAgent) -> None:
        """Initialize an agent and subscribe it to its event types.

        Raises:
            ValueError: if an agent with the same id is registered
            AgentInitError: if the agent fails to initialize
        """
        if agent.agent_id in self._agents:
            raise ValueError(f"Agent {agent.agent_id!r} is already registered")

        await agent.initialize()

        subscriptions = [
            self._event_bus.subscribe(
                agent.agent_id, event_type, self._make_handler(agent, event_type)
            )
            for event_type in sorted(agent.handled_types)
        ]
        self._agents[agent.agent_id] = agent
        self._subscriptions[agent.agent_id] = subscriptions
        logger.info(
            "Registered agent %s (%s)", agent.agent_id, ", ".join(sorted(agent.handled_types))
        )

        if self._tracker:
            await self._tracker.track(
                event_type=AGENT_REGISTERED,
                actor=agent.agent_id,
                data={
                    "agent_id": agent.agent_id,
                    "capabilities": sorted(agent.capabilities),
                    "event_types": sorted(agent.handled_types),
                },
            )

    @staticmethod
    def _make_handler(agent: IAgent, event_type: str):
        # Dispatch under the type the agent registered, which stays the same
        # whether or not the bus flags the event as unknown
        async def handler(event: Event) -> HandledResult:
            return await agent.handle_event(event_type, event.payload)

        return handler

    async def unregister(self, agent_id: str) -> bool:
        """Unsubscribe and shut down an agent. Returns False if unknown."""
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        for subscription in self._subscriptions.pop(agent_id, []):
            self._event_bus.unsubscribe(subscription)
        await agent.shutdown()
        logger.info("Unregistered agent %s", agent_id)
        return True

    def get(self, agent_id: str) -> IAgent | None:
        """Look up a registered agent."""
        return self._agents.get(agent_id)

    def all(self) -> list[IAgent]:
        """Registered agents, in registration order."""
        return list(self._agents.values())

    def agent_ids(self) -> list[str]:
        return list(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def describe(self) -> list[AgentInfo]:
        """Id, capabilities and status of every registered agent."""
        return [
            AgentInfo(
                agent_id=agent.agent_id,
                capabilities=agent.capabilities,
                status=agent.get_status(),
            )
            for agent in self._agents.values()
        ]

    def check_integrity(self, required_agents: Iterable[str] = ()) -> dict[str, Any]:
        """Report agents in error state and required agents that are missing."""
        statuses = {info.agent_id: info.status for info in self.describe()}
        errored = sorted(
            agent_id
            for agent_id, status in statuses.items()
            if status.status in (AgentState.ERROR, AgentState.TERMINATED)
        )
        missing = sorted(set(required_agents) - set(statuses))
        return {
            "healthy": not errored and not missing,
            "agent_count": len(statuses),
            "errored_agents": errored,
            "missing_agents": missing,
            "agents": {agent_id: s.to_dict() for agent_id, s in statuses.items()},
        }

    async def start(self, agents: Iterable[IAgent] = ()) -> None:
        """Register every agent in order."""
        for agent in agents:
            await self.register(agent)

    async def stop(self) -> None:
        """Shut down every agent, newest first."""
        for agent_id in reversed(list(self._agents)):
            await self.unregister(agent_id)
