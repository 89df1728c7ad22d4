"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from agentmesh.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def tracker(storage):
    """Create Tracker with storage."""
    from agentmesh.tracker import Tracker

    return Tracker(storage)


@pytest.fixture
def mock_tracker():
    """Create mock tracker."""
    tracker = Mock()
    tracker.track = AsyncMock()
    tracker.track_interaction = AsyncMock()
    return tracker


@pytest.fixture
def schema_registry():
    """Schema registry with the built-in payload schemas."""
    from agentmesh.validation import SchemaRegistry, register_default_schemas

    registry = SchemaRegistry()
    register_default_schemas(registry)
    return registry


@pytest.fixture
def normalizer():
    from agentmesh.validation import EventNormalizer

    return EventNormalizer()


@pytest.fixture
def engine(schema_registry, normalizer):
    """Validation engine with a small cache."""
    from agentmesh.validation import EventValidationEngine

    return EventValidationEngine(schema_registry, normalizer, cache_size=64)


@pytest.fixture
def event_bus(engine, storage, tracker):
    """Create EventBus with validation, storage and tracking."""
    from agentmesh.event_bus import EventBus

    return EventBus(engine, storage=storage, tracker=tracker, history_size=50)


@pytest_asyncio.fixture
async def agent_registry(event_bus, tracker):
    """Empty agent registry; agents are shut down after the test."""
    from agentmesh.agents import AgentRegistry

    registry = AgentRegistry(event_bus, tracker)
    yield registry
    await registry.stop()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def propagator(event_bus, agent_registry, tracker, clock):
    """ContextPropagator on a fake clock. The sweep task is not started."""
    from agentmesh.context import ContextPropagator

    return ContextPropagator(event_bus, agent_registry, tracker=tracker, clock=clock)


@pytest_asyncio.fixture
async def orchestrator(event_bus, agent_registry, propagator, storage, tracker):
    """DAGOrchestrator with short timeouts."""
    from agentmesh.orchestrator import DAGOrchestrator

    orch = DAGOrchestrator(
        event_bus,
        agent_registry,
        propagator=propagator,
        storage=storage,
        tracker=tracker,
        max_concurrency=4,
        node_timeout_ms=2000,
        consensus_timeout_ms=1000,
    )
    yield orch
    await orch.shutdown()
