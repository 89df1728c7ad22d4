"""Tests for Application."""

import pytest

from agentmesh.agents import EchoAgent
from agentmesh.app import Application
from agentmesh.config import MeshSettings


class TestApplicationStart:
    """Tests for Application.start()."""

    @pytest.mark.asyncio
    async def test_start_initializes_components(self):
        """Test that start initializes all components."""
        app = Application(db_path=":memory:")
        await app.start()

        try:
            assert app._storage is not None
            assert app._tracker is not None
            assert app._engine is not None
            assert app._event_bus is not None
            assert app._agents is not None
            assert app._propagator is not None
            assert app._orchestrator is not None
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_components_share_dependencies(self):
        """Test that components are wired to the same instances."""
        app = Application(db_path=":memory:")
        await app.start()

        try:
            assert app._event_bus._engine is app._engine
            assert app._event_bus._storage is app._storage
            assert app._tracker._storage is app._storage
            assert app._orchestrator._propagator is app._propagator
            assert app._propagator._event_bus is app._event_bus
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_default_agent_registered(self):
        """Test that the echo agent is registered by default."""
        app = Application(db_path=":memory:")
        await app.start()

        try:
            assert app.agents.agent_ids() == ["echo_agent"]
            assert app.event_bus.subscribers("workflow.phase.execute") == ["echo_agent"]
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_settings_applied(self):
        """Test that explicit settings reach the components."""
        settings = MeshSettings(history_size=7, max_concurrency=2)
        app = Application(db_path=":memory:", settings=settings, agents=[])
        await app.start()

        try:
            assert app.event_bus.get_metrics()["history_capacity"] == 7
            assert app.orchestrator._max_concurrency == 2
            assert app.agents.agent_ids() == []
        finally:
            await app.stop()

    def test_properties_require_start(self):
        """Test that components are unavailable before start()."""
        app = Application(db_path=":memory:")

        with pytest.raises(RuntimeError, match="not started"):
            app.event_bus


class TestApplicationFlow:
    """End-to-end tests through the application."""

    @pytest.mark.asyncio
    async def test_workflow_end_to_end(self):
        """Test a workflow with consensus and context through every component."""
        agents = [EchoAgent("planner"), EchoAgent("writer"), EchoAgent("reviewer")]
        app = Application(db_path=":memory:", agents=agents)
        await app.start()

        try:
            run = await app.orchestrator.run(
                {
                    "phases": [
                        {"name": "plan", "agent": "planner"},
                        {
                            "name": "write",
                            "agent": "writer",
                            "consensus": {"required_agents": ["planner", "reviewer"], "threshold": 2},
                        },
                    ],
                    "dependencies": [["plan", "write"]],
                    "context": {"domain": "docs"},
                }
            )

            assert run.state.value == "completed"
            assert agents[1].received_contexts == [f"workflow-{run.run_id}"]
            stored = await app.storage.get_workflow_run(run.run_id)
            assert stored["nodes"]["write"]["consensus"]["reached"] is True
            assert app.health()["status"] == "ok"
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_reset_clears_data_keeps_agents(self):
        """Test that reset() clears data but keeps agents registered."""
        app = Application(db_path=":memory:")
        await app.start()

        try:
            await app.event_bus.publish("weather.report", {}, "sensor")
            await app.propagator.create_slice({"id": "c"})
            await app.orchestrator.run({"phases": [{"name": "A", "agent": "echo_agent"}]})

            await app.reset()

            assert app.event_bus.get_history() == []
            assert await app.storage.get_events() == []
            assert await app.storage.get_trace_events() == []
            assert app.propagator.slice_count() == 0
            assert app.orchestrator.list_runs() == []
            assert app.engine.cache_size() == 0
            assert app.agents.agent_ids() == ["echo_agent"]
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_health_reports_dead_agent(self):
        """Test that a terminated agent degrades health."""
        agent = EchoAgent("echo_agent")
        app = Application(db_path=":memory:", agents=[agent])
        await app.start()

        try:
            await agent.shutdown()
            health = app.health()

            assert health["status"] == "degraded"
            assert health["errored_agents"] == ["echo_agent"]
            assert "validation" in health
        finally:
            await app.stop()
