"""Tests for ConsensusGate."""

import pytest

from agentmesh.agents import EchoAgent
from agentmesh.models import ConsensusRequest
from agentmesh.orchestrator import ConsensusGate


def request(agents, threshold, timeout_ms=300):
    return ConsensusRequest(
        required_agents=frozenset(agents), threshold=threshold, timeout_ms=timeout_ms
    )


class TestConsensusGate:
    """Tests for vote collection."""

    @pytest.mark.asyncio
    async def test_quorum_reached_without_slow_voter(self, event_bus, agent_registry, tracker):
        """Test that two fast approvals satisfy a 2-of-3 gate before the timeout."""
        await agent_registry.start(
            [EchoAgent("x"), EchoAgent("y"), EchoAgent("z", delay=5.0)]
        )
        gate = ConsensusGate(event_bus, tracker)

        result = await gate.collect(request(["x", "y", "z"], 2), run_id="r", phase="p")

        assert result.reached
        assert result.approvals == {"x", "y"}
        assert not result.timed_out
        assert result.elapsed_ms < 300

    @pytest.mark.asyncio
    async def test_unanimity_fails_on_rejection(self, event_bus, agent_registry, tracker):
        """Test that a 3-of-3 gate with one rejection fails without waiting."""
        await agent_registry.start(
            [EchoAgent("x"), EchoAgent("y"), EchoAgent("z", approve=False, delay=0.2)]
        )
        gate = ConsensusGate(event_bus, tracker)

        result = await gate.collect(request(["x", "y", "z"], 3), run_id="r", phase="p")

        assert not result.reached
        assert result.approvals == {"x", "y"}
        assert result.rejections == {"z"}
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_unanimity_times_out_on_silence(self, event_bus, agent_registry, tracker):
        """Test that a silent voter makes a 3-of-3 gate time out."""
        await agent_registry.start(
            [EchoAgent("x"), EchoAgent("y"), EchoAgent("z", delay=5.0)]
        )
        gate = ConsensusGate(event_bus, tracker)

        result = await gate.collect(
            request(["x", "y", "z"], 3, timeout_ms=100), run_id="r", phase="p"
        )

        assert not result.reached
        assert result.timed_out
        assert result.approvals == {"x", "y"}
        assert "z" not in result.rejections
        assert result.elapsed_ms >= 99

    @pytest.mark.asyncio
    async def test_unregistered_voter_counts_as_rejection(self, event_bus, agent_registry):
        """Test that a voter nobody answers for counts against the quorum."""
        await agent_registry.start([EchoAgent("x")])
        gate = ConsensusGate(event_bus)

        result = await gate.collect(request(["x", "ghost"], 2), run_id="r", phase="p")

        assert not result.reached
        assert result.rejections == {"ghost"}

    @pytest.mark.asyncio
    async def test_votes_are_targeted(self, event_bus, agent_registry):
        """Test that each vote request goes to one agent only."""
        await agent_registry.start([EchoAgent("x"), EchoAgent("y"), EchoAgent("bystander")])
        gate = ConsensusGate(event_bus)

        await gate.collect(request(["x", "y"], 2), run_id="r", phase="p", correlation_id="t-1")

        votes = [r for r in event_bus.get_history() if r.event_type == "consensus.vote"]
        assert sorted(r.delivered_to[0] for r in votes) == ["x", "y"]
        assert all(r.correlation_id == "t-1" for r in votes)
        assert votes[0].payload["requiredAgents"] == ["x", "y"]

    @pytest.mark.asyncio
    async def test_interactions_tracked(self, event_bus, agent_registry, tracker, storage):
        """Test that every vote is recorded as an agent interaction."""
        await agent_registry.start([EchoAgent("x"), EchoAgent("y")])
        gate = ConsensusGate(event_bus, tracker)

        await gate.collect(request(["x", "y"], 2), run_id="r", phase="p")

        events = await storage.get_trace_events(event_types=["agent_interaction"])
        assert {e.data["target"] for e in events} == {"x", "y"}
        assert all(e.data["event_type"] == "consensus.vote" for e in events)
