"""Tests for Tracker."""

import pytest

from agentmesh.tracker.tracker import AGENT_INTERACTION


class TestTrackerTrack:
    """Tests for Tracker.track() method."""

    @pytest.mark.asyncio
    async def test_track_creates_event(self, tracker, storage):
        """Test that track() creates a TraceEvent."""
        await tracker.track(
            event_type="test_event",
            actor="test_actor",
            data={"key": "value"},
        )

        events = await storage.get_trace_events()
        assert len(events) == 1
        assert events[0].event_type == "test_event"
        assert events[0].actor == "test_actor"
        assert events[0].data == {"key": "value"}

    @pytest.mark.asyncio
    async def test_track_generates_id_and_timestamp(self, tracker, storage):
        """Test that track() fills in id and timestamp."""
        await tracker.track(event_type="test_event", actor="test_actor", data={})

        events = await storage.get_trace_events()
        assert events[0].id
        assert events[0].timestamp is not None


class TestTrackerInteraction:
    """Tests for Tracker.track_interaction()."""

    @pytest.mark.asyncio
    async def test_interaction_recorded(self, tracker, storage):
        """Test that an agent call is stored with its timing and outcome."""
        await tracker.track_interaction(
            source="orchestrator",
            target="echo",
            event_type="workflow.phase.execute",
            duration_ms=12.5,
            success=True,
            trace_id="run-1",
        )

        events = await storage.get_trace_events(event_types=[AGENT_INTERACTION])
        assert len(events) == 1
        assert events[0].actor == "orchestrator"
        assert events[0].data == {
            "source": "orchestrator",
            "target": "echo",
            "event_type": "workflow.phase.execute",
            "duration_ms": 12.5,
            "success": True,
            "trace_id": "run-1",
        }
