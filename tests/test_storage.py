"""Tests for Storage."""

from datetime import datetime, timedelta, timezone

import pytest

from agentmesh.models import (
    DAGRun,
    EventRecord,
    FailurePolicy,
    NodeRun,
    NodeState,
    RunState,
    TraceEvent,
)
from agentmesh.storage import Storage


def make_record(trace_id="t1", event_type="rag.retrieve", **overrides):
    fields = dict(
        trace_id=trace_id,
        event_type=event_type,
        raw_type=event_type,
        payload={"query": "q"},
        source_agent="ui",
        timestamp=datetime.now(timezone.utc),
    )
    fields.update(overrides)
    return EventRecord(**fields)


def make_run(run_id="run1", state=RunState.COMPLETED, created_at=None):
    return DAGRun(
        run_id=run_id,
        trace_id=f"trace-{run_id}",
        policy=FailurePolicy.ABORT_DEPENDENTS,
        nodes={
            "A": NodeRun(name="A", agent="echo", depends_on=frozenset(), state=NodeState.COMPLETED),
            "B": NodeRun(name="B", agent="echo", depends_on=frozenset({"A"})),
        },
        workflow_id="wf",
        state=state,
        created_at=created_at or datetime.now(timezone.utc),
    )


class TestStorageInit:
    """Tests for Storage initialization."""

    async def test_init_creates_tables(self, storage):
        """Test that init creates all tables."""
        async with storage._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ) as cursor:
            tables = [row[0] for row in await cursor.fetchall()]
            assert "trace_events" in tables
            assert "events" in tables
            assert "workflow_runs" in tables

    async def test_uninitialized_storage_raises(self):
        """Test that using storage before init() fails loudly."""
        st = Storage(":memory:")

        with pytest.raises(RuntimeError, match="not initialized"):
            await st.get_events()


class TestStorageTraceEvents:
    """Tests for TraceEvent storage."""

    async def test_save_and_filter(self, storage):
        """Test saving trace events and filtering by type and actor."""
        now = datetime.now(timezone.utc)
        for i, (kind, actor) in enumerate(
            [("event_published", "ui"), ("handler_fault", "a"), ("event_published", "a")]
        ):
            await storage.save_trace_event(
                TraceEvent(
                    id=f"e{i}",
                    event_type=kind,
                    actor=actor,
                    data={"i": i},
                    timestamp=now + timedelta(seconds=i),
                )
            )

        published = await storage.get_trace_events(event_types=["event_published"])
        assert [e.id for e in published] == ["e2", "e0"]

        by_actor = await storage.get_trace_events(actor="a")
        assert {e.id for e in by_actor} == {"e1", "e2"}

        after = await storage.get_trace_events(after=now)
        assert [e.id for e in after] == ["e2", "e1"]
        assert after[0].data == {"i": 2}
        assert after[0].timestamp.tzinfo is not None

    async def test_limit(self, storage):
        """Test that limit keeps the newest trace events."""
        now = datetime.now(timezone.utc)
        for i in range(5):
            await storage.save_trace_event(
                TraceEvent(id=f"e{i}", event_type="x", actor="a", data={}, timestamp=now + timedelta(seconds=i))
            )

        events = await storage.get_trace_events(limit=2)
        assert [e.id for e in events] == ["e4", "e3"]


class TestStorageEvents:
    """Tests for event record storage."""

    async def test_save_and_get(self, storage):
        """Test that an event record round-trips with its flags."""
        await storage.save_event(
            make_record(accepted=False, errors=["query: required field missing"])
        )

        events = await storage.get_events()
        assert len(events) == 1
        assert events[0].accepted is False
        assert events[0].errors == ["query: required field missing"]
        assert events[0].payload == {"query": "q"}

    async def test_filter_by_trace(self, storage):
        """Test that get_events(trace_id=...) returns only that trace, newest first."""
        await storage.save_event(make_record("t1"))
        await storage.save_event(make_record("t2"))
        await storage.save_event(make_record("t1", event_type="validation.failed"))

        events = await storage.get_events(trace_id="t1")
        assert [e.event_type for e in events] == ["validation.failed", "rag.retrieve"]


class TestStorageWorkflowRuns:
    """Tests for workflow run snapshots."""

    async def test_save_and_get(self, storage):
        """Test that a run snapshot is stored and returned as a dict."""
        await storage.save_workflow_run(make_run())

        snapshot = await storage.get_workflow_run("run1")
        assert snapshot["state"] == "completed"
        assert snapshot["nodes"]["B"]["depends_on"] == ["A"]
        assert snapshot["metrics"]["completed_nodes"] == 1

    async def test_save_overwrites(self, storage):
        """Test that saving the same run id replaces the snapshot."""
        await storage.save_workflow_run(make_run(state=RunState.RUNNING))
        await storage.save_workflow_run(make_run(state=RunState.FAILED))

        snapshot = await storage.get_workflow_run("run1")
        assert snapshot["state"] == "failed"
        assert len(await storage.list_workflow_runs()) == 1

    async def test_get_missing(self, storage):
        """Test that an unknown run id returns None."""
        assert await storage.get_workflow_run("nope") is None

    async def test_list_newest_first(self, storage):
        """Test that runs are listed newest first."""
        now = datetime.now(timezone.utc)
        await storage.save_workflow_run(make_run("old", created_at=now))
        await storage.save_workflow_run(make_run("new", created_at=now + timedelta(seconds=1)))

        runs = await storage.list_workflow_runs()
        assert [r["run_id"] for r in runs] == ["new", "old"]


class TestStorageClear:
    """Tests for clear()."""

    async def test_clear_removes_everything(self, storage):
        """Test that clear() empties every table."""
        await storage.save_event(make_record())
        await storage.save_workflow_run(make_run())
        await storage.save_trace_event(
            TraceEvent(id="e", event_type="x", actor="a", data={}, timestamp=datetime.now(timezone.utc))
        )

        await storage.clear()

        assert await storage.get_events() == []
        assert await storage.get_trace_events() == []
        assert await storage.list_workflow_runs() == []
