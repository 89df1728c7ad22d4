"""SQLite storage implementation."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import DAGRun, EventRecord, TraceEvent


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class IStorage(Protocol):
    """Persistent storage for traces, events and workflow runs (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        ...

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        ...

    # Events
    async def save_event(self, record: EventRecord) -> None:
        """Save a published (or rejected) event."""
        ...

    async def get_events(
        self, limit: int = 100, trace_id: str | None = None
    ) -> list[EventRecord]:
        """Get events (newest first), optionally for one trace."""
        ...

    # Workflow runs
    async def save_workflow_run(self, run: DAGRun) -> None:
        """Save a snapshot of a workflow run."""
        ...

    async def get_workflow_run(self, run_id: str) -> dict[str, Any] | None:
        """Get the stored snapshot of a run."""
        ...

    async def list_workflow_runs(self, limit: int = 100) -> list[dict[str, Any]]:
        """Get stored run snapshots (newest first)."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        conn = self._require()
        await conn.execute(
            """
            INSERT INTO trace_events (id, event_type, actor, data, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.id or str(uuid.uuid4()),
                event.event_type,
                event.actor,
                json.dumps(event.data, default=str),
                event.timestamp.isoformat(),
            ),
        )
        await conn.commit()

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters (newest first)."""
        conn = self._require()

        conditions = []
        params: list[Any] = []

        if after:
            conditions.append("timestamp > ?")
            params.append(after.isoformat())
        if event_types:
            placeholders = ",".join("?" * len(event_types))
            conditions.append(f"event_type IN ({placeholders})")
            params.extend(event_types)
        if actor:
            conditions.append("actor = ?")
            params.append(actor)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, event_type, actor, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp DESC, rowid DESC
            LIMIT ?
        """
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            TraceEvent(
                id=row[0],
                event_type=row[1],
                actor=row[2],
                data=json.loads(row[3]),
                timestamp=_parse_ts(row[4]),
            )
            for row in rows
        ]

    # Events
    async def save_event(self, record: EventRecord) -> None:
        """Save a published (or rejected) event."""
        conn = self._require()
        await conn.execute(
            """
            INSERT INTO events (
                trace_id, event_type, raw_type, source_agent, correlation_id,
                accepted, unknown, payload, delivered_to, errors, timestamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.trace_id,
                record.event_type,
                record.raw_type,
                record.source_agent,
                record.correlation_id,
                int(record.accepted),
                int(record.unknown),
                json.dumps(record.payload, default=str),
                json.dumps(record.delivered_to),
                json.dumps(record.errors),
                record.timestamp.isoformat(),
            ),
        )
        await conn.commit()

    async def get_events(
        self, limit: int = 100, trace_id: str | None = None
    ) -> list[EventRecord]:
        """Get events (newest first), optionally for one trace."""
        conn = self._require()

        if trace_id:
            cursor = await conn.execute(
                """
                SELECT trace_id, event_type, raw_type, source_agent, correlation_id,
                       accepted, unknown, payload, delivered_to, errors, timestamp
                FROM events
                WHERE trace_id = ?
                ORDER BY rowid DESC
                LIMIT ?
                """,
                (trace_id, limit),
            )
        else:
            cursor = await conn.execute(
                """
                SELECT trace_id, event_type, raw_type, source_agent, correlation_id,
                       accepted, unknown, payload, delivered_to, errors, timestamp
                FROM events
                ORDER BY rowid DESC
                LIMIT ?
                """,
                (limit,),
            )
        rows = await cursor.fetchall()

        return [
            EventRecord(
                trace_id=row[0],
                event_type=row[1],
                raw_type=row[2],
                source_agent=row[3],
                correlation_id=row[4],
                accepted=bool(row[5]),
                unknown=bool(row[6]),
                payload=json.loads(row[7]),
                delivered_to=json.loads(row[8]),
                errors=json.loads(row[9]),
                timestamp=_parse_ts(row[10]),
            )
            for row in rows
        ]

    # Workflow runs
    async def save_workflow_run(self, run: DAGRun) -> None:
        """Save (or overwrite) the snapshot of a workflow run."""
        conn = self._require()
        await conn.execute(
            """
            INSERT OR REPLACE INTO workflow_runs
            (run_id, workflow_id, trace_id, state, snapshot, created_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.run_id,
                run.workflow_id,
                run.trace_id,
                run.state.value,
                json.dumps(run.to_dict(), default=str),
                run.created_at.isoformat() if run.created_at else None,
                run.finished_at.isoformat() if run.finished_at else None,
            ),
        )
        await conn.commit()

    async def get_workflow_run(self, run_id: str) -> dict[str, Any] | None:
        """Get the stored snapshot of a run."""
        conn = self._require()
        cursor = await conn.execute(
            "SELECT snapshot FROM workflow_runs WHERE run_id = ?",
            (run_id,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return json.loads(row[0])

    async def list_workflow_runs(self, limit: int = 100) -> list[dict[str, Any]]:
        """Get stored run snapshots (newest first)."""
        conn = self._require()
        cursor = await conn.execute(
            """
            SELECT snapshot
            FROM workflow_runs
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require()

        tables = ["trace_events", "events", "workflow_runs"]

        for table in tables:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()
