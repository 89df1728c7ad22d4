"""Observability API routes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application


class TraceEventResponse(BaseModel):
    """Response model for trace event."""

    id: str
    event_type: str
    actor: str
    data: dict[str, Any]
    timestamp: datetime


class EventResponse(BaseModel):
    """Response model for a recorded bus event."""

    trace_id: str
    event_type: str
    raw_type: str
    payload: dict[str, Any]
    source_agent: str
    timestamp: datetime
    correlation_id: str | None = None
    accepted: bool
    unknown: bool
    delivered_to: list[str]
    errors: list[str]


class MetricsResponse(BaseModel):
    """Response model for runtime counters."""

    event_bus: dict[str, Any]
    validation: dict[str, Any]
    agents: list[dict[str, Any]]
    context_slices: int
    workflow_runs: int


class HealthResponse(BaseModel):
    """Response model for the integrity report."""

    status: str
    healthy: bool
    agent_count: int
    errored_agents: list[str]
    missing_agents: list[str]
    agents: dict[str, Any]
    event_bus: dict[str, Any]
    validation: dict[str, Any]


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/trace-events", response_model=list[TraceEventResponse])
    async def get_trace_events(
        after: str | None = Query(None, description="ISO timestamp filter"),
        limit: int = Query(100, ge=1, le=1000),
        event_type: str | None = Query(None, description="Filter by event type"),
        actor: str | None = Query(None, description="Filter by actor"),
    ) -> list[dict]:
        """Get trace events with optional filters."""
        try:
            after_dt = None
            if after:
                try:
                    after_dt = datetime.fromisoformat(after)
                except ValueError:
                    raise HTTPException(
                        status_code=400, detail="Invalid after timestamp format"
                    )

            event_types = [event_type] if event_type else None

            events = await app.storage.get_trace_events(
                after=after_dt,
                event_types=event_types,
                actor=actor,
                limit=limit,
            )

            return [
                {
                    "id": e.id,
                    "event_type": e.event_type,
                    "actor": e.actor,
                    "data": e.data,
                    "timestamp": e.timestamp.isoformat(),
                }
                for e in events
            ]

        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/events", response_model=list[EventResponse])
    async def get_events(
        limit: int = Query(100, ge=1, le=1000),
        trace_id: str | None = Query(None, description="Only events of this trace"),
    ) -> list[dict]:
        """Get persisted bus events (newest first)."""
        try:
            records = await app.storage.get_events(limit=limit, trace_id=trace_id)
            return [r.to_dict() for r in records]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/metrics", response_model=MetricsResponse)
    async def get_metrics() -> dict:
        """Bus, validation and agent counters."""
        return {
            "event_bus": app.event_bus.get_metrics(),
            "validation": app.engine.get_stats(),
            "agents": [
                {
                    "agent_id": info.agent_id,
                    "capabilities": sorted(info.capabilities),
                    **info.status.to_dict(),
                }
                for info in app.agents.describe()
            ],
            "context_slices": app.propagator.slice_count(),
            "workflow_runs": len(app.orchestrator.list_runs()),
        }

    @router.get("/health", response_model=HealthResponse)
    async def get_health() -> dict:
        """System integrity report."""
        return app.health()

    return router
