"""Workflow API routes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException

from ...app import Application
from ...errors import (
    CycleDetected,
    UnknownAgentError,
    WorkflowDefinitionError,
    WorkflowNotFoundError,
)
from ...models import FailurePolicy


class WorkflowRequest(BaseModel):
    """Request model for submitting a workflow."""

    definition: dict[str, Any]
    policy: FailurePolicy = FailurePolicy.ABORT_DEPENDENTS
    wait: bool = Field(False, description="Block until the run finishes")


class WorkflowRunResponse(BaseModel):
    """Response model for a workflow run."""

    run_id: str
    workflow_id: str | None = None
    trace_id: str
    policy: str
    state: str
    created_at: datetime | None = None
    finished_at: datetime | None = None
    errors: list[str]
    nodes: dict[str, Any]
    metrics: dict[str, Any]


class CancelResponse(BaseModel):
    """Response model for cancellation."""

    run_id: str
    cancelled: bool
    state: str


def create_workflows_router(app: Application) -> APIRouter:
    """Create workflows router."""
    router = APIRouter(prefix="/api/workflows", tags=["workflows"])

    @router.post("", response_model=WorkflowRunResponse, status_code=202)
    async def submit_workflow(request: WorkflowRequest) -> dict:
        """Validate and start a workflow run."""
        try:
            run = await app.orchestrator.submit(request.definition, request.policy)
            if request.wait:
                run = await app.orchestrator.wait(run.run_id)
            return run.to_dict()
        except CycleDetected as e:
            raise HTTPException(
                status_code=422,
                detail={"error": "cycle_detected", "message": str(e), "nodes": e.nodes},
            )
        except UnknownAgentError as e:
            raise HTTPException(
                status_code=422,
                detail={"error": "unknown_agent", "message": str(e), "agents": e.agent_ids},
            )
        except WorkflowDefinitionError as e:
            raise HTTPException(
                status_code=400,
                detail={"error": "invalid_definition", "message": str(e)},
            )

    @router.get("/{run_id}", response_model=WorkflowRunResponse)
    async def get_workflow(run_id: str) -> dict:
        """Get a live run, or the stored snapshot of an earlier one."""
        try:
            return app.orchestrator.get_run(run_id).to_dict()
        except WorkflowNotFoundError:
            snapshot = await app.storage.get_workflow_run(run_id)
            if snapshot is None:
                raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
            return snapshot

    @router.post("/{run_id}/cancel", response_model=CancelResponse)
    async def cancel_workflow(run_id: str) -> dict:
        """Cancel a running workflow."""
        try:
            cancelled = await app.orchestrator.cancel(run_id)
            run = app.orchestrator.get_run(run_id)
        except WorkflowNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"run_id": run_id, "cancelled": cancelled, "state": run.state.value}

    return router
