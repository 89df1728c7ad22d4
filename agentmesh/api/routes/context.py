"""Context API routes."""

from typing import Any

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException

from ...app import Application
from ...errors import ContextError
from ...models import AgentInfo, PropagationMode


class ContextRequest(BaseModel):
    """Request model for creating (and optionally propagating) a slice."""

    slice: dict[str, Any]
    mode: PropagationMode | None = Field(
        None, description="Propagate right away in this mode"
    )
    target_agents: list[str] | None = None
    capabilities: list[str] | None = Field(
        None, description="Filtered mode: agents having all of these capabilities"
    )


class ContextSliceResponse(BaseModel):
    """Response model for a context slice."""

    id: str
    owner_agent: str | None = None
    domain: str | None = None
    state: str | None = None
    priority: str
    ttl_ms: float | None = None
    metadata: dict[str, Any]
    created_at: str | None = None


class ContextResponse(BaseModel):
    """Response model for slice creation."""

    slice: ContextSliceResponse
    propagation: dict[str, Any] | None = None


def create_context_router(app: Application) -> APIRouter:
    """Create context router."""
    router = APIRouter(prefix="/api/context", tags=["context"])

    @router.post("", response_model=ContextResponse, status_code=201)
    async def create_context(request: ContextRequest) -> dict:
        """Create a context slice and optionally propagate it.

        The propagation request is checked before the slice is stored, so a
        refused request leaves the id free.
        """
        predicate = None
        if request.capabilities is not None:
            wanted = frozenset(request.capabilities)

            def predicate(info: AgentInfo) -> bool:
                return wanted <= info.capabilities

        try:
            if request.mode is not None:
                app.propagator.check_request(request.mode, request.target_agents, predicate)
            context_slice = await app.propagator.create_slice(request.slice)
            propagation = None
            if request.mode is not None:
                result = await app.propagator.propagate(
                    context_slice,
                    request.mode,
                    targets=request.target_agents,
                    predicate=predicate,
                )
                propagation = result.to_dict()
        except ContextError as e:
            raise HTTPException(
                status_code=422,
                detail={"error": type(e).__name__, "message": str(e), "field": getattr(e, "field", None)},
            )
        return {"slice": context_slice.to_dict(), "propagation": propagation}

    @router.get("/{slice_id}", response_model=ContextSliceResponse)
    async def get_context(slice_id: str) -> dict:
        """Get a live slice. Expired slices are not found."""
        context_slice = await app.propagator.get_slice(slice_id)
        if context_slice is None:
            raise HTTPException(status_code=404, detail=f"Context slice {slice_id} not found")
        return context_slice.to_dict()

    return router
