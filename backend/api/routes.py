"""HTTP API routes for the Workflow X-Ray backend.

This module defines the endpoints for decomposition, stored workflows,
graph layout, before/after comparison, and health checks. Collaborators
are injected at application startup through the ``set_*`` functions.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated, Literal

import structlog
from fastapi import APIRouter, HTTPException, Path, Query, status

from analysis import compare_decompositions, compute_layout
from decompose import DecompositionParseError, DecompositionValidationError
from models.schemas import (
    CompareRequest,
    CompareResult,
    CreateShareRequest,
    DecomposeRequest,
    DecomposeResult,
    GraphLayout,
    HealthResponse,
    LayoutRequest,
    SharedWorkflow,
    SharedWorkflowResponse,
    ShareInfo,
    ShareLinkResponse,
    ShareListResponse,
    Workflow,
)

if TYPE_CHECKING:
    from decompose import DecompositionService
    from workflow_store import ShareStore, WorkflowStore

logger = structlog.get_logger(__name__)

router = APIRouter()

# Collaborators (set during application startup)
_decomposition_service: DecompositionService | None = None
_workflow_store: WorkflowStore | None = None
_share_store: ShareStore | None = None
_storage_backend: Literal["sqlite", "memory", "none"] = "none"


def set_decomposition_service(service: DecompositionService) -> None:
    """Set the decomposition service used by the decompose endpoint.

    Args:
        service: The DecompositionService instance to use for all requests.
    """
    global _decomposition_service
    _decomposition_service = service
    logger.info("decomposition_service_configured", model=service.model)


def get_decomposition_service() -> DecompositionService:
    """Get the decomposition service.

    Raises:
        RuntimeError: If the service has not been configured.
    """
    if _decomposition_service is None:
        logger.error("decomposition_service_not_configured")
        raise RuntimeError(
            "DecompositionService not configured. "
            "Call set_decomposition_service() during startup."
        )
    return _decomposition_service


def set_workflow_store(
    store: WorkflowStore,
    backend: Literal["sqlite", "memory", "none"] = "none",
) -> None:
    """Set the workflow store and record which storage backend serves it."""
    global _workflow_store, _storage_backend
    _workflow_store = store
    _storage_backend = backend
    logger.info("workflow_store_configured", storage_backend=backend)


def get_workflow_store() -> WorkflowStore:
    """Get the workflow store.

    Raises:
        RuntimeError: If the store has not been configured.
    """
    if _workflow_store is None:
        logger.error("workflow_store_not_configured")
        raise RuntimeError(
            "WorkflowStore not configured. Call set_workflow_store() during startup."
        )
    return _workflow_store


def set_share_store(store: ShareStore) -> None:
    """Set the share link store."""
    global _share_store
    _share_store = store
    logger.info("share_store_configured")


def get_share_store() -> ShareStore:
    """Get the share link store.

    Raises:
        RuntimeError: If the store has not been configured.
    """
    if _share_store is None:
        logger.error("share_store_not_configured")
        raise RuntimeError("ShareStore not configured. Call set_share_store() during startup.")
    return _share_store


def reset_dependencies() -> None:
    """Clear injected collaborators. Used by tests."""
    global _decomposition_service, _workflow_store, _share_store, _storage_backend
    _decomposition_service = None
    _workflow_store = None
    _share_store = None
    _storage_backend = "none"


async def _require_workflow(workflow_id: str) -> Workflow:
    workflow = await get_workflow_store().get(workflow_id)
    if workflow is None:
        logger.warning("workflow_not_found", workflow_id=workflow_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow {workflow_id} not found",
        )
    return workflow


@router.post(
    "/api/decompose",
    response_model=DecomposeResult,
    response_model_by_alias=True,
    summary="Decompose a workflow",
    description=(
        "Analyze a free-text workflow description into a repaired, scored "
        "step graph. Identical requests are served from the analysis cache."
    ),
)
async def decompose_workflow(request: DecomposeRequest) -> DecomposeResult:
    """Run a decomposition.

    Raises:
        HTTPException: 502 when the model output cannot be parsed or fails
            validation, 500 for any other failure.
    """
    service = get_decomposition_service()

    try:
        result = await service.decompose(request)
    except DecompositionParseError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Model returned an unreadable response: {e}",
        ) from e
    except DecompositionValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(e), "errors": e.errors},
        ) from e
    except Exception as e:
        logger.error(
            "decompose_failed",
            error_type=type(e).__name__,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to decompose workflow: {e}",
        ) from e

    logger.info(
        "decompose_request_complete",
        decomposition_id=result.decomposition.id,
        cache_hit=result.metadata.cache_hit,
        description_length=len(request.description),
    )
    return result


@router.get(
    "/api/workflows",
    response_model=list[Workflow],
    response_model_by_alias=True,
    summary="List workflows",
    description="List analyzed workflows, newest first.",
)
async def list_workflows(
    search: Annotated[
        str | None,
        Query(description="Case-insensitive match on title or description"),
    ] = None,
) -> list[Workflow]:
    """List stored workflows, optionally filtered by a search string."""
    return await get_workflow_store().list_workflows(search)


@router.get(
    "/api/workflows/{workflow_id}",
    response_model=Workflow,
    response_model_by_alias=True,
    summary="Get a workflow",
)
async def get_workflow(
    workflow_id: Annotated[str, Path(description="The workflow ID")],
) -> Workflow:
    """Get one stored workflow.

    Raises:
        HTTPException: If the workflow is not found.
    """
    return await _require_workflow(workflow_id)


@router.delete(
    "/api/workflows/{workflow_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete a workflow",
)
async def delete_workflow(
    workflow_id: Annotated[str, Path(description="The workflow ID")],
) -> dict[str, str]:
    """Delete one stored workflow.

    Raises:
        HTTPException: If the workflow is not found.
    """
    deleted = await get_workflow_store().delete(workflow_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow {workflow_id} not found",
        )
    if _share_store is not None:
        revoked = await _share_store.delete_for_workflow(workflow_id)
        if revoked:
            logger.info("shares_revoked", workflow_id=workflow_id, count=revoked)
    return {"message": f"Workflow {workflow_id} deleted"}


@router.get(
    "/api/workflows/{workflow_id}/layout",
    response_model=GraphLayout,
    response_model_by_alias=True,
    summary="Lay out a stored workflow",
    description="Layered node positions, critical path, and hover dimming.",
)
async def get_workflow_layout(
    workflow_id: Annotated[str, Path(description="The workflow ID")],
    hovered: Annotated[
        str | None,
        Query(description="Step id under the pointer; dims unrelated steps"),
    ] = None,
) -> GraphLayout:
    """Compute the layout of a stored workflow's step graph."""
    workflow = await _require_workflow(workflow_id)
    return compute_layout(workflow.decomposition.steps, hovered)


@router.post(
    "/api/layout",
    response_model=GraphLayout,
    response_model_by_alias=True,
    summary="Lay out a step list",
)
async def layout_steps(request: LayoutRequest) -> GraphLayout:
    """Compute the layout of an ad-hoc step list."""
    return compute_layout(request.steps, request.hovered_step_id)


@router.post(
    "/api/compare",
    response_model=CompareResult,
    response_model_by_alias=True,
    summary="Compare two decompositions",
    description="Step and gap differences plus per-metric health deltas.",
)
async def compare(request: CompareRequest) -> CompareResult:
    """Compare a decomposition with its re-analysis."""
    result = compare_decompositions(request.before, request.after)
    logger.debug(
        "decompositions_compared",
        before_id=request.before.id,
        after_id=request.after.id,
        summary=result.summary,
    )
    return result


@router.post(
    "/api/shares",
    response_model=ShareLinkResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create a share link",
    description="Create a read-only public link to a stored workflow.",
)
async def create_share(request: CreateShareRequest) -> ShareLinkResponse:
    """Create a share link.

    Raises:
        HTTPException: If the workflow is not found.
    """
    await _require_workflow(request.workflow_id)
    link = await get_share_store().create(
        request.workflow_id,
        label=request.label,
        expires_in_days=request.expires_in_days,
    )
    return ShareLinkResponse(**link.model_dump(), url=f"/share/{link.token}")


@router.get(
    "/api/shares",
    response_model=ShareListResponse,
    response_model_by_alias=True,
    summary="List share links",
    description="Unexpired share links for one workflow, newest first.",
)
async def list_shares(
    workflow_id: Annotated[str, Query(alias="workflowId", min_length=1)],
) -> ShareListResponse:
    """List the share links of a workflow."""
    return ShareListResponse(shares=await get_share_store().list_for_workflow(workflow_id))


@router.delete(
    "/api/shares/{token}",
    status_code=status.HTTP_200_OK,
    summary="Revoke a share link",
)
async def revoke_share(
    token: Annotated[str, Path(description="The share token")],
) -> dict[str, bool]:
    """Revoke one share link.

    Raises:
        HTTPException: If the link is not found.
    """
    if not await get_share_store().delete(token):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Share link not found",
        )
    return {"deleted": True}


@router.get(
    "/api/share/{token}",
    response_model=SharedWorkflowResponse,
    response_model_by_alias=True,
    summary="Open a share link",
    description="The shared workflow without its description, cost context or lineage.",
)
async def get_shared_workflow(
    token: Annotated[str, Path(description="The share token")],
) -> SharedWorkflowResponse:
    """Resolve a share token to its workflow.

    Raises:
        HTTPException: If the link is missing or expired, or its workflow is gone.
    """
    link = await get_share_store().get(token)
    if link is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Share link not found or expired",
        )
    workflow = await get_workflow_store().get(link.workflow_id)
    if workflow is None:
        logger.warning("shared_workflow_missing", token=token, workflow_id=link.workflow_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )
    return SharedWorkflowResponse(
        workflow=SharedWorkflow(
            id=workflow.id,
            decomposition=workflow.decomposition,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
            version=workflow.version,
        ),
        share=ShareInfo(label=link.label, expires_at=link.expires_at),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with storage backend status.",
)
async def health_check() -> HealthResponse:
    """Report whether the decomposition service is wired and which store backs it."""
    overall_status: Literal["healthy", "unhealthy"] = (
        "healthy" if _decomposition_service is not None else "unhealthy"
    )
    return HealthResponse(
        status=overall_status,
        timestamp=time.time(),
        storage_backend=_storage_backend,
    )
