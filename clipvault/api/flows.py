"""Flow status endpoints.

- GET /api/v1/flows/{flow_id}
- GET /api/v1/flows
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from clipvault.api.schemas import ErrorDetail, FlowListResponse, FlowResponse
from clipvault.models.flow import FlowState
from clipvault.services.flows import FlowNotFoundError, FlowTracker

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["flows"])


async def get_flow_tracker() -> FlowTracker:
    """Get flow tracker instance."""
    raise NotImplementedError("Flow tracker dependency not configured")


@router.get(
    "/flows/{flow_id}",
    response_model=FlowResponse,
    responses={404: {"description": "Flow not found", "model": ErrorDetail}},
)
async def get_flow(
    flow_id: str,
    tracker: FlowTracker = Depends(get_flow_tracker),  # noqa: B008
) -> Any:
    """
    Get the state of a selection flow.

    Reports state, progress, error message and whether the artifact came
    from the cache.
    """
    logger.debug("flow_status_requested", flow_id=flow_id)

    try:
        flow = tracker.get_flow_or_raise(flow_id)
    except FlowNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "FLOW_NOT_FOUND",
                "message": f"Flow not found: {flow_id}",
            },
        )

    return FlowResponse(**flow.to_dict())


@router.get("/flows", response_model=FlowListResponse)
async def list_flows(
    state: Optional[FlowState] = Query(None, description="Filter by state"),  # noqa: B008
    limit: int = Query(100, ge=1, le=1000),  # noqa: B008
    tracker: FlowTracker = Depends(get_flow_tracker),  # noqa: B008
) -> Any:
    """List tracked flows, newest first."""
    flows = tracker.list_flows(state=state, limit=limit)
    return FlowListResponse(
        flows=[FlowResponse(**flow.to_dict()) for flow in flows],
        total=len(flows),
    )
