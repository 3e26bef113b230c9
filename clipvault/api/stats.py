"""Service statistics endpoint."""

from typing import Any

from fastapi import APIRouter, Depends

from clipvault.api.media import get_orchestrator
from clipvault.api.schemas import StatsResponse
from clipvault.services.orchestrator import Orchestrator

router = APIRouter(prefix="/api/v1", tags=["stats"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    orchestrator: Orchestrator = Depends(get_orchestrator),  # noqa: B008
) -> Any:
    """Queue occupancy, cache totals, session counts and tracked flows."""
    return StatsResponse(**(await orchestrator.stats()))
