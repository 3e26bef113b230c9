"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from clipvault.api.health import get_config
from clipvault.core.config import Config

router = APIRouter(tags=["monitoring"])


@router.get(
    "/metrics",
    response_class=Response,
    summary="Prometheus metrics endpoint",
    description="Returns flow, cache, queue and HTTP metrics in Prometheus text format.",
)
async def metrics(config: Config = Depends(get_config)) -> Response:  # noqa: B008
    """Expose all registered metrics in Prometheus text exposition format.

    Returns HTTP 404 when ``monitoring.metrics_enabled`` is off.
    """
    if not config.monitoring.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
