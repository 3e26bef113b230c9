"""Resolution and selection endpoints.

- POST /api/v1/resolve: fetch metadata and present the quality ladder
- POST /api/v1/select: pick a quality; served from cache, deduplicated or queued
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from clipvault.api.schemas import (
    ErrorDetail,
    FormatChoice,
    ResolveRequest,
    ResolveResponse,
    SelectRequest,
    SelectResponse,
)
from clipvault.models.flow import FlowState
from clipvault.models.media import Requester
from clipvault.services.orchestrator import Orchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["media"])


# Dependency placeholder (configured in main app)
async def get_orchestrator() -> Orchestrator:
    """Get orchestrator instance."""
    raise NotImplementedError("Orchestrator dependency not configured")


@router.post(
    "/resolve",
    response_model=ResolveResponse,
    responses={
        400: {"description": "Invalid request", "model": ErrorDetail},
        422: {"description": "Video unavailable or no usable format", "model": ErrorDetail},
    },
)
async def resolve(
    request: ResolveRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),  # noqa: B008
) -> Any:
    """
    Resolve a link into a quality ladder.

    Opens a session that later selections refer to. The choices are the
    video renditions inside the configured height window plus one audio entry.
    """
    logger.info("resolve_requested", url=request.url, user_id=request.user_id)

    result = await orchestrator.resolve(request.url)
    metadata = result.metadata

    return ResolveResponse(
        session_id=result.session_id,
        state=result.state.value,
        resource_id=metadata.id,
        title=metadata.title,
        uploader=metadata.uploader,
        duration=metadata.duration,
        thumbnail_url=metadata.thumbnail,
        caption=result.caption,
        choices=[
            FormatChoice(
                format_id=c.format_id,
                rendition=c.rendition,
                ext=c.ext,
                filesize=c.filesize,
                has_audio=c.has_audio,
            )
            for c in result.choices
        ],
    )


@router.post(
    "/select",
    response_model=SelectResponse,
    responses={
        200: {"description": "Delivered from cache or already in flight"},
        202: {"description": "Download queued", "model": SelectResponse},
        410: {"description": "Session expired", "model": ErrorDetail},
        422: {"description": "Quality not offered", "model": ErrorDetail},
        503: {"description": "Download queue full", "model": ErrorDetail},
    },
)
async def select(
    request: SelectRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),  # noqa: B008
) -> JSONResponse:
    """
    Select a quality from a resolved session.

    Returns HTTP 200 when the artifact was delivered from the cache or an
    equivalent download is already running, and HTTP 202 once the download
    has been queued. Poll GET /api/v1/flows/{flow_id} for progress.
    """
    logger.info(
        "select_requested",
        session_id=request.session_id,
        format_id=request.format_id,
        rendition=request.rendition,
        user_id=request.user_id,
    )

    result = await orchestrator.select(
        session_id=request.session_id,
        format_id=request.format_id,
        rendition=request.rendition,
        requester=Requester(user_id=request.user_id, chat_id=request.chat_id),
    )

    response = SelectResponse(
        flow_id=result.flow_id,
        state=result.state.value,
        from_cache=result.from_cache,
        message=result.message,
    )
    status_code = (
        status.HTTP_202_ACCEPTED if result.state == FlowState.QUEUED else status.HTTP_200_OK
    )
    return JSONResponse(content=response.model_dump(), status_code=status_code)
