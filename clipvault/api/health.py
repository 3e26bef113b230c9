"""Health check endpoints.

- /health: component verification (external binaries, database, workspace)
- /liveness and /readiness: container probes
"""

import os
import time
from datetime import datetime, timezone
from typing import Dict, Literal

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from clipvault import __version__
from clipvault.api.schemas import (
    ComponentHealth,
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
)
from clipvault.core.checks import CheckResult, check_binaries
from clipvault.core.config import Config
from clipvault.services.workspace import Workspace
from clipvault.storage.database import Database

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

# Track application start time for uptime calculation
_start_time: float = time.time()


def reset_start_time() -> None:
    """Reset the start time (for testing)."""
    global _start_time
    _start_time = time.time()


# Dependency placeholders (configured in main app)
async def get_config() -> Config:
    """Get loaded configuration."""
    raise NotImplementedError("Config dependency not configured")


async def get_database() -> Database:
    """Get database instance."""
    raise NotImplementedError("Database dependency not configured")


async def get_workspace() -> Workspace:
    """Get download workspace."""
    raise NotImplementedError("Workspace dependency not configured")


def _binary_health(result: CheckResult) -> ComponentHealth:
    if result.available:
        return ComponentHealth(status="healthy", version=result.version)
    return ComponentHealth(
        status="unhealthy",
        details={"error": result.error or f"{result.name} not available"},
    )


async def _check_database(database: Database) -> ComponentHealth:
    start = time.time()
    if await database.ping():
        return ComponentHealth(
            status="healthy",
            details={"latency_ms": int((time.time() - start) * 1000)},
        )
    return ComponentHealth(status="unhealthy", details={"error": "Database unreachable"})


def _check_workspace(workspace: Workspace) -> ComponentHealth:
    root = workspace.root
    if root.is_dir() and os.access(root, os.W_OK):
        return ComponentHealth(status="healthy", details={"work_dir": str(root)})
    return ComponentHealth(
        status="unhealthy",
        details={"error": f"Working directory is not writable: {root}"},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        200: {"description": "All components healthy"},
        503: {"description": "One or more components unhealthy"},
    },
)
async def health_check(
    config: Config = Depends(get_config),  # noqa: B008
    database: Database = Depends(get_database),  # noqa: B008
    workspace: Workspace = Depends(get_workspace),  # noqa: B008
) -> JSONResponse:
    """
    Detailed health check endpoint.

    Verifies:
    - yt-dlp, ffmpeg and ffprobe availability and version (skipped in test mode)
    - Database connectivity
    - Working directory writability

    Returns HTTP 200 if all components are healthy,
    HTTP 503 if any component is unhealthy.
    """
    test_mode = config.testing.test_mode
    components: Dict[str, ComponentHealth] = {}

    if test_mode:
        for name in ("ytdlp", "ffmpeg", "ffprobe"):
            components[name] = ComponentHealth(status="healthy", details={"test_mode": True})
    else:
        results = await check_binaries(
            ytdlp_binary=config.fetcher.binary,
            ffmpeg_binary=config.fetcher.ffmpeg_binary,
            ffprobe_binary=config.fetcher.ffprobe_binary,
        )
        for name, result in results.items():
            components[name] = _binary_health(result)

    components["database"] = await _check_database(database)
    components["workspace"] = _check_workspace(workspace)

    all_healthy = all(c.status == "healthy" for c in components.values())
    overall_status: Literal["healthy", "unhealthy"] = "healthy" if all_healthy else "unhealthy"

    response = HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        test_mode=test_mode,
        components=components,
    )

    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    logger.info(
        "health_check_completed",
        status=overall_status,
        components={k: v.status for k, v in components.items()},
    )

    return JSONResponse(content=response.model_dump(), status_code=status_code)


@router.get("/liveness", response_model=LivenessResponse)
async def liveness_check() -> LivenessResponse:
    """
    Liveness probe endpoint.

    Returns HTTP 200 if the process is alive.
    """
    return LivenessResponse(status="alive")


@router.get(
    "/readiness",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Service is ready to accept traffic"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_check(
    database: Database = Depends(get_database),  # noqa: B008
    workspace: Workspace = Depends(get_workspace),  # noqa: B008
) -> JSONResponse:
    """
    Readiness probe endpoint.

    Checks the database and the working directory only; binary checks are
    too slow for a probe.
    """
    issues = []

    if (await _check_database(database)).status != "healthy":
        issues.append("Database unreachable")
    if _check_workspace(workspace).status != "healthy":
        issues.append("Working directory not writable")

    if issues:
        response = ReadinessResponse(status="not_ready", ready=False, message="; ".join(issues))
        return JSONResponse(
            content=response.model_dump(),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return JSONResponse(
        content=ReadinessResponse(status="ready", ready=True).model_dump(),
        status_code=status.HTTP_200_OK,
    )
