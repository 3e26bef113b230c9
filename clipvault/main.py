"""FastAPI application entry point.

This module assembles the stores, the admission queue, the external
collaborators and the orchestrator, and creates the main application.
"""

import asyncio
import contextlib
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator, List, Optional, Tuple

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from clipvault import __version__
from clipvault.api import flows, health, media, metrics, stats
from clipvault.core.config import Config, ConfigService
from clipvault.core.errors import APIError, global_exception_handler
from clipvault.core.exceptions import PipelineError
from clipvault.core.logging import clear_request_id, configure_logging, set_request_id
from clipvault.core.metrics import MetricsCollector, initialize_metrics
from clipvault.delivery import DeliveryChannel, TelegramDeliveryChannel
from clipvault.fetcher import FfmpegMediaTools, MediaFetcher, MediaTools, YtDlpFetcher
from clipvault.services.admission_queue import AdmissionQueue
from clipvault.services.dedup import InFlightRegistry
from clipvault.services.flows import FlowTracker, flow_cleanup_scheduler
from clipvault.services.orchestrator import Orchestrator
from clipvault.services.result_cache import ResultCache, SqlCacheRepository
from clipvault.services.session_store import (
    MemorySessionRepository,
    SessionStore,
    SqlSessionRepository,
    session_sweep_scheduler,
)
from clipvault.services.workspace import Workspace
from clipvault.storage.database import Database
from clipvault.testing.fakes import FakeDeliveryChannel, FakeFetcher, FakeMediaTools

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the logging context for the duration of a request.

    An incoming X-Request-ID header is reused; otherwise one is generated.
    The id is echoed back in the response headers.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics.

    Records request count and duration for all endpoints,
    using FastAPI route templates to normalize paths.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and record metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Fixed label for unmatched routes to prevent unbounded cardinality
        route = request.scope.get("route")
        endpoint = route.path if route else "/unmatched"

        MetricsCollector.record_request(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
            duration=duration,
        )

        return response


# Global service instances
_config: Optional[Config] = None
_database: Optional[Database] = None
_workspace: Optional[Workspace] = None
_flow_tracker: Optional[FlowTracker] = None
_queue: Optional[AdmissionQueue] = None
_delivery: Optional[DeliveryChannel] = None
_orchestrator: Optional[Orchestrator] = None
_background_tasks: List[asyncio.Task] = []


def get_config() -> Config:
    """Get the loaded configuration."""
    if _config is None:
        raise RuntimeError("Configuration not loaded")
    return _config


def get_database() -> Database:
    """Get the global database instance."""
    if _database is None:
        raise RuntimeError("Database not configured")
    return _database


def get_workspace() -> Workspace:
    """Get the global download workspace."""
    if _workspace is None:
        raise RuntimeError("Workspace not configured")
    return _workspace


def get_flow_tracker() -> FlowTracker:
    """Get the global flow tracker instance."""
    if _flow_tracker is None:
        raise RuntimeError("Flow tracker not configured")
    return _flow_tracker


def get_delivery_channel() -> DeliveryChannel:
    """Get the global delivery channel instance."""
    if _delivery is None:
        raise RuntimeError("Delivery channel not configured")
    return _delivery


def get_orchestrator() -> Orchestrator:
    """Get the global orchestrator instance."""
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not configured")
    return _orchestrator


def build_collaborators(config: Config) -> Tuple[MediaFetcher, MediaTools, DeliveryChannel]:
    """Create the fetcher, media tools and delivery channel.

    Test mode swaps all three for in-process fakes.
    """
    if config.testing.test_mode:
        logger.warning("test_mode_enabled", fetcher="fake", delivery="fake")
        return FakeFetcher(), FakeMediaTools(), FakeDeliveryChannel()

    fetcher = YtDlpFetcher(
        binary=config.fetcher.binary,
        cookie_path=config.fetcher.cookie_path,
        metadata_timeout=config.fetcher.metadata_timeout,
    )
    media_tools = FfmpegMediaTools(
        ffmpeg_binary=config.fetcher.ffmpeg_binary,
        ffprobe_binary=config.fetcher.ffprobe_binary,
        timeout=config.fetcher.tool_timeout,
    )
    delivery = TelegramDeliveryChannel(
        bot_token=config.delivery.bot_token,
        archive_chat_id=config.delivery.archive_chat_id,
        api_root=config.delivery.api_root,
        timeout=config.delivery.timeout,
    )
    return fetcher, media_tools, delivery


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown."""
    global _config, _database, _workspace, _flow_tracker, _queue, _delivery, _orchestrator

    logger.info("application_starting", version=__version__)

    initialize_metrics(__version__)

    # Load configuration
    config_service = ConfigService()
    config = config_service.load()
    config_service.validate()
    _config = config

    configure_logging(config.logging.level, config.logging.format)

    logger.info(
        "configuration_loaded",
        server_port=config.server.port,
        work_dir=config.downloads.work_dir,
        max_parallel=config.downloads.max_parallel,
        max_queued=config.downloads.max_queued,
        test_mode=config.testing.test_mode,
    )

    # Working directory, wiped of leftovers from an abrupt shutdown
    _workspace = Workspace(config.downloads.work_dir)
    _workspace.initialize(clean_leftovers=True)

    # Durable stores
    _database = Database(config.database.url, echo=config.database.echo)
    await _database.create_tables()

    session_ttl = timedelta(days=config.sessions.ttl_days)
    sessions = SessionStore(
        memory=MemorySessionRepository(maxsize=config.sessions.memory_size, ttl=session_ttl),
        durable=SqlSessionRepository(_database),
        ttl=session_ttl,
    )
    cache = ResultCache(SqlCacheRepository(_database))

    _queue = AdmissionQueue(
        max_parallel=config.downloads.max_parallel,
        max_queued=config.downloads.max_queued,
    )
    _flow_tracker = FlowTracker(flow_ttl_hours=config.downloads.flow_ttl)

    fetcher, media_tools, _delivery = build_collaborators(config)

    _orchestrator = Orchestrator(
        fetcher=fetcher,
        media_tools=media_tools,
        delivery=_delivery,
        sessions=sessions,
        cache=cache,
        queue=_queue,
        dedup=InFlightRegistry(),
        flows=_flow_tracker,
        workspace=_workspace,
        min_height=config.downloads.min_height,
        max_height=config.downloads.max_height,
        progress_step=config.downloads.progress_step,
        signature=config.delivery.signature,
    )

    # Background schedulers
    _background_tasks.append(
        asyncio.create_task(
            session_sweep_scheduler(sessions, interval=config.sessions.sweep_interval)
        )
    )
    _background_tasks.append(
        asyncio.create_task(flow_cleanup_scheduler(_flow_tracker, interval=3600))
    )
    logger.info("schedulers_started", count=len(_background_tasks))

    logger.info("application_startup_complete", version=__version__)

    yield

    # Shutdown
    logger.info("application_shutting_down")

    for task in _background_tasks:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    _background_tasks.clear()

    await _queue.shutdown()
    await _delivery.close()
    await _database.dispose()

    _orchestrator = None
    logger.info("application_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="clipvault",
        description="Download orchestration service with a shared result cache",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(MetricsMiddleware)
    # Added last so it runs first and the id is bound for everything below it
    app.add_middleware(RequestIdMiddleware)

    # Register global exception handlers
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(APIError, global_exception_handler)
    app.add_exception_handler(PipelineError, global_exception_handler)

    # Override dependency injection for routers
    app.dependency_overrides[media.get_orchestrator] = get_orchestrator
    app.dependency_overrides[flows.get_flow_tracker] = get_flow_tracker
    app.dependency_overrides[health.get_config] = get_config
    app.dependency_overrides[health.get_database] = get_database
    app.dependency_overrides[health.get_workspace] = get_workspace

    # Register routers
    app.include_router(health.router)
    app.include_router(media.router)
    app.include_router(flows.router)
    app.include_router(stats.router)
    app.include_router(metrics.router)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec B104
