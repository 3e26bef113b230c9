"""Service layer implementations."""

from clipvault.services.admission_queue import AdmissionQueue, QueueStatus, QueueTask
from clipvault.services.dedup import InFlightRegistry
from clipvault.services.flows import FlowNotFoundError, FlowTracker, flow_cleanup_scheduler
from clipvault.services.format_resolver import presentation_window, resolve_formats
from clipvault.services.orchestrator import Orchestrator
from clipvault.services.result_cache import (
    CacheRepository,
    MemoryCacheRepository,
    ResultCache,
    SqlCacheRepository,
)
from clipvault.services.session_store import (
    MemorySessionRepository,
    SessionRepository,
    SessionStore,
    SqlSessionRepository,
    session_sweep_scheduler,
)
from clipvault.services.workspace import CleanupResult, Workspace, WorkspaceError

__all__ = [
    "AdmissionQueue",
    "CacheRepository",
    "CleanupResult",
    "FlowNotFoundError",
    "FlowTracker",
    "InFlightRegistry",
    "MemoryCacheRepository",
    "MemorySessionRepository",
    "Orchestrator",
    "QueueStatus",
    "QueueTask",
    "ResultCache",
    "SessionRepository",
    "SessionStore",
    "SqlCacheRepository",
    "SqlSessionRepository",
    "Workspace",
    "WorkspaceError",
    "flow_cleanup_scheduler",
    "presentation_window",
    "resolve_formats",
    "session_sweep_scheduler",
]
