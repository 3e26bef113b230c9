"""Flow tracker: per-selection state machine records.

Each quality selection gets a flow id. Terminal flows are kept for a TTL so that
callers can poll the outcome, then swept by ``flow_cleanup_scheduler``.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog

from clipvault.core.metrics import MetricsCollector
from clipvault.models.flow import Flow, FlowState
from clipvault.models.media import CacheFingerprint

logger = structlog.get_logger(__name__)


class FlowNotFoundError(Exception):
    """Raised when a flow is not found."""

    pass


class FlowTracker:
    """In-memory registry of selection flows."""

    def __init__(self, flow_ttl_hours: int = 24) -> None:
        """Initialize the flow tracker.

        Args:
            flow_ttl_hours: Time-to-live for terminal flows in hours.
        """
        self.flow_ttl_hours = flow_ttl_hours
        self._flows: Dict[str, Flow] = {}

        logger.debug("flow_tracker_initialized", flow_ttl_hours=flow_ttl_hours)

    def create_flow(self, fingerprint: CacheFingerprint, user_id: int) -> Flow:
        """Open a flow in the CACHE_CHECK state.

        Args:
            fingerprint: What the user selected.
            user_id: Requester identifier.

        Returns:
            The created Flow.
        """
        flow = Flow(flow_id=uuid.uuid4().hex, fingerprint=fingerprint, user_id=user_id)
        self._flows[flow.flow_id] = flow

        logger.info(
            "flow_created",
            flow_id=flow.flow_id,
            fingerprint=str(fingerprint),
            user_id=user_id,
        )
        return flow

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        return self._flows.get(flow_id)

    def get_flow_or_raise(self, flow_id: str) -> Flow:
        """Get a flow by ID.

        Raises:
            FlowNotFoundError: If the flow is unknown or was swept.
        """
        flow = self.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(f"Flow not found: {flow_id}")
        return flow

    def transition(self, flow_id: str, state: FlowState, **kwargs: Any) -> Flow:
        """Move a flow to a new state.

        Terminal flows are frozen; later transitions are ignored.

        Args:
            flow_id: The flow's identifier.
            state: The new state.
            **kwargs: Additional fields to update (progress, error_message, ...).

        Returns:
            The flow after the update.

        Raises:
            FlowNotFoundError: If the flow is not found.
        """
        flow = self.get_flow_or_raise(flow_id)
        if flow.is_terminal():
            logger.warning(
                "flow_transition_ignored",
                flow_id=flow_id,
                current_state=flow.state.value,
                requested_state=state.value,
            )
            return flow

        old_state = flow.state
        flow.state = state
        for key, value in kwargs.items():
            if hasattr(flow, key):
                setattr(flow, key, value)

        if flow.is_terminal():
            flow.finished_at = datetime.now(timezone.utc)
            MetricsCollector.record_flow(state.value)

        logger.info(
            "flow_state_changed",
            flow_id=flow_id,
            old_state=old_state.value,
            new_state=state.value,
            **kwargs,
        )
        return flow

    def update_progress(self, flow_id: str, progress: float) -> Flow:
        """Record download progress, clamped to 0-100."""
        flow = self.get_flow_or_raise(flow_id)
        flow.progress = max(0.0, min(100.0, progress))
        return flow

    def list_flows(self, state: Optional[FlowState] = None, limit: int = 100) -> List[Flow]:
        """List flows, newest first, optionally filtered by state."""
        flows = list(self._flows.values())
        if state is not None:
            flows = [f for f in flows if f.state == state]
        flows.sort(key=lambda f: f.created_at, reverse=True)
        return flows[:limit]

    def get_active_flow_count(self) -> int:
        return sum(1 for flow in self._flows.values() if not flow.is_terminal())

    def cleanup_expired_flows(self) -> int:
        """Remove terminal flows older than the TTL.

        Returns:
            Number of flows removed.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=self.flow_ttl_hours)
        expired_ids = [
            flow_id
            for flow_id, flow in self._flows.items()
            if flow.is_terminal() and flow.finished_at is not None and flow.finished_at < cutoff
        ]
        for flow_id in expired_ids:
            del self._flows[flow_id]

        if expired_ids:
            logger.info(
                "expired_flows_cleaned",
                count=len(expired_ids),
                ttl_hours=self.flow_ttl_hours,
            )
        return len(expired_ids)

    def get_flow_count(self) -> int:
        return len(self._flows)


async def flow_cleanup_scheduler(
    tracker: FlowTracker,
    interval: int = 3600,
    run_once: bool = False,
) -> Optional[int]:
    """Run periodic flow cleanup.

    Args:
        tracker: FlowTracker instance to clean.
        interval: Seconds between cleanup runs.
        run_once: If True, run only one cleanup cycle (for testing).

    Returns:
        Number of flows cleaned if run_once is True, None otherwise.
    """
    logger.info("flow_cleanup_scheduler_started", interval_seconds=interval)

    while True:
        await asyncio.sleep(interval)

        count = tracker.cleanup_expired_flows()

        if run_once:
            return count
