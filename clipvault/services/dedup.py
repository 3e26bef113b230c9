"""In-flight registry that keeps one fetch per dedup key."""

from typing import Set

import structlog

from clipvault.models.media import DedupKey

logger = structlog.get_logger(__name__)


class InFlightRegistry:
    """Advisory registry of dedup keys with a running fetch.

    ``try_begin`` and ``end`` never await, so on a single event loop a
    check-and-register cannot interleave with another coroutine.
    """

    def __init__(self) -> None:
        self._in_flight: Set[DedupKey] = set()

    def try_begin(self, key: DedupKey) -> bool:
        """Register ``key`` unless it is already in flight.

        Returns:
            True if the caller now owns the key, False if another fetch holds it.
        """
        if key in self._in_flight:
            logger.info("dedup_already_in_flight", dedup_key=key)
            return False
        self._in_flight.add(key)
        return True

    def end(self, key: DedupKey) -> None:
        """Release ``key``. Releasing an unknown key is a no-op."""
        self._in_flight.discard(key)

    def is_in_flight(self, key: DedupKey) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)
