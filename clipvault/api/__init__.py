"""API endpoints."""

from clipvault.api import flows, health, media, metrics, stats

__all__ = [
    "flows",
    "health",
    "media",
    "metrics",
    "stats",
]
