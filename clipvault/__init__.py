"""clipvault - download orchestration service with a shared result cache."""

__version__ = "0.1.0"
