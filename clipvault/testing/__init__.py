"""Testing utilities for running the service without external tools."""

from clipvault.testing.fakes import FakeDeliveryChannel, FakeFetcher, FakeMediaTools
from clipvault.testing.fixtures import extract_video_id, get_demo_video

__all__ = [
    "FakeDeliveryChannel",
    "FakeFetcher",
    "FakeMediaTools",
    "extract_video_id",
    "get_demo_video",
]
