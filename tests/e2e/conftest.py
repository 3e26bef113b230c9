"""E2E test configuration and fixtures.

These fixtures start the full application with:
- Test mode enabled (CLIPVAULT_TESTING_TEST_MODE=true), so yt-dlp, ffmpeg and
  the Telegram Bot API are replaced by in-process fakes
- A temporary SQLite database and working directory
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient

# Set test mode at import time, before any app modules are imported
os.environ["CLIPVAULT_TESTING_TEST_MODE"] = "true"


@pytest.fixture(scope="module")
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for the database and downloads."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(scope="module")
def e2e_env(temp_dir: str) -> Generator[None, None, None]:
    """Set up environment variables for E2E testing."""
    original_env: Dict[str, Optional[str]] = {}
    env_vars = {
        "CLIPVAULT_TESTING_TEST_MODE": "true",
        "CLIPVAULT_CONFIG": str(Path(temp_dir) / "absent.yaml"),
        "CLIPVAULT_LOGGING_LEVEL": "WARNING",
        "CLIPVAULT_DOWNLOADS_WORK_DIR": str(Path(temp_dir) / "work"),
        "CLIPVAULT_DATABASE_URL": f"sqlite+aiosqlite:///{Path(temp_dir) / 'clipvault.db'}",
    }

    for key, value in env_vars.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    yield

    for key, original_value in original_env.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture(scope="module")
def e2e_client(e2e_env: None) -> Generator[TestClient, None, None]:
    """Create a test client running the application lifespan in test mode."""
    # Import after environment is set
    from clipvault.main import create_app

    app = create_app()

    with TestClient(app) as client:
        yield client


@pytest.fixture
def demo_video_url() -> str:
    """URL for demo video (Rick Astley)."""
    return "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def low_res_video_url() -> str:
    """URL for a demo video with no rendition inside the offered window."""
    return "https://www.youtube.com/watch?v=jNQXAC9IVRw"
