"""Pytest configuration and shared fixtures"""

import os
from pathlib import Path
from typing import AsyncGenerator

import pytest

from clipvault.storage.database import Database


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables before each test"""
    for key in list(os.environ.keys()):
        if key.startswith("CLIPVAULT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Temporary SQLite database with all tables created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_tables()
    yield db
    await db.dispose()
