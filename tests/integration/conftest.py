"""Fixtures for exercising the HTTP API end to end."""

from collections.abc import Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from wastewise.core.config import settings
from wastewise.main import app


@pytest.fixture
def client(tmp_path, monkeypatch, directory, notifications) -> Generator[TestClient, None, None]:
    """TestClient over a fresh SQLite file; the lifespan creates the schema."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "wastewise-api.db"))
    monkeypatch.setattr("wastewise.main.check_directory_connectivity", AsyncMock())

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def manager_headers() -> dict[str, str]:
    return {"X-Actor-Id": "m1", "X-Actor-Role": "sustainability_manager"}


@pytest.fixture
def resident_headers() -> dict[str, str]:
    return {"X-Actor-Id": "r1", "X-Actor-Role": "resident"}


@pytest.fixture
def task_body() -> dict:
    return {
        "title": "Sort household recycling",
        "description": "Separate paper, glass and plastics for the weekly collection",
        "category": "recycling",
        "due_date": "2099-01-01",
        "reward_points": 50,
        "tags": ["recycling"],
    }
