"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date
from typing import Any

import pytest

from wastewise.core import db_client
from wastewise.core.config import settings
from wastewise.core.errors import NotFoundError
from wastewise.domain.create_models import TaskCreate
from wastewise.domain.task import CompletionProof, Task
from wastewise.domain.user import Actor, ActorRole, ResidentRef
from wastewise.modules.tasks import engine
from wastewise.modules.tasks import service as task_service
from wastewise.services.notification_service import NotificationEvent


# A due date far enough ahead that tasks are never overdue
FUTURE_DUE_DATE = date(2099, 1, 1)


class FakeResidentDirectory:
    """Resident directory that knows a fixed set of residents."""

    def __init__(self, resident_ids: set[str]) -> None:
        self.resident_ids = set(resident_ids)
        self.lookups: list[str] = []

    async def resolve_resident(self, *, resident_id: str) -> ResidentRef:
        self.lookups.append(resident_id)
        if resident_id not in self.resident_ids:
            raise NotFoundError(f"Resident {resident_id} not found", field="assigned_to", reason="unknown resident id")
        return ResidentRef(id=resident_id, name=f"Resident {resident_id}")


class NotificationRecorder:
    """Captures dispatched notifications instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationEvent, Task]] = []

    def dispatch(self, *, event: NotificationEvent, task: Task) -> None:
        self.sent.append((event, task))

    def events(self) -> list[NotificationEvent]:
        return [event for event, _ in self.sent]


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch) -> AsyncGenerator[str, None]:
    """Fresh SQLite database in a temp directory, schema applied."""
    db_path = str(tmp_path / "wastewise-test.db")
    monkeypatch.setattr(settings, "sqlite_db_path", db_path)

    await db_client.init_db()
    yield db_path
    await db_client.close_connection()


@pytest.fixture
def directory(monkeypatch) -> FakeResidentDirectory:
    """Fake resident directory knowing residents r1, r2 and r3."""
    fake = FakeResidentDirectory({"r1", "r2", "r3"})
    monkeypatch.setattr("wastewise.interface.resident_directory.resolve_resident", fake.resolve_resident)
    return fake


@pytest.fixture
def notifications(monkeypatch) -> NotificationRecorder:
    """Record notifications rather than posting them."""
    recorder = NotificationRecorder()
    monkeypatch.setattr("wastewise.services.notification_service.dispatch", recorder.dispatch)
    return recorder


@pytest.fixture
def manager() -> Actor:
    return Actor(id="m1", role=ActorRole.SUSTAINABILITY_MANAGER)


@pytest.fixture
def other_manager() -> Actor:
    return Actor(id="m2", role=ActorRole.SUSTAINABILITY_MANAGER)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin1", role=ActorRole.ADMIN)


@pytest.fixture
def resident() -> Actor:
    return Actor(id="r1", role=ActorRole.RESIDENT)


@pytest.fixture
def task_fields() -> dict[str, Any]:
    """Valid task fields without an assignee."""
    return {
        "title": "Sort household recycling",
        "description": "Separate paper, glass and plastics for the weekly collection",
        "category": "recycling",
        "priority": "medium",
        "difficulty": "easy",
        "due_date": FUTURE_DUE_DATE,
        "reward_points": 50,
        "tags": ["recycling", "home"],
    }


@pytest.fixture
def proof() -> CompletionProof:
    return CompletionProof(reference="proof-store://uploads/abc123.jpg", kind="image")


@pytest.fixture
def task_env(sqlite_db, directory, notifications) -> None:
    """Database, directory and notifier wired up for service-level tests."""


@pytest.fixture
def make_task(task_env, manager, task_fields) -> Callable[..., Awaitable[Task]]:
    """Factory creating a task for r1 (or another resident) through the service."""

    async def _make_task(*, actor: Actor | None = None, **overrides: Any) -> Task:
        fields = {**task_fields, "assigned_to": "r1", **overrides}
        return await task_service.create_task(data=TaskCreate(**fields), actor=actor or manager)

    return _make_task


@pytest.fixture
def complete_task(proof) -> Callable[[Task], Awaitable[Task]]:
    """Take a task from assigned to completed as its resident."""

    async def _complete(task: Task) -> Task:
        return await engine.complete_task(
            task_id=task.id, actor=Actor(id=task.assigned_to, role=ActorRole.RESIDENT), proof=proof
        )

    return _complete
