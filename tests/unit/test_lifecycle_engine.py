"""Unit tests for the task lifecycle engine against a real SQLite database."""

import asyncio

import pytest

from wastewise.core import db_client
from wastewise.core.db_client import StaleRecordError
from wastewise.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TaskValidationError,
    UnauthorizedError,
)
from wastewise.domain.task import TaskStatus
from wastewise.domain.update_models import TransitionPayload
from wastewise.domain.user import Actor, ActorRole
from wastewise.modules.tasks import analytics, engine
from wastewise.modules.tasks import service as task_service
from wastewise.services.notification_service import NotificationEvent


async def _award_count(task_id: str) -> int:
    return await db_client.count_records(collection="point_awards", filter_query=f'task_id = "{task_id}"')


@pytest.mark.unit
class TestTransitions:
    """Happy paths through the lifecycle."""

    async def test_start_task(self, make_task, resident):
        task = await make_task()

        started = await engine.start_task(task_id=task.id, actor=resident)

        assert started.status == TaskStatus.IN_PROGRESS
        assert started.version == task.version + 1

    async def test_complete_stores_proof_and_timestamp(self, make_task, resident, proof, notifications):
        task = await make_task()

        completed = await engine.complete_task(task_id=task.id, actor=resident, proof=proof)

        assert completed.status == TaskStatus.COMPLETED
        assert completed.proof == proof
        assert completed.completed_at is not None
        assert notifications.events()[-1] == NotificationEvent.TASK_COMPLETED

    async def test_complete_directly_from_assigned_or_in_progress(self, make_task, resident, proof):
        direct = await make_task()
        started = await make_task()
        await engine.start_task(task_id=started.id, actor=resident)

        for task in (direct, started):
            completed = await engine.complete_task(task_id=task.id, actor=resident, proof=proof)
            assert completed.status == TaskStatus.COMPLETED

    async def test_end_to_end_credits_points_once(self, make_task, complete_task, resident, manager, notifications):
        task = await make_task(reward_points=50)
        before = await analytics.get_resident_points(resident_id=resident.id)

        await complete_task(task)
        verified = await engine.verify_task(task_id=task.id, actor=manager, verification_notes="Looks great")

        after = await analytics.get_resident_points(resident_id=resident.id)
        assert after.points - before.points == 50
        assert verified.status == TaskStatus.VERIFIED
        assert verified.verified_at is not None
        assert verified.verification_notes == "Looks great"
        assert NotificationEvent.TASK_VERIFIED in notifications.events()

    async def test_reject_stores_reason(self, make_task, complete_task, manager, notifications):
        task = await make_task()
        await complete_task(task)

        rejected = await engine.reject_task(task_id=task.id, actor=manager, rejection_reason="Photo is blurry")

        assert rejected.status == TaskStatus.REJECTED
        assert rejected.rejection_reason == "Photo is blurry"
        assert await _award_count(task.id) == 0
        assert notifications.events()[-1] == NotificationEvent.TASK_REJECTED

    async def test_cancel_awards_nothing(self, make_task, admin):
        task = await make_task()

        cancelled = await engine.cancel_task(task_id=task.id, actor=admin)

        assert cancelled.status == TaskStatus.CANCELLED
        assert await _award_count(task.id) == 0

    async def test_transitions_are_logged(self, make_task, complete_task, manager):
        task = await make_task()
        await complete_task(task)
        await engine.verify_task(task_id=task.id, actor=manager)

        logs = await db_client.list_records(
            collection="task_logs", filter_query=f'task_id = "{task.id}"', sort="id", per_page=10
        )

        assert [log["action"] for log in logs] == ["created", "completed", "verified"]
        assert logs[-1]["from_status"] == "completed"
        assert logs[-1]["to_status"] == "verified"
        assert logs[-1]["actor_id"] == manager.id


@pytest.mark.unit
class TestTransitionErrors:
    """Rejected transitions leave the task untouched."""

    async def test_verify_twice_awards_once(self, make_task, complete_task, manager, resident):
        task = await make_task(reward_points=30)
        await complete_task(task)
        await engine.verify_task(task_id=task.id, actor=manager)

        with pytest.raises(InvalidTransitionError):
            await engine.verify_task(task_id=task.id, actor=manager)

        assert await _award_count(task.id) == 1
        assert (await analytics.get_resident_points(resident_id=resident.id)).points == 30

    async def test_concurrent_verifies_award_once(self, make_task, complete_task, manager, resident):
        task = await make_task(reward_points=40)
        await complete_task(task)

        results = await asyncio.gather(
            engine.verify_task(task_id=task.id, actor=manager),
            engine.verify_task(task_id=task.id, actor=manager),
            return_exceptions=True,
        )

        successes = [result for result in results if not isinstance(result, BaseException)]
        failures = [result for result in results if isinstance(result, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidTransitionError | ConflictError)
        assert (await analytics.get_resident_points(resident_id=resident.id)).points == 40

    async def test_reject_without_reason(self, make_task, complete_task, manager):
        task = await make_task()
        await complete_task(task)

        with pytest.raises(TaskValidationError) as exc_info:
            await engine.reject_task(task_id=task.id, actor=manager, rejection_reason="")

        assert exc_info.value.field == "rejection_reason"
        assert (await task_service.get_task(task_id=task.id)).status == TaskStatus.COMPLETED

    async def test_complete_without_proof(self, make_task, resident):
        task = await make_task()

        with pytest.raises(TaskValidationError) as exc_info:
            await engine.complete_task(task_id=task.id, actor=resident, proof=None)

        assert exc_info.value.field == "proof"

    async def test_transition_check_precedes_payload_check(self, make_task, admin):
        task = await make_task()
        await engine.cancel_task(task_id=task.id, actor=admin)

        with pytest.raises(InvalidTransitionError):
            await engine.reject_task(task_id=task.id, actor=admin, rejection_reason=None)

    async def test_other_resident_cannot_start(self, make_task):
        task = await make_task()

        with pytest.raises(UnauthorizedError):
            await engine.start_task(task_id=task.id, actor=Actor(id="r2", role=ActorRole.RESIDENT))

    async def test_other_manager_cannot_verify(self, make_task, complete_task, other_manager):
        task = await make_task()
        await complete_task(task)

        with pytest.raises(UnauthorizedError):
            await engine.verify_task(task_id=task.id, actor=other_manager)

        assert await _award_count(task.id) == 0

    async def test_unknown_task(self, task_env, manager):
        with pytest.raises(NotFoundError):
            await engine.cancel_task(task_id="999", actor=manager)

    @pytest.mark.parametrize("terminal", ["verify", "reject", "cancel"])
    async def test_no_moves_out_of_terminal_statuses(self, terminal, make_task, complete_task, manager, resident):
        task = await make_task()
        if terminal == "cancel":
            await engine.cancel_task(task_id=task.id, actor=manager)
        else:
            await complete_task(task)
            if terminal == "verify":
                await engine.verify_task(task_id=task.id, actor=manager)
            else:
                await engine.reject_task(task_id=task.id, actor=manager, rejection_reason="Incomplete")

        for target in TaskStatus:
            with pytest.raises(InvalidTransitionError):
                await engine.transition(
                    task_id=task.id, target_status=target, actor=manager, payload=TransitionPayload()
                )


@pytest.mark.unit
class TestConflictRetry:
    """Version conflicts are retried once, then surfaced."""

    async def test_single_conflict_is_retried(self, make_task, resident, monkeypatch):
        task = await make_task()
        original_update = db_client.update_record
        calls = {"count": 0}

        async def flaky_update(**kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise StaleRecordError("changed underneath")
            return await original_update(**kwargs)

        monkeypatch.setattr("wastewise.core.db_client.update_record", flaky_update)

        started = await engine.start_task(task_id=task.id, actor=resident)

        assert started.status == TaskStatus.IN_PROGRESS
        assert calls["count"] == 2

    async def test_repeated_conflict_raises(self, make_task, resident, monkeypatch):
        task = await make_task()

        async def always_stale(**_kwargs):
            raise StaleRecordError("changed underneath")

        monkeypatch.setattr("wastewise.core.db_client.update_record", always_stale)

        with pytest.raises(ConflictError):
            await engine.start_task(task_id=task.id, actor=resident)
