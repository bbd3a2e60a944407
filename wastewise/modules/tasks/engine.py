"""Task lifecycle engine: status transitions, point awards and their side effects.

Each transition is one SQLite transaction: the version-checked status write, the point
award (on verification) and the audit entry commit or roll back together. Notifications
and recurrence run only after the commit.
"""

import logging
from typing import Any

from wastewise.core import db_client
from wastewise.core.config import Constants
from wastewise.core.db_client import DuplicateRecordError, StaleRecordError
from wastewise.core.errors import ConflictError
from wastewise.core.logging import log_task_event, span
from wastewise.domain.task import CompletionProof, Task, TaskStatus
from wastewise.domain.update_models import TransitionPayload
from wastewise.domain.user import Actor
from wastewise.modules.tasks import recurrence, state_machine
from wastewise.modules.tasks import service as task_service
from wastewise.services import notification_service
from wastewise.services.notification_service import NotificationEvent


logger = logging.getLogger(__name__)

TRANSITION_EVENTS: dict[TaskStatus, NotificationEvent] = {
    TaskStatus.COMPLETED: NotificationEvent.TASK_COMPLETED,
    TaskStatus.VERIFIED: NotificationEvent.TASK_VERIFIED,
    TaskStatus.REJECTED: NotificationEvent.TASK_REJECTED,
    TaskStatus.CANCELLED: NotificationEvent.TASK_CANCELLED,
}


def _build_update(*, to_status: TaskStatus, payload: TransitionPayload, now: str) -> dict[str, Any]:
    data: dict[str, Any] = {"status": to_status, "updated_at": now}

    if to_status == TaskStatus.COMPLETED and payload.proof is not None:
        data["proof"] = payload.proof.model_dump(mode="json")
        data["completed_at"] = now
    elif to_status == TaskStatus.VERIFIED:
        data["verification_notes"] = payload.verification_notes
        data["verified_at"] = now
    elif to_status == TaskStatus.REJECTED:
        data["rejection_reason"] = (payload.rejection_reason or "").strip()

    return data


def _log_notes(*, to_status: TaskStatus, payload: TransitionPayload) -> str | None:
    if payload.notes:
        return payload.notes
    if to_status == TaskStatus.VERIFIED:
        return payload.verification_notes
    if to_status == TaskStatus.REJECTED:
        return payload.rejection_reason
    return None


async def _apply_transition(*, task: Task, to_status: TaskStatus, payload: TransitionPayload, actor: Actor) -> Task:
    """Write the transition atomically.

    Raises:
        StaleRecordError: If the task changed since it was read
    """
    now = task_service.utc_now()

    async with db_client.transaction():
        record = await db_client.update_record(
            collection="tasks",
            record_id=task.id,
            data=_build_update(to_status=to_status, payload=payload, now=now),
            expected_version=task.version,
        )

        if to_status == TaskStatus.VERIFIED:
            await db_client.create_record(
                collection="point_awards",
                data={
                    "task_id": task.id,
                    "resident_id": task.assigned_to,
                    "points": task.reward_points,
                    "awarded_at": now,
                },
            )

        await task_service.record_task_log(
            task_id=task.id,
            actor_id=actor.id,
            action=state_machine.TRANSITION_ACTIONS[to_status],
            from_status=task.status,
            to_status=to_status,
            notes=_log_notes(to_status=to_status, payload=payload),
        )

    return task_service.to_task(record)


async def _run_post_commit(*, task: Task, actor: Actor) -> None:
    event = TRANSITION_EVENTS.get(task.status)
    if event is not None:
        notification_service.dispatch(event=event, task=task)

    if task.status == TaskStatus.VERIFIED and task.is_recurring:
        try:
            await recurrence.on_verified(task=task)
        except Exception:
            logger.exception("Failed to create recurring successor", extra={"task_id": task.id, "actor_id": actor.id})


async def transition(
    *,
    task_id: str,
    target_status: TaskStatus,
    actor: Actor,
    payload: TransitionPayload | None = None,
) -> Task:
    """Move a task to `target_status`.

    Checks run in order: the move must be allowed from the current status, the payload
    must carry what the target needs, and the actor must be entitled to the move. A
    concurrent write detected by the version check is retried after a fresh read.

    Args:
        task_id: Task to transition
        target_status: Desired status
        actor: User driving the transition
        payload: Proof, notes or rejection reason, as the target requires

    Returns:
        The task after the transition

    Raises:
        NotFoundError: If the task does not exist or was deleted
        InvalidTransitionError: If the move is not allowed from the current status
        TaskValidationError: If the payload lacks a required field
        UnauthorizedError: If the actor may not perform this transition
        ConflictError: If the task keeps changing underneath the transition
    """
    with span("task_engine.transition", task_id=task_id, to_status=target_status.value):
        payload = payload or TransitionPayload()
        attempts = Constants.TRANSITION_CONFLICT_RETRIES + 1

        for attempt in range(1, attempts + 1):
            task = await task_service.load_task(task_id=task_id)
            state_machine.ensure_transition_allowed(task=task, to_status=target_status)
            state_machine.ensure_payload_complete(to_status=target_status, payload=payload)
            state_machine.ensure_actor_allowed(task=task, to_status=target_status, actor=actor)

            try:
                updated = await _apply_transition(task=task, to_status=target_status, payload=payload, actor=actor)
            except StaleRecordError:
                logger.warning(
                    "Transition conflict",
                    extra={"task_id": task_id, "to_status": target_status.value, "attempt": attempt},
                )
                continue
            except DuplicateRecordError as e:
                raise ConflictError(
                    f"Points for task {task_id} were already awarded", field="task_id", reason=str(e)
                ) from e

            log_task_event(
                logger,
                "info",
                "Task transitioned",
                task_id=task_id,
                actor=actor,
                from_status=task.status.value,
                to_status=target_status.value,
            )
            await _run_post_commit(task=updated, actor=actor)
            return updated

        raise ConflictError(
            f"Task {task_id} was changed concurrently, please retry",
            field="task_id",
            reason="version mismatch",
        )


async def start_task(*, task_id: str, actor: Actor, notes: str | None = None) -> Task:
    """Resident starts working on an assigned task."""
    return await transition(
        task_id=task_id, target_status=TaskStatus.IN_PROGRESS, actor=actor, payload=TransitionPayload(notes=notes)
    )


async def complete_task(
    *,
    task_id: str,
    actor: Actor,
    proof: CompletionProof | None,
    notes: str | None = None,
) -> Task:
    """Resident submits the task with proof of completion."""
    return await transition(
        task_id=task_id,
        target_status=TaskStatus.COMPLETED,
        actor=actor,
        payload=TransitionPayload(proof=proof, notes=notes),
    )


async def verify_task(*, task_id: str, actor: Actor, verification_notes: str | None = None) -> Task:
    """Manager accepts a completed task, crediting its reward points."""
    return await transition(
        task_id=task_id,
        target_status=TaskStatus.VERIFIED,
        actor=actor,
        payload=TransitionPayload(verification_notes=verification_notes),
    )


async def reject_task(*, task_id: str, actor: Actor, rejection_reason: str | None) -> Task:
    """Manager rejects a completed task."""
    return await transition(
        task_id=task_id,
        target_status=TaskStatus.REJECTED,
        actor=actor,
        payload=TransitionPayload(rejection_reason=rejection_reason),
    )


async def cancel_task(*, task_id: str, actor: Actor, notes: str | None = None) -> Task:
    """Manager withdraws a task before it is completed."""
    return await transition(
        task_id=task_id, target_status=TaskStatus.CANCELLED, actor=actor, payload=TransitionPayload(notes=notes)
    )
