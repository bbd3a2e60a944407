"""Pure state transition rules for the task lifecycle."""

from enum import StrEnum

from wastewise.core.errors import InvalidTransitionError, TaskValidationError, UnauthorizedError
from wastewise.domain.log import TaskAction
from wastewise.domain.task import Task, TaskStatus
from wastewise.domain.update_models import TransitionPayload
from wastewise.domain.user import Actor


class TransitionActor(StrEnum):
    """Who may drive a transition."""

    ASSIGNEE = "assignee"
    ASSIGNER = "assigner"


# Allowed transitions; anything not listed (self-transitions included) is rejected
TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED},
    TaskStatus.COMPLETED: {TaskStatus.VERIFIED, TaskStatus.REJECTED},
    TaskStatus.VERIFIED: set(),
    TaskStatus.REJECTED: set(),
    TaskStatus.CANCELLED: set(),
}

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

TRANSITION_ACTORS: dict[TaskStatus, TransitionActor] = {
    TaskStatus.IN_PROGRESS: TransitionActor.ASSIGNEE,
    TaskStatus.COMPLETED: TransitionActor.ASSIGNEE,
    TaskStatus.VERIFIED: TransitionActor.ASSIGNER,
    TaskStatus.REJECTED: TransitionActor.ASSIGNER,
    TaskStatus.CANCELLED: TransitionActor.ASSIGNER,
}

TRANSITION_ACTIONS: dict[TaskStatus, TaskAction] = {
    TaskStatus.IN_PROGRESS: TaskAction.STARTED,
    TaskStatus.COMPLETED: TaskAction.COMPLETED,
    TaskStatus.VERIFIED: TaskAction.VERIFIED,
    TaskStatus.REJECTED: TaskAction.REJECTED,
    TaskStatus.CANCELLED: TaskAction.CANCELLED,
}


def is_transition_allowed(*, from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """Check whether the table permits moving from one status to another."""
    return to_status in TRANSITIONS.get(from_status, set())


def ensure_transition_allowed(*, task: Task, to_status: TaskStatus) -> None:
    """Raise InvalidTransitionError unless the task may move to `to_status`."""
    if not is_transition_allowed(from_status=task.status, to_status=to_status):
        raise InvalidTransitionError(task_id=task.id, from_status=task.status, to_status=to_status)


def ensure_payload_complete(*, to_status: TaskStatus, payload: TransitionPayload) -> None:
    """Raise TaskValidationError when a field the transition needs is missing."""
    if to_status == TaskStatus.COMPLETED and payload.proof is None:
        raise TaskValidationError("Proof of completion is required", field="proof", reason="proof is required")

    if to_status == TaskStatus.REJECTED and not (payload.rejection_reason or "").strip():
        raise TaskValidationError(
            "A rejection reason is required",
            field="rejection_reason",
            reason="rejection_reason must not be empty",
        )


def ensure_actor_allowed(*, task: Task, to_status: TaskStatus, actor: Actor) -> None:
    """Raise UnauthorizedError unless the actor may drive this transition.

    Start and complete belong to the assigned resident. Verify, reject and cancel
    belong to the manager who assigned the task, or an admin.
    """
    required = TRANSITION_ACTORS[to_status]

    if required == TransitionActor.ASSIGNEE:
        if actor.id != task.assigned_to:
            raise UnauthorizedError(
                f"Only the assigned resident may move task {task.id} to {to_status}",
                field="actor",
                reason="actor is not the assigned resident",
            )
        return

    if actor.is_admin:
        return
    if not actor.can_manage_tasks or actor.id != task.assigned_by:
        raise UnauthorizedError(
            f"Only the assigning manager or an admin may move task {task.id} to {to_status}",
            field="actor",
            reason="actor is not the assigning manager",
        )
