"""Bulk assignment of one task template to many residents."""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from wastewise.core.errors import TaskValidationError, TaskWorkflowError, from_pydantic_error
from wastewise.core.logging import span
from wastewise.domain.create_models import TaskTemplate
from wastewise.domain.user import Actor
from wastewise.interface import resident_directory
from wastewise.models.service_models import BulkAssignmentFailure, BulkAssignmentResult
from wastewise.modules.tasks import service as task_service
from wastewise.services import notification_service
from wastewise.services.notification_service import NotificationEvent


logger = logging.getLogger(__name__)


def _coerce_template(template: TaskTemplate | dict[str, Any]) -> TaskTemplate:
    if isinstance(template, TaskTemplate):
        return template
    try:
        return TaskTemplate.model_validate(template)
    except ValidationError as e:
        raise from_pydantic_error(e) from e


def _partition_resident_ids(resident_ids: list[str]) -> tuple[list[str], list[BulkAssignmentFailure]]:
    """Split the request into unique usable ids and immediate failures (blank or repeated)."""
    unique: list[str] = []
    failures: list[BulkAssignmentFailure] = []
    seen: set[str] = set()

    for raw_id in resident_ids:
        resident_id = raw_id.strip()
        if not resident_id:
            failures.append(BulkAssignmentFailure(resident_id=raw_id, reason="resident id is blank"))
        elif resident_id in seen:
            failures.append(BulkAssignmentFailure(resident_id=resident_id, reason="duplicate resident id in request"))
        else:
            seen.add(resident_id)
            unique.append(resident_id)

    return unique, failures


async def _assign_one(*, template: TaskTemplate, resident_id: str, actor: Actor) -> str:
    resident = await resident_directory.resolve_resident(resident_id=resident_id)
    record = {**template.to_record(), "assigned_to": resident.id, "assigned_by": actor.id}
    task = await task_service.insert_task(record=record, actor_id=actor.id, notes="bulk assignment")
    notification_service.dispatch(event=NotificationEvent.TASK_ASSIGNED, task=task)
    return task.id


async def assign_bulk(
    *,
    template: TaskTemplate | dict[str, Any],
    resident_ids: list[str],
    actor: Actor,
) -> BulkAssignmentResult:
    """Create one independent task per resident from a shared template.

    Residents are processed concurrently and independently: a resident that fails to
    resolve (or whose write fails) is reported in `failed` and never affects the others.

    Args:
        template: Task fields shared by every resident's copy
        resident_ids: Residents to assign the task to
        actor: Manager performing the assignment

    Returns:
        BulkAssignmentResult listing created task IDs and per-resident failures

    Raises:
        UnauthorizedError: If the actor is not a sustainability manager or admin
        TaskValidationError: If the template is invalid or no residents were given
    """
    with span("bulk_assignment.assign_bulk", residents=len(resident_ids)):
        task_service.ensure_can_manage(actor=actor)
        template = _coerce_template(template)

        if not resident_ids:
            raise TaskValidationError(
                "At least one resident is required", field="resident_ids", reason="resident_ids is empty"
            )

        unique_ids, failed = _partition_resident_ids(resident_ids)
        outcomes = await asyncio.gather(
            *(_assign_one(template=template, resident_id=resident_id, actor=actor) for resident_id in unique_ids),
            return_exceptions=True,
        )

        result = BulkAssignmentResult(failed=failed)
        for resident_id, outcome in zip(unique_ids, outcomes, strict=True):
            if isinstance(outcome, str):
                result.created.append(outcome)
            elif isinstance(outcome, TaskWorkflowError):
                result.failed.append(BulkAssignmentFailure(resident_id=resident_id, reason=outcome.reason))
            elif isinstance(outcome, Exception):
                logger.error(
                    "Bulk assignment failed for resident",
                    extra={"resident_id": resident_id, "error": str(outcome)},
                    exc_info=outcome,
                )
                result.failed.append(BulkAssignmentFailure(resident_id=resident_id, reason="task could not be created"))
            else:
                raise outcome

        logger.info(
            "Bulk assignment finished",
            extra={"actor_id": actor.id, "created": len(result.created), "failed": len(result.failed)},
        )
        return result
