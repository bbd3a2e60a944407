"""Successor creation for recurring tasks.

A recurring task spawns its next instance when it is verified. The successor is due
one period after the verified task and links back to it through `parent_task_id`,
which is unique, so a task has at most one successor however often this runs.
"""

import logging
from datetime import date, timedelta
from typing import Any

from dateutil.relativedelta import relativedelta

from wastewise.core import db_client
from wastewise.core.db_client import DuplicateRecordError, sanitize_param
from wastewise.core.logging import span
from wastewise.domain.log import TaskAction
from wastewise.domain.task import RecurrenceFrequency, Task, TaskStatus
from wastewise.modules.tasks import service as task_service
from wastewise.services import notification_service
from wastewise.services.notification_service import NotificationEvent


logger = logging.getLogger(__name__)


def compute_next_due_date(*, due_date: date, frequency: RecurrenceFrequency) -> date:
    """Advance a due date by one recurrence period.

    Monthly steps keep the day of month where it exists and clamp to the last day
    otherwise (Jan 31 -> Feb 28/29).
    """
    if frequency == RecurrenceFrequency.DAILY:
        return due_date + timedelta(days=1)
    if frequency == RecurrenceFrequency.WEEKLY:
        return due_date + timedelta(weeks=1)
    return due_date + relativedelta(months=1)


def build_successor_record(*, task: Task, due_date: date) -> dict[str, Any]:
    """Copy the fields a successor inherits from a verified recurring task."""
    return {
        "title": task.title,
        "description": task.description,
        "category": task.category,
        "assigned_to": task.assigned_to,
        "assigned_by": task.assigned_by,
        "priority": task.priority,
        "difficulty": task.difficulty,
        "due_date": due_date,
        "reward_points": task.reward_points,
        "tags": task.tags,
        "recurring": task.recurring.model_dump(mode="json") if task.recurring else None,
        "metadata": task.metadata.model_dump(mode="json"),
        "parent_task_id": task.id,
    }


async def find_successor(*, task_id: str) -> Task | None:
    """Return the task spawned from `task_id`, if any (soft-deleted ones included)."""
    record = await db_client.get_first_record(
        collection="tasks",
        filter_query=f'parent_task_id = "{sanitize_param(task_id)}"',
    )
    return task_service.to_task(record) if record else None


async def on_verified(*, task: Task) -> Task | None:
    """Create the next instance of a verified recurring task.

    Args:
        task: The task that was just verified

    Returns:
        The successor, or None when the task is not a verified recurring task, the next
        due date falls after the recurrence end date, or a successor already exists
    """
    with span("recurrence.on_verified", task_id=task.id):
        if task.status != TaskStatus.VERIFIED or not task.is_recurring or task.recurring is None:
            return None

        if await find_successor(task_id=task.id) is not None:
            logger.info("Successor already exists", extra={"task_id": task.id})
            return None

        next_due = compute_next_due_date(due_date=task.due_date, frequency=task.recurring.frequency)
        end_date = task.recurring.end_date
        if end_date is not None and next_due > end_date:
            logger.info(
                "Recurrence ended",
                extra={"task_id": task.id, "next_due_date": next_due.isoformat(), "end_date": end_date.isoformat()},
            )
            return None

        try:
            successor = await task_service.insert_task(
                record=build_successor_record(task=task, due_date=next_due),
                actor_id=task.assigned_by,
                action=TaskAction.RECURRENCE_CREATED,
                notes=f"Recurrence of task {task.id}",
            )
        except DuplicateRecordError:
            # Lost the race against a concurrent call for the same parent
            logger.info("Successor created concurrently", extra={"task_id": task.id})
            return None

        logger.info(
            "Created recurring successor",
            extra={"task_id": task.id, "successor_id": successor.id, "due_date": next_due.isoformat()},
        )
        notification_service.dispatch(event=NotificationEvent.TASK_RECURRENCE_CREATED, task=successor)
        return successor
