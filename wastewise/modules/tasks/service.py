"""Task service for creation, lookup, listing, editing and deletion."""

import logging
import math
from datetime import UTC, date, datetime
from typing import Any

from pydantic import ValidationError

from wastewise.core import db_client
from wastewise.core.config import Constants
from wastewise.core.db_client import StaleRecordError, sanitize_param
from wastewise.core.errors import (
    ConflictError,
    NotFoundError,
    TaskValidationError,
    UnauthorizedError,
    from_pydantic_error,
)
from wastewise.core.logging import span
from wastewise.domain.create_models import TaskCreate
from wastewise.domain.log import TaskAction, TaskLog
from wastewise.domain.task import CLOSED_STATUSES, RecurrenceSettings, Task, TaskStatus
from wastewise.domain.update_models import TaskUpdate
from wastewise.domain.user import Actor
from wastewise.interface import resident_directory
from wastewise.models.service_models import TaskFilter, TaskPage
from wastewise.services import notification_service
from wastewise.services.notification_service import NotificationEvent


logger = logging.getLogger(__name__)

# Fields that may be cleared by an update; every other column is NOT NULL
_NULLABLE_UPDATE_FIELDS = frozenset({"recurring"})

# Characters that would break the filter syntax inside a search term
_SEARCH_STRIP_CHARS = str.maketrans("", "", "\"'()&|")

# Columns a task listing may be ordered by
SORTABLE_FIELDS = frozenset(
    {"title", "category", "priority", "difficulty", "status", "due_date", "reward_points", "created_at", "updated_at"}
)


def utc_now() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def utc_today() -> date:
    """Current UTC date, the reference for overdue checks."""
    return datetime.now(UTC).date()


def to_task(record: dict[str, Any]) -> Task:
    """Convert a tasks row into a Task DTO."""
    return Task.model_validate(record)


def ensure_can_manage(*, actor: Actor) -> None:
    """Raise UnauthorizedError unless the actor may create and assign tasks."""
    if not actor.can_manage_tasks:
        raise UnauthorizedError(
            f"Role {actor.role} may not create or assign tasks",
            field="actor",
            reason="sustainability_manager or admin role required",
        )


def ensure_is_owner(*, task: Task, actor: Actor) -> None:
    """Raise UnauthorizedError unless the actor assigned the task or is an admin."""
    if actor.is_admin:
        return
    if not actor.can_manage_tasks or actor.id != task.assigned_by:
        raise UnauthorizedError(
            f"Only the assigning manager or an admin may change task {task.id}",
            field="actor",
            reason="actor is not the assigning manager",
        )


async def record_task_log(
    *,
    task_id: str,
    actor_id: str,
    action: TaskAction,
    from_status: TaskStatus | None = None,
    to_status: TaskStatus | None = None,
    notes: str | None = None,
) -> TaskLog:
    """Append an entry to the task audit trail."""
    record = await db_client.create_record(
        collection="task_logs",
        data={
            "task_id": task_id,
            "actor_id": actor_id,
            "action": action,
            "from_status": from_status,
            "to_status": to_status,
            "notes": notes,
            "timestamp": utc_now(),
        },
    )
    return TaskLog.model_validate(record)


async def insert_task(
    *,
    record: dict[str, Any],
    actor_id: str,
    action: TaskAction = TaskAction.CREATED,
    notes: str | None = None,
) -> Task:
    """Write a new `assigned` task and its audit entry as one atomic unit.

    Raises:
        DuplicateRecordError: If a unique constraint (e.g. parent_task_id) is violated
    """
    now = utc_now()
    data = {**record, "status": TaskStatus.ASSIGNED, "created_at": now, "updated_at": now}

    async with db_client.transaction():
        created = await db_client.create_record(collection="tasks", data=data)
        await record_task_log(
            task_id=created["id"],
            actor_id=actor_id,
            action=action,
            to_status=TaskStatus.ASSIGNED,
            notes=notes,
        )

    return to_task(created)


async def load_task(*, task_id: str) -> Task:
    """Fetch an active task, raising NotFoundError if missing or soft deleted."""
    try:
        record = await db_client.get_record(collection="tasks", record_id=task_id)
    except KeyError as e:
        raise NotFoundError(f"Task {task_id} not found", field="task_id", reason="unknown task id") from e

    task = to_task(record)
    if not task.is_active:
        raise NotFoundError(f"Task {task_id} not found", field="task_id", reason="task was deleted")
    return task


async def create_task(*, data: TaskCreate, actor: Actor) -> Task:
    """Create a single task for one resident.

    Args:
        data: Validated task fields including the assignee
        actor: Manager creating the task

    Returns:
        The created task in `assigned` status

    Raises:
        UnauthorizedError: If the actor is not a sustainability manager or admin
        NotFoundError: If the resident does not resolve in the directory
        DirectoryUnavailableError: If the directory cannot be reached
    """
    with span("task_service.create_task"):
        ensure_can_manage(actor=actor)
        resident = await resident_directory.resolve_resident(resident_id=data.assigned_to)

        record = {**data.to_record(), "assigned_to": resident.id, "assigned_by": actor.id}
        task = await insert_task(record=record, actor_id=actor.id)

        logger.info(
            "Created task",
            extra={"task_id": task.id, "assigned_to": task.assigned_to, "assigned_by": actor.id},
        )
        notification_service.dispatch(event=NotificationEvent.TASK_ASSIGNED, task=task)
        return task


async def get_task(*, task_id: str) -> Task:
    """Get an active task by ID.

    Raises:
        NotFoundError: If the task does not exist or was soft deleted
    """
    with span("task_service.get_task"):
        return await load_task(task_id=task_id)


def _closed_status_clause(*, negate: bool) -> str:
    op, joiner = ("=", " || ") if negate else ("!=", " && ")
    return joiner.join(f'status {op} "{status}"' for status in sorted(CLOSED_STATUSES))


def build_filter_query(*, filters: TaskFilter | None, today: date) -> str:
    """Translate list/statistics filters into the db_client filter syntax.

    Soft-deleted tasks are always excluded.
    """
    clauses = ['is_active = "1"']
    if filters is None:
        return " && ".join(clauses)

    for field in ("status", "category", "priority", "assigned_to", "assigned_by"):
        value = getattr(filters, field)
        if value is not None:
            clauses.append(f'{field} = "{sanitize_param(value)}"')

    if filters.is_overdue is True:
        clauses.append(f'due_date < "{today.isoformat()}"')
        clauses.append(_closed_status_clause(negate=False))
    elif filters.is_overdue is False:
        clauses.append(f'(due_date >= "{today.isoformat()}" || {_closed_status_clause(negate=True)})')

    if filters.search:
        term = sanitize_param(filters.search.translate(_SEARCH_STRIP_CHARS).strip())
        if term:
            clauses.append(f'(title ~ "{term}" || description ~ "{term}" || tags ~ "{term}")')

    return " && ".join(clauses)


def clamp_page_size(per_page: int) -> int:
    """Keep page size within [1, MAX_PAGE_SIZE]."""
    return min(max(per_page, 1), Constants.MAX_PAGE_SIZE)


def validate_sort(sort: str) -> str:
    """Return the sort string if it names a sortable column, `-field` for descending."""
    field = sort.strip().removeprefix("-").removeprefix("+")
    if field not in SORTABLE_FIELDS:
        raise TaskValidationError(
            f"Cannot sort tasks by {field or 'nothing'}",
            field="sort",
            reason=f"must be one of {', '.join(sorted(SORTABLE_FIELDS))}, optionally prefixed with -",
        )
    return sort.strip()


async def list_tasks(
    *,
    filters: TaskFilter | None = None,
    page: int = 1,
    per_page: int = Constants.DEFAULT_PAGE_SIZE,
    sort: str = Constants.DEFAULT_TASK_SORT,
) -> TaskPage:
    """List active tasks with filtering, sorting and pagination.

    Args:
        filters: Optional status/category/priority/assignee/assigner/overdue/search filters
        page: 1-based page number
        per_page: Page size, clamped to [1, 100]
        sort: Sort field, `-field` for descending

    Returns:
        TaskPage with the page items and pagination metadata
    """
    with span("task_service.list_tasks"):
        page = max(page, 1)
        per_page = clamp_page_size(per_page)
        sort = validate_sort(sort)
        filter_query = build_filter_query(filters=filters, today=utc_today())

        records = await db_client.list_records(
            collection="tasks",
            filter_query=filter_query,
            sort=sort,
            page=page,
            per_page=per_page,
        )
        total = await db_client.count_records(collection="tasks", filter_query=filter_query)

        return TaskPage(
            items=[to_task(record) for record in records],
            total=total,
            page=page,
            per_page=per_page,
            pages=math.ceil(total / per_page),
        )


async def list_resident_tasks(
    *,
    resident_id: str,
    status: TaskStatus | None = None,
    page: int = 1,
    per_page: int = Constants.DEFAULT_PAGE_SIZE,
) -> TaskPage:
    """List the tasks assigned to one resident, soonest due first."""
    with span("task_service.list_resident_tasks"):
        return await list_tasks(
            filters=TaskFilter(assigned_to=resident_id, status=status),
            page=page,
            per_page=per_page,
            sort="due_date",
        )


def _validate_changes(*, task: Task, changes: dict[str, Any]) -> None:
    if not changes:
        raise TaskValidationError("No fields to update", field="body", reason="update payload is empty")

    for field, value in changes.items():
        if value is None and field not in _NULLABLE_UPDATE_FIELDS:
            raise TaskValidationError(f"{field} cannot be cleared", field=field, reason="value is required")

    due_date = changes.get("due_date", task.due_date)
    recurring = changes["recurring"] if "recurring" in changes else task.recurring
    if isinstance(recurring, RecurrenceSettings) and recurring.end_date and recurring.end_date < due_date:
        raise TaskValidationError(
            "Recurrence end date is before the due date",
            field="recurring",
            reason="end_date must be on or after due_date",
        )


def _to_column_values(changes: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for field, value in changes.items():
        if field in ("recurring", "metadata"):
            columns[field] = value.model_dump(mode="json") if value is not None else None
        else:
            columns[field] = value
    return columns


async def update_task(*, task_id: str, changes: TaskUpdate | dict[str, Any], actor: Actor) -> Task:
    """Edit a task's fields while it is still `assigned`.

    Args:
        task_id: Task to edit
        changes: Fields to change; only explicitly set fields are applied
        actor: Assigning manager or admin

    Returns:
        The updated task

    Raises:
        NotFoundError: If the task (or a newly named resident) does not resolve
        UnauthorizedError: If the actor is neither the assigning manager nor an admin
        TaskValidationError: If the task has left `assigned` or a change is invalid
        ConflictError: If another write changed the task concurrently
    """
    with span("task_service.update_task"):
        if isinstance(changes, dict):
            try:
                changes = TaskUpdate.model_validate(changes)
            except ValidationError as e:
                raise from_pydantic_error(e) from e

        task = await load_task(task_id=task_id)
        ensure_is_owner(task=task, actor=actor)

        if task.status != TaskStatus.ASSIGNED:
            raise TaskValidationError(
                f"Task {task_id} can no longer be edited",
                field="status",
                reason=f"tasks can only be edited while assigned, current status is {task.status}",
            )

        set_fields = {field: getattr(changes, field) for field in changes.model_fields_set}
        _validate_changes(task=task, changes=set_fields)

        reassigned = "assigned_to" in set_fields and set_fields["assigned_to"] != task.assigned_to
        if reassigned:
            resident = await resident_directory.resolve_resident(resident_id=set_fields["assigned_to"])
            set_fields["assigned_to"] = resident.id

        data = {**_to_column_values(set_fields), "updated_at": utc_now()}
        try:
            async with db_client.transaction():
                record = await db_client.update_record(
                    collection="tasks", record_id=task_id, data=data, expected_version=task.version
                )
                await record_task_log(
                    task_id=task_id,
                    actor_id=actor.id,
                    action=TaskAction.UPDATED,
                    notes=", ".join(sorted(set_fields)),
                )
        except StaleRecordError as e:
            raise ConflictError(
                f"Task {task_id} was changed concurrently", field="task_id", reason="version mismatch"
            ) from e

        updated = to_task(record)
        logger.info("Updated task", extra={"task_id": task_id, "fields": sorted(set_fields), "actor_id": actor.id})

        if reassigned:
            notification_service.dispatch(event=NotificationEvent.TASK_ASSIGNED, task=updated)
        return updated


async def delete_task(*, task_id: str, actor: Actor, hard: bool = False) -> None:
    """Delete a task, softly by default.

    A soft delete hides the task from get, list and statistics. A hard delete removes
    the row. Point awards already credited for the task are never touched.

    Raises:
        NotFoundError: If the task does not exist or was already soft deleted
        UnauthorizedError: If the actor is neither the assigning manager nor an admin
        ConflictError: If another write changed the task concurrently
    """
    with span("task_service.delete_task"):
        task = await load_task(task_id=task_id)
        ensure_is_owner(task=task, actor=actor)

        try:
            async with db_client.transaction():
                if hard:
                    await db_client.delete_record(collection="tasks", record_id=task_id)
                else:
                    await db_client.update_record(
                        collection="tasks",
                        record_id=task_id,
                        data={"is_active": False, "updated_at": utc_now()},
                        expected_version=task.version,
                    )
                await record_task_log(
                    task_id=task_id,
                    actor_id=actor.id,
                    action=TaskAction.DELETED,
                    from_status=task.status,
                    notes="hard delete" if hard else "soft delete",
                )
        except StaleRecordError as e:
            raise ConflictError(
                f"Task {task_id} was changed concurrently", field="task_id", reason="version mismatch"
            ) from e

        logger.info("Deleted task", extra={"task_id": task_id, "hard": hard, "actor_id": actor.id})
