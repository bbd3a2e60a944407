"""HTTP routes for the task workflow.

Identity arrives already authenticated from the portal gateway in the `X-Actor-Id` and
`X-Actor-Role` headers.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Response, status
from pydantic import BaseModel, Field

from wastewise.core.config import Constants
from wastewise.core.errors import UnauthorizedError
from wastewise.domain.create_models import TaskCreate, TaskTemplate
from wastewise.domain.task import Task, TaskCategory, TaskPriority, TaskStatus
from wastewise.domain.update_models import TaskUpdate, TransitionPayload
from wastewise.domain.user import Actor, ActorRole
from wastewise.models.service_models import (
    BulkAssignmentResult,
    ResidentPoints,
    TaskFilter,
    TaskPage,
    TaskStatistics,
)
from wastewise.modules.tasks import analytics, bulk, engine
from wastewise.modules.tasks import service as task_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


class BulkAssignRequest(BaseModel):
    """Body of a bulk assignment request."""

    template: TaskTemplate = Field(..., description="Task fields shared by every resident")
    resident_ids: list[str] = Field(..., description="Residents to assign the task to")


async def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the acting user from gateway headers."""
    if not x_actor_id or not x_actor_id.strip():
        raise UnauthorizedError("Missing actor identity", field="X-Actor-Id", reason="header is required")

    try:
        role = ActorRole(x_actor_role or "")
    except ValueError as e:
        raise UnauthorizedError(
            "Missing or unknown actor role", field="X-Actor-Role", reason=f"unknown role {x_actor_role!r}"
        ) from e

    return Actor(id=x_actor_id.strip(), role=role)


ActorDep = Annotated[Actor, Depends(get_actor)]


def _require_staff(actor: Actor) -> None:
    if actor.role == ActorRole.RESIDENT:
        raise UnauthorizedError("Residents may only view their own tasks", field="actor", reason="staff role required")


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_task(data: TaskCreate, actor: ActorDep) -> Task:
    """Create a task for one resident."""
    return await task_service.create_task(data=data, actor=actor)


@router.post("/bulk-assign", status_code=status.HTTP_201_CREATED)
async def bulk_assign(request: BulkAssignRequest, actor: ActorDep) -> BulkAssignmentResult:
    """Assign one task template to many residents."""
    return await bulk.assign_bulk(template=request.template, resident_ids=request.resident_ids, actor=actor)


@router.get("/")
async def list_tasks(
    actor: ActorDep,
    task_status: Annotated[TaskStatus | None, Query(alias="status")] = None,
    category: TaskCategory | None = None,
    priority: TaskPriority | None = None,
    assigned_to: str | None = None,
    assigned_by: str | None = None,
    is_overdue: bool | None = None,
    search: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: int = Constants.DEFAULT_PAGE_SIZE,
    sort: str = Constants.DEFAULT_TASK_SORT,
) -> TaskPage:
    """List tasks with filters and pagination."""
    _require_staff(actor)
    filters = TaskFilter(
        status=task_status,
        category=category,
        priority=priority,
        assigned_to=assigned_to,
        assigned_by=assigned_by,
        is_overdue=is_overdue,
        search=search,
    )
    return await task_service.list_tasks(filters=filters, page=page, per_page=per_page, sort=sort)


@router.get("/statistics")
async def get_statistics(
    actor: ActorDep,
    assigned_by: str | None = None,
    assigned_to: str | None = None,
    category: TaskCategory | None = None,
    priority: TaskPriority | None = None,
) -> TaskStatistics:
    """Task counts by status, overdue count and completion rate."""
    _require_staff(actor)
    filters = TaskFilter(assigned_by=assigned_by, assigned_to=assigned_to, category=category, priority=priority)
    return await analytics.compute_statistics(filters=filters)


@router.get("/my-tasks")
async def list_my_tasks(
    actor: ActorDep,
    task_status: Annotated[TaskStatus | None, Query(alias="status")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: int = Constants.DEFAULT_PAGE_SIZE,
) -> TaskPage:
    """Tasks assigned to the calling resident."""
    return await task_service.list_resident_tasks(
        resident_id=actor.id, status=task_status, page=page, per_page=per_page
    )


@router.get("/residents/{resident_id}/points")
async def get_resident_points(resident_id: str, actor: ActorDep) -> ResidentPoints:
    """Points credited to a resident."""
    if actor.id != resident_id:
        _require_staff(actor)
    return await analytics.get_resident_points(resident_id=resident_id)


@router.get("/{task_id}")
async def get_task(task_id: str, actor: ActorDep) -> Task:
    """Get one task."""
    task = await task_service.get_task(task_id=task_id)
    if task.assigned_to != actor.id:
        _require_staff(actor)
    return task


@router.put("/{task_id}")
async def update_task(task_id: str, changes: TaskUpdate, actor: ActorDep) -> Task:
    """Edit a task that is still assigned."""
    return await task_service.update_task(task_id=task_id, changes=changes, actor=actor)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, actor: ActorDep, hard: bool = False) -> Response:
    """Delete a task (soft unless `hard=true`)."""
    await task_service.delete_task(task_id=task_id, actor=actor, hard=hard)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{task_id}/start")
async def start_task(task_id: str, actor: ActorDep, payload: TransitionPayload | None = None) -> Task:
    """Resident starts the task."""
    return await engine.transition(task_id=task_id, target_status=TaskStatus.IN_PROGRESS, actor=actor, payload=payload)


@router.patch("/{task_id}/complete")
async def complete_task(task_id: str, actor: ActorDep, payload: TransitionPayload | None = None) -> Task:
    """Resident submits proof of completion."""
    return await engine.transition(task_id=task_id, target_status=TaskStatus.COMPLETED, actor=actor, payload=payload)


@router.patch("/{task_id}/verify")
async def verify_task(task_id: str, actor: ActorDep, payload: TransitionPayload | None = None) -> Task:
    """Manager verifies the completion and credits the reward points."""
    return await engine.transition(task_id=task_id, target_status=TaskStatus.VERIFIED, actor=actor, payload=payload)


@router.patch("/{task_id}/reject")
async def reject_task(task_id: str, actor: ActorDep, payload: TransitionPayload | None = None) -> Task:
    """Manager rejects the completion with a reason."""
    return await engine.transition(task_id=task_id, target_status=TaskStatus.REJECTED, actor=actor, payload=payload)


@router.patch("/{task_id}/cancel")
async def cancel_task(task_id: str, actor: ActorDep, payload: TransitionPayload | None = None) -> Task:
    """Manager cancels the task."""
    return await engine.transition(task_id=task_id, target_status=TaskStatus.CANCELLED, actor=actor, payload=payload)
