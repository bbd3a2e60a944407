"""Statistics over tasks and the resident points ledger.

Key Concepts:
- Overdue: due date strictly before today (UTC) while the task is still open, i.e. not
  verified, rejected or cancelled.
- Completion rate: verified tasks as a percentage of all tasks that were not cancelled.
- Every read goes to the database; nothing is cached.
"""

import logging
from datetime import date

from wastewise.core import db_client
from wastewise.core.db_client import sanitize_param
from wastewise.core.logging import span
from wastewise.domain.task import TaskStatus
from wastewise.models.service_models import ResidentPoints, TaskFilter, TaskStatistics
from wastewise.modules.tasks import service as task_service


logger = logging.getLogger(__name__)


def _scope_filter(filters: TaskFilter | None) -> TaskFilter:
    """Keep only the fields that scope statistics."""
    if filters is None:
        return TaskFilter()
    return TaskFilter(
        assigned_by=filters.assigned_by,
        assigned_to=filters.assigned_to,
        category=filters.category,
        priority=filters.priority,
    )


def calculate_completion_rate(*, by_status: dict[TaskStatus, int]) -> float:
    """Verified tasks over non-cancelled tasks, as a percentage rounded to 2 decimals."""
    considered = sum(count for status, count in by_status.items() if status != TaskStatus.CANCELLED)
    if considered == 0:
        return 0.0
    return round(by_status[TaskStatus.VERIFIED] / considered * 100, 2)


async def compute_statistics(*, filters: TaskFilter | None = None, today: date | None = None) -> TaskStatistics:
    """Aggregate task counts for the tasks matching `filters`.

    Args:
        filters: Optional assigned_by / assigned_to / category / priority scope
        today: Reference date for overdue checks (defaults to today in UTC)

    Returns:
        TaskStatistics with per-status counts, overdue count and completion rate
    """
    with span("analytics.compute_statistics"):
        today = today or task_service.utc_today()
        scope = _scope_filter(filters)
        scope_query = task_service.build_filter_query(filters=scope, today=today)

        counts = await db_client.count_by(collection="tasks", field="status", filter_query=scope_query)
        by_status = {status: counts.get(status.value, 0) for status in TaskStatus}

        overdue_query = task_service.build_filter_query(
            filters=scope.model_copy(update={"is_overdue": True}), today=today
        )
        overdue_count = await db_client.count_records(collection="tasks", filter_query=overdue_query)

        verified_query = task_service.build_filter_query(
            filters=scope.model_copy(update={"status": TaskStatus.VERIFIED}), today=today
        )
        points_awarded = await db_client.sum_field(
            collection="tasks", field="reward_points", filter_query=verified_query
        )

        statistics = TaskStatistics(
            by_status=by_status,
            total_tasks=sum(by_status.values()),
            overdue_count=overdue_count,
            completion_rate=calculate_completion_rate(by_status=by_status),
            total_reward_points_awarded=points_awarded,
        )
        logger.debug(
            "Computed task statistics",
            extra={"total_tasks": statistics.total_tasks, "overdue_count": overdue_count},
        )
        return statistics


async def get_resident_points(*, resident_id: str) -> ResidentPoints:
    """Sum the points credited to a resident across all verified tasks.

    Deleted tasks keep their awards, so their points still count.
    """
    with span("analytics.get_resident_points"):
        points = await db_client.sum_field(
            collection="point_awards",
            field="points",
            filter_query=f'resident_id = "{sanitize_param(resident_id)}"',
        )
        return ResidentPoints(resident_id=resident_id, points=points)
