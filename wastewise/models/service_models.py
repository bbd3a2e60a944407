"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from pydantic import BaseModel, Field, computed_field

from wastewise.domain.task import Task, TaskCategory, TaskPriority, TaskStatus


class BulkAssignmentFailure(BaseModel):
    """A resident that did not receive a task in a bulk assignment."""

    resident_id: str
    reason: str


class BulkAssignmentResult(BaseModel):
    """Outcome of assigning one template to many residents."""

    created: list[str] = Field(default_factory=list, description="IDs of the tasks created")
    failed: list[BulkAssignmentFailure] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def partial(self) -> bool:
        """Whether some residents were left out."""
        return bool(self.failed)


class TaskFilter(BaseModel):
    """Filters shared by task listing and statistics."""

    status: TaskStatus | None = None
    category: TaskCategory | None = None
    priority: TaskPriority | None = None
    assigned_to: str | None = None
    assigned_by: str | None = None
    is_overdue: bool | None = None
    search: str | None = None


class TaskPage(BaseModel):
    """One page of tasks with pagination metadata."""

    items: list[Task]
    total: int
    page: int
    per_page: int
    pages: int


class TaskStatistics(BaseModel):
    """Aggregate task counts for a scope."""

    by_status: dict[TaskStatus, int]
    total_tasks: int
    overdue_count: int
    completion_rate: float = Field(..., description="Verified / non-cancelled tasks, as a percentage")
    total_reward_points_awarded: int


class ResidentPoints(BaseModel):
    """Points credited to a resident."""

    resident_id: str
    points: int


class NotificationResult(BaseModel):
    """Result of delivering one task notification."""

    event: str = Field(..., description="Notification event name")
    task_id: str
    recipient_id: str
    success: bool = Field(..., description="Whether the webhook accepted the notification")
    error: str | None = Field(None, description="Error message if failed")
