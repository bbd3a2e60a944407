"""Log domain models for the task audit trail."""

from enum import StrEnum

from pydantic import BaseModel, Field

from wastewise.domain.task import TaskStatus


class TaskAction(StrEnum):
    """Action recorded in the audit trail."""

    CREATED = "created"
    UPDATED = "updated"
    STARTED = "started"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    RECURRENCE_CREATED = "recurrence_created"


class TaskLog(BaseModel):
    """Task log entry data transfer object for audit trail."""

    id: str = Field(..., description="Unique log ID from database")
    task_id: str = Field(..., description="ID of task this log relates to")
    actor_id: str = Field(..., description="ID of user who performed the action")
    action: TaskAction = Field(..., description="Action performed")
    from_status: TaskStatus | None = Field(default=None, description="Status before the action")
    to_status: TaskStatus | None = Field(default=None, description="Status after the action")
    notes: str | None = Field(default=None, description="Additional notes about the action")
    timestamp: str = Field(..., description="When the action occurred (ISO format)")
