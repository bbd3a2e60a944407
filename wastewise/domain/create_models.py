"""Pydantic models for creating task records."""

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from wastewise.core.config import Constants
from wastewise.domain.task import (
    RecurrenceSettings,
    TaskCategory,
    TaskDifficulty,
    TaskMetadata,
    TaskPriority,
    normalize_tags,
)


class TaskTemplate(BaseModel):
    """Every task field a manager supplies, except the assignee.

    Used as-is by bulk assignment and extended with `assigned_to` for single creation.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str = Field(..., min_length=1, max_length=Constants.MAX_TITLE_LENGTH, description="Task title")
    description: str = Field(
        ..., min_length=1, max_length=Constants.MAX_DESCRIPTION_LENGTH, description="Task description"
    )
    category: TaskCategory = Field(..., description="Sustainability category")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    difficulty: TaskDifficulty = Field(default=TaskDifficulty.MEDIUM)
    due_date: date = Field(..., description="Date the task is due")
    reward_points: int = Field(
        default=Constants.DEFAULT_REWARD_POINTS,
        ge=Constants.MIN_REWARD_POINTS,
        le=Constants.MAX_REWARD_POINTS,
        description="Points credited on verification",
    )
    tags: list[str] = Field(default_factory=list)
    recurring: RecurrenceSettings | None = Field(default=None)
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        """Deduplicate tags."""
        return normalize_tags(v)

    @field_validator("recurring")
    @classmethod
    def validate_recurrence_window(
        cls, v: RecurrenceSettings | None, info: ValidationInfo
    ) -> RecurrenceSettings | None:
        """Recurrence must not end before the first due date."""
        due_date = info.data.get("due_date")
        if v and v.end_date and due_date and v.end_date < due_date:
            raise ValueError("end_date must be on or after due_date")
        return v

    def to_record(self) -> dict[str, Any]:
        """Serialize to column values for the tasks table."""
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "difficulty": self.difficulty,
            "due_date": self.due_date,
            "reward_points": self.reward_points,
            "tags": self.tags,
            "recurring": self.recurring.model_dump(mode="json") if self.recurring else None,
            "metadata": self.metadata.model_dump(mode="json"),
        }


class TaskCreate(TaskTemplate):
    """Payload for creating a single task."""

    assigned_to: str = Field(..., min_length=1, description="Resident the task is assigned to")
