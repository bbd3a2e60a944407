"""Update and transition payload models."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wastewise.core.config import Constants
from wastewise.domain.task import (
    CompletionProof,
    RecurrenceSettings,
    TaskCategory,
    TaskDifficulty,
    TaskMetadata,
    TaskPriority,
    normalize_tags,
)


class TaskUpdate(BaseModel):
    """Field edits a manager may make while a task is still assigned.

    Only fields that were explicitly set are applied.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=Constants.MAX_TITLE_LENGTH)
    description: str | None = Field(default=None, min_length=1, max_length=Constants.MAX_DESCRIPTION_LENGTH)
    category: TaskCategory | None = None
    assigned_to: str | None = Field(default=None, min_length=1)
    priority: TaskPriority | None = None
    difficulty: TaskDifficulty | None = None
    due_date: date | None = None
    reward_points: int | None = Field(
        default=None, ge=Constants.MIN_REWARD_POINTS, le=Constants.MAX_REWARD_POINTS
    )
    tags: list[str] | None = None
    recurring: RecurrenceSettings | None = None
    metadata: TaskMetadata | None = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        """Deduplicate tags."""
        return normalize_tags(v) if v is not None else None


class TransitionPayload(BaseModel):
    """Data supplied with a status transition.

    Which fields are required depends on the target status: completion needs `proof`,
    rejection needs `rejection_reason`.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    proof: CompletionProof | None = Field(default=None, description="Evidence reference for completion")
    verification_notes: str | None = Field(default=None, max_length=Constants.MAX_NOTES_LENGTH)
    rejection_reason: str | None = Field(default=None, max_length=Constants.MAX_NOTES_LENGTH)
    notes: str | None = Field(default=None, max_length=Constants.MAX_NOTES_LENGTH, description="Free-form log note")
