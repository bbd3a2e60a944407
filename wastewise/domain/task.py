"""Task domain models and enums."""

import json
from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from wastewise.core.config import Constants


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TaskCategory(StrEnum):
    """Sustainability area a task belongs to."""

    RECYCLING = "recycling"
    COMPOSTING = "composting"
    WASTE_REDUCTION = "waste_reduction"
    PLASTIC_FREE = "plastic_free"
    ENERGY_SAVING = "energy_saving"
    WATER_CONSERVATION = "water_conservation"
    COMMUNITY_CLEANUP = "community_cleanup"
    EDUCATION = "education"


class TaskPriority(StrEnum):
    """Task priority (informational)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskDifficulty(StrEnum):
    """Task difficulty (informational)."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class RecurrenceFrequency(StrEnum):
    """How often a recurring task comes back after verification."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ProofKind(StrEnum):
    """Kind of evidence a resident submitted."""

    IMAGE = "image"
    TEXT = "text"
    FILE = "file"


# Statuses that no longer count as open work
CLOSED_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.VERIFIED, TaskStatus.REJECTED, TaskStatus.CANCELLED})


def normalize_tags(tags: list[str]) -> list[str]:
    """Trim tags, drop empty ones and deduplicate keeping the first occurrence."""
    seen: set[str] = set()
    normalized: list[str] = []
    for raw in tags:
        tag = raw.strip()
        if tag and tag not in seen:
            seen.add(tag)
            normalized.append(tag)
    return normalized


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class RecurrenceSettings(BaseModel):
    """Recurrence rule attached to a task."""

    is_recurring: bool = Field(default=False, description="Whether a successor is created after verification")
    frequency: RecurrenceFrequency = Field(default=RecurrenceFrequency.MONTHLY, description="Recurrence period")
    end_date: date | None = Field(default=None, description="Last date a successor may be due on")


class TaskMetadata(BaseModel):
    """Informational task metadata."""

    estimated_time: int | None = Field(default=None, ge=0, description="Estimated effort in minutes")
    impact_score: int = Field(
        default=Constants.DEFAULT_IMPACT_SCORE,
        ge=Constants.MIN_IMPACT_SCORE,
        le=Constants.MAX_IMPACT_SCORE,
        description="Sustainability impact, 1 (low) to 10 (high)",
    )


class CompletionProof(BaseModel):
    """Reference to evidence held by the proof storage service."""

    reference: str = Field(..., min_length=1, description="Reference string returned by proof storage")
    kind: ProofKind = Field(default=ProofKind.TEXT, description="Kind of evidence")
    description: str | None = Field(default=None, max_length=Constants.MAX_NOTES_LENGTH)

    @field_validator("reference")
    @classmethod
    def validate_reference_not_blank(cls, v: str) -> str:
        """Reject whitespace-only references."""
        v = v.strip()
        if not v:
            raise ValueError("Proof reference cannot be empty")
        return v


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID from database")
    title: str = Field(..., description="Task title")
    description: str = Field(..., description="What the resident is asked to do")
    category: TaskCategory = Field(..., description="Sustainability category")
    assigned_to: str = Field(..., description="Resident the task belongs to")
    assigned_by: str = Field(..., description="Manager who created the task")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    difficulty: TaskDifficulty = Field(default=TaskDifficulty.MEDIUM)
    due_date: date = Field(..., description="Date the task is due")
    reward_points: int = Field(..., description="Points credited on verification")
    tags: list[str] = Field(default_factory=list)
    recurring: RecurrenceSettings | None = Field(default=None)
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)
    proof: CompletionProof | None = Field(default=None, description="Evidence submitted at completion")
    verification_notes: str | None = Field(default=None)
    rejection_reason: str | None = Field(default=None)
    status: TaskStatus = Field(default=TaskStatus.ASSIGNED, description="Current lifecycle status")
    parent_task_id: str | None = Field(default=None, description="Task whose verification created this one")
    is_active: bool = Field(default=True, description="False once soft deleted")
    version: int = Field(default=1, description="Optimistic concurrency version")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")
    updated_at: str = Field(..., description="Last update timestamp (ISO format)")
    completed_at: str | None = Field(default=None)
    verified_at: str | None = Field(default=None)

    @field_validator("tags", "recurring", "metadata", "proof", mode="before")
    @classmethod
    def decode_json_columns(cls, v: Any) -> Any:
        """Decode JSON text stored in SQLite."""
        return _decode_json(v)

    @property
    def is_recurring(self) -> bool:
        """Whether verification of this task should spawn a successor."""
        return self.recurring is not None and self.recurring.is_recurring

    def is_overdue(self, *, today: date) -> bool:
        """Whether the due date has passed while the task is still open."""
        return self.due_date < today and self.status not in CLOSED_STATUSES
