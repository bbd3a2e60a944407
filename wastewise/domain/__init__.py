"""Domain models and DTOs."""

from wastewise.domain.create_models import TaskCreate, TaskTemplate
from wastewise.domain.log import TaskAction, TaskLog
from wastewise.domain.task import (
    CompletionProof,
    ProofKind,
    RecurrenceFrequency,
    RecurrenceSettings,
    Task,
    TaskCategory,
    TaskDifficulty,
    TaskMetadata,
    TaskPriority,
    TaskStatus,
)
from wastewise.domain.update_models import TaskUpdate, TransitionPayload
from wastewise.domain.user import Actor, ActorRole, ResidentRef


__all__ = [
    "Actor",
    "ActorRole",
    "CompletionProof",
    "ProofKind",
    "RecurrenceFrequency",
    "RecurrenceSettings",
    "ResidentRef",
    "Task",
    "TaskAction",
    "TaskCategory",
    "TaskCreate",
    "TaskDifficulty",
    "TaskLog",
    "TaskMetadata",
    "TaskPriority",
    "TaskStatus",
    "TaskTemplate",
    "TaskUpdate",
    "TransitionPayload",
]
