"""Actor and resident reference models."""

from enum import StrEnum

from pydantic import BaseModel, Field


class ActorRole(StrEnum):
    """Portal role of the user performing an operation."""

    RESIDENT = "resident"
    SUSTAINABILITY_MANAGER = "sustainability_manager"
    CITY_MANAGER = "city_manager"
    ADMIN = "admin"


# Roles allowed to create, assign and review tasks
TASK_MANAGER_ROLES: frozenset[ActorRole] = frozenset({ActorRole.SUSTAINABILITY_MANAGER, ActorRole.ADMIN})


class Actor(BaseModel):
    """Authenticated user on whose behalf an operation runs."""

    id: str = Field(..., min_length=1, description="User ID from the portal's identity provider")
    role: ActorRole = Field(..., description="Portal role")

    @property
    def is_admin(self) -> bool:
        """Whether the actor is an administrator."""
        return self.role == ActorRole.ADMIN

    @property
    def can_manage_tasks(self) -> bool:
        """Whether the actor may create and review tasks."""
        return self.role in TASK_MANAGER_ROLES


class ResidentRef(BaseModel):
    """Resident as returned by the resident directory."""

    id: str = Field(..., description="Resident ID")
    name: str | None = Field(default=None, description="Display name")
    email: str | None = Field(default=None, description="Contact email")
