"""User and actor schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class UserRole(str, Enum):
    """User role enumeration."""

    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class Actor(BaseModel):
    """The authenticated user performing an operation."""

    user_id: UUID
    role: UserRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        """Check if the actor is an administrator."""
        return self.role == UserRole.ADMIN


class UserSummary(BaseModel):
    """Minimal user data needed by the scheduling engine."""

    id: UUID
    full_name: str
    email: str
    role: UserRole
    is_active: bool

    model_config = {"from_attributes": True}
