"""Patient schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class PatientProfile(BaseModel):
    """Patient aggregate as read by the scheduling engine."""

    id: UUID
    user_id: UUID
    full_name: str
    user_is_active: bool
    profile_completed_at: datetime | None = None
    consecutive_no_shows: int = Field(default=0, ge=0)
    is_blocked: bool = False
    blocked_at: datetime | None = None
    blocked_reason: str | None = None

    model_config = {"from_attributes": True}

    @property
    def profile_completed(self) -> bool:
        """Check if the patient finished onboarding."""
        return self.profile_completed_at is not None


class SchedulingStatusResponse(BaseModel):
    """Whether a patient may book another appointment right now."""

    current_future_appointments: int
    max_allowed: int
    remaining_slots: int
    can_schedule: bool
    is_blocked: bool
    blocked_reason: str | None = None
    consecutive_no_shows: int
