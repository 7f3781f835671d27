"""Doctor and availability schemas."""

from datetime import date, time
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class DoctorProfile(BaseModel):
    """Doctor aggregate as read by the scheduling engine."""

    id: UUID
    user_id: UUID
    full_name: str
    is_active: bool
    user_is_active: bool
    specialization: str | None = None

    model_config = {"from_attributes": True}

    @property
    def is_available(self) -> bool:
        """Both the doctor profile and its user account are active."""
        return self.is_active and self.user_is_active


class WeeklySchedule(BaseModel):
    """A recurring weekly availability window."""

    day_of_week: int = Field(..., ge=1, le=7)
    start_time: time
    end_time: time
    is_blocked: bool = False

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def validate_range(self) -> "WeeklySchedule":
        """Validate the window is not empty."""
        if self.start_time >= self.end_time:
            raise ValueError("Schedule start_time must be before end_time")
        return self


class ScheduleBlock(BaseModel):
    """A one-off block on a calendar date, either the whole day or a time range."""

    blocked_date: date
    start_time: time | None = None
    end_time: time | None = None
    is_full_day: bool = False
    reason: str | None = None

    model_config = {"from_attributes": True}

    @property
    def covers_whole_day(self) -> bool:
        """A block without any time bounds applies to the whole day."""
        return self.is_full_day or (self.start_time is None and self.end_time is None)
