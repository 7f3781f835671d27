"""Appointment schemas for request/response validation."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @property
    def is_final(self) -> bool:
        """Terminal statuses accept no further transitions."""
        return self in FINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Active appointments occupy their interval."""
        return self in ACTIVE_STATUSES


FINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


class AppointmentType(str, Enum):
    """Appointment type enumeration."""

    PRESENTIAL = "PRESENTIAL"
    ONLINE = "ONLINE"
    FIRST_VISIT = "FIRST_VISIT"
    RETURN = "RETURN"


class AppointmentAction(str, Enum):
    """Action tag recorded on every appointment log row."""

    CREATED = "created"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    MARKED_NO_SHOW = "marked_no_show"
    RESCHEDULED = "rescheduled"


class ListPeriod(str, Enum):
    """Period filter for appointment listings."""

    FUTURE = "future"
    PAST = "past"
    ALL = "all"


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment."""

    patient_id: UUID
    doctor_id: UUID
    scheduled_at: datetime
    duration_minutes: int | None = Field(None, gt=0)
    type: AppointmentType = AppointmentType.PRESENTIAL
    price: Decimal | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=1000)
    metadata: dict[str, Any] | None = None


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    created_by: UUID
    scheduled_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    type: AppointmentType = AppointmentType.PRESENTIAL
    price: Decimal | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    reminder_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def ends_at(self) -> datetime:
        """End of the half-open interval [scheduled_at, ends_at)."""
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)


class AppointmentLogResponse(BaseModel):
    """Schema for one appointment transition."""

    id: UUID
    appointment_id: UUID
    old_status: AppointmentStatus | None = None
    new_status: AppointmentStatus
    action: AppointmentAction
    changed_by: UUID
    reason: str | None = None
    metadata: dict[str, Any] | None = None
    changed_at: datetime

    model_config = {"from_attributes": True}


class AppointmentDetailResponse(AppointmentResponse):
    """Appointment with its transition history."""

    logs: list[AppointmentLogResponse] = []
    allowed_transitions: list[AppointmentStatus] = []


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    start_date: date | None = None
    end_date: date | None = None
    period: ListPeriod = ListPeriod.ALL
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)

    @field_validator("period", mode="before")
    @classmethod
    def default_period(cls, v: Any) -> Any:
        """Treat an empty period as no filter."""
        return v or ListPeriod.ALL

    @model_validator(mode="after")
    def validate_dates(self) -> "AppointmentFilters":
        """Validate date range ordering."""
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def cache_fingerprint(self) -> dict[str, Any]:
        """Stable representation used to build cache keys."""
        return self.model_dump(mode="json")
