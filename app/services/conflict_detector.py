"""Double-booking detection over half-open appointment intervals."""

from datetime import datetime, timedelta
from uuid import UUID

import structlog

from app.repositories.appointment_repository import AppointmentRepository
from app.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """
    Check whether [start_a, end_a) and [start_b, end_b) share any instant.

    Covers a starting inside b, a ending inside b and a containing b. Intervals
    that only touch at a boundary do not overlap.
    """
    return start_a < end_b and start_b < end_a


class ConflictDetector:
    """Finds active appointments that collide with a proposed interval."""

    def __init__(self, repository: AppointmentRepository, max_duration_minutes: int):
        """
        Initialize detector.

        Args:
            repository: Appointment persistence
            max_duration_minutes: Longest appointment the system accepts; bounds
                how far back a colliding appointment can start
        """
        self.repository = repository
        self.max_duration = timedelta(minutes=max_duration_minutes)

    async def find_conflict(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        start: datetime,
        duration_minutes: int,
        ignore_appointment_id: UUID | None = None,
    ) -> AppointmentResponse | None:
        """Return the first PENDING/CONFIRMED appointment overlapping the interval."""
        end = start + timedelta(minutes=duration_minutes)

        candidates = await self.repository.find_active_in_window(
            doctor_id=doctor_id,
            patient_id=patient_id,
            window_start=start - self.max_duration,
            window_end=end,
            exclude_id=ignore_appointment_id,
        )

        for existing in candidates:
            if existing.id == ignore_appointment_id or not existing.status.is_active:
                continue
            if existing.doctor_id != doctor_id and existing.patient_id != patient_id:
                continue
            if intervals_overlap(start, end, existing.scheduled_at, existing.ends_at):
                logger.info(
                    "scheduling_conflict_detected",
                    existing_appointment_id=str(existing.id),
                    doctor_id=str(doctor_id),
                    patient_id=str(patient_id),
                    start=start.isoformat(),
                )
                return existing
        return None

    async def has_conflict(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        start: datetime,
        duration_minutes: int,
        ignore_appointment_id: UUID | None = None,
    ) -> bool:
        """Check whether the interval collides with an active appointment."""
        conflict = await self.find_conflict(
            doctor_id, patient_id, start, duration_minutes, ignore_appointment_id
        )
        return conflict is not None
