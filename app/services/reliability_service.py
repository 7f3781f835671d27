"""Consecutive no-show tracking and automatic patient blocking."""

from collections.abc import Iterable

import structlog

from app.config import Settings
from app.core.clock import Clock
from app.repositories.appointment_repository import AppointmentRepository
from app.schemas.appointments import AppointmentStatus
from app.schemas.patients import PatientProfile

logger = structlog.get_logger(__name__)


def count_consecutive_no_shows(statuses: Iterable[AppointmentStatus]) -> int:
    """
    Count the NO_SHOW streak at the head of a newest-first outcome list.

    The first COMPLETED outcome ends the streak.
    """
    count = 0
    for status in statuses:
        if status != AppointmentStatus.NO_SHOW:
            break
        count += 1
    return count


class ReliabilityTracker:
    """Keeps a patient's no-show counter in sync with their appointment history."""

    def __init__(self, repository: AppointmentRepository, clock: Clock, settings: Settings):
        """Initialize tracker."""
        self.repository = repository
        self.clock = clock
        self.lookback = settings.no_show_lookback
        self.block_threshold = settings.no_show_block_threshold

    async def record_no_show(self, patient: PatientProfile) -> PatientProfile:
        """
        Recompute the no-show streak after a NO_SHOW transition.

        Must run inside the transaction that wrote the NO_SHOW status so the
        new outcome is part of the history. Blocks the patient the first time
        the streak reaches the threshold.

        Args:
            patient: Patient whose appointment was marked as no-show

        Returns:
            Updated patient profile
        """
        outcomes = await self.repository.recent_outcomes(patient.id, self.lookback)
        streak = count_consecutive_no_shows(outcomes)

        values: dict[str, object] = {"consecutive_no_shows": streak}
        now = self.clock.now()

        should_block = streak >= self.block_threshold and not patient.is_blocked
        if should_block:
            values.update(
                is_blocked=True,
                blocked_at=now,
                blocked_reason=f"Automatically blocked after {streak} consecutive no-shows",
            )

        updated = await self.repository.update_patient_reliability(patient.id, values, now)

        if should_block:
            logger.warning(
                "patient_auto_blocked",
                patient_id=str(patient.id),
                consecutive_no_shows=streak,
            )
        else:
            logger.info(
                "patient_no_show_recorded",
                patient_id=str(patient.id),
                consecutive_no_shows=streak,
            )

        return updated

    async def record_completion(self, patient: PatientProfile) -> PatientProfile:
        """Reset the streak after a COMPLETED transition."""
        if patient.consecutive_no_shows == 0:
            return patient
        return await self.repository.update_patient_reliability(
            patient.id, {"consecutive_no_shows": 0}, self.clock.now()
        )

    def just_blocked(self, before: PatientProfile, after: PatientProfile) -> bool:
        """Check whether a reliability update transitioned the patient into blocked."""
        return after.is_blocked and not before.is_blocked
