"""Appointment status state machine."""

from datetime import datetime

from app.core.exceptions import InvalidTransition
from app.schemas.appointments import AppointmentStatus
from app.schemas.users import UserRole

PENDING = AppointmentStatus.PENDING
CONFIRMED = AppointmentStatus.CONFIRMED
COMPLETED = AppointmentStatus.COMPLETED
CANCELLED = AppointmentStatus.CANCELLED
NO_SHOW = AppointmentStatus.NO_SHOW

ALL_ROLES = frozenset(UserRole)
STAFF_ROLES = frozenset({UserRole.DOCTOR, UserRole.ADMIN})

# (from, to) -> roles allowed to perform the move
TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentStatus], frozenset[UserRole]] = {
    (PENDING, CONFIRMED): STAFF_ROLES,
    (PENDING, CANCELLED): ALL_ROLES,
    (CONFIRMED, CANCELLED): ALL_ROLES,
    (PENDING, COMPLETED): STAFF_ROLES,
    (CONFIRMED, COMPLETED): STAFF_ROLES,
    (CONFIRMED, NO_SHOW): STAFF_ROLES,
}

# Targets that only make sense once the appointment has started
REQUIRES_ELAPSED = frozenset({COMPLETED, NO_SHOW})


class StatusWorkflow:
    """Decides which role may move an appointment between statuses."""

    def can_transition(
        self,
        current: AppointmentStatus,
        target: AppointmentStatus,
        role: UserRole,
    ) -> bool:
        """Check the transition table, ignoring timing."""
        return role in TRANSITIONS.get((current, target), frozenset())

    def authorize(
        self,
        current: AppointmentStatus,
        target: AppointmentStatus,
        role: UserRole,
        scheduled_at: datetime,
        now: datetime,
    ) -> None:
        """
        Validate a status change.

        Args:
            current: Current appointment status
            target: Requested status
            role: Role of the acting user
            scheduled_at: Appointment start
            now: Current time

        Raises:
            InvalidTransition: If the move is not in the table for this role, or
                the target requires the appointment time to have passed
        """
        if current.is_final:
            raise InvalidTransition(
                f"Appointment is already {current.value} and cannot change to {target.value}"
            )

        if not self.can_transition(current, target, role):
            raise InvalidTransition(
                f"Cannot change status from {current.value} to {target.value} "
                f"as {role.value}"
            )

        if target in REQUIRES_ELAPSED and now < scheduled_at:
            raise InvalidTransition(
                f"Cannot mark appointment as {target.value} before its scheduled time"
            )

    def allowed_transitions(
        self,
        current: AppointmentStatus,
        role: UserRole,
    ) -> list[AppointmentStatus]:
        """List the statuses a role may move an appointment to."""
        return [
            target
            for (source, target), roles in TRANSITIONS.items()
            if source == current and role in roles
        ]

    def is_final(self, status: AppointmentStatus) -> bool:
        """Check if a status is terminal."""
        return status.is_final
