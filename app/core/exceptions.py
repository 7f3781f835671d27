"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


# Scheduling rule violations


class SchedulingViolation(ValidationException):
    """
    A business rule rejected a scheduling request.

    Every violation is tagged with the request field it concerns so the caller
    can attach the message to the right input.
    """

    code = "scheduling_violation"
    default_field = "scheduled_at"
    default_message = "The appointment request violates a scheduling rule"

    def __init__(self, message: str | None = None, field: str | None = None):
        """Initialize with an optional message and field override."""
        self.field = field or self.default_field
        super().__init__(message or self.default_message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the violation for an API error body."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "field": self.field,
            "message": self.message,
        }


class InactiveProfile(SchedulingViolation):
    """Doctor or patient profile has been deactivated."""

    code = "inactive_profile"
    default_field = "doctor_id"
    default_message = "This profile is inactive and cannot take part in scheduling"


class PatientBlocked(SchedulingViolation):
    """Patient is blocked from booking."""

    code = "patient_blocked"
    default_field = "patient"
    default_message = "Your account is blocked for new appointments"


class DoctorNotSchedulable(SchedulingViolation):
    """Doctor has no open weekly schedule."""

    code = "doctor_not_schedulable"
    default_field = "doctor_id"
    default_message = "The doctor has no open schedule for new appointments"


class ProfileIncomplete(SchedulingViolation):
    """Patient has not completed their profile."""

    code = "profile_incomplete"
    default_field = "patient"
    default_message = "Complete your profile before booking an appointment"


class FutureAppointmentLimitExceeded(SchedulingViolation):
    """Patient already holds the maximum number of upcoming appointments."""

    code = "future_appointment_limit_exceeded"
    default_field = "patient"
    default_message = "You have reached the maximum number of upcoming appointments"


class InsufficientLeadTime(SchedulingViolation):
    """Requested time is too close to now."""

    code = "insufficient_lead_time"
    default_message = "Appointments must be booked further in advance"


class OutsideAvailability(SchedulingViolation):
    """Requested interval is outside the doctor's weekly availability."""

    code = "outside_availability"
    default_message = "The doctor is not available at this time"


class ScheduleBlocked(SchedulingViolation):
    """Requested interval hits a schedule block."""

    code = "schedule_blocked"
    default_message = "The doctor has blocked this time"


class SchedulingConflict(SchedulingViolation):
    """Requested interval overlaps another active appointment."""

    code = "scheduling_conflict"
    default_message = "This time conflicts with another appointment"


class InvalidTransition(SchedulingViolation):
    """Status change is not allowed for this appointment or role."""

    code = "invalid_transition"
    default_field = "status"
    default_message = "This status change is not allowed"


class RescheduleLimitExceeded(SchedulingViolation):
    """Appointment has already been rescheduled too many times."""

    code = "reschedule_limit_exceeded"
    default_message = "Reschedule limit reached for this appointment"


class InvalidDuration(SchedulingViolation):
    """Duration is not a positive number of minutes within bounds."""

    code = "invalid_duration"
    default_field = "duration_minutes"
    default_message = "Invalid appointment duration"
