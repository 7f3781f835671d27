"""Business rules that gate booking, cancelling and rescheduling."""

from datetime import datetime, timedelta, tzinfo
from uuid import UUID

from app.config import Settings
from app.core.clock import Clock, ensure_utc, get_timezone, to_local
from app.core.exceptions import (
    DoctorNotSchedulable,
    FutureAppointmentLimitExceeded,
    InactiveProfile,
    InsufficientLeadTime,
    InvalidDuration,
    InvalidTransition,
    OutsideAvailability,
    PatientBlocked,
    ProfileIncomplete,
    RescheduleLimitExceeded,
    ScheduleBlocked,
    SchedulingConflict,
)
from app.repositories.appointment_repository import AppointmentRepository
from app.schemas.appointments import AppointmentAction, AppointmentResponse, AppointmentStatus
from app.schemas.doctors import DoctorProfile, WeeklySchedule
from app.schemas.patients import PatientProfile
from app.schemas.users import Actor, UserRole
from app.services.availability_service import (
    AvailabilityReader,
    allows_scheduling,
    find_covering_window,
    find_intersecting_block,
)
from app.services.conflict_detector import ConflictDetector


class AppointmentValidationService:
    """
    Ordered, fail-fast rule chain for scheduling requests.

    Each ``ensure_*`` method checks one rule and raises the matching
    ``SchedulingViolation`` subclass. The ``validate_*`` methods run the rules
    in their fixed order.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        availability: AvailabilityReader,
        conflicts: ConflictDetector,
        clock: Clock,
        settings: Settings,
    ):
        """Initialize validation service with its collaborators."""
        self.repository = repository
        self.availability = availability
        self.conflicts = conflicts
        self.clock = clock
        self.settings = settings
        self.tz: tzinfo = get_timezone(settings.clinic_timezone)

    def normalize_start(self, value: datetime) -> datetime:
        """Interpret naive datetimes as clinic-local time and convert to UTC."""
        return ensure_utc(value, assume=self.tz)

    # Individual rules

    def ensure_valid_duration(self, duration_minutes: int | None) -> int:
        """Apply the default duration and check its bounds."""
        if duration_minutes is None:
            return self.settings.default_appointment_duration_minutes

        maximum = self.settings.max_appointment_duration_minutes
        if duration_minutes <= 0 or duration_minutes > maximum:
            raise InvalidDuration(
                f"Duration must be between 1 and {maximum} minutes, got {duration_minutes}"
            )
        return duration_minutes

    def ensure_profiles_active(self, doctor: DoctorProfile, patient: PatientProfile) -> None:
        """Reject when the doctor or the patient account is inactive."""
        if not doctor.is_available:
            raise InactiveProfile("The doctor is inactive and cannot receive appointments")
        if not patient.user_is_active:
            raise InactiveProfile(
                "The patient account is inactive and cannot book appointments",
                field="patient",
            )

    def ensure_patient_not_blocked(self, patient: PatientProfile) -> None:
        """Reject patients blocked for new appointments."""
        if patient.is_blocked:
            reason = patient.blocked_reason or "no reason recorded"
            raise PatientBlocked(f"Patient is blocked for new appointments: {reason}")

    def ensure_doctor_schedulable(self, schedules: list[WeeklySchedule]) -> None:
        """Reject doctors without any open weekly window."""
        if not allows_scheduling(schedules):
            raise DoctorNotSchedulable()

    def ensure_profile_completed(self, patient: PatientProfile) -> None:
        """Reject patients who have not completed their profile."""
        if not patient.profile_completed:
            raise ProfileIncomplete()

    async def ensure_future_limit(self, patient: PatientProfile, now: datetime) -> None:
        """Reject when the patient already holds the maximum of upcoming appointments."""
        maximum = self.settings.max_future_appointments_per_patient
        current = await self.repository.count_future_active(patient.id, now)
        if current >= maximum:
            raise FutureAppointmentLimitExceeded(
                f"Patient already has {current} upcoming appointments (maximum {maximum})"
            )

    def ensure_lead_time(self, start: datetime, now: datetime, hours: int | None = None) -> None:
        """Require ``start`` to be at least ``hours`` away from now."""
        hours = self.settings.min_lead_time_hours if hours is None else hours
        if start - now < timedelta(hours=hours):
            raise InsufficientLeadTime(
                f"Appointments must be scheduled at least {hours} hours in advance"
            )

    async def ensure_available(
        self,
        doctor_id: UUID,
        start: datetime,
        duration_minutes: int,
        schedules: list[WeeklySchedule] | None = None,
    ) -> None:
        """
        Check the interval against date blocks and then weekly windows.

        Both are evaluated in the clinic timezone.

        Raises:
            ScheduleBlocked: If a full-day block or an intersecting partial block exists
            OutsideAvailability: If no open weekly window contains the interval
        """
        local_start = to_local(start, self.tz)
        local_end = to_local(start + timedelta(minutes=duration_minutes), self.tz)

        blocks = await self.availability.blocks_for(doctor_id, local_start.date())
        block = find_intersecting_block(blocks, local_start, local_end)
        if block is not None:
            reason = f": {block.reason}" if block.reason else ""
            raise ScheduleBlocked(f"The doctor has blocked this time{reason}")

        if schedules is None:
            schedules = await self.availability.weekly_schedules(doctor_id)
        if find_covering_window(schedules, local_start, local_end) is None:
            raise OutsideAvailability(
                f"The doctor is not available on {local_start:%A} "
                f"from {local_start:%H:%M} to {local_end:%H:%M}"
            )

    async def ensure_no_conflict(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        start: datetime,
        duration_minutes: int,
        ignore_appointment_id: UUID | None = None,
    ) -> None:
        """Reject intervals that overlap an active appointment of either participant."""
        conflict = await self.conflicts.find_conflict(
            doctor_id, patient_id, start, duration_minutes, ignore_appointment_id
        )
        if conflict is None:
            return
        if conflict.doctor_id == doctor_id:
            raise SchedulingConflict("The doctor already has an appointment at this time")
        raise SchedulingConflict("The patient already has an appointment at this time")

    # Rule chains

    async def validate_creation(
        self,
        doctor: DoctorProfile,
        patient: PatientProfile,
        start: datetime,
        duration_minutes: int,
        enforce_lead_time: bool = True,
    ) -> None:
        """
        Run the booking rule chain in order, stopping at the first violation.

        Args:
            doctor: Doctor being booked
            patient: Patient the appointment is for
            start: Requested start (aware UTC)
            duration_minutes: Requested duration
            enforce_lead_time: False when an administrator books

        Raises:
            SchedulingViolation: The first rule that fails
        """
        now = self.clock.now()

        self.ensure_profiles_active(doctor, patient)
        self.ensure_patient_not_blocked(patient)

        schedules = await self.availability.weekly_schedules(doctor.id)
        self.ensure_doctor_schedulable(schedules)

        self.ensure_profile_completed(patient)
        await self.ensure_future_limit(patient, now)

        if enforce_lead_time:
            self.ensure_lead_time(start, now)

        await self.ensure_available(doctor.id, start, duration_minutes, schedules)
        await self.ensure_no_conflict(doctor.id, patient.id, start, duration_minutes)

    def ensure_cancellation_allowed(self, appointment: AppointmentResponse, actor: Actor) -> None:
        """
        Check whether an appointment may be cancelled by an actor.

        No-shows are final. Non-administrators must cancel before the
        cancellation window opens.
        """
        if appointment.status == AppointmentStatus.NO_SHOW:
            raise InvalidTransition("A missed appointment cannot be cancelled")

        if actor.is_admin:
            return

        hours = self.settings.cancellation_window_hours
        if appointment.scheduled_at - self.clock.now() < timedelta(hours=hours):
            raise InsufficientLeadTime(
                f"Appointments can only be cancelled at least {hours} hours in advance"
            )

    async def ensure_reschedule_allowed(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        doctor: DoctorProfile,
        patient: PatientProfile,
    ) -> None:
        """Check whether an appointment may be moved at all, before looking at the new time."""
        if appointment.status == AppointmentStatus.NO_SHOW:
            raise InvalidTransition("Appointments marked as no-show cannot be rescheduled")

        if actor.is_admin:
            return

        maximum = self.settings.max_reschedules
        done = await self.repository.count_logs(appointment.id, AppointmentAction.RESCHEDULED)
        if done >= maximum:
            raise RescheduleLimitExceeded(
                f"This appointment has already been rescheduled {done} times (maximum {maximum})"
            )

        hours = self.settings.cancellation_window_hours
        if appointment.scheduled_at - self.clock.now() < timedelta(hours=hours):
            raise InsufficientLeadTime(
                f"Appointments can only be rescheduled at least {hours} hours in advance"
            )

        if actor.role == UserRole.DOCTOR and not doctor.is_available:
            raise InactiveProfile("Inactive doctors cannot reschedule appointments")
        if actor.role == UserRole.PATIENT and not patient.user_is_active:
            raise InactiveProfile(
                "Inactive patients cannot reschedule appointments", field="patient"
            )

    async def validate_reschedule(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        doctor: DoctorProfile,
        patient: PatientProfile,
        new_start: datetime,
        duration_minutes: int,
    ) -> None:
        """Run the reschedule checks followed by the time rules on the new interval."""
        await self.ensure_reschedule_allowed(appointment, actor, doctor, patient)

        if not actor.is_admin:
            self.ensure_lead_time(new_start, self.clock.now())

        await self.ensure_available(doctor.id, new_start, duration_minutes)
        await self.ensure_no_conflict(
            doctor.id,
            patient.id,
            new_start,
            duration_minutes,
            ignore_appointment_id=appointment.id,
        )
