"""Appointment service for business logic."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.clock import Clock, to_local
from app.core.exceptions import BadRequestException, ForbiddenException, NotFoundException
from app.core.logging import bind_log_context
from app.core.redis_client import CacheManager
from app.repositories.appointment_repository import AppointmentRepository
from app.schemas.appointments import (
    AppointmentAction,
    AppointmentCreate,
    AppointmentDetailResponse,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
)
from app.schemas.doctors import DoctorProfile
from app.schemas.patients import PatientProfile, SchedulingStatusResponse
from app.schemas.users import Actor, UserRole
from app.services.appointment_validation_service import AppointmentValidationService
from app.services.availability_service import AvailabilityReader
from app.services.cache_service import (
    ADMIN_SCOPE,
    AppointmentCacheInvalidator,
    doctor_scope,
    listing_cache_key,
    patient_scope,
)
from app.services.conflict_detector import ConflictDetector
from app.services.notification_service import NotificationDispatcher
from app.services.reliability_service import ReliabilityTracker
from app.services.status_workflow import StatusWorkflow

logger = structlog.get_logger(__name__)

# (recipient user id, template key)
Notice = tuple[UUID, str]


class AppointmentService:
    """
    Scheduling engine facade.

    Every mutating operation loads the appointment aggregates, validates,
    authorizes the status change and persists the new state together with a
    log row in one transaction. Cache invalidation and notifications run after
    the commit and never undo it.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        availability: AvailabilityReader,
        dispatcher: NotificationDispatcher,
        cache: CacheManager | None = None,
        cache_invalidator: AppointmentCacheInvalidator | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize service with its collaborators.

        Args:
            repository: Appointment persistence
            availability: Weekly schedules and blocks of doctors
            dispatcher: Notification outbox
            cache: Cache for appointment listings, disabled when None
            cache_invalidator: Defaults to one built on ``cache``
            clock: Time source
            settings: Scheduling rule configuration
        """
        self.repository = repository
        self.dispatcher = dispatcher
        self.cache = cache
        if cache_invalidator is None and cache is not None:
            cache_invalidator = AppointmentCacheInvalidator(cache)
        self.cache_invalidator = cache_invalidator
        self.clock = clock or Clock()
        self.settings = settings or get_settings()

        self.workflow = StatusWorkflow()
        self.reliability = ReliabilityTracker(repository, self.clock, self.settings)
        self.validation = AppointmentValidationService(
            repository=repository,
            availability=availability,
            conflicts=ConflictDetector(repository, self.settings.max_appointment_duration_minutes),
            clock=self.clock,
            settings=self.settings,
        )

    @classmethod
    def from_session(
        cls,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        settings: Settings | None = None,
    ) -> "AppointmentService":
        """Build the service on a database session."""
        return cls(
            repository=AppointmentRepository(db),
            availability=AvailabilityReader(db),
            dispatcher=NotificationDispatcher(db),
            cache=cache_manager,
            settings=settings,
        )

    # Commands

    async def create(self, actor: Actor, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book a new appointment in PENDING status.

        Args:
            actor: User performing the booking
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            NotFoundException: If the actor, patient or doctor does not exist
            ForbiddenException: If the actor may not book for this patient
            BadRequestException: If doctor and patient are the same person
            SchedulingViolation: If a booking rule fails
        """
        bind_log_context(actor_id=actor.user_id, actor_role=actor.role.value)

        duration = self.validation.ensure_valid_duration(data.duration_minutes)
        start = self.validation.normalize_start(data.scheduled_at)

        async with self.repository.transaction():
            user = await self.repository.get_user(actor.user_id)
            if user is None:
                raise NotFoundException("User not found")
            if not user.is_active:
                raise ForbiddenException("Inactive users cannot create appointments")
            if actor.role == UserRole.DOCTOR:
                raise ForbiddenException("Doctors cannot create appointments")

            await self.repository.lock_participants(data.doctor_id, data.patient_id)

            patient = await self.repository.get_patient(data.patient_id)
            if patient is None:
                raise NotFoundException("Patient not found")
            if actor.role == UserRole.PATIENT and patient.user_id != actor.user_id:
                raise ForbiddenException("Patients can only book appointments for themselves")

            doctor = await self.repository.get_doctor(data.doctor_id)
            if doctor is None:
                raise NotFoundException("Doctor not found")
            if doctor.user_id == patient.user_id:
                raise BadRequestException("A doctor cannot book an appointment with themselves")

            await self.validation.validate_creation(
                doctor,
                patient,
                start,
                duration,
                enforce_lead_time=not actor.is_admin,
            )

            now = self.clock.now()
            appointment = await self.repository.insert_appointment(
                {
                    "patient_id": patient.id,
                    "doctor_id": doctor.id,
                    "created_by": actor.user_id,
                    "scheduled_at": start,
                    "duration_minutes": duration,
                    "status": AppointmentStatus.PENDING.value,
                    "type": data.type.value,
                    "price": data.price,
                    "notes": data.notes,
                    "metadata": data.metadata,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            await self.repository.add_log(
                appointment.id,
                None,
                AppointmentStatus.PENDING,
                AppointmentAction.CREATED,
                changed_by=actor.user_id,
                changed_at=now,
            )

        logger.info(
            "appointment_created",
            appointment_id=str(appointment.id),
            doctor_id=str(doctor.id),
            patient_id=str(patient.id),
            scheduled_at=appointment.scheduled_at.isoformat(),
        )

        await self._after_commit(
            appointment,
            doctor,
            patient,
            [
                (doctor.user_id, "appointment_created_doctor"),
                (patient.user_id, "appointment_created_patient"),
            ],
        )
        return appointment

    async def confirm(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Confirm a pending appointment."""
        bind_log_context(actor_id=actor.user_id, appointment_id=appointment_id)

        async with self.repository.transaction():
            appointment, doctor, patient = await self._load_for_update(appointment_id, actor)
            now = self.clock.now()
            self.workflow.authorize(
                appointment.status,
                AppointmentStatus.CONFIRMED,
                actor.role,
                appointment.scheduled_at,
                now,
            )
            updated = await self._apply_status(
                appointment,
                actor,
                AppointmentStatus.CONFIRMED,
                AppointmentAction.CONFIRMED,
                now,
                {"confirmed_at": now},
            )

        logger.info("appointment_confirmed", appointment_id=str(appointment_id))
        await self._after_commit(
            updated, doctor, patient, [(patient.user_id, "appointment_confirmed_patient")]
        )
        return updated

    async def cancel(
        self,
        appointment_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Cancel an appointment.

        Cancelling an already cancelled appointment returns it unchanged,
        without writing a log row.

        Args:
            appointment_id: Appointment ID
            actor: User performing the cancellation
            reason: Optional reason recorded in the log and the notification

        Returns:
            Cancelled appointment
        """
        bind_log_context(actor_id=actor.user_id, appointment_id=appointment_id)

        async with self.repository.transaction():
            appointment, doctor, patient = await self._load_for_update(appointment_id, actor)
            if appointment.status == AppointmentStatus.CANCELLED:
                return appointment

            now = self.clock.now()
            self.workflow.authorize(
                appointment.status,
                AppointmentStatus.CANCELLED,
                actor.role,
                appointment.scheduled_at,
                now,
            )
            self.validation.ensure_cancellation_allowed(appointment, actor)

            updated = await self._apply_status(
                appointment,
                actor,
                AppointmentStatus.CANCELLED,
                AppointmentAction.CANCELLED,
                now,
                {"cancelled_at": now},
                reason=reason,
            )

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            cancelled_by=actor.role.value,
        )

        notices: list[Notice] = []
        if patient.user_id != actor.user_id:
            notices.append((patient.user_id, "appointment_cancelled_patient"))
        if doctor.user_id != actor.user_id:
            notices.append((doctor.user_id, "appointment_cancelled_doctor"))
        await self._after_commit(updated, doctor, patient, notices, reason=reason)
        return updated

    async def complete(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Mark an appointment as attended and reset the patient's no-show streak."""
        bind_log_context(actor_id=actor.user_id, appointment_id=appointment_id)

        async with self.repository.transaction():
            appointment, doctor, patient = await self._load_for_update(appointment_id, actor)
            now = self.clock.now()
            self.workflow.authorize(
                appointment.status,
                AppointmentStatus.COMPLETED,
                actor.role,
                appointment.scheduled_at,
                now,
            )
            updated = await self._apply_status(
                appointment,
                actor,
                AppointmentStatus.COMPLETED,
                AppointmentAction.COMPLETED,
                now,
                {"completed_at": now},
            )
            await self.reliability.record_completion(patient)

        logger.info("appointment_completed", appointment_id=str(appointment_id))
        await self._after_commit(
            updated, doctor, patient, [(patient.user_id, "appointment_completed_patient")]
        )
        return updated

    async def mark_no_show(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """
        Record that the patient missed a confirmed appointment.

        Recomputes the patient's no-show streak in the same transaction and
        blocks the patient when it reaches the threshold.
        """
        bind_log_context(actor_id=actor.user_id, appointment_id=appointment_id)

        async with self.repository.transaction():
            appointment, doctor, patient = await self._load_for_update(appointment_id, actor)
            now = self.clock.now()
            self.workflow.authorize(
                appointment.status,
                AppointmentStatus.NO_SHOW,
                actor.role,
                appointment.scheduled_at,
                now,
            )
            updated = await self._apply_status(
                appointment,
                actor,
                AppointmentStatus.NO_SHOW,
                AppointmentAction.MARKED_NO_SHOW,
                now,
                {},
            )
            reliable = await self.reliability.record_no_show(patient)

        logger.info(
            "appointment_marked_no_show",
            appointment_id=str(appointment_id),
            consecutive_no_shows=reliable.consecutive_no_shows,
        )

        notices: list[Notice] = [(patient.user_id, "appointment_no_show_patient")]
        if self.reliability.just_blocked(patient, reliable):
            notices.append((patient.user_id, "patient_blocked"))
        await self._after_commit(
            updated, doctor, reliable, notices, reason=reliable.blocked_reason or ""
        )
        return updated

    async def reschedule(
        self,
        appointment_id: UUID,
        actor: Actor,
        new_start: datetime,
        new_duration: int | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new interval.

        The appointment goes back to PENDING and its confirmation and
        cancellation timestamps are cleared.

        Args:
            appointment_id: Appointment ID
            actor: User performing the change
            new_start: New start time
            new_duration: New duration in minutes; keeps the current one when None

        Returns:
            Rescheduled appointment
        """
        bind_log_context(actor_id=actor.user_id, appointment_id=appointment_id)

        start = self.validation.normalize_start(new_start)

        async with self.repository.transaction():
            appointment, doctor, patient = await self._load_for_update(appointment_id, actor)
            if new_duration is None:
                duration = appointment.duration_minutes
            else:
                duration = self.validation.ensure_valid_duration(new_duration)

            await self.validation.validate_reschedule(
                appointment, actor, doctor, patient, start, duration
            )

            now = self.clock.now()
            updated = await self.repository.update_appointment(
                appointment.id,
                {
                    "scheduled_at": start,
                    "duration_minutes": duration,
                    "status": AppointmentStatus.PENDING.value,
                    "confirmed_at": None,
                    "cancelled_at": None,
                    "completed_at": None,
                    "reminder_sent_at": None,
                    "updated_at": now,
                },
            )
            await self.repository.add_log(
                appointment.id,
                appointment.status,
                AppointmentStatus.PENDING,
                AppointmentAction.RESCHEDULED,
                changed_by=actor.user_id,
                changed_at=now,
                metadata={
                    "previous_scheduled_at": appointment.scheduled_at.isoformat(),
                    "previous_duration_minutes": appointment.duration_minutes,
                    "new_scheduled_at": start.isoformat(),
                    "new_duration_minutes": duration,
                },
            )

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            previous_scheduled_at=appointment.scheduled_at.isoformat(),
            scheduled_at=start.isoformat(),
        )

        await self._after_commit(
            updated,
            doctor,
            patient,
            [
                (patient.user_id, "appointment_rescheduled_patient"),
                (doctor.user_id, "appointment_rescheduled_doctor"),
            ],
            previous_scheduled_at=self._format_time(appointment.scheduled_at),
        )
        return updated

    # Queries

    async def get_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
    ) -> AppointmentDetailResponse:
        """
        Get appointment with its transition history.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the actor is not a participant
        """
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundException("Appointment not found")

        doctor, patient = await self._load_participants(appointment)
        self._ensure_access(actor, doctor, patient)

        logs = await self.repository.list_logs(appointment_id)
        return AppointmentDetailResponse(
            **appointment.model_dump(),
            logs=list(logs),
            allowed_transitions=self.workflow.allowed_transitions(appointment.status, actor.role),
        )

    async def list_for_patient(
        self,
        patient_id: UUID,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """List a patient's appointments."""
        return await self._list(patient_scope(patient_id), filters, patient_id=patient_id)

    async def list_for_doctor(
        self,
        doctor_id: UUID,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """List a doctor's appointments."""
        return await self._list(doctor_scope(doctor_id), filters, doctor_id=doctor_id)

    async def list_for_admin(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """List all appointments."""
        return await self._list(ADMIN_SCOPE, filters)

    async def get_scheduling_status(self, patient_id: UUID) -> SchedulingStatusResponse:
        """Report whether a patient may book another appointment now."""
        patient = await self.repository.get_patient(patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")

        maximum = self.settings.max_future_appointments_per_patient
        current = await self.repository.count_future_active(patient_id, self.clock.now())
        remaining = max(maximum - current, 0)

        return SchedulingStatusResponse(
            current_future_appointments=current,
            max_allowed=maximum,
            remaining_slots=remaining,
            can_schedule=remaining > 0 and not patient.is_blocked,
            is_blocked=patient.is_blocked,
            blocked_reason=patient.blocked_reason,
            consecutive_no_shows=patient.consecutive_no_shows,
        )

    # Reminders

    async def send_due_reminders(self, hours_ahead: int = 24) -> int:
        """
        Queue reminders for active appointments starting in about ``hours_ahead`` hours.

        Covers appointments starting in [now + hours_ahead, now + hours_ahead + 1h)
        that have not been reminded yet. An appointment is stamped only after
        its reminder was queued, so a failed dispatch is retried on the next run.

        Returns:
            Number of reminders queued
        """
        window_start = self.clock.now() + timedelta(hours=hours_ahead)
        window_end = window_start + timedelta(hours=1)

        due = await self.repository.due_for_reminder(window_start, window_end)
        sent = 0

        for appointment in due:
            doctor, patient = await self._load_participants(appointment)
            try:
                await self.dispatcher.dispatch(
                    patient.user_id,
                    "appointment_reminder_patient",
                    self._notification_context(appointment, doctor, patient),
                    self._notification_metadata(appointment),
                )
            except Exception as e:
                logger.warning(
                    "appointment_reminder_failed",
                    appointment_id=str(appointment.id),
                    error=str(e),
                )
                continue

            async with self.repository.transaction():
                await self.repository.update_appointment(
                    appointment.id, {"reminder_sent_at": self.clock.now()}
                )
            sent += 1

        logger.info(
            "appointment_reminders_sent",
            due=len(due),
            sent=sent,
            hours_ahead=hours_ahead,
        )
        return sent

    # Helpers

    async def _load_participants(
        self,
        appointment: AppointmentResponse,
    ) -> tuple[DoctorProfile, PatientProfile]:
        doctor = await self.repository.get_doctor(appointment.doctor_id)
        if doctor is None:
            raise NotFoundException("Doctor not found")
        patient = await self.repository.get_patient(appointment.patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")
        return doctor, patient

    async def _load_for_update(
        self,
        appointment_id: UUID,
        actor: Actor,
    ) -> tuple[AppointmentResponse, DoctorProfile, PatientProfile]:
        """Lock the participants and the appointment, then check the actor's access."""
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundException("Appointment not found")

        await self.repository.lock_participants(appointment.doctor_id, appointment.patient_id)
        locked = await self.repository.get_appointment(appointment_id, for_update=True)
        if locked is None:
            raise NotFoundException("Appointment not found")

        doctor, patient = await self._load_participants(locked)
        self._ensure_access(actor, doctor, patient)
        return locked, doctor, patient

    def _ensure_access(self, actor: Actor, doctor: DoctorProfile, patient: PatientProfile) -> None:
        if actor.role == UserRole.DOCTOR and doctor.user_id != actor.user_id:
            raise ForbiddenException("Access denied to this appointment")
        if actor.role == UserRole.PATIENT and patient.user_id != actor.user_id:
            raise ForbiddenException("Access denied to this appointment")

    async def _apply_status(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        status: AppointmentStatus,
        action: AppointmentAction,
        now: datetime,
        timestamps: dict[str, Any],
        reason: str | None = None,
    ) -> AppointmentResponse:
        """Write a status change and its log row."""
        updated = await self.repository.update_appointment(
            appointment.id,
            {"status": status.value, "updated_at": now, **timestamps},
        )
        await self.repository.add_log(
            appointment.id,
            appointment.status,
            status,
            action,
            changed_by=actor.user_id,
            changed_at=now,
            reason=reason,
        )
        return updated

    async def _list(
        self,
        scope: str,
        filters: AppointmentFilters,
        patient_id: UUID | None = None,
        doctor_id: UUID | None = None,
    ) -> AppointmentListResponse:
        cache_key = listing_cache_key(scope, filters)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return AppointmentListResponse.model_validate(cached)

        total, items = await self.repository.list_appointments(
            filters,
            self.clock.now(),
            self.validation.tz,
            patient_id=patient_id,
            doctor_id=doctor_id,
        )
        response = AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

        if self.cache:
            self.cache.set_json(
                cache_key,
                response.model_dump(mode="json"),
                ttl=self.settings.appointment_list_cache_ttl,
            )
        return response

    def _format_time(self, value: datetime) -> str:
        return to_local(value, self.validation.tz).strftime("%Y-%m-%d %H:%M")

    def _notification_context(
        self,
        appointment: AppointmentResponse,
        doctor: DoctorProfile,
        patient: PatientProfile,
        **extra: Any,
    ) -> dict[str, Any]:
        return {
            "doctor_name": doctor.full_name,
            "patient_name": patient.full_name,
            "scheduled_at": self._format_time(appointment.scheduled_at),
            "reason": "",
            **extra,
        }

    def _notification_metadata(self, appointment: AppointmentResponse) -> dict[str, Any]:
        return {
            "appointment_id": str(appointment.id),
            "status": appointment.status.value,
            "scheduled_at": appointment.scheduled_at.isoformat(),
        }

    async def _after_commit(
        self,
        appointment: AppointmentResponse,
        doctor: DoctorProfile,
        patient: PatientProfile,
        notices: list[Notice],
        **context: Any,
    ) -> None:
        """Invalidate cached listings and queue notifications; failures are only logged."""
        if self.cache_invalidator is not None:
            try:
                self.cache_invalidator.invalidate(
                    patient_id=appointment.patient_id,
                    doctor_id=appointment.doctor_id,
                )
            except Exception as e:
                logger.warning(
                    "appointment_cache_invalidation_failed",
                    appointment_id=str(appointment.id),
                    error=str(e),
                )

        if not notices:
            return

        rendered = self._notification_context(appointment, doctor, patient, **context)
        if rendered["reason"] is None:
            rendered["reason"] = ""
        metadata = self._notification_metadata(appointment)

        for recipient_id, template_key in notices:
            try:
                await self.dispatcher.dispatch(recipient_id, template_key, rendered, metadata)
            except Exception as e:
                logger.warning(
                    "notification_dispatch_failed",
                    appointment_id=str(appointment.id),
                    template_key=template_key,
                    error=str(e),
                )
