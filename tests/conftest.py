from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest

from app.config import Settings
from app.core.clock import to_local
from app.core.exceptions import NotFoundException
from app.schemas.appointments import (
    AppointmentAction,
    AppointmentFilters,
    AppointmentLogResponse,
    AppointmentResponse,
    AppointmentStatus,
    ListPeriod,
)
from app.schemas.doctors import DoctorProfile, ScheduleBlock, WeeklySchedule
from app.schemas.patients import PatientProfile
from app.schemas.users import Actor, UserRole, UserSummary
from app.services.appointment_service import AppointmentService
from app.services.notification_service import render_template

# Monday
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class InMemoryAppointmentRepository:
    """Dict-backed stand-in for AppointmentRepository with transactional rollback."""

    def __init__(self) -> None:
        self.users: dict[UUID, UserSummary] = {}
        self.doctors: dict[UUID, DoctorProfile] = {}
        self.patients: dict[UUID, PatientProfile] = {}
        self.appointments: dict[UUID, AppointmentResponse] = {}
        self.logs: list[AppointmentLogResponse] = []
        self.lock_calls: list[tuple[UUID, UUID]] = []
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        snapshot = (dict(self.patients), dict(self.appointments), list(self.logs))
        try:
            yield
            self.commits += 1
        except BaseException:
            self.patients, self.appointments, self.logs = snapshot
            self.rollbacks += 1
            raise

    async def lock_participants(self, doctor_id: UUID, patient_id: UUID) -> None:
        self.lock_calls.append((doctor_id, patient_id))

    async def get_user(self, user_id: UUID) -> UserSummary | None:
        return self.users.get(user_id)

    async def get_doctor(self, doctor_id: UUID) -> DoctorProfile | None:
        return self.doctors.get(doctor_id)

    async def get_patient(self, patient_id: UUID) -> PatientProfile | None:
        return self.patients.get(patient_id)

    async def update_patient_reliability(
        self, patient_id: UUID, values: dict[str, Any], now: datetime
    ) -> PatientProfile:
        current = self.patients.get(patient_id)
        if current is None:
            raise NotFoundException("Patient not found")
        updated = PatientProfile.model_validate({**current.model_dump(), **values})
        self.patients[patient_id] = updated
        return updated

    async def get_appointment(
        self, appointment_id: UUID, for_update: bool = False
    ) -> AppointmentResponse | None:
        return self.appointments.get(appointment_id)

    async def insert_appointment(self, values: dict[str, Any]) -> AppointmentResponse:
        appointment = AppointmentResponse.model_validate({"id": uuid4(), **values})
        self.appointments[appointment.id] = appointment
        return appointment

    async def update_appointment(
        self, appointment_id: UUID, values: dict[str, Any]
    ) -> AppointmentResponse:
        current = self.appointments[appointment_id]
        updated = AppointmentResponse.model_validate({**current.model_dump(), **values})
        self.appointments[appointment_id] = updated
        return updated

    async def count_future_active(self, patient_id: UUID, now: datetime) -> int:
        return sum(
            1
            for a in self.appointments.values()
            if a.patient_id == patient_id and a.scheduled_at > now and a.status.is_active
        )

    async def find_active_in_window(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        window_start: datetime,
        window_end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[AppointmentResponse]:
        return sorted(
            (
                a
                for a in self.appointments.values()
                if (a.doctor_id == doctor_id or a.patient_id == patient_id)
                and a.status.is_active
                and window_start < a.scheduled_at < window_end
                and a.id != exclude_id
            ),
            key=lambda a: a.scheduled_at,
        )

    async def recent_outcomes(self, patient_id: UUID, limit: int) -> list[AppointmentStatus]:
        outcomes = sorted(
            (
                a
                for a in self.appointments.values()
                if a.patient_id == patient_id
                and a.status in (AppointmentStatus.NO_SHOW, AppointmentStatus.COMPLETED)
            ),
            key=lambda a: a.scheduled_at,
            reverse=True,
        )
        return [a.status for a in outcomes[:limit]]

    async def list_appointments(
        self,
        filters: AppointmentFilters,
        now: datetime,
        tz: tzinfo,
        patient_id: UUID | None = None,
        doctor_id: UUID | None = None,
    ) -> tuple[int, list[AppointmentResponse]]:
        def matches(a: AppointmentResponse) -> bool:
            local_day = to_local(a.scheduled_at, tz).date()
            return (
                (patient_id is None or a.patient_id == patient_id)
                and (doctor_id is None or a.doctor_id == doctor_id)
                and (filters.status is None or a.status == filters.status)
                and (filters.start_date is None or local_day >= filters.start_date)
                and (filters.end_date is None or local_day <= filters.end_date)
                and (filters.period != ListPeriod.FUTURE or a.scheduled_at > now)
                and (filters.period != ListPeriod.PAST or a.scheduled_at < now)
            )

        found = sorted(
            filter(matches, self.appointments.values()),
            key=lambda a: a.created_at,
            reverse=True,
        )
        offset = (filters.page - 1) * filters.page_size
        return len(found), found[offset : offset + filters.page_size]

    async def due_for_reminder(
        self, window_start: datetime, window_end: datetime
    ) -> list[AppointmentResponse]:
        return [
            a
            for a in self.appointments.values()
            if window_start <= a.scheduled_at < window_end
            and a.status.is_active
            and a.reminder_sent_at is None
        ]

    async def add_log(
        self,
        appointment_id: UUID,
        old_status: AppointmentStatus | None,
        new_status: AppointmentStatus,
        action: AppointmentAction,
        changed_by: UUID,
        changed_at: datetime,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.logs.append(
            AppointmentLogResponse(
                id=uuid4(),
                appointment_id=appointment_id,
                old_status=old_status,
                new_status=new_status,
                action=action,
                changed_by=changed_by,
                reason=reason,
                metadata=metadata,
                changed_at=changed_at,
            )
        )

    async def count_logs(self, appointment_id: UUID, action: AppointmentAction) -> int:
        return sum(
            1 for log in self.logs if log.appointment_id == appointment_id and log.action == action
        )

    async def list_logs(self, appointment_id: UUID) -> list[AppointmentLogResponse]:
        return [log for log in self.logs if log.appointment_id == appointment_id]

    # Seeding helpers

    def add_user(self, role: UserRole, full_name: str, is_active: bool = True) -> UserSummary:
        user = UserSummary(
            id=uuid4(),
            full_name=full_name,
            email=f"{full_name.split()[-1].lower()}.{uuid4().hex[:6]}@example.com",
            role=role,
            is_active=is_active,
        )
        self.users[user.id] = user
        return user

    def add_doctor(self, full_name: str = "Dr. Ana Souza", is_active: bool = True) -> DoctorProfile:
        user = self.add_user(UserRole.DOCTOR, full_name)
        doctor = DoctorProfile(
            id=uuid4(),
            user_id=user.id,
            full_name=full_name,
            is_active=is_active,
            user_is_active=user.is_active,
            specialization="Cardiology",
        )
        self.doctors[doctor.id] = doctor
        return doctor

    def add_patient(self, full_name: str = "Carlos Lima", completed: bool = True) -> PatientProfile:
        user = self.add_user(UserRole.PATIENT, full_name)
        patient = PatientProfile(
            id=uuid4(),
            user_id=user.id,
            full_name=full_name,
            user_is_active=user.is_active,
            profile_completed_at=NOW - timedelta(days=30) if completed else None,
        )
        self.patients[patient.id] = patient
        return patient

    def seed_appointment(
        self,
        doctor: DoctorProfile,
        patient: PatientProfile,
        scheduled_at: datetime,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        duration_minutes: int = 30,
    ) -> AppointmentResponse:
        appointment = AppointmentResponse(
            id=uuid4(),
            patient_id=patient.id,
            doctor_id=doctor.id,
            created_by=patient.user_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            status=status,
            confirmed_at=NOW if status == AppointmentStatus.CONFIRMED else None,
            cancelled_at=NOW if status == AppointmentStatus.CANCELLED else None,
            completed_at=NOW if status == AppointmentStatus.COMPLETED else None,
            created_at=NOW,
            updated_at=NOW,
        )
        self.appointments[appointment.id] = appointment
        return appointment


class InMemoryAvailability:
    """Availability reader over plain lists."""

    def __init__(self) -> None:
        self.schedules: dict[UUID, list[WeeklySchedule]] = {}
        self.blocks: dict[UUID, list[ScheduleBlock]] = {}

    async def weekly_schedules(self, doctor_id: UUID) -> list[WeeklySchedule]:
        return list(self.schedules.get(doctor_id, []))

    async def blocks_for(self, doctor_id: UUID, on_date: date) -> list[ScheduleBlock]:
        return [b for b in self.blocks.get(doctor_id, []) if b.blocked_date == on_date]

    def open_weekdays(
        self,
        doctor_id: UUID,
        days: range = range(1, 6),
        start: time = time(8, 0),
        end: time = time(18, 0),
    ) -> None:
        self.schedules.setdefault(doctor_id, []).extend(
            WeeklySchedule(day_of_week=day, start_time=start, end_time=end) for day in days
        )

    def block(self, doctor_id: UUID, **fields: Any) -> None:
        self.blocks.setdefault(doctor_id, []).append(ScheduleBlock(**fields))


class RecordingDispatcher:
    """Renders and records notifications instead of queueing them."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def dispatch(
        self,
        recipient_user_id: UUID,
        template_key: str,
        context: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        if self.fail:
            raise RuntimeError("outbox unavailable")
        title, body = render_template(template_key, context)
        self.sent.append(
            {
                "user_id": recipient_user_id,
                "template_key": template_key,
                "title": title,
                "body": body,
                "metadata": metadata,
            }
        )
        return uuid4()

    def templates_for(self, user_id: UUID) -> list[str]:
        return [n["template_key"] for n in self.sent if n["user_id"] == user_id]


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, clinic_timezone="UTC")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> InMemoryAppointmentRepository:
    return InMemoryAppointmentRepository()


@pytest.fixture
def availability() -> InMemoryAvailability:
    return InMemoryAvailability()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def cache_invalidator() -> MagicMock:
    return MagicMock()


@pytest.fixture
def doctor(repository, availability) -> DoctorProfile:
    doctor = repository.add_doctor()
    availability.open_weekdays(doctor.id)
    return doctor


@pytest.fixture
def patient(repository) -> PatientProfile:
    return repository.add_patient()


@pytest.fixture
def admin(repository) -> Actor:
    user = repository.add_user(UserRole.ADMIN, "Admin Root")
    return Actor(user_id=user.id, role=UserRole.ADMIN)


@pytest.fixture
def doctor_actor(doctor) -> Actor:
    return Actor(user_id=doctor.user_id, role=UserRole.DOCTOR)


@pytest.fixture
def patient_actor(patient) -> Actor:
    return Actor(user_id=patient.user_id, role=UserRole.PATIENT)


@pytest.fixture
def service(
    repository, availability, dispatcher, cache_invalidator, clock, settings
) -> AppointmentService:
    return AppointmentService(
        repository=repository,
        availability=availability,
        dispatcher=dispatcher,
        cache_invalidator=cache_invalidator,
        clock=clock,
        settings=settings,
    )
