"""Persistence for appointments, their participants and transition logs."""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, time, timedelta, tzinfo
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.models.appointments import appointment_logs, appointments
from app.models.doctors import doctors
from app.models.patients import patients
from app.models.users import users
from app.schemas.appointments import (
    ACTIVE_STATUSES,
    AppointmentAction,
    AppointmentFilters,
    AppointmentLogResponse,
    AppointmentResponse,
    AppointmentStatus,
    ListPeriod,
)
from app.schemas.doctors import DoctorProfile
from app.schemas.patients import PatientProfile
from app.schemas.users import UserSummary

ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]
OUTCOME_STATUS_VALUES = [AppointmentStatus.NO_SHOW.value, AppointmentStatus.COMPLETED.value]


class AppointmentRepository:
    """SQLAlchemy Core repository used by the scheduling engine."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Run the enclosed reads and writes as one unit.

        Commits when the block exits normally and rolls back on any exception,
        which is then re-raised.
        """
        try:
            yield
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

    async def lock_participants(self, doctor_id: UUID, patient_id: UUID) -> None:
        """
        Lock the doctor row and then the patient row until the transaction ends.

        Every booking mutation takes these locks in the same order, so two
        requests touching the same doctor or patient run their conflict check
        and write one after the other.
        """
        await self.db.execute(
            select(doctors.c.id).where(doctors.c.id == doctor_id).with_for_update()
        )
        await self.db.execute(
            select(patients.c.id).where(patients.c.id == patient_id).with_for_update()
        )

    # Participants

    async def get_user(self, user_id: UUID) -> UserSummary | None:
        """Get user by ID."""
        query = select(
            users.c.id, users.c.full_name, users.c.email, users.c.role, users.c.is_active
        ).where(users.c.id == user_id)
        row = (await self.db.execute(query)).mappings().first()
        return UserSummary.model_validate(dict(row)) if row else None

    async def get_doctor(self, doctor_id: UUID) -> DoctorProfile | None:
        """Get doctor joined with its user account."""
        query = (
            select(
                doctors.c.id,
                doctors.c.user_id,
                doctors.c.is_active,
                doctors.c.specialization,
                users.c.full_name,
                users.c.is_active.label("user_is_active"),
            )
            .join(users, doctors.c.user_id == users.c.id)
            .where(doctors.c.id == doctor_id)
        )
        row = (await self.db.execute(query)).mappings().first()
        return DoctorProfile.model_validate(dict(row)) if row else None

    async def get_patient(self, patient_id: UUID) -> PatientProfile | None:
        """Get patient joined with its user account."""
        query = (
            select(
                patients.c.id,
                patients.c.user_id,
                patients.c.profile_completed_at,
                patients.c.consecutive_no_shows,
                patients.c.is_blocked,
                patients.c.blocked_at,
                patients.c.blocked_reason,
                users.c.full_name,
                users.c.is_active.label("user_is_active"),
            )
            .join(users, patients.c.user_id == users.c.id)
            .where(patients.c.id == patient_id)
        )
        row = (await self.db.execute(query)).mappings().first()
        return PatientProfile.model_validate(dict(row)) if row else None

    async def update_patient_reliability(
        self,
        patient_id: UUID,
        values: dict[str, Any],
        now: datetime,
    ) -> PatientProfile:
        """Persist no-show counter and block fields."""
        await self.db.execute(
            update(patients)
            .where(patients.c.id == patient_id)
            .values(**values, updated_at=now)
        )
        patient = await self.get_patient(patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")
        return patient

    # Appointments

    async def get_appointment(
        self,
        appointment_id: UUID,
        for_update: bool = False,
    ) -> AppointmentResponse | None:
        """Get appointment by ID, optionally locking the row."""
        query = select(appointments).where(appointments.c.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        row = (await self.db.execute(query)).mappings().first()
        return AppointmentResponse.model_validate(dict(row)) if row else None

    async def insert_appointment(self, values: dict[str, Any]) -> AppointmentResponse:
        """Insert a new appointment row."""
        stmt = insert(appointments).values(**values).returning(appointments)
        row = (await self.db.execute(stmt)).mappings().one()
        return AppointmentResponse.model_validate(dict(row))

    async def update_appointment(
        self,
        appointment_id: UUID,
        values: dict[str, Any],
    ) -> AppointmentResponse:
        """Update an appointment row and return its new state."""
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values)
            .returning(appointments)
        )
        row = (await self.db.execute(stmt)).mappings().one()
        return AppointmentResponse.model_validate(dict(row))

    async def count_future_active(self, patient_id: UUID, now: datetime) -> int:
        """Count PENDING/CONFIRMED appointments of a patient that start after now."""
        query = (
            select(func.count())
            .select_from(appointments)
            .where(
                appointments.c.patient_id == patient_id,
                appointments.c.scheduled_at > now,
                appointments.c.status.in_(ACTIVE_STATUS_VALUES),
            )
        )
        return (await self.db.execute(query)).scalar() or 0

    async def find_active_in_window(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        window_start: datetime,
        window_end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[AppointmentResponse]:
        """
        Active appointments of the doctor or the patient starting inside a window.

        The window is exclusive on both ends. Callers apply the exact overlap
        test on the returned rows.
        """
        conditions = [
            or_(appointments.c.doctor_id == doctor_id, appointments.c.patient_id == patient_id),
            appointments.c.status.in_(ACTIVE_STATUS_VALUES),
            appointments.c.scheduled_at > window_start,
            appointments.c.scheduled_at < window_end,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        query = select(appointments).where(and_(*conditions)).order_by(appointments.c.scheduled_at)
        rows = (await self.db.execute(query)).mappings().all()
        return [AppointmentResponse.model_validate(dict(row)) for row in rows]

    async def recent_outcomes(self, patient_id: UUID, limit: int) -> list[AppointmentStatus]:
        """Statuses of the latest NO_SHOW/COMPLETED appointments, newest first."""
        query = (
            select(appointments.c.status)
            .where(
                appointments.c.patient_id == patient_id,
                appointments.c.status.in_(OUTCOME_STATUS_VALUES),
            )
            .order_by(appointments.c.scheduled_at.desc())
            .limit(limit)
        )
        rows = (await self.db.execute(query)).scalars().all()
        return [AppointmentStatus(value) for value in rows]

    async def list_appointments(
        self,
        filters: AppointmentFilters,
        now: datetime,
        tz: tzinfo,
        patient_id: UUID | None = None,
        doctor_id: UUID | None = None,
    ) -> tuple[int, list[AppointmentResponse]]:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters
            now: Reference time for the period filter
            tz: Timezone the date filters are expressed in
            patient_id: Restrict to one patient
            doctor_id: Restrict to one doctor

        Returns:
            Total matching rows and the requested page
        """
        conditions: list = []

        if patient_id is not None:
            conditions.append(appointments.c.patient_id == patient_id)

        if doctor_id is not None:
            conditions.append(appointments.c.doctor_id == doctor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.start_date:
            day_start = datetime.combine(filters.start_date, time.min, tzinfo=tz)
            conditions.append(appointments.c.scheduled_at >= day_start)

        if filters.end_date:
            next_day = datetime.combine(filters.end_date + timedelta(days=1), time.min, tzinfo=tz)
            conditions.append(appointments.c.scheduled_at < next_day)

        if filters.period == ListPeriod.FUTURE:
            conditions.append(appointments.c.scheduled_at > now)
        elif filters.period == ListPeriod.PAST:
            conditions.append(appointments.c.scheduled_at < now)

        where = and_(*conditions) if conditions else True

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.created_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).mappings().all()
        return total, [AppointmentResponse.model_validate(dict(row)) for row in rows]

    async def due_for_reminder(
        self,
        window_start: datetime,
        window_end: datetime,
    ) -> list[AppointmentResponse]:
        """Active appointments starting in [window_start, window_end) without a reminder."""
        query = (
            select(appointments)
            .where(
                appointments.c.scheduled_at >= window_start,
                appointments.c.scheduled_at < window_end,
                appointments.c.status.in_(ACTIVE_STATUS_VALUES),
                appointments.c.reminder_sent_at.is_(None),
            )
            .order_by(appointments.c.scheduled_at)
        )
        rows = (await self.db.execute(query)).mappings().all()
        return [AppointmentResponse.model_validate(dict(row)) for row in rows]

    # Logs

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
        """Append one transition record."""
        await self.db.execute(
            insert(appointment_logs).values(
                appointment_id=appointment_id,
                old_status=old_status.value if old_status else None,
                new_status=new_status.value,
                action=action.value,
                changed_by=changed_by,
                reason=reason,
                metadata=metadata,
                changed_at=changed_at,
            )
        )

    async def count_logs(self, appointment_id: UUID, action: AppointmentAction) -> int:
        """Count log rows of an appointment carrying an action tag."""
        query = (
            select(func.count())
            .select_from(appointment_logs)
            .where(
                appointment_logs.c.appointment_id == appointment_id,
                appointment_logs.c.action == action.value,
            )
        )
        return (await self.db.execute(query)).scalar() or 0

    async def list_logs(self, appointment_id: UUID) -> Sequence[AppointmentLogResponse]:
        """Transition history of an appointment, oldest first."""
        query = (
            select(appointment_logs)
            .where(appointment_logs.c.appointment_id == appointment_id)
            .order_by(appointment_logs.c.changed_at)
        )
        rows = (await self.db.execute(query)).mappings().all()
        return [AppointmentLogResponse.model_validate(dict(row)) for row in rows]
