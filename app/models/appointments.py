"""Appointment and appointment log tables using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from app.models.base import metadata

appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Ownership / references
    Column(
        "patient_id",
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column(
        "doctor_id",
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("created_by", UUID(as_uuid=True), ForeignKey("users.id"), nullable=False),
    # Interval; the end is always scheduled_at + duration_minutes
    Column("scheduled_at", TIMESTAMP(timezone=True), nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default=text("30")),
    # Status management
    Column("status", Text, nullable=False, server_default="PENDING"),
    Column("type", Text, nullable=False, server_default="PRESENTIAL"),
    Column("price", Numeric(10, 2), nullable=True),
    Column("notes", Text, nullable=True),
    Column("metadata", JSONB, nullable=True),
    # Transition timestamps
    Column("confirmed_at", TIMESTAMP(timezone=True), nullable=True),
    Column("cancelled_at", TIMESTAMP(timezone=True), nullable=True),
    Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
    Column("reminder_sent_at", TIMESTAMP(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
    CheckConstraint(
        "status IN ('PENDING', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "(status = 'CANCELLED') = (cancelled_at IS NOT NULL)",
        name="appointments_cancelled_at_check",
    ),
    CheckConstraint(
        "(status = 'COMPLETED') = (completed_at IS NOT NULL)",
        name="appointments_completed_at_check",
    ),
    Index("idx_appointments_doctor_scheduled", "doctor_id", "scheduled_at"),
    Index("idx_appointments_patient_scheduled", "patient_id", "scheduled_at"),
    Index("idx_appointments_status", "status"),
)

# Append-only transition history
appointment_logs = Table(
    "appointment_logs",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column(
        "appointment_id",
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("old_status", Text, nullable=True),
    Column("new_status", Text, nullable=False),
    Column("action", Text, nullable=False),
    Column("changed_by", UUID(as_uuid=True), ForeignKey("users.id"), nullable=False),
    Column("reason", Text, nullable=True),
    Column("metadata", JSONB, nullable=True),
    Column("changed_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint(
        "action IN ('created', 'confirmed', 'cancelled', 'completed', "
        "'marked_no_show', 'rescheduled')",
        name="appointment_logs_action_check",
    ),
    Index("idx_appointment_logs_appointment", "appointment_id", "changed_at"),
)
