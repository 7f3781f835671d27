"""Doctor and availability tables using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    ),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("specialization", String(200), index=True),
    Column("consultation_fee", Numeric(10, 2)),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
)

# Recurring weekly availability (ISO weekday, Monday = 1)
weekly_schedules = Table(
    "weekly_schedules",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "doctor_id",
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("day_of_week", SmallInteger, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("slot_duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("is_blocked", Boolean, nullable=False, server_default=text("false")),
    Column("blocked_reason", Text),
    CheckConstraint("day_of_week BETWEEN 1 AND 7", name="weekly_schedules_day_check"),
    CheckConstraint("start_time < end_time", name="weekly_schedules_range_check"),
    Index("idx_weekly_schedules_doctor_day", "doctor_id", "day_of_week"),
)

# One-off blocks on a calendar date; no times means the whole day
schedule_blocks = Table(
    "schedule_blocks",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "doctor_id",
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("blocked_date", Date, nullable=False),
    Column("start_time", Time),
    Column("end_time", Time),
    Column("is_full_day", Boolean, nullable=False, server_default=text("false")),
    Column("reason", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint(
        "start_time IS NULL OR end_time IS NULL OR start_time < end_time",
        name="schedule_blocks_range_check",
    ),
    Index("idx_schedule_blocks_doctor_date", "doctor_id", "blocked_date"),
)
