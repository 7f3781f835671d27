"""Patient model definition using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.models.base import metadata

patients = Table(
    "patients",
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
    Column("date_of_birth", Date),
    Column("gender", String(20)),
    Column("profile_completed_at", DateTime(timezone=True)),
    # Reliability (recomputed from appointment history)
    Column("consecutive_no_shows", Integer, nullable=False, server_default=text("0")),
    Column("is_blocked", Boolean, nullable=False, server_default=text("false")),
    Column("blocked_at", DateTime(timezone=True)),
    Column("blocked_reason", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint("consecutive_no_shows >= 0", name="patients_no_shows_check"),
    CheckConstraint(
        "(is_blocked AND blocked_at IS NOT NULL) OR (NOT is_blocked AND blocked_at IS NULL)",
        name="patients_blocked_check",
    ),
)
