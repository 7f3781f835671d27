"""Notification outbox table."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from app.models.base import metadata

# Rows are picked up by the delivery worker; the engine only inserts them
notifications = Table(
    "notifications",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column(
        "user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    ),
    Column("template_key", String(100), nullable=False),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("data", JSONB, nullable=True),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("sent_at", TIMESTAMP(timezone=True), nullable=True),
    CheckConstraint(
        "status IN ('pending', 'sent', 'failed')",
        name="notifications_status_check",
    ),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_status", "status"),
)
