"""Notification dispatcher writing rendered messages to the outbox."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException
from app.models.notifications import notifications

logger = structlog.get_logger(__name__)

# template_key -> (title, body); bodies are rendered with str.format_map
TEMPLATES: dict[str, tuple[str, str]] = {
    "appointment_created_doctor": (
        "New appointment request",
        "{patient_name} requested an appointment on {scheduled_at}.",
    ),
    "appointment_created_patient": (
        "Appointment requested",
        "Your appointment with {doctor_name} on {scheduled_at} is awaiting confirmation.",
    ),
    "appointment_confirmed_patient": (
        "Appointment confirmed",
        "{doctor_name} confirmed your appointment on {scheduled_at}.",
    ),
    "appointment_cancelled_patient": (
        "Appointment cancelled",
        "Your appointment with {doctor_name} on {scheduled_at} was cancelled. {reason}",
    ),
    "appointment_cancelled_doctor": (
        "Appointment cancelled",
        "The appointment with {patient_name} on {scheduled_at} was cancelled. {reason}",
    ),
    "appointment_completed_patient": (
        "Appointment completed",
        "Your appointment with {doctor_name} on {scheduled_at} was completed.",
    ),
    "appointment_no_show_patient": (
        "Missed appointment",
        "You missed your appointment with {doctor_name} on {scheduled_at}.",
    ),
    "patient_blocked": (
        "Booking blocked",
        "New bookings are blocked for your account: {reason}",
    ),
    "appointment_rescheduled_patient": (
        "Appointment rescheduled",
        "Your appointment with {doctor_name} was moved from {previous_scheduled_at} "
        "to {scheduled_at} and awaits confirmation.",
    ),
    "appointment_rescheduled_doctor": (
        "Appointment rescheduled",
        "The appointment with {patient_name} was moved from {previous_scheduled_at} "
        "to {scheduled_at}.",
    ),
    "appointment_reminder_patient": (
        "Appointment reminder",
        "Reminder: you have an appointment with {doctor_name} on {scheduled_at}.",
    ),
}


def render_template(template_key: str, context: dict[str, Any]) -> tuple[str, str]:
    """
    Render title and body of a template.

    Raises:
        BadRequestException: If the template is unknown or the context lacks a field
    """
    try:
        title, body = TEMPLATES[template_key]
    except KeyError as e:
        raise BadRequestException(f"Unknown notification template: {template_key}") from e

    try:
        return title.format_map(context), body.format_map(context).strip()
    except KeyError as e:
        raise BadRequestException(
            f"Missing field {e.args[0]} for notification template {template_key}"
        ) from e


class NotificationDispatcher:
    """Queues notifications in the outbox table; a separate worker delivers them."""

    def __init__(self, db: AsyncSession):
        """Initialize dispatcher with database session."""
        self.db = db

    async def dispatch(
        self,
        recipient_user_id: UUID,
        template_key: str,
        context: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """
        Render a template and queue it for a user.

        Args:
            recipient_user_id: User that receives the notification
            template_key: Key in TEMPLATES
            context: Values substituted into the template
            metadata: Extra JSON payload stored with the notification

        Returns:
            ID of the queued notification
        """
        title, body = render_template(template_key, context)

        stmt = (
            insert(notifications)
            .values(
                user_id=recipient_user_id,
                template_key=template_key,
                title=title,
                body=body,
                status="pending",
                data=metadata,
            )
            .returning(notifications.c.id)
        )

        try:
            notification_id = (await self.db.execute(stmt)).scalar_one()
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(
            "notification_queued",
            notification_id=str(notification_id),
            user_id=str(recipient_user_id),
            template_key=template_key,
        )
        return notification_id
