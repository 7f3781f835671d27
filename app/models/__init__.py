"""Database models."""

from app.models.appointments import appointment_logs, appointments
from app.models.base import metadata
from app.models.doctors import doctors, schedule_blocks, weekly_schedules
from app.models.notifications import notifications
from app.models.patients import patients
from app.models.users import users

__all__ = [
    "appointment_logs",
    "appointments",
    "doctors",
    "metadata",
    "notifications",
    "patients",
    "schedule_blocks",
    "users",
    "weekly_schedules",
]
