#!/usr/bin/env python3
"""
Queue reminders for upcoming appointments.

Usage:
    python scripts/send_appointment_reminders.py
    python scripts/send_appointment_reminders.py --hours 2 --verbose

Meant to run hourly from cron; each run covers appointments starting in the
one-hour window that begins ``--hours`` from now.
"""

import argparse
import asyncio
import sys

import dotenv
import structlog

from app.core.logging import configure_logging
from app.core.redis_client import (
    CacheManager,
    check_redis_connection,
    close_redis_connection,
    get_redis_client,
)
from app.database import AsyncSessionLocal, check_database_connection, engine
from app.services.appointment_service import AppointmentService

dotenv.load_dotenv()

logger = structlog.get_logger(__name__)


async def send_reminders(hours_ahead: int) -> int:
    """Queue reminders and return how many were sent."""
    if not await check_database_connection():
        raise RuntimeError("Database is unreachable")

    cache_manager = None
    if check_redis_connection():
        cache_manager = CacheManager(get_redis_client())
    else:
        logger.warning("redis_unavailable", detail="listing caches will not be invalidated")

    try:
        async with AsyncSessionLocal() as session:
            service = AppointmentService.from_session(session, cache_manager=cache_manager)
            return await service.send_due_reminders(hours_ahead=hours_ahead)
    finally:
        await engine.dispose()
        close_redis_connection()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Queue reminders for upcoming appointments")
    parser.add_argument(
        "--hours",
        type=int,
        default=24,
        help="How many hours ahead the reminder window starts (default: 24)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.hours < 0:
        parser.error("--hours must not be negative")

    configure_logging(level="DEBUG" if args.verbose else None)

    try:
        sent = asyncio.run(send_reminders(args.hours))
    except Exception as e:
        logger.error("appointment_reminders_failed", error=str(e))
        return 1

    print(f"Queued {sent} reminder(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
