"""Read access to a doctor's weekly availability and date blocks."""

from collections.abc import Iterable
from datetime import date, datetime, time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.doctors import schedule_blocks, weekly_schedules
from app.schemas.doctors import ScheduleBlock, WeeklySchedule


class AvailabilityReader:
    """Loads availability rows; the engine never writes them."""

    def __init__(self, db: AsyncSession):
        """Initialize reader with database session."""
        self.db = db

    async def weekly_schedules(self, doctor_id: UUID) -> list[WeeklySchedule]:
        """Get all weekly schedule entries of a doctor."""
        query = (
            select(
                weekly_schedules.c.day_of_week,
                weekly_schedules.c.start_time,
                weekly_schedules.c.end_time,
                weekly_schedules.c.is_blocked,
            )
            .where(weekly_schedules.c.doctor_id == doctor_id)
            .order_by(weekly_schedules.c.day_of_week, weekly_schedules.c.start_time)
        )
        rows = (await self.db.execute(query)).mappings().all()
        return [WeeklySchedule.model_validate(dict(row)) for row in rows]

    async def blocks_for(self, doctor_id: UUID, on_date: date) -> list[ScheduleBlock]:
        """Get the blocks a doctor registered for one calendar date."""
        query = select(
            schedule_blocks.c.blocked_date,
            schedule_blocks.c.start_time,
            schedule_blocks.c.end_time,
            schedule_blocks.c.is_full_day,
            schedule_blocks.c.reason,
        ).where(
            schedule_blocks.c.doctor_id == doctor_id,
            schedule_blocks.c.blocked_date == on_date,
        )
        rows = (await self.db.execute(query)).mappings().all()
        return [ScheduleBlock.model_validate(dict(row)) for row in rows]


def allows_scheduling(schedules: Iterable[WeeklySchedule]) -> bool:
    """A doctor takes bookings when at least one weekly entry is open."""
    return any(not schedule.is_blocked for schedule in schedules)


def find_covering_window(
    schedules: Iterable[WeeklySchedule],
    local_start: datetime,
    local_end: datetime,
) -> WeeklySchedule | None:
    """
    Find the open weekly window that contains a local interval.

    Intervals that run past midnight are never covered, since a window belongs
    to a single weekday.

    Args:
        schedules: Weekly entries of the doctor
        local_start: Interval start in the clinic timezone
        local_end: Interval end in the clinic timezone

    Returns:
        The covering window, or None
    """
    if local_end.date() != local_start.date():
        return None

    weekday = local_start.isoweekday()
    start, end = local_start.time(), local_end.time()

    for schedule in schedules:
        if schedule.is_blocked or schedule.day_of_week != weekday:
            continue
        if schedule.start_time <= start and end <= schedule.end_time:
            return schedule
    return None


def find_intersecting_block(
    blocks: Iterable[ScheduleBlock],
    local_start: datetime,
    local_end: datetime,
) -> ScheduleBlock | None:
    """
    Find a block that hits a local interval on the block's date.

    Full-day blocks always hit. Partial blocks hit when [start, end) intersects
    the blocked range; a missing bound extends the range to that end of the day.
    """
    start = local_start.time()
    # An interval ending exactly at midnight belongs to the starting day
    end = local_end.time() if local_end.date() == local_start.date() else time.max

    for block in blocks:
        if block.covers_whole_day:
            return block
        block_start = block.start_time or time.min
        block_end = block.end_time or time.max
        if start < block_end and block_start < end:
            return block
    return None
