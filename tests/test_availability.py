"""Tests for weekly window and schedule block matching."""

from datetime import date, datetime, time

from app.schemas.doctors import ScheduleBlock, WeeklySchedule
from app.services.availability_service import (
    allows_scheduling,
    find_covering_window,
    find_intersecting_block,
)

MONDAY = date(2026, 3, 2)

SCHEDULES = [
    WeeklySchedule(day_of_week=1, start_time=time(8, 0), end_time=time(12, 0)),
    WeeklySchedule(day_of_week=1, start_time=time(14, 0), end_time=time(18, 0)),
    WeeklySchedule(day_of_week=2, start_time=time(8, 0), end_time=time(18, 0), is_blocked=True),
    WeeklySchedule(day_of_week=7, start_time=time(20, 0), end_time=time(23, 59)),
]


def local(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


def test_allows_scheduling() -> None:
    """Test a doctor needs at least one open weekly window."""
    assert allows_scheduling(SCHEDULES)
    assert not allows_scheduling([SCHEDULES[2]])
    assert not allows_scheduling([])


def test_interval_inside_window() -> None:
    """Test an interval inside a weekly window is covered."""
    window = find_covering_window(SCHEDULES, local(MONDAY, 8), local(MONDAY, 8, 30))
    assert window is SCHEDULES[0]

    window = find_covering_window(SCHEDULES, local(MONDAY, 17, 30), local(MONDAY, 18))
    assert window is SCHEDULES[1]


def test_interval_spanning_two_windows_is_not_covered() -> None:
    """Test an interval must fit one window."""
    assert find_covering_window(SCHEDULES, local(MONDAY, 11, 30), local(MONDAY, 14, 30)) is None


def test_interval_outside_hours_is_not_covered() -> None:
    """Test an interval outside opening hours."""
    assert find_covering_window(SCHEDULES, local(MONDAY, 12, 30), local(MONDAY, 13)) is None


def test_blocked_weekday_is_not_covered() -> None:
    """Test a weekday without windows."""
    tuesday = date(2026, 3, 3)
    assert find_covering_window(SCHEDULES, local(tuesday, 9), local(tuesday, 9, 30)) is None


def test_interval_crossing_midnight_is_not_covered() -> None:
    """Test an interval crossing midnight."""
    sunday, next_monday = date(2026, 3, 8), date(2026, 3, 9)
    assert find_covering_window(SCHEDULES, local(sunday, 23, 45), local(next_monday, 0, 15)) is None


def test_full_day_block_always_hits() -> None:
    """Test a full-day block hits any interval on its date."""
    blocks = [ScheduleBlock(blocked_date=MONDAY, is_full_day=True, reason="Conference")]
    assert find_intersecting_block(blocks, local(MONDAY, 8), local(MONDAY, 8, 30)) is blocks[0]


def test_block_without_bounds_covers_whole_day() -> None:
    """Test a block without times covers the whole day."""
    blocks = [ScheduleBlock(blocked_date=MONDAY)]
    assert find_intersecting_block(blocks, local(MONDAY, 15), local(MONDAY, 15, 30)) is blocks[0]


def test_partial_block_uses_half_open_intersection() -> None:
    """Test partial blocks use half-open intersection."""
    blocks = [ScheduleBlock(blocked_date=MONDAY, start_time=time(10, 0), end_time=time(11, 0))]

    assert find_intersecting_block(blocks, local(MONDAY, 9, 45), local(MONDAY, 10, 15))
    assert find_intersecting_block(blocks, local(MONDAY, 10, 45), local(MONDAY, 11, 15))
    assert find_intersecting_block(blocks, local(MONDAY, 9), local(MONDAY, 12))
    assert find_intersecting_block(blocks, local(MONDAY, 9, 30), local(MONDAY, 10)) is None
    assert find_intersecting_block(blocks, local(MONDAY, 11), local(MONDAY, 11, 30)) is None


def test_open_ended_partial_block() -> None:
    """Test a partial block with only one bound."""
    afternoon = [ScheduleBlock(blocked_date=MONDAY, start_time=time(13, 0))]

    assert find_intersecting_block(afternoon, local(MONDAY, 16), local(MONDAY, 16, 30))
    assert find_intersecting_block(afternoon, local(MONDAY, 9), local(MONDAY, 9, 30)) is None
