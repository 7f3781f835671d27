"""Time source and timezone helpers."""

from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo


class Clock:
    """Supplies the current time as an aware UTC datetime."""

    def now(self) -> datetime:
        """Return the current time."""
        return datetime.now(UTC)


def get_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name."""
    if name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def ensure_utc(value: datetime, assume: tzinfo = UTC) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Args:
        value: Datetime to normalize
        assume: Timezone applied to naive values

    Returns:
        Aware datetime in UTC
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=assume)
    return value.astimezone(UTC)


def to_local(value: datetime, tz: tzinfo) -> datetime:
    """Convert an aware datetime into the given timezone."""
    return ensure_utc(value).astimezone(tz)
