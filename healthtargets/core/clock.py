from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    return system_clock


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_day(value: datetime, tz_name: str) -> date:
    return as_utc(value).astimezone(ZoneInfo(tz_name)).date()


def floor_epoch_seconds(value: datetime) -> int:
    """Whole seconds since the epoch, truncated (never rounded)."""
    aware = as_utc(value)
    return int(aware.replace(microsecond=0).timestamp())
