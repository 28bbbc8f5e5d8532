"""UTC clock helpers.

Timestamps are stored as naive UTC datetimes. Calendar questions (today,
day buckets, seasons) are answered in the server's configured timezone.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import Config


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def server_tz() -> ZoneInfo:
    return ZoneInfo(Config.TIMEZONE)


def today() -> date:
    return datetime.now(server_tz()).date()


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def local_date(value: datetime) -> date:
    """Calendar date of a naive UTC timestamp in the server timezone."""
    return value.replace(tzinfo=timezone.utc).astimezone(server_tz()).date()


def epoch_ms(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def previous_months(anchor: date, count: int) -> list:
    """The `count` year-month keys ending with `anchor`'s month, oldest first."""
    year, month = anchor.year, anchor.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(keys))
