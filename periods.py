from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class LocalDateParts:
    year: int
    month: int
    day: int


def local_parts(now: datetime, timezone: str) -> LocalDateParts:
    """Calendar day of ``now`` as seen from ``timezone``.

    Naive datetimes are taken to be UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    local = now.astimezone(ZoneInfo(timezone))
    return LocalDateParts(local.year, local.month, local.day)


def from_local_parts(parts: LocalDateParts) -> date:
    return date(parts.year, parts.month, parts.day)


def local_today(now: datetime, timezone: str) -> date:
    return from_local_parts(local_parts(now, timezone))


def to_date_string(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def start_of_week(value: date) -> date:
    # isoweekday: Monday=1 .. Sunday=7
    return value - timedelta(days=value.isoweekday() - 1)


def week_key(value: date) -> str:
    return to_date_string(start_of_week(value))


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def end_of_month(value: date) -> date:
    return value.replace(day=days_in_month(value.year, value.month))


def add_days(value: date, count: int) -> date:
    return value + timedelta(days=count)


def add_months(value: date, count: int) -> date:
    month_index = (value.year * 12) + (value.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, min(value.day, days_in_month(year, month)))


def clamp_day_divisor(day: int) -> int:
    return max(1, min(31, day))


def parse_period(value: Optional[str]) -> date:
    """Turn ``YYYY-MM`` (or a full ``YYYY-MM-DD``) into the first of that month."""
    raw = (value or "").strip()
    parts = raw.split("-")
    try:
        year = int(parts[0])
        month = int(parts[1])
    except (IndexError, ValueError) as exc:
        raise ValueError("Periode harus dalam format YYYY-MM") from exc
    if len(parts) > 3 or month < 1 or month > 12 or year < 1970:
        raise ValueError("Periode harus dalam format YYYY-MM")
    return date(year, month, 1)


def weeks_in_month(month_start: date) -> list[date]:
    """Mondays of every week that starts inside the month."""
    first_monday = start_of_week(month_start)
    if first_monday < month_start:
        first_monday = add_days(first_monday, 7)
    month_end = end_of_month(month_start)
    weeks: list[date] = []
    cursor = first_monday
    while cursor <= month_end:
        weeks.append(cursor)
        cursor = add_days(cursor, 7)
    return weeks


