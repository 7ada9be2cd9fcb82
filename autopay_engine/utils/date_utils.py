"""Date manipulation utilities"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional


CADENCES = ("daily", "weekly", "monthly")


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length (Jan 31 -> Feb 28)"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_cadence(value: datetime, cadence: str) -> datetime:
    """Advance a datetime by one cadence interval"""
    if cadence == "daily":
        return value + timedelta(days=1)
    if cadence == "weekly":
        return value + timedelta(weeks=1)
    if cadence == "monthly":
        return add_months(value, 1)
    raise ValueError(f"Unknown cadence: {cadence}")


def next_run_after(
    scheduled_for: datetime, cadence: str, now: datetime, anchor: Optional[datetime] = None
) -> datetime:
    """
    Next run date counted from the scheduled time, not the completion time.

    Periods that were missed entirely (e.g. the worker was down) are skipped
    so the result always lies strictly after `now`.

    Monthly schedules count whole months from `anchor` (the first run date)
    so a day clamped in a short month comes back in the next long one:
    Jan 31 -> Feb 28 -> Mar 31.
    """
    if cadence == "monthly" and anchor is not None:
        months = (scheduled_for.year - anchor.year) * 12 + scheduled_for.month - anchor.month + 1
        next_run = add_months(anchor, months)
        while next_run <= now or next_run <= scheduled_for:
            months += 1
            next_run = add_months(anchor, months)
        return next_run

    next_run = add_cadence(scheduled_for, cadence)
    while next_run <= now:
        next_run = add_cadence(next_run, cadence)
    return next_run
