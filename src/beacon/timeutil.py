"""Clock helpers. Services take a ``clock`` callable so tests can pin time."""
from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today(clock: Clock = utcnow) -> date:
    return clock().date()


def months_ago(reference: date, months: int) -> date:
    """Same day ``months`` earlier, clamped to the end of shorter months."""
    year = reference.year
    month = reference.month - months
    while month < 1:
        month += 12
        year -= 1
    day = reference.day
    while True:
        try:
            return reference.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
