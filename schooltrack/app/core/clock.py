"""
Time helpers.

All persisted timestamps are naive UTC. Services accept a `clock` callable so
tests can pin "now" (e.g. to check the stop event TTL boundary).
"""

from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from schooltrack.app.core.config import settings

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def service_date_for(moment: datetime, tz_name: str = None) -> date:
    """Service date of a naive-UTC moment in the school's timezone."""
    tz = ZoneInfo(tz_name or settings.service_timezone)
    return moment.replace(tzinfo=timezone.utc).astimezone(tz).date()


def as_naive_utc(moment: datetime) -> datetime:
    """Drivers may hand back aware datetimes for timestamptz columns."""
    if moment is not None and moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment
