"""
Clock abstraction for the booking engine.

Every rule keyed off the current instant (minimum notice, payment due offsets,
the draft sweep cutoff) reads time through a clock passed into the service.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

from .config import settings


class SystemClock:
    """Wall clock bound to the school's timezone."""

    def __init__(self, timezone_name: Optional[str] = None):
        self.timezone = pytz.timezone(timezone_name or settings.school_timezone)

    def now(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        return datetime.now(timezone.utc)

    def today(self) -> date:
        """Current calendar date in the school's timezone."""
        return self.now().astimezone(self.timezone).date()

    def start_of_today(self) -> datetime:
        """Midnight of the school's current day, as UTC."""
        return self.to_utc(self.today(), time.min)

    def to_utc(self, day: date, at: time) -> datetime:
        """Convert a school-local wall time to an aware UTC datetime."""
        local = self.timezone.localize(datetime.combine(day, at))
        return local.astimezone(timezone.utc)

    def days_from_today(self, days: int) -> date:
        return self.today() + timedelta(days=days)


default_clock = SystemClock()
