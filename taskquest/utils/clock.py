"""
Calendar-aware clock for gamification date boundaries

Streak continuation and quest periods are decided by calendar date in a
single reference timezone, never by elapsed hours. Every component takes a
Clock so tests can pin "now" on either side of midnight.

RULES:
- now() always returns a timezone-aware datetime in the reference timezone
- Week periods start on Sunday 00:00 local
- Store datetimes as aware values; convert with to_local() before comparing dates
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, date, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from taskquest.config import GAMIFICATION_TIMEZONE

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Source of "now" plus calendar arithmetic in the reference timezone"""

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = ZoneInfo(timezone or GAMIFICATION_TIMEZONE)

    @abstractmethod
    def now(self) -> datetime:
        """Current time, aware, in the reference timezone"""

    def to_local(self, value: datetime) -> datetime:
        """Convert an aware datetime to the reference timezone (naive values are taken as UTC)"""
        if value.tzinfo is None:
            value = value.replace(tzinfo=ZoneInfo("UTC"))
        return value.astimezone(self.timezone)

    def local_date(self, value: datetime) -> date:
        return self.to_local(value).date()

    def today(self) -> date:
        return self.now().date()

    def yesterday(self) -> date:
        return self.today() - timedelta(days=1)

    def day_start(self, day: Optional[date] = None) -> datetime:
        """Local midnight at the start of ``day`` (today by default)"""
        day = day or self.today()
        return datetime.combine(day, time.min, tzinfo=self.timezone)

    def day_end(self, day: Optional[date] = None) -> datetime:
        """23:59:59.999 local on ``day``"""
        day = day or self.today()
        return datetime.combine(day, time(23, 59, 59, 999000), tzinfo=self.timezone)

    def week_start(self, day: Optional[date] = None) -> datetime:
        """Sunday 00:00 local of the week containing ``day``"""
        day = day or self.today()
        # date.weekday(): Monday=0 ... Sunday=6
        days_since_sunday = (day.weekday() + 1) % 7
        return self.day_start(day - timedelta(days=days_since_sunday))

    def hours_until_midnight(self) -> float:
        now = self.now()
        next_midnight = self.day_start(now.date() + timedelta(days=1))
        return (next_midnight - now).total_seconds() / 3600


class SystemClock(Clock):
    """Wall-clock time in the configured reference timezone"""

    def now(self) -> datetime:
        return datetime.now(self.timezone)


class FrozenClock(Clock):
    """
    Clock pinned to a fixed instant, moved only by advance()

    Used by tests and by replay scripts that need deterministic day boundaries.
    """

    def __init__(self, at: datetime, timezone: Optional[str] = None):
        super().__init__(timezone)
        self._now = self.to_local(at)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = self.to_local(at)

    def advance(self, **delta) -> datetime:
        """Move the clock forward, e.g. advance(days=1) or advance(hours=30)"""
        self._now = self._now + timedelta(**delta)
        logger.debug(f"FrozenClock advanced to {self._now.isoformat()}")
        return self._now
