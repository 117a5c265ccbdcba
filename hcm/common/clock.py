"""Injectable clock.

Services never call ``datetime.now()`` themselves; they receive a Clock so
tests can pin "now" (e.g. 11:30 local time for the late-arrival rule).
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from hcm.config import settings


class SystemClock:
    """Wall clock in UTC, with helpers for the configured local timezone."""

    def __init__(self, tz: ZoneInfo | None = None) -> None:
        self.tz = tz or settings.local_tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def local_now(self) -> datetime:
        return self.now().astimezone(self.tz)

    def today(self) -> date:
        return self.local_now().date()

    def local_time(self) -> time:
        return self.local_now().time()


class FixedClock(SystemClock):
    """Clock frozen at a given instant. Naive datetimes are taken as local time."""

    def __init__(self, instant: datetime, tz: ZoneInfo | None = None) -> None:
        super().__init__(tz)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def advance(self, **delta) -> None:
        self._instant = self._instant + timedelta(**delta)


_default_clock = SystemClock()


def get_clock() -> SystemClock:
    """FastAPI dependency; override in tests with a FixedClock."""
    return _default_clock
