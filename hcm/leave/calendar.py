"""Holiday calendar — read-only view over the company holiday list."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.attendance.models import Holiday
from hcm.common.constants import GenderApplicability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarEntry:
    name: str
    date: date
    is_recurring: bool = False
    applicable_to: GenderApplicability = GenderApplicability.all

    def matches(self, day: date) -> bool:
        if self.is_recurring:
            return (self.date.month, self.date.day) == (day.month, day.day)
        return self.date == day

    def applies_to(self, gender: Optional[GenderApplicability]) -> bool:
        if self.applicable_to == GenderApplicability.all:
            return True
        return gender is not None and gender == self.applicable_to


class HolidayCalendar:
    """Recurring holidays match by month/day every year; others by exact date.

    A recurring 29 February only falls on leap years.
    """

    def __init__(self, entries: Iterable[CalendarEntry] = ()) -> None:
        self._exact: dict[date, list[CalendarEntry]] = {}
        self._recurring: dict[tuple[int, int], list[CalendarEntry]] = {}
        for entry in entries:
            if entry.is_recurring:
                key = (entry.date.month, entry.date.day)
                self._recurring.setdefault(key, []).append(entry)
            else:
                self._exact.setdefault(entry.date, []).append(entry)

    def holidays_on(
        self, day: date, gender: Optional[GenderApplicability] = None,
    ) -> list[CalendarEntry]:
        found = self._exact.get(day, []) + self._recurring.get((day.month, day.day), [])
        return [e for e in found if e.applies_to(gender)]

    def is_holiday(
        self, day: date, gender: Optional[GenderApplicability] = None,
    ) -> bool:
        return bool(self.holidays_on(day, gender))

    def __len__(self) -> int:
        return sum(len(v) for v in self._exact.values()) + sum(
            len(v) for v in self._recurring.values()
        )

    @classmethod
    def from_rows(cls, rows: Iterable[Holiday]) -> HolidayCalendar:
        return cls(
            CalendarEntry(
                name=row.name,
                date=row.date,
                is_recurring=row.is_recurring,
                applicable_to=row.applicable_to,
            )
            for row in rows
        )


async def load_calendar(session: AsyncSession, start: date, end: date) -> HolidayCalendar:
    """Load active holidays relevant to [start, end]: exact dates in range plus all recurring ones."""
    result = await session.execute(
        select(Holiday).where(
            Holiday.is_active.is_(True),
            or_(
                Holiday.is_recurring.is_(True),
                and_(Holiday.date >= start, Holiday.date <= end),
            ),
        )
    )
    calendar = HolidayCalendar.from_rows(result.scalars().all())
    logger.debug("Loaded %d holiday(s) for %s..%s", len(calendar), start, end)
    return calendar
