"""Chargeable leave-day counting.

Pure functions over (range, rules, calendar): no I/O, no clock.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Optional

from hcm.common.constants import WEEKEND_DAYS, DayTreatment, GenderApplicability
from hcm.common.exceptions import InvalidRangeError, NoChargeableDaysError
from hcm.leave.calendar import HolidayCalendar

if TYPE_CHECKING:
    from hcm.leave.policy import LeaveRules


class DayKind(str, enum.Enum):
    working = "working"
    weekend = "weekend"
    holiday = "holiday"


@dataclass(frozen=True)
class DayEntry:
    date: date
    kind: DayKind
    counted: bool
    sandwiched: bool = False
    holiday_name: Optional[str] = None


def day_breakdown(
    start: date,
    end: date,
    rules: LeaveRules,
    calendar: HolidayCalendar,
    gender: Optional[GenderApplicability] = None,
) -> list[DayEntry]:
    """Classify every day of [start, end] (inclusive) as counted or not."""
    if end < start:
        raise InvalidRangeError("End date cannot be before start date.")

    entries: list[DayEntry] = []
    current = start
    while current <= end:
        holidays = calendar.holidays_on(current, gender)
        if holidays:
            kind = DayKind.holiday
            excluded = rules.holiday_policy == DayTreatment.exclude
        elif current.weekday() in WEEKEND_DAYS:
            kind = DayKind.weekend
            excluded = rules.weekend_policy == DayTreatment.exclude
        else:
            kind = DayKind.working
            excluded = False
        # A holiday that falls on a weekend is still excluded by the weekend rule
        if kind == DayKind.holiday and not excluded and current.weekday() in WEEKEND_DAYS:
            excluded = rules.weekend_policy == DayTreatment.exclude
        entries.append(DayEntry(
            date=current,
            kind=kind,
            counted=not excluded,
            holiday_name=holidays[0].name if holidays else None,
        ))
        current += timedelta(days=1)

    if rules.sandwich_leave:
        counted_idx = [i for i, e in enumerate(entries) if e.counted]
        if len(counted_idx) >= 2:
            # Every excluded run between the first and last counted day is
            # bounded by counted days on both sides.
            for i in range(counted_idx[0] + 1, counted_idx[-1]):
                if not entries[i].counted:
                    entries[i] = DayEntry(
                        date=entries[i].date,
                        kind=entries[i].kind,
                        counted=True,
                        sandwiched=True,
                        holiday_name=entries[i].holiday_name,
                    )
    return entries


def count_days(
    start: date,
    end: date,
    rules: LeaveRules,
    calendar: HolidayCalendar,
    gender: Optional[GenderApplicability] = None,
) -> int:
    """Number of chargeable days in [start, end]; always >= 1.

    Raises:
        InvalidRangeError: end precedes start.
        NoChargeableDaysError: every day in the range is excluded.
    """
    total = sum(1 for e in day_breakdown(start, end, rules, calendar, gender) if e.counted)
    if total == 0:
        raise NoChargeableDaysError()
    return total
