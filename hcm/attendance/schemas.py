"""Attendance Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hcm.common.constants import AttendanceSource, AttendanceStatus
from hcm.config import settings


class CheckOutRequest(BaseModel):
    attendance_id: Optional[uuid.UUID] = None


class AttendanceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: date
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    break_minutes: int
    total_hours: Optional[Decimal] = None
    status: AttendanceStatus
    notes: Optional[str] = None
    source: AttendanceSource
    updated_by: Optional[uuid.UUID] = None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Times without an offset are local wall-clock time."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=settings.local_tz)
    return value.astimezone(timezone.utc)


class AttendanceUpsert(BaseModel):
    """Administrative entry; replaces the fields of an existing (employee, date) row."""

    employee_id: uuid.UUID
    date: date
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    break_minutes: int = Field(0, ge=0, le=24 * 60)
    status: Optional[AttendanceStatus] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_times(self) -> AttendanceUpsert:
        if self.check_out is not None and self.check_in is None:
            raise ValueError("check_out requires check_in")
        if (
            self.check_in is not None
            and self.check_out is not None
            and as_utc(self.check_out) < as_utc(self.check_in)
        ):
            raise ValueError("check_out must not be before check_in")
        return self
