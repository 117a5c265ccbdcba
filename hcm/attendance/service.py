"""Attendance service — daily check-in / check-out and administrative entry.

One AttendanceRecord per (employee, local date). Self-service check-in is
allowed once per day; check-out may be repeated and the latest one wins.
Administrative upserts bypass the once-per-day rule but never duplicate
the (employee, date) row.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.attendance.models import AttendanceRecord
from hcm.attendance.schemas import AttendanceUpsert, as_utc
from hcm.common.audit import create_audit_entry
from hcm.common.clock import SystemClock
from hcm.common.constants import MAX_LIST_LIMIT, AttendanceSource, AttendanceStatus
from hcm.common.exceptions import (
    AlreadyCheckedInError,
    NoCheckInTodayError,
    NotFoundException,
    ValidationException,
)
from hcm.config import settings
from hcm.core_hr.models import Employee

logger = logging.getLogger(__name__)


def _as_aware(value: datetime) -> datetime:
    """SQLite hands timestamps back naive; they were written as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def arrival_status(check_in: datetime, tz: Optional[ZoneInfo] = None) -> AttendanceStatus:
    """late if the local time-of-day is strictly after the configured cutoff."""
    local = _as_aware(check_in).astimezone(tz or settings.local_tz)
    if local.time() > settings.late_cutoff:
        return AttendanceStatus.late
    return AttendanceStatus.present


def _check_day(day: date, check_in: Optional[datetime], check_out: Optional[datetime]) -> None:
    """check_in must fall on the record's local date; check_out on it or the day after."""
    errors: dict[str, list[str]] = {}
    if check_in is not None and check_in.astimezone(settings.local_tz).date() != day:
        errors["check_in"] = [f"check_in must fall on {day.isoformat()} (local time)."]
    if check_out is not None:
        out_day = check_out.astimezone(settings.local_tz).date()
        if out_day not in (day, day + timedelta(days=1)):
            errors["check_out"] = [
                f"check_out must fall on {day.isoformat()} or the following day (local time)."
            ]
    if errors:
        raise ValidationException(errors)


def compute_total_hours(record: AttendanceRecord) -> Optional[Decimal]:
    """(check_out - check_in) - break, in hours, floored at zero.

    None until both timestamps exist.
    """
    if record.check_in is None or record.check_out is None:
        return None
    elapsed = _as_aware(record.check_out) - _as_aware(record.check_in)
    hours = Decimal(elapsed.total_seconds()) / Decimal(3600)
    hours -= Decimal(record.break_minutes or 0) / Decimal(60)
    return max(Decimal("0"), hours).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class AttendanceService:
    """Async attendance operations."""

    @staticmethod
    async def _get_for_day(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
    ) -> Optional[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date == day,
            )
        )
        return result.scalars().first()

    # ── Check in ────────────────────────────────────────────────────

    @staticmethod
    async def check_in(
        db: AsyncSession,
        employee: Employee,
        clock: SystemClock,
    ) -> AttendanceRecord:
        """First check-in of the local day; a second one fails and changes nothing."""
        now = clock.now()
        today = clock.today()
        status = arrival_status(now, clock.tz)

        record = await AttendanceService._get_for_day(db, employee.id, today)
        if record is not None and record.check_in is not None:
            logger.warning("Duplicate check-in by employee %s on %s", employee.id, today)
            raise AlreadyCheckedInError()

        if record is None:
            record = AttendanceRecord(
                employee_id=employee.id,
                date=today,
                check_in=now,
                status=status,
                source=AttendanceSource.self_service,
            )
            db.add(record)
            try:
                await db.flush()
            except IntegrityError:
                await db.rollback()
                logger.warning(
                    "Concurrent check-in by employee %s on %s lost the insert",
                    employee.id, today,
                )
                raise AlreadyCheckedInError()
        else:
            # Row opened by an admin entry without a check-in; fill it once.
            result = await db.execute(
                update(AttendanceRecord)
                .where(AttendanceRecord.id == record.id, AttendanceRecord.check_in.is_(None))
                .values(check_in=now, status=status, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.refresh(record)
            if result.rowcount != 1:
                raise AlreadyCheckedInError()

        await create_audit_entry(
            db,
            action="check_in",
            entity_type="attendance_record",
            entity_id=record.id,
            actor_id=employee.id,
            new_values={"check_in": now, "status": status},
        )
        logger.info(
            "Employee %s checked in on %s at %s (%s)",
            employee.id, today, clock.local_time().strftime("%H:%M"), status.value,
        )
        return record

    # ── Check out ───────────────────────────────────────────────────

    @staticmethod
    async def check_out(
        db: AsyncSession,
        employee: Employee,
        clock: SystemClock,
        attendance_id: Optional[uuid.UUID] = None,
    ) -> AttendanceRecord:
        """Set or move check_out to now; repeated check-outs keep the latest."""
        now = clock.now()
        today = clock.today()

        if attendance_id is not None:
            result = await db.execute(
                select(AttendanceRecord).where(AttendanceRecord.id == attendance_id)
            )
            record = result.scalars().first()
            if record is None or record.employee_id != employee.id:
                raise NotFoundException("AttendanceRecord", str(attendance_id))
            if record.date != today:
                raise NoCheckInTodayError()
        else:
            record = await AttendanceService._get_for_day(db, employee.id, today)

        if record is None or record.check_in is None:
            raise NoCheckInTodayError()

        previous = record.check_out
        record.check_out = now
        record.total_hours = compute_total_hours(record)
        await db.flush()

        await create_audit_entry(
            db,
            action="check_out",
            entity_type="attendance_record",
            entity_id=record.id,
            actor_id=employee.id,
            old_values={"check_out": previous} if previous else None,
            new_values={"check_out": now, "total_hours": record.total_hours},
        )
        logger.info(
            "Employee %s checked out on %s (total_hours=%s)",
            employee.id, today, record.total_hours,
        )
        return record

    # ── Administrative upsert ───────────────────────────────────────

    @staticmethod
    async def upsert_record(
        db: AsyncSession,
        data: AttendanceUpsert,
        *,
        actor_id: uuid.UUID,
    ) -> AttendanceRecord:
        """Create or replace the (employee, date) record from an admin entry."""
        employee = (
            await db.execute(select(Employee).where(Employee.id == data.employee_id))
        ).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(data.employee_id))

        check_in = as_utc(data.check_in)
        check_out = as_utc(data.check_out)
        _check_day(data.date, check_in, check_out)
        status = data.status
        if status is None:
            status = arrival_status(check_in) if check_in else AttendanceStatus.absent

        record = await AttendanceService._get_for_day(db, data.employee_id, data.date)
        old_values = None
        if record is None:
            record = AttendanceRecord(employee_id=data.employee_id, date=data.date)
            db.add(record)
        else:
            old_values = {
                "check_in": record.check_in,
                "check_out": record.check_out,
                "break_minutes": record.break_minutes,
                "status": record.status,
            }

        record.check_in = check_in
        record.check_out = check_out
        record.break_minutes = data.break_minutes
        record.status = status
        record.notes = data.notes
        record.source = AttendanceSource.admin
        record.updated_by = actor_id
        record.total_hours = compute_total_hours(record)

        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ValidationException({
                "date": ["Attendance for this employee and date was modified concurrently; retry."]
            })

        await create_audit_entry(
            db,
            action="upsert",
            entity_type="attendance_record",
            entity_id=record.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={
                "check_in": record.check_in,
                "check_out": record.check_out,
                "break_minutes": record.break_minutes,
                "status": record.status,
                "total_hours": record.total_hours,
            },
        )
        logger.info(
            "Attendance for employee %s on %s set by %s", data.employee_id, data.date, actor_id,
        )
        return record

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_today(
        db: AsyncSession,
        employee: Employee,
        clock: SystemClock,
    ) -> Optional[AttendanceRecord]:
        return await AttendanceService._get_for_day(db, employee.id, clock.today())

    @staticmethod
    async def list_records(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        limit: int = 31,
    ) -> list[AttendanceRecord]:
        if from_date and to_date and from_date > to_date:
            raise ValidationException({"from_date": ["from_date must be on or before to_date."]})

        query = (
            select(AttendanceRecord)
            .where(AttendanceRecord.employee_id == employee_id)
            .order_by(AttendanceRecord.date.desc())
        )
        if from_date:
            query = query.where(AttendanceRecord.date >= from_date)
        if to_date:
            query = query.where(AttendanceRecord.date <= to_date)
        result = await db.execute(query.limit(min(limit, MAX_LIST_LIMIT)))
        return list(result.scalars().all())
