"""Attendance router — check in/out, today's record, history, admin entry.

All endpoints require authentication. Other employees' records are visible
to their managers and HR; administrative entry requires hr_admin.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.attendance.schemas import AttendanceRecordOut, AttendanceUpsert, CheckOutRequest
from hcm.attendance.service import AttendanceService
from hcm.auth.dependencies import get_current_user, require_role
from hcm.common.clock import SystemClock, get_clock
from hcm.common.constants import MAX_LIST_LIMIT, UserRole
from hcm.common.exceptions import ForbiddenException
from hcm.common.rate_limit import limiter
from hcm.core_hr.models import Employee
from hcm.database import get_db
from hcm.leave.service import LeaveService

router = APIRouter(prefix="", tags=["attendance"])


# ── POST /check-in ──────────────────────────────────────────────────

@router.post("/check-in", response_model=AttendanceRecordOut, status_code=201)
@limiter.limit("10/minute")
async def check_in(
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """Record today's check-in; marked late after the configured cutoff."""
    return await AttendanceService.check_in(db, employee, clock)


# ── POST /check-out ─────────────────────────────────────────────────

@router.post("/check-out", response_model=AttendanceRecordOut)
async def check_out(
    body: Optional[CheckOutRequest] = None,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """Record (or move forward) today's check-out and recompute worked hours."""
    return await AttendanceService.check_out(
        db, employee, clock, attendance_id=body.attendance_id if body else None,
    )


# ── GET /today ──────────────────────────────────────────────────────

@router.get("/today", response_model=Optional[AttendanceRecordOut])
async def today(
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    return await AttendanceService.get_today(db, employee, clock)


# ── GET /records ────────────────────────────────────────────────────

@router.get("/records", response_model=list[AttendanceRecordOut])
async def list_records(
    employee_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(31, ge=1, le=MAX_LIST_LIMIT),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    target_id = employee_id or employee.id
    if target_id != employee.id:
        target = await LeaveService.get_employee(db, target_id, active_only=False)
        if not await LeaveService.has_approval_authority(db, employee, target):
            raise ForbiddenException("You are not allowed to view this employee's attendance.")
    return await AttendanceService.list_records(
        db, target_id, from_date=from_date, to_date=to_date, limit=limit,
    )


# ── PUT /records ────────────────────────────────────────────────────

@router.put("/records", response_model=AttendanceRecordOut)
async def upsert_record(
    body: AttendanceUpsert,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Administrative entry. Replaces the day's record if one exists."""
    return await AttendanceService.upsert_record(db, body, actor_id=employee.id)
