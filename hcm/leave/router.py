"""Leave router — requests, approvals, balances, policies, holidays.

All endpoints require authentication. Approval authority is decided per
request (reporting manager, L2 manager or HR admin); catalogue and balance
administration endpoints require the hr_admin role.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.auth.dependencies import get_current_user, require_role
from hcm.common.clock import SystemClock, get_clock
from hcm.common.constants import MAX_LIST_LIMIT, LeaveStatus, UserRole
from hcm.common.exceptions import ForbiddenException
from hcm.common.rate_limit import limiter
from hcm.core_hr.models import Employee
from hcm.database import get_db
from hcm.leave.schemas import (
    BalanceAdjust,
    BalanceAssign,
    EncashRequest,
    HolidayCreate,
    HolidayUpdate,
    HolidayOut,
    InitializeRequest,
    InitializeResult,
    LeaveActionRequest,
    LeaveBalanceOut,
    LeaveCommentCreate,
    LeaveCommentOut,
    LeaveHistoryOut,
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePreviewOut,
    LeavePreviewRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveTransitionOut,
    LeaveTypeCreate,
    LeaveTypeUpdate,
    LeaveTypeOut,
    RolloverRequest,
    RolloverResult,
)
from hcm.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])

_hr_admin = require_role(UserRole.hr_admin)


# ═════════════════════════════════════════════════════════════════════
# Leave requests
# ═════════════════════════════════════════════════════════════════════


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
@limiter.limit("30/minute")
async def apply_leave(
    request: Request,
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """Apply for leave. Validates policy, overlap and balance, then reserves the days."""
    return await LeaveService.create_request(db, employee, body, clock)


# ── POST /preview ───────────────────────────────────────────────────

@router.post("/preview", response_model=LeavePreviewOut)
async def preview_leave(
    body: LeavePreviewRequest,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """Day-by-day breakdown of a prospective request. Nothing is reserved."""
    return await LeaveService.preview(db, employee, body, clock)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=list[LeaveRequestOut])
async def list_leave_requests(
    scope: str = Query("my", pattern="^(my|team|all)$"),
    status: Optional[LeaveStatus] = Query(None),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_requests(
        db, employee, scope=scope, status=status, limit=limit,
    )


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_request(db, request_id, employee)


# ── GET /requests/{id}/history ──────────────────────────────────────

@router.get("/requests/{request_id}/history", response_model=LeaveHistoryOut)
async def get_leave_history(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Status transitions and comments, oldest first."""
    leave_request, transitions, comments = await LeaveService.get_history(
        db, request_id, employee,
    )
    return LeaveHistoryOut(
        request=LeaveRequestOut.model_validate(leave_request),
        transitions=[LeaveTransitionOut.model_validate(t) for t in transitions],
        comments=[LeaveCommentOut.model_validate(c) for c in comments],
    )


# ── POST /requests/{id}/comments ────────────────────────────────────

@router.post(
    "/requests/{request_id}/comments",
    response_model=LeaveCommentOut,
    status_code=201,
)
async def add_leave_comment(
    request_id: uuid.UUID,
    body: LeaveCommentCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    return await LeaveService.add_comment(db, request_id, employee, body.text, clock)


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveActionRequest] = None,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """Approve a pending request. Reserved days become used."""
    return await LeaveService.approve_request(
        db, request_id, employee, clock, note=body.note if body else None,
    )


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    """Reject a pending request. Reserved days are released."""
    return await LeaveService.reject_request(db, request_id, employee, body.reason, clock)


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveActionRequest] = None,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    return await LeaveService.cancel_request(
        db, request_id, employee, clock, note=body.note if body else None,
    )


# ── PUT /requests/{id}/withdraw ─────────────────────────────────────

@router.put("/requests/{request_id}/withdraw", response_model=LeaveRequestOut)
async def withdraw_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveActionRequest] = None,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: SystemClock = Depends(get_clock),
):
    return await LeaveService.withdraw_request(
        db, request_id, employee, clock, note=body.note if body else None,
    )


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def my_balances(
    year: Optional[int] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_balances(db, employee.id, year=year)


# ── GET /balances/{employee_id} ─────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=list[LeaveBalanceOut])
async def employee_balances(
    employee_id: uuid.UUID,
    leave_type_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own balances, or a report's balances for their manager / HR."""
    if employee_id != employee.id:
        target = await LeaveService.get_employee(db, employee_id, active_only=False)
        if not await LeaveService.has_approval_authority(db, employee, target):
            raise ForbiddenException("You are not allowed to view this employee's balances.")
    return await LeaveService.get_balances(
        db, employee_id, year=year, leave_type_id=leave_type_id,
    )


# ── POST /balances ──────────────────────────────────────────────────

@router.post("/balances", response_model=LeaveBalanceOut, status_code=201)
async def assign_balance(
    body: BalanceAssign,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.assign_balance(db, body, actor_id=employee.id)


# ── POST /balances/initialize ───────────────────────────────────────

@router.post("/balances/initialize", response_model=InitializeResult)
async def initialize_balances(
    body: InitializeRequest,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    """Open the year's balances for every active employee. Safe to re-run."""
    return await LeaveService.initialize_year(db, body.year, actor_id=employee.id)


# ── POST /balances/initialize/{employee_id} ─────────────────────────

@router.post("/balances/initialize/{employee_id}", response_model=InitializeResult)
async def initialize_employee_balances(
    employee_id: uuid.UUID,
    body: InitializeRequest,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    target = await LeaveService.get_employee(db, employee_id)
    created, skipped = await LeaveService.initialize_employee(
        db, target, body.year, actor_id=employee.id,
    )
    return InitializeResult(year=body.year, created=created, skipped=skipped)


# ── POST /balances/rollover ─────────────────────────────────────────

@router.post("/balances/rollover", response_model=RolloverResult)
async def rollover_balances(
    body: RolloverRequest,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    """Carry unused days into the next year, capped per leave type."""
    return await LeaveService.rollover(db, body.from_year, actor_id=employee.id)


# ── PATCH /balances/{id} ────────────────────────────────────────────

@router.patch("/balances/{balance_id}", response_model=LeaveBalanceOut)
async def adjust_balance(
    balance_id: uuid.UUID,
    body: BalanceAdjust,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.adjust_balance(db, balance_id, body, actor_id=employee.id)


# ── POST /balances/{id}/encash ──────────────────────────────────────

@router.post("/balances/{balance_id}/encash", response_model=LeaveBalanceOut)
async def encash_balance(
    balance_id: uuid.UUID,
    body: EncashRequest,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.encash_balance(db, balance_id, body.days, actor_id=employee.id)


# ═════════════════════════════════════════════════════════════════════
# Catalogues
# ═════════════════════════════════════════════════════════════════════


@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_leave_types(db, include_inactive=include_inactive)


@router.post("/types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.create_leave_type(db, body, actor_id=employee.id)


@router.patch("/types/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    """Edit a leave type; balances already opened are left as they are."""
    return await LeaveService.update_leave_type(db, leave_type_id, body, actor_id=employee.id)


@router.get("/policies", response_model=list[LeavePolicyOut])
async def list_policies(
    include_inactive: bool = Query(False),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_policies(db, include_inactive=include_inactive)


@router.post("/policies", response_model=LeavePolicyOut, status_code=201)
async def create_policy(
    body: LeavePolicyCreate,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.create_policy(db, body, actor_id=employee.id)


@router.put("/policies/{policy_id}/deactivate", response_model=LeavePolicyOut)
async def deactivate_policy(
    policy_id: uuid.UUID,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.deactivate_policy(db, policy_id, actor_id=employee.id)


@router.get("/holidays", response_model=list[HolidayOut])
async def list_holidays(
    year: Optional[int] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_holidays(db, year=year)


@router.post("/holidays", response_model=HolidayOut, status_code=201)
async def create_holiday(
    body: HolidayCreate,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.create_holiday(db, body, actor_id=employee.id)


@router.patch("/holidays/{holiday_id}", response_model=HolidayOut)
async def update_holiday(
    holiday_id: uuid.UUID,
    body: HolidayUpdate,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.update_holiday(db, holiday_id, body, actor_id=employee.id)


@router.delete("/holidays/{holiday_id}", status_code=204)
async def delete_holiday(
    holiday_id: uuid.UUID,
    employee: Employee = Depends(_hr_admin),
    db: AsyncSession = Depends(get_db),
):
    """Remove a holiday from the calendar."""
    await LeaveService.delete_holiday(db, holiday_id, actor_id=employee.id)
