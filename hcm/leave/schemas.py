"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from hcm.common.constants import (
    DEFAULT_LEAVE_COLOR,
    AccrualStart,
    AccrualType,
    DayTreatment,
    GenderApplicability,
    HolidayType,
    LeaveStatus,
)
from hcm.leave.day_count import DayKind


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    max_days_per_year: Decimal = Field(..., ge=0, le=365)
    max_consecutive_days: int = Field(..., ge=1, le=365)
    carry_forward_allowed: bool = False
    max_carry_forward_days: Decimal = Field(Decimal("0"), ge=0)
    encashment_allowed: bool = False
    attachment_required: bool = False
    eligibility_months: int = Field(0, ge=0)
    applicable_genders: list[GenderApplicability] = Field(
        default_factory=lambda: [GenderApplicability.all], min_length=1,
    )
    color: str = Field(DEFAULT_LEAVE_COLOR, pattern=r"^#[0-9A-Fa-f]{6}$")


class LeaveTypeUpdate(BaseModel):
    """Partial edit. The code is immutable; existing balances are not rewritten."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    max_days_per_year: Optional[Decimal] = Field(None, ge=0, le=365)
    max_consecutive_days: Optional[int] = Field(None, ge=1, le=365)
    carry_forward_allowed: Optional[bool] = None
    max_carry_forward_days: Optional[Decimal] = Field(None, ge=0)
    encashment_allowed: Optional[bool] = None
    attachment_required: Optional[bool] = None
    eligibility_months: Optional[int] = Field(None, ge=0)
    applicable_genders: Optional[list[GenderApplicability]] = Field(None, min_length=1)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    is_active: Optional[bool] = None


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None
    max_days_per_year: Decimal
    max_consecutive_days: int
    carry_forward_allowed: bool
    max_carry_forward_days: Decimal
    encashment_allowed: bool
    attachment_required: bool
    eligibility_months: int
    applicable_genders: list[str]
    color: str
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Policy
# ═════════════════════════════════════════════════════════════════════


class PolicyLeaveTypeIn(BaseModel):
    leave_type_id: uuid.UUID
    allocation: Optional[Decimal] = Field(None, ge=0)
    carry_forward_limit: Optional[Decimal] = Field(None, ge=0)
    max_consecutive_days: Optional[int] = Field(None, ge=1)


class PolicyLeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_type_id: uuid.UUID
    allocation: Optional[Decimal] = None
    carry_forward_limit: Optional[Decimal] = None
    max_consecutive_days: Optional[int] = None


class LeavePolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    departments: list[uuid.UUID] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    grades: list[str] = Field(default_factory=list)
    leave_types: list[PolicyLeaveTypeIn] = Field(..., min_length=1)
    probation_period_months: int = Field(0, ge=0)
    accrual_type: AccrualType = AccrualType.yearly
    accrual_start: AccrualStart = AccrualStart.calendar_year
    weekend_policy: DayTreatment = DayTreatment.exclude
    holiday_policy: DayTreatment = DayTreatment.exclude
    sandwich_leave: bool = False
    advance_leave_allowed: bool = True
    max_advance_days: int = Field(90, ge=0)
    effective_from: date
    effective_to: Optional[date] = None

    @model_validator(mode="after")
    def _check_effective_range(self) -> LeavePolicyCreate:
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to must not be before effective_from")
        ids = [b.leave_type_id for b in self.leave_types]
        if len(ids) != len(set(ids)):
            raise ValueError("each leave type may be bound only once per policy")
        return self


class LeavePolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    departments: list[str]
    roles: list[str]
    grades: list[str]
    leave_types: list[PolicyLeaveTypeOut]
    probation_period_months: int
    accrual_type: AccrualType
    accrual_start: AccrualStart
    weekend_policy: DayTreatment
    holiday_policy: DayTreatment
    sandwich_leave: bool
    advance_leave_allowed: bool
    max_advance_days: int
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Holidays
# ═════════════════════════════════════════════════════════════════════


class HolidayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    date: date
    description: Optional[str] = None
    is_recurring: bool = False
    holiday_type: HolidayType = HolidayType.company
    applicable_to: GenderApplicability = GenderApplicability.all


class HolidayUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    date: Optional[dt.date] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    holiday_type: Optional[HolidayType] = None
    applicable_to: Optional[GenderApplicability] = None


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    date: date
    description: Optional[str] = None
    is_recurring: bool
    holiday_type: HolidayType
    applicable_to: GenderApplicability
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    allocated: Decimal
    used: Decimal
    pending: Decimal
    carried_forward: Decimal
    encashed: Decimal
    remaining: Decimal


class BalanceAssign(BaseModel):
    """Explicit per-employee assignment (HR)."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int = Field(..., ge=2000, le=2100)
    allocated: Decimal = Field(..., ge=0)
    carried_forward: Decimal = Field(Decimal("0"), ge=0)


class BalanceAdjust(BaseModel):
    allocated: Optional[Decimal] = Field(None, ge=0)
    carried_forward: Optional[Decimal] = Field(None, ge=0)
    encashed: Optional[Decimal] = Field(None, ge=0)


class EncashRequest(BaseModel):
    days: Decimal = Field(..., gt=0)


class InitializeRequest(BaseModel):
    year: int = Field(..., ge=2000, le=2100)


class InitializeResult(BaseModel):
    year: int
    created: int
    skipped: int


class RolloverRequest(BaseModel):
    from_year: int = Field(..., ge=2000, le=2100)


class RolloverResult(BaseModel):
    from_year: int
    to_year: int
    processed: int
    carried_total: Decimal
    forfeited_total: Decimal


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class ContactDuringLeave(BaseModel):
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=500)


class LeaveRequestCreate(BaseModel):
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    reason: str = Field(..., min_length=1, max_length=1000)
    is_emergency: bool = False
    handover_notes: Optional[str] = Field(None, max_length=2000)
    contact_during_leave: Optional[ContactDuringLeave] = None


class LeavePreviewRequest(BaseModel):
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date


class DayEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    kind: DayKind
    counted: bool
    sandwiched: bool = False
    holiday_name: Optional[str] = None


class LeavePreviewOut(BaseModel):
    total_days: int
    days: list[DayEntryOut]
    policy_name: Optional[str] = None
    available: Optional[Decimal] = None
    eligible: bool
    eligibility_error: Optional[str] = None


class LeaveRejectRequest(BaseModel):
    reason: str = Field("", max_length=1000)


class LeaveActionRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    balance_year: int
    start_date: date
    end_date: date
    total_days: Decimal
    reason: str
    status: LeaveStatus
    is_emergency: bool
    handover_notes: Optional[str] = None
    contact_during_leave: Optional[ContactDuringLeave] = None
    applied_at: datetime
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None


class LeaveTransitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[LeaveStatus] = None
    to_status: LeaveStatus
    actor_id: uuid.UUID
    occurred_at: datetime
    note: Optional[str] = None


class LeaveCommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


class LeaveCommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    author_id: uuid.UUID
    text: str
    created_at: datetime


class LeaveHistoryOut(BaseModel):
    request: LeaveRequestOut
    transitions: list[LeaveTransitionOut]
    comments: list[LeaveCommentOut]
