"""Leave policy resolution, eligibility checks and accrual proration.

Everything here is side-effect free except ``load_policies``; eligibility
failures raise the policy exceptions from hcm.common.exceptions.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.common.constants import (
    AccrualStart,
    AccrualType,
    DayTreatment,
    GenderApplicability,
)
from hcm.common.exceptions import (
    ExceedsConsecutiveLimitError,
    NotApplicableError,
    NotEligibleYetError,
    TooFarInAdvanceError,
)
from hcm.core_hr.models import Employee
from hcm.leave.models import LeavePolicy, LeaveType

logger = logging.getLogger(__name__)

FINANCIAL_YEAR_START_MONTH = 4


@dataclass(frozen=True)
class LeaveRules:
    """Effective rules for one (employee, leave type) pair."""

    weekend_policy: DayTreatment = DayTreatment.exclude
    holiday_policy: DayTreatment = DayTreatment.exclude
    sandwich_leave: bool = False
    advance_leave_allowed: bool = True
    max_advance_days: int = 0
    probation_months: int = 0
    max_consecutive_days: int = 1
    allocation: Decimal = Decimal("0")
    carry_forward_limit: Decimal = Decimal("0")
    accrual_type: AccrualType = AccrualType.yearly
    accrual_start: AccrualStart = AccrualStart.calendar_year
    policy_id: Optional[uuid.UUID] = None
    policy_name: Optional[str] = None


# ── Policy resolution ───────────────────────────────────────────────

def _in_scope(values: Sequence[str] | None, candidate: Optional[str]) -> bool:
    if not values:
        return True
    return candidate is not None and candidate in values


def policy_applies(policy: LeavePolicy, employee: Employee, as_of: date) -> bool:
    if not policy.is_active:
        return False
    if policy.effective_from > as_of:
        return False
    if policy.effective_to is not None and policy.effective_to < as_of:
        return False
    department = str(employee.department_id) if employee.department_id else None
    return (
        _in_scope(policy.departments, department)
        and _in_scope(policy.roles, employee.role)
        and _in_scope(policy.grades, employee.grade)
    )


def default_rules(leave_type: LeaveType) -> LeaveRules:
    return LeaveRules(
        probation_months=leave_type.eligibility_months or 0,
        max_consecutive_days=leave_type.max_consecutive_days,
        allocation=Decimal(leave_type.max_days_per_year),
        carry_forward_limit=(
            Decimal(leave_type.max_carry_forward_days or 0)
            if leave_type.carry_forward_allowed else Decimal("0")
        ),
    )


def resolve_rules(
    policies: Iterable[LeavePolicy],
    employee: Employee,
    leave_type: LeaveType,
    as_of: date,
) -> LeaveRules:
    """Pick the most recently effective matching policy that binds the leave type.

    Binding overrides (allocation, carry-forward limit, max consecutive days)
    win over the leave type's own values. With no matching policy the
    defaults apply: weekends and holidays excluded, no sandwich rule.
    """
    candidates = [
        p for p in policies
        if policy_applies(p, employee, as_of) and p.binding_for(leave_type.id) is not None
    ]
    if not candidates:
        return default_rules(leave_type)

    policy = max(candidates, key=lambda p: p.effective_from)
    binding = policy.binding_for(leave_type.id)
    base = default_rules(leave_type)
    logger.debug(
        "Policy %r governs %s for employee %s on %s",
        policy.name, leave_type.code, employee.id, as_of,
    )

    carry_cap = base.carry_forward_limit
    if leave_type.carry_forward_allowed and binding.carry_forward_limit is not None:
        carry_cap = Decimal(binding.carry_forward_limit)

    return LeaveRules(
        weekend_policy=policy.weekend_policy,
        holiday_policy=policy.holiday_policy,
        sandwich_leave=policy.sandwich_leave,
        advance_leave_allowed=policy.advance_leave_allowed,
        max_advance_days=policy.max_advance_days,
        probation_months=max(policy.probation_period_months or 0, base.probation_months),
        max_consecutive_days=binding.max_consecutive_days or base.max_consecutive_days,
        allocation=(
            Decimal(binding.allocation) if binding.allocation is not None else base.allocation
        ),
        carry_forward_limit=carry_cap,
        accrual_type=policy.accrual_type,
        accrual_start=policy.accrual_start,
        policy_id=policy.id,
        policy_name=policy.name,
    )


async def load_policies(session: AsyncSession) -> list[LeavePolicy]:
    result = await session.execute(
        select(LeavePolicy).where(LeavePolicy.is_active.is_(True))
    )
    return list(result.scalars().all())


# ── Eligibility ─────────────────────────────────────────────────────

def tenure_months(date_of_joining: date, as_of: date) -> int:
    """Whole months of service completed on ``as_of``."""
    months = (as_of.year - date_of_joining.year) * 12 + (as_of.month - date_of_joining.month)
    if as_of.day < date_of_joining.day:
        months -= 1
    return max(0, months)


def check_eligibility(
    employee: Employee,
    leave_type: LeaveType,
    rules: LeaveRules,
    requested_days: int,
    start_date: date,
    as_of: date,
) -> None:
    """Run the eligibility checks in order; the first failure raises.

    1. tenure vs probation / eligibility window
    2. gender applicability
    3. max consecutive days
    4. advance-leave window
    """
    tenure = tenure_months(employee.date_of_joining, as_of)
    if tenure < rules.probation_months:
        raise NotEligibleYetError(leave_type.name, rules.probation_months, tenure)

    applicable = list(leave_type.applicable_genders or [GenderApplicability.all.value])
    if GenderApplicability.all.value not in applicable:
        category = employee.gender_category
        if category is None or category.value not in applicable:
            raise NotApplicableError(leave_type.name, applicable)

    if requested_days > rules.max_consecutive_days:
        raise ExceedsConsecutiveLimitError(
            leave_type.name, rules.max_consecutive_days, requested_days,
        )

    if not rules.advance_leave_allowed:
        days_ahead = (start_date - as_of).days
        if days_ahead > rules.max_advance_days:
            raise TooFarInAdvanceError(rules.max_advance_days, days_ahead)


# ── Accrual proration ───────────────────────────────────────────────

def _period_start(accrual_start: AccrualStart, year: int) -> date:
    if accrual_start == AccrualStart.financial_year:
        return date(year, FINANCIAL_YEAR_START_MONTH, 1)
    return date(year, 1, 1)


def _round_down_half(value: Decimal) -> Decimal:
    return Decimal(math.floor(value * 2)) / 2


def prorated_allocation(
    annual: Decimal,
    accrual_type: AccrualType,
    accrual_start: AccrualStart,
    date_of_joining: date,
    year: int,
) -> Decimal:
    """Allocation for ``year`` given the employee's joining date.

    Employees who joined before the accrual period, or whose accrual is
    anchored on their own joining date, get the full amount. In-period
    joiners get the share of remaining months/quarters (joining month
    counts), rounded down to half days. Yearly cadence grants in full.
    """
    annual = Decimal(annual)
    start = _period_start(accrual_start, year)
    end = date(start.year + 1, start.month, 1)

    if date_of_joining >= end:
        return Decimal("0")
    if date_of_joining < start or accrual_start == AccrualStart.joining:
        return annual
    if accrual_type == AccrualType.yearly:
        return annual

    month_index = (date_of_joining.year - start.year) * 12 + (date_of_joining.month - start.month)
    if accrual_type == AccrualType.monthly:
        share = annual * (12 - month_index) / 12
    else:
        share = annual * (4 - month_index // 3) / 4
    return _round_down_half(share)
