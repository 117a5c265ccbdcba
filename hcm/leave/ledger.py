"""Leave balance ledger — the only code that mutates LeaveBalance counters.

Every operation is one conditional UPDATE on one row:

    UPDATE leave_balances SET ... WHERE id = :id AND <guard>

Zero affected rows means the guard failed and nothing changed. The UPDATE
takes the row lock in PostgreSQL, so two concurrent reservations against
the same (employee, leave type, year) row serialize there, and the second
re-evaluates its guard against the first one's result.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.common.audit import create_audit_entry
from hcm.common.exceptions import (
    ConflictError,
    EncashmentNotAllowedError,
    InsufficientBalanceError,
    LedgerInvariantError,
    ValidationException,
)
from hcm.leave.models import ZERO, LeaveBalance, LeaveType

logger = logging.getLogger(__name__)

DAYS = sa.Numeric(5, 1)


def _days(value: Any, field: str = "days", *, allow_zero: bool = False) -> Decimal:
    days = Decimal(str(value))
    if days < 0 or (days == 0 and not allow_zero):
        raise ValidationException({field: ["Day amount must be positive."]})
    if days * 2 != int(days * 2):
        raise ValidationException({field: ["Day amount must be a multiple of 0.5."]})
    return days


async def _apply(
    db: AsyncSession,
    balance: LeaveBalance,
    guard: sa.ColumnElement[bool],
    values: dict[str, Any],
) -> bool:
    """Run the guarded UPDATE; refresh ``balance`` from the row either way."""
    result = await db.execute(
        update(LeaveBalance)
        .where(LeaveBalance.id == balance.id, guard)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(balance)
    return result.rowcount == 1


async def _audit(
    db: AsyncSession,
    action: str,
    balance: LeaveBalance,
    before: dict,
    actor_id: Optional[uuid.UUID],
    **extra: Any,
) -> None:
    await create_audit_entry(
        db,
        action=action,
        entity_type="leave_balance",
        entity_id=balance.id,
        actor_id=actor_id,
        old_values=before,
        new_values={**balance.snapshot(), **extra},
    )


def _invariant_broken(op: str, balance: LeaveBalance, days: Decimal) -> LedgerInvariantError:
    message = (
        f"{op} of {days} day(s) on balance {balance.id} failed: "
        f"pending={balance.pending} used={balance.used}"
    )
    logger.critical(message)
    return LedgerInvariantError(message)


# ═════════════════════════════════════════════════════════════════════
# Lookups / row creation
# ═════════════════════════════════════════════════════════════════════


async def get_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    year: int,
) -> Optional[LeaveBalance]:
    result = await db.execute(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
    )
    return result.scalars().first()


async def open_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    year: int,
    allocated: Decimal,
    *,
    carried_forward: Decimal = ZERO,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """Create the (employee, leave type, year) row; ConflictError if it exists."""
    allocated = _days(allocated, "allocated", allow_zero=True)
    balance = LeaveBalance(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year,
        allocated=allocated,
        carried_forward=carried_forward,
        used=ZERO,
        pending=ZERO,
        encashed=ZERO,
    )
    db.add(balance)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("employee/leave_type/year", f"{employee_id}/{leave_type_id}/{year}")

    logger.info(
        "Opened balance %s: employee=%s leave_type=%s year=%s allocated=%s carried=%s",
        balance.id, employee_id, leave_type_id, year, allocated, carried_forward,
    )
    await create_audit_entry(
        db,
        action="open",
        entity_type="leave_balance",
        entity_id=balance.id,
        actor_id=actor_id,
        new_values=balance.snapshot(),
    )
    return balance


# ═════════════════════════════════════════════════════════════════════
# Ledger transitions
# ═════════════════════════════════════════════════════════════════════


async def reserve(
    db: AsyncSession,
    balance: LeaveBalance,
    days: Any,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """pending += days, only if remaining >= days."""
    days = _days(days)
    before = balance.snapshot()
    ok = await _apply(
        db, balance,
        LeaveBalance.remaining >= sa.literal(days, DAYS),
        {"pending": LeaveBalance.pending + days},
    )
    if not ok:
        logger.warning(
            "Reserve rejected on balance %s: available=%s requested=%s",
            balance.id, balance.remaining, days,
        )
        raise InsufficientBalanceError(available=balance.remaining, requested=days)

    logger.info("Reserved %s day(s) on balance %s", days, balance.id)
    await _audit(db, "reserve", balance, before, actor_id, days=days)
    return balance


async def commit(
    db: AsyncSession,
    balance: LeaveBalance,
    days: Any,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """Move days from pending to used (approval). Requires pending >= days."""
    days = _days(days)
    before = balance.snapshot()
    ok = await _apply(
        db, balance,
        LeaveBalance.pending >= sa.literal(days, DAYS),
        {
            "pending": LeaveBalance.pending - days,
            "used": LeaveBalance.used + days,
        },
    )
    if not ok:
        raise _invariant_broken("commit", balance, days)

    logger.info("Committed %s day(s) on balance %s", days, balance.id)
    await _audit(db, "commit", balance, before, actor_id, days=days)
    return balance


async def release(
    db: AsyncSession,
    balance: LeaveBalance,
    days: Any,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """Return pending days to availability (reject / cancel / withdraw of a pending request)."""
    days = _days(days)
    before = balance.snapshot()
    ok = await _apply(
        db, balance,
        LeaveBalance.pending >= sa.literal(days, DAYS),
        {"pending": LeaveBalance.pending - days},
    )
    if not ok:
        raise _invariant_broken("release", balance, days)

    logger.info("Released %s day(s) on balance %s", days, balance.id)
    await _audit(db, "release", balance, before, actor_id, days=days)
    return balance


async def restore(
    db: AsyncSession,
    balance: LeaveBalance,
    days: Any,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """Return used days to availability (cancel / withdraw of an approved request)."""
    days = _days(days)
    before = balance.snapshot()
    ok = await _apply(
        db, balance,
        LeaveBalance.used >= sa.literal(days, DAYS),
        {"used": LeaveBalance.used - days},
    )
    if not ok:
        raise _invariant_broken("restore", balance, days)

    logger.info("Restored %s used day(s) on balance %s", days, balance.id)
    await _audit(db, "restore", balance, before, actor_id, days=days)
    return balance


async def encash(
    db: AsyncSession,
    balance: LeaveBalance,
    leave_type: LeaveType,
    days: Any,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """encashed += days; the leave type must allow it and remaining must cover it."""
    if not leave_type.encashment_allowed:
        raise EncashmentNotAllowedError(leave_type.name)
    days = _days(days)
    before = balance.snapshot()
    ok = await _apply(
        db, balance,
        LeaveBalance.remaining >= sa.literal(days, DAYS),
        {"encashed": LeaveBalance.encashed + days},
    )
    if not ok:
        logger.warning(
            "Encashment rejected on balance %s: available=%s requested=%s",
            balance.id, balance.remaining, days,
        )
        raise InsufficientBalanceError(available=balance.remaining, requested=days)

    logger.info("Encashed %s day(s) on balance %s", days, balance.id)
    await _audit(db, "encash", balance, before, actor_id, days=days)
    return balance


async def adjust(
    db: AsyncSession,
    balance: LeaveBalance,
    *,
    allocated: Any = None,
    carried_forward: Any = None,
    encashed: Any = None,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveBalance:
    """Administrative edit of the grant fields; used/pending are never touched.

    Rejected with InsufficientBalanceError when the new grant would no longer
    cover the days already used or pending.
    """
    values: dict[str, Any] = {}
    if allocated is not None:
        values["allocated"] = _days(allocated, "allocated", allow_zero=True)
    if carried_forward is not None:
        values["carried_forward"] = _days(carried_forward, "carried_forward", allow_zero=True)
    if encashed is not None:
        values["encashed"] = _days(encashed, "encashed", allow_zero=True)
    if not values:
        return balance

    def _col(name: str) -> sa.ColumnElement:
        if name in values:
            return sa.literal(values[name], DAYS)
        return getattr(LeaveBalance, name)

    new_remaining = (
        _col("allocated") + _col("carried_forward")
        - LeaveBalance.used - LeaveBalance.pending - _col("encashed")
    )
    before = balance.snapshot()
    ok = await _apply(db, balance, new_remaining >= 0, values)
    if not ok:
        granted = (
            values.get("allocated", balance.allocated)
            + values.get("carried_forward", balance.carried_forward)
            - values.get("encashed", balance.encashed)
        )
        logger.warning("Adjustment rejected on balance %s: %s", balance.id, values)
        raise InsufficientBalanceError(
            available=max(ZERO, granted), requested=balance.used + balance.pending,
        )

    logger.info("Adjusted balance %s: %s", balance.id, values)
    await _audit(db, "adjust", balance, before, actor_id)
    return balance


@dataclass
class CarryForwardResult:
    balance: LeaveBalance
    carried: Decimal
    forfeited: Decimal


async def carry_forward(
    db: AsyncSession,
    balance: LeaveBalance,
    days: Any,
    cap: Any,
    *,
    next_allocation: Decimal = ZERO,
    actor_id: Optional[uuid.UUID] = None,
) -> CarryForwardResult:
    """Carry min(days, cap, remaining) into next year's row; the rest is forfeited.

    Creates next year's row (with ``next_allocation``) when missing, otherwise
    sets its carried_forward. Re-running for the same year is idempotent.
    The closing year's row is left as it was.
    """
    days = _days(days, allow_zero=True)
    cap = _days(cap, "cap", allow_zero=True)
    available = max(ZERO, balance.remaining)
    carried = min(days, cap, available)
    forfeited = max(ZERO, min(days, available) - carried)
    next_year = balance.year + 1

    target = await get_balance(db, balance.employee_id, balance.leave_type_id, next_year)
    if target is None:
        target = await open_balance(
            db,
            balance.employee_id,
            balance.leave_type_id,
            next_year,
            next_allocation,
            carried_forward=carried,
            actor_id=actor_id,
        )
    else:
        before = target.snapshot()
        ok = await _apply(
            db, target,
            (
                LeaveBalance.allocated + sa.literal(carried, DAYS)
                - LeaveBalance.used - LeaveBalance.pending - LeaveBalance.encashed
            ) >= 0,
            {"carried_forward": carried},
        )
        if not ok:
            raise InsufficientBalanceError(
                available=target.allocated + carried - target.encashed,
                requested=target.used + target.pending,
            )
        await _audit(db, "carry_forward", target, before, actor_id, source_balance_id=balance.id)

    logger.info(
        "Carried %s day(s) from balance %s into %s (forfeited %s)",
        carried, balance.id, next_year, forfeited,
    )
    return CarryForwardResult(balance=target, carried=carried, forfeited=forfeited)
