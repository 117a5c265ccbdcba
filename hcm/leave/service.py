"""Leave service layer — request state machine, balances, catalogues.

Business logic:
  - Request creation: range validation → policy rules → day count →
    eligibility → overlap → ledger.reserve → persist as pending
  - Approve / reject / cancel / withdraw with compare-and-set on status,
    each followed by the matching ledger movement
  - Append-only transition history and comments
  - Balance initialisation, assignment, admin edit, encashment, rollover
  - Leave type, policy and holiday catalogues
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import Select, and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hcm.attendance.models import Holiday
from hcm.auth.models import RoleAssignment
from hcm.common.audit import create_audit_entry
from hcm.common.clock import SystemClock
from hcm.common.constants import (
    APPROVER_ROLES,
    LEAVE_TRANSITIONS,
    MAX_LIST_LIMIT,
    GenderApplicability,
    LeaveStatus,
)
from hcm.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    InvalidRangeError,
    InvalidTransitionError,
    LedgerInvariantError,
    NotFoundException,
    OverlappingLeaveError,
    PolicyViolation,
    ValidationException,
)
from hcm.config import settings
from hcm.core_hr.models import Employee
from hcm.leave import ledger
from hcm.leave.calendar import load_calendar
from hcm.leave.day_count import count_days, day_breakdown
from hcm.leave.models import (
    LeaveBalance,
    LeaveComment,
    LeavePolicy,
    LeavePolicyLeaveType,
    LeaveRequest,
    LeaveRequestTransition,
    LeaveType,
)
from hcm.leave.policy import (
    LeaveRules,
    check_eligibility,
    load_policies,
    prorated_allocation,
    resolve_rules,
)
from hcm.leave.schemas import (
    BalanceAdjust,
    BalanceAssign,
    DayEntryOut,
    HolidayCreate,
    HolidayUpdate,
    InitializeResult,
    LeavePolicyCreate,
    LeavePreviewOut,
    LeavePreviewRequest,
    LeaveRequestCreate,
    LeaveTypeCreate,
    LeaveTypeUpdate,
    RolloverResult,
)

logger = logging.getLogger(__name__)

_ACTION_VERBS: dict[LeaveStatus, str] = {
    LeaveStatus.approved: "approve",
    LeaveStatus.rejected: "reject",
    LeaveStatus.cancelled: "cancel",
    LeaveStatus.withdrawn: "withdraw",
}


def employee_lock(employee_id: uuid.UUID) -> Select:
    """Row lock on the applicant; held until the request transaction ends."""
    return select(Employee.id).where(Employee.id == employee_id).with_for_update()


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: requests, approvals, balances, catalogues."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> Employee:
        query = select(Employee).where(Employee.id == employee_id)
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _get_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> LeaveType:
        query = select(LeaveType).where(LeaveType.id == leave_type_id)
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        leave_type = (await db.execute(query)).scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    async def _get_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest).where(LeaveRequest.id == request_id)
        )
        leave_request = result.scalars().first()
        if leave_request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_request

    @staticmethod
    async def _get_balance_row(db: AsyncSession, balance_id: uuid.UUID) -> LeaveBalance:
        result = await db.execute(select(LeaveBalance).where(LeaveBalance.id == balance_id))
        balance = result.scalars().first()
        if balance is None:
            raise NotFoundException("LeaveBalance", str(balance_id))
        return balance

    @staticmethod
    async def is_admin(db: AsyncSession, employee_id: uuid.UUID) -> bool:
        """True if the employee holds an active hr_admin / system_admin role."""
        result = await db.execute(
            select(RoleAssignment.id).where(
                RoleAssignment.employee_id == employee_id,
                RoleAssignment.role.in_(APPROVER_ROLES),
                RoleAssignment.is_active.is_(True),
            )
        )
        return result.first() is not None

    @staticmethod
    async def has_approval_authority(
        db: AsyncSession,
        actor: Employee,
        employee: Employee,
    ) -> bool:
        """Reporting manager, L2 manager or an HR/system admin; never oneself."""
        if actor.id == employee.id:
            return False
        if actor.id in (employee.reporting_manager_id, employee.l2_manager_id):
            return True
        return await LeaveService.is_admin(db, actor.id)

    @staticmethod
    async def _ensure_can_view(
        db: AsyncSession,
        viewer: Employee,
        leave_request: LeaveRequest,
    ) -> None:
        if viewer.id == leave_request.employee_id:
            return
        owner = await LeaveService.get_employee(
            db, leave_request.employee_id, active_only=False,
        )
        if not await LeaveService.has_approval_authority(db, viewer, owner):
            raise ForbiddenException("You are not allowed to view this leave request.")

    @staticmethod
    async def _balance_for_request(
        db: AsyncSession,
        leave_request: LeaveRequest,
    ) -> LeaveBalance:
        balance = await ledger.get_balance(
            db,
            leave_request.employee_id,
            leave_request.leave_type_id,
            leave_request.balance_year,
        )
        if balance is None:
            message = (
                f"Balance row for leave request {leave_request.id} "
                f"(year {leave_request.balance_year}) is missing"
            )
            logger.critical(message)
            raise LedgerInvariantError(message)
        return balance

    @staticmethod
    async def _transition(
        db: AsyncSession,
        leave_request: LeaveRequest,
        target: LeaveStatus,
        *,
        actor_id: uuid.UUID,
        now: datetime,
        note: Optional[str] = None,
        **fields,
    ) -> LeaveStatus:
        """Compare-and-set the status; returns the status that was replaced.

        A concurrent transition that got there first makes the UPDATE match
        zero rows, which surfaces as InvalidTransitionError.
        """
        verb = _ACTION_VERBS[target]
        current = leave_request.status
        if target not in LEAVE_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, verb)

        result = await db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id == leave_request.id, LeaveRequest.status == current)
            .values(status=target, **fields)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(leave_request)
        if result.rowcount != 1:
            logger.warning(
                "Lost race on leave request %s: expected %s, found %s",
                leave_request.id, current.value, leave_request.status.value,
            )
            raise InvalidTransitionError(leave_request.status.value, verb)

        db.add(LeaveRequestTransition(
            leave_request_id=leave_request.id,
            from_status=current,
            to_status=target,
            actor_id=actor_id,
            occurred_at=now,
            note=note,
        ))
        await create_audit_entry(
            db,
            action=verb,
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=actor_id,
            old_values={"status": current},
            new_values={"status": target, "note": note},
        )
        logger.info(
            "Leave request %s: %s → %s by %s",
            leave_request.id, current.value, target.value, actor_id,
        )
        return current

    @staticmethod
    async def _return_days(
        db: AsyncSession,
        leave_request: LeaveRequest,
        previous: LeaveStatus,
        actor_id: uuid.UUID,
    ) -> None:
        balance = await LeaveService._balance_for_request(db, leave_request)
        if previous == LeaveStatus.approved:
            await ledger.restore(db, balance, leave_request.total_days, actor_id=actor_id)
        else:
            await ledger.release(db, balance, leave_request.total_days, actor_id=actor_id)

    @staticmethod
    async def rules_for(
        db: AsyncSession,
        employee: Employee,
        leave_type: LeaveType,
        as_of: date,
        policies: Optional[Sequence[LeavePolicy]] = None,
    ) -> LeaveRules:
        if policies is None:
            policies = await load_policies(db)
        return resolve_rules(policies, employee, leave_type, as_of)

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        employee: Employee,
        data: LeaveRequestCreate,
        clock: SystemClock,
    ) -> LeaveRequest:
        """Apply for leave; days are reserved on the start year's balance."""
        today = clock.today()

        if data.end_date <= data.start_date:
            raise InvalidRangeError("End date must be after start date.")
        span = (data.end_date - data.start_date).days + 1
        if span > settings.MAX_LEAVE_SPAN_DAYS:
            raise ValidationException({
                "end_date": [f"A leave request may span at most {settings.MAX_LEAVE_SPAN_DAYS} days."]
            })

        leave_type = await LeaveService._get_leave_type(db, data.leave_type_id)
        rules = await LeaveService.rules_for(db, employee, leave_type, today)
        calendar = await load_calendar(db, data.start_date, data.end_date)
        total_days = count_days(
            data.start_date, data.end_date, rules, calendar, employee.gender_category,
        )
        check_eligibility(employee, leave_type, rules, total_days, data.start_date, today)

        # ── Overlap with the employee's live requests ───────────────
        # Concurrent applications by one employee queue on this lock
        await db.execute(employee_lock(employee.id))
        overlap = await db.execute(
            select(LeaveRequest.id).where(
                LeaveRequest.employee_id == employee.id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.start_date <= data.end_date,
                LeaveRequest.end_date >= data.start_date,
            )
        )
        if overlap.first() is not None:
            raise OverlappingLeaveError(data.start_date.isoformat(), data.end_date.isoformat())

        # ── Reserve (binding balance check) ─────────────────────────
        year = data.start_date.year
        balance = await ledger.get_balance(db, employee.id, leave_type.id, year)
        if balance is None:
            logger.warning(
                "No %s balance for employee %s in %s", leave_type.code, employee.id, year,
            )
            raise InsufficientBalanceError(available=Decimal("0"), requested=Decimal(total_days))
        await ledger.reserve(db, balance, total_days, actor_id=employee.id)

        now = clock.now()
        leave_request = LeaveRequest(
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            balance_year=year,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=Decimal(total_days),
            reason=data.reason,
            status=LeaveStatus.pending,
            is_emergency=data.is_emergency,
            handover_notes=data.handover_notes,
            contact_during_leave=(
                data.contact_during_leave.model_dump(mode="json", exclude_none=True)
                if data.contact_during_leave else None
            ),
            applied_at=now,
        )
        db.add(leave_request)
        await db.flush()

        db.add(LeaveRequestTransition(
            leave_request_id=leave_request.id,
            from_status=None,
            to_status=LeaveStatus.pending,
            actor_id=employee.id,
            occurred_at=now,
        ))
        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=employee.id,
            new_values={
                "leave_type": leave_type.code,
                "start_date": data.start_date,
                "end_date": data.end_date,
                "total_days": total_days,
                "status": LeaveStatus.pending,
                "policy": rules.policy_name,
            },
        )
        logger.info(
            "Leave request %s created: employee=%s type=%s %s..%s days=%s",
            leave_request.id, employee.id, leave_type.code,
            data.start_date, data.end_date, total_days,
        )
        return leave_request

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Employee,
        clock: SystemClock,
        *,
        note: Optional[str] = None,
    ) -> LeaveRequest:
        """pending → approved; reserved days move from pending to used."""
        leave_request = await LeaveService._get_request(db, request_id)
        employee = await LeaveService.get_employee(
            db, leave_request.employee_id, active_only=False,
        )
        if not await LeaveService.has_approval_authority(db, actor, employee):
            raise ForbiddenException("You are not authorized to approve this leave request.")

        now = clock.now()
        await LeaveService._transition(
            db, leave_request, LeaveStatus.approved,
            actor_id=actor.id, now=now, note=note,
            approved_by=actor.id, approved_at=now,
        )
        balance = await LeaveService._balance_for_request(db, leave_request)
        await ledger.commit(db, balance, leave_request.total_days, actor_id=actor.id)
        return leave_request

    @staticmethod
    async def reject_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Employee,
        reason: str,
        clock: SystemClock,
    ) -> LeaveRequest:
        """pending → rejected; reserved days are released."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException({"reason": ["A rejection reason is required."]})

        leave_request = await LeaveService._get_request(db, request_id)
        employee = await LeaveService.get_employee(
            db, leave_request.employee_id, active_only=False,
        )
        if not await LeaveService.has_approval_authority(db, actor, employee):
            raise ForbiddenException("You are not authorized to reject this leave request.")

        now = clock.now()
        await LeaveService._transition(
            db, leave_request, LeaveStatus.rejected,
            actor_id=actor.id, now=now, note=reason,
            rejected_by=actor.id, rejected_at=now, rejection_reason=reason,
        )
        balance = await LeaveService._balance_for_request(db, leave_request)
        await ledger.release(db, balance, leave_request.total_days, actor_id=actor.id)
        return leave_request

    # ─────────────────────────────────────────────────────────────────
    # Cancel / Withdraw
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Employee,
        clock: SystemClock,
        *,
        note: Optional[str] = None,
    ) -> LeaveRequest:
        """pending/approved → cancelled, by the owner or an approver."""
        leave_request = await LeaveService._get_request(db, request_id)
        if actor.id != leave_request.employee_id:
            employee = await LeaveService.get_employee(
                db, leave_request.employee_id, active_only=False,
            )
            if not await LeaveService.has_approval_authority(db, actor, employee):
                raise ForbiddenException("You can only cancel your own leave requests.")

        now = clock.now()
        previous = await LeaveService._transition(
            db, leave_request, LeaveStatus.cancelled,
            actor_id=actor.id, now=now, note=note,
            cancelled_by=actor.id, cancelled_at=now,
        )
        await LeaveService._return_days(db, leave_request, previous, actor.id)
        return leave_request

    @staticmethod
    async def withdraw_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Employee,
        clock: SystemClock,
        *,
        note: Optional[str] = None,
    ) -> LeaveRequest:
        """Self-initiated cancellation; same ledger effect, recorded as withdrawn."""
        leave_request = await LeaveService._get_request(db, request_id)
        if actor.id != leave_request.employee_id:
            raise ForbiddenException("Only the applicant can withdraw a leave request.")

        now = clock.now()
        previous = await LeaveService._transition(
            db, leave_request, LeaveStatus.withdrawn,
            actor_id=actor.id, now=now, note=note,
            cancelled_by=actor.id, cancelled_at=now,
        )
        await LeaveService._return_days(db, leave_request, previous, actor.id)
        return leave_request

    # ─────────────────────────────────────────────────────────────────
    # Read side: get / list / history / comments / preview
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        viewer: Employee,
    ) -> LeaveRequest:
        leave_request = await LeaveService._get_request(db, request_id)
        await LeaveService._ensure_can_view(db, viewer, leave_request)
        return leave_request

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        viewer: Employee,
        *,
        scope: str = "my",
        status: Optional[LeaveStatus] = None,
        limit: int = 50,
    ) -> list[LeaveRequest]:
        """Scopes: my (own), team (direct and L2 reports), all (HR / system admin)."""
        query = select(LeaveRequest).order_by(LeaveRequest.applied_at.desc())

        if scope == "my":
            query = query.where(LeaveRequest.employee_id == viewer.id)
        elif scope == "team":
            reports = select(Employee.id).where(
                or_(
                    Employee.reporting_manager_id == viewer.id,
                    Employee.l2_manager_id == viewer.id,
                )
            )
            query = query.where(LeaveRequest.employee_id.in_(reports))
        elif scope == "all":
            if not await LeaveService.is_admin(db, viewer.id):
                raise ForbiddenException("Only HR administrators can list all leave requests.")
        else:
            raise ValidationException({"scope": ["Scope must be one of: my, team, all."]})

        if status is not None:
            query = query.where(LeaveRequest.status == status)

        result = await db.execute(query.limit(min(limit, MAX_LIST_LIMIT)))
        return list(result.scalars().all())

    @staticmethod
    async def get_history(
        db: AsyncSession,
        request_id: uuid.UUID,
        viewer: Employee,
    ) -> tuple[LeaveRequest, list[LeaveRequestTransition], list[LeaveComment]]:
        leave_request = await LeaveService.get_request(db, request_id, viewer)
        transitions = await db.execute(
            select(LeaveRequestTransition)
            .where(LeaveRequestTransition.leave_request_id == request_id)
            .order_by(LeaveRequestTransition.occurred_at.asc())
        )
        comments = await db.execute(
            select(LeaveComment)
            .where(LeaveComment.leave_request_id == request_id)
            .order_by(LeaveComment.created_at.asc())
        )
        return (
            leave_request,
            list(transitions.scalars().all()),
            list(comments.scalars().all()),
        )

    @staticmethod
    async def add_comment(
        db: AsyncSession,
        request_id: uuid.UUID,
        author: Employee,
        text: str,
        clock: SystemClock,
    ) -> LeaveComment:
        text = (text or "").strip()
        if not text:
            raise ValidationException({"text": ["Comment text is required."]})
        leave_request = await LeaveService.get_request(db, request_id, author)

        comment = LeaveComment(
            leave_request_id=leave_request.id,
            author_id=author.id,
            text=text,
            created_at=clock.now(),
        )
        db.add(comment)
        await db.flush()
        await create_audit_entry(
            db,
            action="comment",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=author.id,
            new_values={"comment_id": comment.id},
        )
        return comment

    @staticmethod
    async def preview(
        db: AsyncSession,
        employee: Employee,
        data: LeavePreviewRequest,
        clock: SystemClock,
    ) -> LeavePreviewOut:
        """Day-by-day breakdown and eligibility verdict without reserving anything."""
        today = clock.today()
        leave_type = await LeaveService._get_leave_type(db, data.leave_type_id)
        rules = await LeaveService.rules_for(db, employee, leave_type, today)
        calendar = await load_calendar(db, data.start_date, data.end_date)
        days = day_breakdown(
            data.start_date, data.end_date, rules, calendar, employee.gender_category,
        )
        total = sum(1 for d in days if d.counted)

        eligible, error = True, None
        if total == 0:
            eligible, error = False, "All days in the selected range are weekends or holidays."
        else:
            try:
                check_eligibility(employee, leave_type, rules, total, data.start_date, today)
            except PolicyViolation as exc:
                eligible, error = False, exc.detail

        balance = await ledger.get_balance(
            db, employee.id, leave_type.id, data.start_date.year,
        )
        return LeavePreviewOut(
            total_days=total,
            days=[DayEntryOut.model_validate(d) for d in days],
            policy_name=rules.policy_name,
            available=balance.remaining if balance else None,
            eligible=eligible,
            eligibility_error=error,
        )

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        year: Optional[int] = None,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        query = (
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id)
            .order_by(LeaveBalance.year.desc())
        )
        if year is not None:
            query = query.where(LeaveBalance.year == year)
        if leave_type_id is not None:
            query = query.where(LeaveBalance.leave_type_id == leave_type_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _applies_to_gender(leave_type: LeaveType, employee: Employee) -> bool:
        applicable = leave_type.applicable_genders or [GenderApplicability.all.value]
        if GenderApplicability.all.value in applicable:
            return True
        category = employee.gender_category
        return category is not None and category.value in applicable

    @staticmethod
    async def initialize_employee(
        db: AsyncSession,
        employee: Employee,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
        leave_types: Optional[Sequence[LeaveType]] = None,
        policies: Optional[Sequence[LeavePolicy]] = None,
    ) -> tuple[int, int]:
        """Open missing balances for one employee; existing rows are left alone.

        Returns (created, skipped).
        """
        if leave_types is None:
            result = await db.execute(select(LeaveType).where(LeaveType.is_active.is_(True)))
            leave_types = list(result.scalars().all())
        if policies is None:
            policies = await load_policies(db)

        existing_result = await db.execute(
            select(LeaveBalance.leave_type_id).where(
                LeaveBalance.employee_id == employee.id,
                LeaveBalance.year == year,
            )
        )
        existing = {row[0] for row in existing_result.all()}
        as_of = max(date(year, 1, 1), employee.date_of_joining)

        created: list[LeaveBalance] = []
        skipped = 0
        for leave_type in leave_types:
            if leave_type.id in existing or not LeaveService._applies_to_gender(leave_type, employee):
                skipped += 1
                continue
            rules = resolve_rules(policies, employee, leave_type, as_of)
            allocated = prorated_allocation(
                rules.allocation,
                rules.accrual_type,
                rules.accrual_start,
                employee.date_of_joining,
                year,
            )
            balance = LeaveBalance(
                employee_id=employee.id,
                leave_type_id=leave_type.id,
                year=year,
                allocated=allocated,
            )
            db.add(balance)
            created.append(balance)

        if not created:
            return 0, skipped

        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("employee/year", f"{employee.id}/{year}")

        await create_audit_entry(
            db,
            action="initialize",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            new_values={
                "year": year,
                "balances": {str(b.leave_type_id): b.allocated for b in created},
            },
        )
        logger.info(
            "Initialized %d balance(s) for employee %s in %s (skipped %d)",
            len(created), employee.id, year, skipped,
        )
        return len(created), skipped

    @staticmethod
    async def initialize_year(
        db: AsyncSession,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InitializeResult:
        """Bulk, idempotent: one balance per active employee per active leave type."""
        employees = (
            await db.execute(select(Employee).where(Employee.is_active.is_(True)))
        ).scalars().all()
        leave_types = list(
            (await db.execute(select(LeaveType).where(LeaveType.is_active.is_(True))))
            .scalars().all()
        )
        policies = await load_policies(db)

        created_total = skipped_total = 0
        for employee in employees:
            if employee.date_of_joining > date(year, 12, 31):
                continue
            created, skipped = await LeaveService.initialize_employee(
                db, employee, year,
                actor_id=actor_id, leave_types=leave_types, policies=policies,
            )
            created_total += created
            skipped_total += skipped

        logger.info(
            "Year %s initialization: created=%d skipped=%d",
            year, created_total, skipped_total,
        )
        return InitializeResult(year=year, created=created_total, skipped=skipped_total)

    @staticmethod
    async def assign_balance(
        db: AsyncSession,
        data: BalanceAssign,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        await LeaveService.get_employee(db, data.employee_id)
        await LeaveService._get_leave_type(db, data.leave_type_id)
        existing = await ledger.get_balance(db, data.employee_id, data.leave_type_id, data.year)
        if existing is not None:
            raise ConflictError(
                "employee/leave_type/year",
                f"{data.employee_id}/{data.leave_type_id}/{data.year}",
            )
        return await ledger.open_balance(
            db,
            data.employee_id,
            data.leave_type_id,
            data.year,
            data.allocated,
            carried_forward=data.carried_forward,
            actor_id=actor_id,
        )

    @staticmethod
    async def adjust_balance(
        db: AsyncSession,
        balance_id: uuid.UUID,
        data: BalanceAdjust,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        balance = await LeaveService._get_balance_row(db, balance_id)
        return await ledger.adjust(
            db,
            balance,
            allocated=data.allocated,
            carried_forward=data.carried_forward,
            encashed=data.encashed,
            actor_id=actor_id,
        )

    @staticmethod
    async def encash_balance(
        db: AsyncSession,
        balance_id: uuid.UUID,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        balance = await LeaveService._get_balance_row(db, balance_id)
        leave_type = await LeaveService._get_leave_type(
            db, balance.leave_type_id, active_only=False,
        )
        return await ledger.encash(db, balance, leave_type, days, actor_id=actor_id)

    @staticmethod
    async def rollover(
        db: AsyncSession,
        from_year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RolloverResult:
        """Year-end: carry unused days into from_year + 1 under the cap in force now."""
        balances = (
            await db.execute(select(LeaveBalance).where(LeaveBalance.year == from_year))
        ).scalars().all()
        if not balances:
            return RolloverResult(
                from_year=from_year, to_year=from_year + 1,
                processed=0, carried_total=Decimal("0"), forfeited_total=Decimal("0"),
            )

        employee_ids = {b.employee_id for b in balances}
        leave_type_ids = {b.leave_type_id for b in balances}
        employees = {
            e.id: e for e in (
                await db.execute(select(Employee).where(Employee.id.in_(employee_ids)))
            ).scalars().all()
        }
        leave_types = {
            lt.id: lt for lt in (
                await db.execute(select(LeaveType).where(LeaveType.id.in_(leave_type_ids)))
            ).scalars().all()
        }
        policies = await load_policies(db)
        to_year = from_year + 1
        as_of = date(to_year, 1, 1)

        processed = 0
        carried_total = forfeited_total = Decimal("0")
        for balance in balances:
            employee = employees[balance.employee_id]
            leave_type = leave_types[balance.leave_type_id]
            if not employee.is_active or not leave_type.is_active:
                continue
            rules = resolve_rules(policies, employee, leave_type, as_of)
            next_allocation = prorated_allocation(
                rules.allocation, rules.accrual_type, rules.accrual_start,
                employee.date_of_joining, to_year,
            )
            outcome = await ledger.carry_forward(
                db,
                balance,
                max(Decimal("0"), balance.remaining),
                rules.carry_forward_limit,
                next_allocation=next_allocation,
                actor_id=actor_id,
            )
            processed += 1
            carried_total += outcome.carried
            forfeited_total += outcome.forfeited

        logger.info(
            "Rollover %s → %s: processed=%d carried=%s forfeited=%s",
            from_year, to_year, processed, carried_total, forfeited_total,
        )
        return RolloverResult(
            from_year=from_year,
            to_year=to_year,
            processed=processed,
            carried_total=carried_total,
            forfeited_total=forfeited_total,
        )

    # ─────────────────────────────────────────────────────────────────
    # Catalogues: leave types, policies, holidays
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_leave_types(
        db: AsyncSession,
        *,
        include_inactive: bool = False,
    ) -> list[LeaveType]:
        query = select(LeaveType).order_by(LeaveType.name)
        if not include_inactive:
            query = query.where(LeaveType.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        clash = await db.execute(
            select(LeaveType).where(
                or_(LeaveType.code == data.code, LeaveType.name == data.name)
            )
        )
        existing = clash.scalars().first()
        if existing is not None:
            if existing.code == data.code:
                raise ConflictError("code", data.code)
            raise ConflictError("name", data.name)

        values = data.model_dump(mode="json")
        values["max_days_per_year"] = data.max_days_per_year
        values["max_carry_forward_days"] = data.max_carry_forward_days
        leave_type = LeaveType(**values)
        db.add(leave_type)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            new_values=values,
        )
        logger.info("Leave type %s (%s) created", leave_type.code, leave_type.id)
        return leave_type

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        """Partial-update a leave type.

        Applies to allocations and requests made from now on. Balances
        already opened keep their allocated amount.
        """
        leave_type = await LeaveService._get_leave_type(db, leave_type_id, active_only=False)

        changes = data.model_dump(exclude_unset=True, mode="json")
        for field in ("max_days_per_year", "max_carry_forward_days"):
            if field in changes:
                changes[field] = getattr(data, field)
        if not changes:
            return leave_type

        if changes.get("name") and changes["name"] != leave_type.name:
            clash = await db.execute(
                select(LeaveType.id).where(
                    LeaveType.name == changes["name"], LeaveType.id != leave_type.id,
                )
            )
            if clash.first() is not None:
                raise ConflictError("name", changes["name"])

        old_values: dict = {}
        for field, value in changes.items():
            old_values[field] = getattr(leave_type, field)
            setattr(leave_type, field, value)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=changes,
        )
        logger.info(
            "Leave type %s updated: %s", leave_type.code, ", ".join(sorted(changes)),
        )
        return leave_type

    @staticmethod
    async def list_policies(
        db: AsyncSession,
        *,
        include_inactive: bool = False,
    ) -> list[LeavePolicy]:
        query = select(LeavePolicy).order_by(LeavePolicy.effective_from.desc())
        if not include_inactive:
            query = query.where(LeavePolicy.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def create_policy(
        db: AsyncSession,
        data: LeavePolicyCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicy:
        clash = await db.execute(select(LeavePolicy.id).where(LeavePolicy.name == data.name))
        if clash.first() is not None:
            raise ConflictError("name", data.name)
        for binding in data.leave_types:
            await LeaveService._get_leave_type(db, binding.leave_type_id)

        policy = LeavePolicy(
            name=data.name,
            description=data.description,
            departments=[str(d) for d in data.departments],
            roles=list(data.roles),
            grades=list(data.grades),
            probation_period_months=data.probation_period_months,
            accrual_type=data.accrual_type,
            accrual_start=data.accrual_start,
            weekend_policy=data.weekend_policy,
            holiday_policy=data.holiday_policy,
            sandwich_leave=data.sandwich_leave,
            advance_leave_allowed=data.advance_leave_allowed,
            max_advance_days=data.max_advance_days,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
            is_active=True,
            leave_types=[
                LeavePolicyLeaveType(
                    leave_type_id=b.leave_type_id,
                    allocation=b.allocation,
                    carry_forward_limit=b.carry_forward_limit,
                    max_consecutive_days=b.max_consecutive_days,
                )
                for b in data.leave_types
            ],
        )
        db.add(policy)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        logger.info("Leave policy %r created (%s)", policy.name, policy.id)
        return policy

    @staticmethod
    async def deactivate_policy(
        db: AsyncSession,
        policy_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicy:
        """Stop a policy from resolving; its history stays in place."""
        result = await db.execute(select(LeavePolicy).where(LeavePolicy.id == policy_id))
        policy = result.scalars().first()
        if policy is None:
            raise NotFoundException("LeavePolicy", str(policy_id))
        if not policy.is_active:
            return policy

        policy.is_active = False
        await db.flush()
        await create_audit_entry(
            db,
            action="deactivate",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            old_values={"is_active": True},
            new_values={"is_active": False},
        )
        logger.info("Leave policy %r deactivated", policy.name)
        return policy

    @staticmethod
    async def list_holidays(
        db: AsyncSession,
        *,
        year: Optional[int] = None,
    ) -> list[Holiday]:
        query = select(Holiday).where(Holiday.is_active.is_(True)).order_by(Holiday.date)
        if year is not None:
            query = query.where(
                or_(
                    Holiday.is_recurring.is_(True),
                    and_(Holiday.date >= date(year, 1, 1), Holiday.date <= date(year, 12, 31)),
                )
            )
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def create_holiday(
        db: AsyncSession,
        data: HolidayCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Holiday:
        clash = await db.execute(
            select(Holiday.id).where(Holiday.name == data.name, Holiday.date == data.date)
        )
        if clash.first() is not None:
            raise ConflictError("name/date", f"{data.name}/{data.date.isoformat()}")

        holiday = Holiday(**data.model_dump(), is_active=True)
        db.add(holiday)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="holiday",
            entity_id=holiday.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return holiday

    @staticmethod
    async def _get_holiday(db: AsyncSession, holiday_id: uuid.UUID) -> Holiday:
        result = await db.execute(
            select(Holiday).where(Holiday.id == holiday_id, Holiday.is_active.is_(True))
        )
        holiday = result.scalars().first()
        if holiday is None:
            raise NotFoundException("Holiday", str(holiday_id))
        return holiday

    @staticmethod
    async def update_holiday(
        db: AsyncSession,
        holiday_id: uuid.UUID,
        data: HolidayUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Holiday:
        """Edits affect day counts of requests made afterwards only."""
        holiday = await LeaveService._get_holiday(db, holiday_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return holiday

        name = changes.get("name", holiday.name)
        day = changes.get("date", holiday.date)
        clash = await db.execute(
            select(Holiday.id).where(
                Holiday.name == name, Holiday.date == day, Holiday.id != holiday.id,
            )
        )
        if clash.first() is not None:
            raise ConflictError("name/date", f"{name}/{day.isoformat()}")

        old_values = {field: getattr(holiday, field) for field in changes}
        for field, value in changes.items():
            setattr(holiday, field, value)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="holiday",
            entity_id=holiday.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=changes,
        )
        logger.info("Holiday %r on %s updated", holiday.name, holiday.date)
        return holiday

    @staticmethod
    async def delete_holiday(
        db: AsyncSession,
        holiday_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Soft delete: the holiday drops out of the calendar and listings."""
        holiday = await LeaveService._get_holiday(db, holiday_id)
        holiday.is_active = False
        await db.flush()
        await create_audit_entry(
            db,
            action="delete",
            entity_type="holiday",
            entity_id=holiday.id,
            actor_id=actor_id,
            old_values={"name": holiday.name, "date": holiday.date},
        )
        logger.info("Holiday %r on %s removed", holiday.name, holiday.date)
