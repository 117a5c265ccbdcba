"""Leave ORM models: LeaveType, LeavePolicy, LeaveBalance, LeaveRequest and history."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hcm.common.constants import (
    DEFAULT_LEAVE_COLOR,
    AccrualStart,
    AccrualType,
    DayTreatment,
    GenderApplicability,
    LeaveStatus,
)
from hcm.database import Base

ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveType(Base):
    """Catalogue entry. Editing a type never rewrites existing balances."""

    __tablename__ = "leave_types"
    __table_args__ = (
        sa.CheckConstraint("max_consecutive_days >= 1", name="ck_leave_type_consecutive_min"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    max_days_per_year: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False
    )
    max_consecutive_days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    carry_forward_allowed: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    max_carry_forward_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=ZERO, server_default=sa.text("0")
    )
    encashment_allowed: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    attachment_required: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    eligibility_months: Mapped[int] = mapped_column(
        sa.Integer, default=0, server_default=sa.text("0")
    )
    applicable_genders: Mapped[list] = mapped_column(
        JSONB, default=lambda: [GenderApplicability.all.value], nullable=False
    )
    color: Mapped[str] = mapped_column(
        sa.String(7), default=DEFAULT_LEAVE_COLOR, server_default=DEFAULT_LEAVE_COLOR
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<LeaveType {self.code} {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Leave Policy
# ═════════════════════════════════════════════════════════════════════


class LeavePolicy(Base):
    """Rules for a population of employees (empty scope list = any)."""

    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Scope: department ids (as strings), job roles, grades
    departments: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    roles: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    grades: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)

    probation_period_months: Mapped[int] = mapped_column(
        sa.Integer, default=0, server_default=sa.text("0")
    )
    accrual_type: Mapped[AccrualType] = mapped_column(
        sa.Enum(AccrualType, name="accrual_type"),
        default=AccrualType.yearly,
        nullable=False,
    )
    accrual_start: Mapped[AccrualStart] = mapped_column(
        sa.Enum(AccrualStart, name="accrual_start"),
        default=AccrualStart.calendar_year,
        nullable=False,
    )
    weekend_policy: Mapped[DayTreatment] = mapped_column(
        sa.Enum(DayTreatment, name="day_treatment"),
        default=DayTreatment.exclude,
        nullable=False,
    )
    holiday_policy: Mapped[DayTreatment] = mapped_column(
        sa.Enum(DayTreatment, name="day_treatment"),
        default=DayTreatment.exclude,
        nullable=False,
    )
    sandwich_leave: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    advance_leave_allowed: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    max_advance_days: Mapped[int] = mapped_column(
        sa.Integer, default=90, server_default=sa.text("90")
    )
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    leave_types: Mapped[list[LeavePolicyLeaveType]] = relationship(
        back_populates="policy",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def binding_for(self, leave_type_id: uuid.UUID) -> Optional[LeavePolicyLeaveType]:
        for binding in self.leave_types:
            if binding.leave_type_id == leave_type_id:
                return binding
        return None


class LeavePolicyLeaveType(Base):
    """A leave type bound into a policy, with per-policy overrides."""

    __tablename__ = "leave_policy_leave_types"
    __table_args__ = (
        sa.UniqueConstraint("policy_id", "leave_type_id", name="uq_policy_leave_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_policies.id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    allocation: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    carry_forward_limit: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    max_consecutive_days: Mapped[Optional[int]] = mapped_column(sa.Integer)

    policy: Mapped[LeavePolicy] = relationship(back_populates="leave_types")


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalance(Base):
    """Per (employee, leave type, year) ledger row.

    Only hcm.leave.ledger mutates the counters, always through a single
    conditional UPDATE.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type_id", "year", name="uq_leave_balance"
        ),
        sa.CheckConstraint(
            "allocated >= 0 AND used >= 0 AND pending >= 0 "
            "AND carried_forward >= 0 AND encashed >= 0",
            name="ck_leave_balance_counters_nonneg",
        ),
        sa.CheckConstraint(
            "allocated + carried_forward - used - pending - encashed >= 0",
            name="ck_leave_balance_remaining_nonneg",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    allocated: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=ZERO, server_default=sa.text("0"), nullable=False
    )
    used: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=ZERO, server_default=sa.text("0"), nullable=False
    )
    pending: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=ZERO, server_default=sa.text("0"), nullable=False
    )
    carried_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=ZERO, server_default=sa.text("0"), nullable=False
    )
    encashed: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=ZERO, server_default=sa.text("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")

    @hybrid_property
    def remaining(self) -> Decimal:
        return (
            Decimal(self.allocated or 0)
            + Decimal(self.carried_forward or 0)
            - Decimal(self.used or 0)
            - Decimal(self.pending or 0)
            - Decimal(self.encashed or 0)
        )

    @remaining.inplace.expression
    @classmethod
    def _remaining_expression(cls) -> sa.ColumnElement[Decimal]:
        return (
            cls.allocated + cls.carried_forward - cls.used - cls.pending - cls.encashed
        )

    def snapshot(self) -> dict:
        return {
            "allocated": self.allocated,
            "used": self.used,
            "pending": self.pending,
            "carried_forward": self.carried_forward,
            "encashed": self.encashed,
            "remaining": self.remaining,
        }

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance {self.employee_id}/{self.leave_type_id}/{self.year} "
            f"remaining={self.remaining}>"
        )


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class LeaveRequest(Base):
    """A leave application. Rows are never deleted; status moves forward only."""

    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date > start_date", name="ck_leave_request_range"),
        sa.CheckConstraint("total_days >= 1", name="ck_leave_request_days"),
        sa.Index("ix_leave_requests_employee_status", "employee_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    balance_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        default=LeaveStatus.pending,
        server_default="pending",
        nullable=False,
    )
    is_emergency: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    handover_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    contact_during_leave: Mapped[Optional[dict]] = mapped_column(JSONB)

    applied_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<LeaveRequest {self.id} {self.status.value} {self.start_date}..{self.end_date}>"


class LeaveRequestTransition(Base):
    """Append-only status history of a leave request."""

    __tablename__ = "leave_request_transitions"
    __table_args__ = (
        sa.Index("ix_leave_transitions_request", "leave_request_id", "occurred_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id"), nullable=False
    )
    # NULL for the initial submission
    from_status: Mapped[Optional[LeaveStatus]] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status")
    )
    to_status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"), nullable=False
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    occurred_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    note: Mapped[Optional[str]] = mapped_column(sa.Text)


class LeaveComment(Base):
    __tablename__ = "leave_comments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id"), nullable=False
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    text: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
