"""Enums and constants for the leave & attendance core — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee / Core HR ──────────────────────────────────────────────

class GenderType(str, enum.Enum):
    male = "male"
    female = "female"
    other = "other"
    undisclosed = "undisclosed"


class GenderApplicability(str, enum.Enum):
    """Who a leave type or holiday applies to."""

    all = "all"
    male = "male"
    female = "female"


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# Roles whose holders may approve any employee's leave.
APPROVER_ROLES = (UserRole.hr_admin, UserRole.system_admin)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    withdrawn = "withdrawn"


TERMINAL_LEAVE_STATUSES = frozenset(
    {LeaveStatus.rejected, LeaveStatus.cancelled, LeaveStatus.withdrawn}
)

# from-status → allowed to-statuses
LEAVE_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset({
        LeaveStatus.approved,
        LeaveStatus.rejected,
        LeaveStatus.cancelled,
        LeaveStatus.withdrawn,
    }),
    LeaveStatus.approved: frozenset({LeaveStatus.cancelled, LeaveStatus.withdrawn}),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
    LeaveStatus.withdrawn: frozenset(),
}


class DayTreatment(str, enum.Enum):
    """Whether weekends / holidays inside a leave range are charged."""

    include = "include"
    exclude = "exclude"


class AccrualType(str, enum.Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class AccrualStart(str, enum.Enum):
    joining = "joining"
    calendar_year = "calendar_year"
    financial_year = "financial_year"


class HolidayType(str, enum.Enum):
    national = "national"
    religious = "religious"
    regional = "regional"
    company = "company"
    optional = "optional"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    late = "late"
    half_day = "half_day"
    holiday = "holiday"
    leave = "leave"


class AttendanceSource(str, enum.Enum):
    self_service = "self_service"
    admin = "admin"


# ── Misc constants ──────────────────────────────────────────────────

WEEKEND_DAYS = frozenset({5, 6})   # Saturday, Sunday (date.weekday())
DATE_FORMAT = "%d-%b-%Y"
DEFAULT_LEAVE_COLOR = "#3B82F6"
MAX_LIST_LIMIT = 100
