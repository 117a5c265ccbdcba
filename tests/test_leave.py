"""Leave module test suite — request creation, approval state machine,
ledger effects of each transition, balances administration, and API endpoints.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from hcm.auth.models import RoleAssignment
from hcm.common.constants import GenderType, LeaveStatus, UserRole
from hcm.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    InvalidRangeError,
    InvalidTransitionError,
    NoChargeableDaysError,
    NotApplicableError,
    NotFoundException,
    OverlappingLeaveError,
    ValidationException,
)
from hcm.leave import ledger
from hcm.leave.models import LeaveBalance, LeaveRequest
from hcm.leave.schemas import (
    HolidayUpdate,
    LeavePolicyCreate,
    LeavePreviewRequest,
    LeaveRequestCreate,
    LeaveTypeUpdate,
    PolicyLeaveTypeIn,
)
from hcm.leave.service import LeaveService, employee_lock
from tests.conftest import (
    TestSessionFactory,
    make_balance,
    make_employee,
    make_holiday,
    make_leave_type,
)

TUE = date(2025, 3, 4)
THU = date(2025, 3, 6)
FRI = date(2025, 3, 7)
NEXT_MON = date(2025, 3, 10)


def _request(leave_type_id, start=TUE, end=THU, reason="Family function") -> LeaveRequestCreate:
    return LeaveRequestCreate(
        leave_type_id=leave_type_id, start_date=start, end_date=end, reason=reason,
    )


async def _apply(db, employee, leave_type, clock, **kwargs) -> LeaveRequest:
    return await LeaveService.create_request(db, employee, _request(leave_type.id, **kwargs), clock)


# ═════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════


class TestCreateRequest:

    async def test_create_reserves_days_as_pending(self, db, test_employee, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)

        assert leave.status == LeaveStatus.pending
        assert leave.total_days == Decimal("3")
        assert leave.balance_year == 2025
        await db.refresh(balance)
        assert balance.pending == Decimal("3")
        assert balance.remaining == Decimal("9")

    async def test_create_records_initial_transition(self, db, test_employee, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        _, transitions, comments = await LeaveService.get_history(db, leave.id, test_employee)

        assert len(transitions) == 1
        assert transitions[0].from_status is None
        assert transitions[0].to_status == LeaveStatus.pending
        assert comments == []

    async def test_same_day_range_rejected(self, db, test_employee, leave_type, balance, clock):
        with pytest.raises(InvalidRangeError):
            await _apply(db, test_employee, leave_type, clock, start=TUE, end=TUE)

    async def test_weekend_only_range_rejected(self, db, test_employee, leave_type, balance, clock):
        with pytest.raises(NoChargeableDaysError):
            await _apply(db, test_employee, leave_type, clock, start=date(2025, 3, 8), end=date(2025, 3, 9))

    async def test_overlap_with_live_request_rejected(self, db, test_employee, leave_type, balance, clock):
        await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(OverlappingLeaveError):
            await _apply(db, test_employee, leave_type, clock, start=THU, end=FRI)

    def test_applications_take_a_row_lock_on_the_employee(self):
        sql = str(employee_lock(uuid.uuid4()).compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql

    async def test_overlap_seen_across_sessions(self, db, test_employee, leave_type, balance, clock):
        await _apply(db, test_employee, leave_type, clock)
        await db.commit()

        async with TestSessionFactory() as second:
            employee = await LeaveService.get_employee(second, test_employee.id)
            with pytest.raises(OverlappingLeaveError):
                await _apply(second, employee, leave_type, clock, start=THU, end=FRI)

    async def test_overlap_with_cancelled_request_allowed(self, db, test_employee, leave_type, balance, clock):
        first = await _apply(db, test_employee, leave_type, clock)
        await LeaveService.cancel_request(db, first.id, test_employee, clock)
        second = await _apply(db, test_employee, leave_type, clock)
        assert second.status == LeaveStatus.pending

    async def test_missing_balance_row_is_insufficient(self, db, test_employee, leave_type, clock):
        with pytest.raises(InsufficientBalanceError) as exc:
            await _apply(db, test_employee, leave_type, clock)
        assert exc.value.available == Decimal("0")
        assert exc.value.requested == Decimal("3")

    async def test_insufficient_balance_leaves_no_request(self, db, test_employee, leave_type, clock):
        await make_balance(db, test_employee.id, leave_type.id, allocated=Decimal("2"))
        with pytest.raises(InsufficientBalanceError):
            await _apply(db, test_employee, leave_type, clock)

        rows = (await db.execute(select(LeaveRequest))).scalars().all()
        assert rows == []

    async def test_gender_restricted_type(self, db, manager, clock):
        male = await make_employee(db, gender=GenderType.male, reporting_manager_id=manager.id)
        ml = await make_leave_type(
            db, code="ML", name="Maternity Leave", max_consecutive_days=180,
            applicable_genders=["female"],
        )
        await make_balance(db, male.id, ml.id, allocated=Decimal("180"))
        with pytest.raises(NotApplicableError):
            await _apply(db, male, ml, clock)

    async def test_unknown_leave_type(self, db, test_employee, clock):
        with pytest.raises(NotFoundException):
            await LeaveService.create_request(db, test_employee, _request(uuid.uuid4()), clock)

    async def test_sandwich_policy_charges_bridged_weekend(
        self, db, test_employee, leave_type, balance, clock, hr_admin,
    ):
        await LeaveService.create_policy(
            db,
            LeavePolicyCreate(
                name="Sandwich policy",
                leave_types=[PolicyLeaveTypeIn(leave_type_id=leave_type.id)],
                sandwich_leave=True,
                effective_from=date(2025, 1, 1),
            ),
            actor_id=hr_admin.id,
        )
        leave = await _apply(db, test_employee, leave_type, clock, start=FRI, end=NEXT_MON)
        assert leave.total_days == Decimal("4")

    async def test_holiday_not_charged(self, db, test_employee, leave_type, balance, clock):
        await make_holiday(db, name="Holi", day=date(2025, 3, 5))
        leave = await _apply(db, test_employee, leave_type, clock)
        assert leave.total_days == Decimal("2")


# ═════════════════════════════════════════════════════════════════════
# Approval workflow
# ═════════════════════════════════════════════════════════════════════


class TestApprovalWorkflow:

    async def test_manager_approval_moves_pending_to_used(
        self, db, test_employee, manager, leave_type, balance, clock,
    ):
        leave = await _apply(db, test_employee, leave_type, clock)
        approved = await LeaveService.approve_request(db, leave.id, manager, clock, note="Enjoy")

        assert approved.status == LeaveStatus.approved
        assert approved.approved_by == manager.id
        await db.refresh(balance)
        assert balance.pending == Decimal("0")
        assert balance.used == Decimal("3")

    async def test_self_approval_forbidden(self, db, test_employee, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ForbiddenException):
            await LeaveService.approve_request(db, leave.id, test_employee, clock)

    async def test_unrelated_employee_cannot_approve(self, db, test_employee, leave_type, balance, clock):
        stranger = await make_employee(db, first_name="Stranger")
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ForbiddenException):
            await LeaveService.approve_request(db, leave.id, stranger, clock)

    async def test_l2_manager_can_approve(self, db, manager, leave_type, clock):
        l2 = await make_employee(db, first_name="Lata")
        employee = await make_employee(db, reporting_manager_id=manager.id, l2_manager_id=l2.id)
        await make_balance(db, employee.id, leave_type.id)
        leave = await _apply(db, employee, leave_type, clock)

        approved = await LeaveService.approve_request(db, leave.id, l2, clock)
        assert approved.status == LeaveStatus.approved

    async def test_hr_admin_can_approve(self, db, test_employee, hr_admin, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        approved = await LeaveService.approve_request(db, leave.id, hr_admin, clock)
        assert approved.status == LeaveStatus.approved

    async def test_inactive_role_assignment_grants_nothing(self, db, test_employee, leave_type, balance, clock):
        former = await make_employee(db, first_name="Former")
        db.add(RoleAssignment(employee_id=former.id, role=UserRole.hr_admin, is_active=False))
        await db.commit()
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ForbiddenException):
            await LeaveService.approve_request(db, leave.id, former, clock)

    async def test_approve_twice_fails(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        await LeaveService.approve_request(db, leave.id, manager, clock)
        with pytest.raises(InvalidTransitionError) as exc:
            await LeaveService.approve_request(db, leave.id, manager, clock)
        assert exc.value.detail == "Cannot approve a leave request that is approved."

    async def test_reject_requires_reason(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ValidationException):
            await LeaveService.reject_request(db, leave.id, manager, "   ", clock)

    async def test_reject_releases_reserved_days(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        rejected = await LeaveService.reject_request(db, leave.id, manager, "Release crunch", clock)

        assert rejected.status == LeaveStatus.rejected
        assert rejected.rejection_reason == "Release crunch"
        await db.refresh(balance)
        assert balance.pending == Decimal("0")
        assert balance.remaining == Decimal("12")

    async def test_not_found(self, db, manager, clock):
        with pytest.raises(NotFoundException):
            await LeaveService.approve_request(db, uuid.uuid4(), manager, clock)

    async def test_stale_read_loses_compare_and_set(
        self, db, test_employee, manager, leave_type, balance, clock,
    ):
        leave = await _apply(db, test_employee, leave_type, clock)
        await db.commit()

        async with TestSessionFactory() as other:
            # Load the request while it is still pending
            stale = await other.get(LeaveRequest, leave.id)
            assert stale.status == LeaveStatus.pending

            await LeaveService.approve_request(db, leave.id, manager, clock)
            await db.commit()

            with pytest.raises(InvalidTransitionError) as exc:
                await LeaveService.reject_request(other, leave.id, manager, "Too late", clock)
            assert exc.value.current == "approved"

        await db.refresh(balance)
        assert balance.used == Decimal("3")
        assert balance.pending == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# Cancel / Withdraw
# ═════════════════════════════════════════════════════════════════════


class TestCancelAndWithdraw:

    async def test_cancel_pending_releases(self, db, test_employee, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        cancelled = await LeaveService.cancel_request(db, leave.id, test_employee, clock)

        assert cancelled.status == LeaveStatus.cancelled
        assert cancelled.cancelled_by == test_employee.id
        await db.refresh(balance)
        assert balance.pending == Decimal("0")
        assert balance.remaining == Decimal("12")

    async def test_cancel_approved_restores_used(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        await LeaveService.approve_request(db, leave.id, manager, clock)
        await LeaveService.cancel_request(db, leave.id, manager, clock, note="Trip called off")

        await db.refresh(balance)
        assert balance.used == Decimal("0")
        assert balance.remaining == Decimal("12")

    async def test_cancel_by_unrelated_employee_forbidden(self, db, test_employee, leave_type, balance, clock):
        stranger = await make_employee(db, first_name="Stranger")
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ForbiddenException):
            await LeaveService.cancel_request(db, leave.id, stranger, clock)

    async def test_withdraw_only_by_applicant(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ForbiddenException):
            await LeaveService.withdraw_request(db, leave.id, manager, clock)

        withdrawn = await LeaveService.withdraw_request(db, leave.id, test_employee, clock)
        assert withdrawn.status == LeaveStatus.withdrawn
        await db.refresh(balance)
        assert balance.remaining == Decimal("12")

    @pytest.mark.parametrize("terminal", ["reject", "cancel", "withdraw"])
    async def test_terminal_states_accept_no_transition(
        self, db, test_employee, manager, leave_type, balance, clock, terminal,
    ):
        leave = await _apply(db, test_employee, leave_type, clock)
        if terminal == "reject":
            await LeaveService.reject_request(db, leave.id, manager, "No cover", clock)
        elif terminal == "cancel":
            await LeaveService.cancel_request(db, leave.id, test_employee, clock)
        else:
            await LeaveService.withdraw_request(db, leave.id, test_employee, clock)

        with pytest.raises(InvalidTransitionError):
            await LeaveService.approve_request(db, leave.id, manager, clock)
        with pytest.raises(InvalidTransitionError):
            await LeaveService.cancel_request(db, leave.id, test_employee, clock)

        await db.refresh(balance)
        assert balance.remaining == Decimal("12")

    async def test_history_lists_every_transition(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        clock.advance(hours=1)
        await LeaveService.approve_request(db, leave.id, manager, clock)
        clock.advance(hours=1)
        await LeaveService.cancel_request(db, leave.id, test_employee, clock)

        _, transitions, _ = await LeaveService.get_history(db, leave.id, manager)
        assert [(t.from_status, t.to_status) for t in transitions] == [
            (None, LeaveStatus.pending),
            (LeaveStatus.pending, LeaveStatus.approved),
            (LeaveStatus.approved, LeaveStatus.cancelled),
        ]


# ═════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════


class TestReadSide:

    async def test_list_scopes(self, db, test_employee, manager, hr_admin, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)

        mine = await LeaveService.list_requests(db, test_employee, scope="my")
        team = await LeaveService.list_requests(db, manager, scope="team")
        everything = await LeaveService.list_requests(db, hr_admin, scope="all")
        assert [r.id for r in mine] == [leave.id]
        assert [r.id for r in team] == [leave.id]
        assert [r.id for r in everything] == [leave.id]

        assert await LeaveService.list_requests(db, manager, scope="my") == []
        with pytest.raises(ForbiddenException):
            await LeaveService.list_requests(db, test_employee, scope="all")

    async def test_stranger_cannot_view_request(self, db, test_employee, leave_type, balance, clock):
        stranger = await make_employee(db, first_name="Stranger")
        leave = await _apply(db, test_employee, leave_type, clock)
        with pytest.raises(ForbiddenException):
            await LeaveService.get_request(db, leave.id, stranger)

    async def test_comments_in_history(self, db, test_employee, manager, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        await LeaveService.add_comment(db, leave.id, manager, "Please hand over the release", clock)
        clock.advance(minutes=5)
        await LeaveService.add_comment(db, leave.id, test_employee, "Done", clock)

        _, _, comments = await LeaveService.get_history(db, leave.id, test_employee)
        assert [c.text for c in comments] == ["Please hand over the release", "Done"]

    async def test_preview_reports_breakdown_without_reserving(
        self, db, test_employee, leave_type, balance, clock,
    ):
        preview = await LeaveService.preview(
            db, test_employee,
            LeavePreviewRequest(leave_type_id=leave_type.id, start_date=FRI, end_date=NEXT_MON),
            clock,
        )
        assert preview.total_days == 2
        assert len(preview.days) == 4
        assert preview.eligible is True
        assert preview.available == Decimal("12")
        await db.refresh(balance)
        assert balance.pending == Decimal("0")

    async def test_preview_flags_consecutive_limit(self, db, test_employee, leave_type, balance, clock):
        preview = await LeaveService.preview(
            db, test_employee,
            LeavePreviewRequest(
                leave_type_id=leave_type.id, start_date=date(2025, 3, 3), end_date=date(2025, 3, 11),
            ),
            clock,
        )
        assert preview.total_days == 7
        assert preview.eligible is False
        assert "maximum of 5" in preview.eligibility_error


# ═════════════════════════════════════════════════════════════════════
# Balances administration
# ═════════════════════════════════════════════════════════════════════


class TestBalanceAdministration:

    async def test_initialize_year_is_idempotent(self, db, test_employee, manager, leave_type):
        first = await LeaveService.initialize_year(db, 2025)
        assert first.created == 2
        assert first.skipped == 0

        second = await LeaveService.initialize_year(db, 2025)
        assert second.created == 0
        assert second.skipped == 2

    async def test_initialize_skips_inapplicable_types(self, db, leave_type):
        male = await make_employee(db, gender=GenderType.male)
        await make_leave_type(db, code="ML", name="Maternity Leave", applicable_genders=["female"])

        created, skipped = await LeaveService.initialize_employee(db, male, 2025)
        assert (created, skipped) == (1, 1)

    async def test_initialize_prorates_for_new_joiner(self, db, hr_admin):
        cl = await make_leave_type(db)
        await LeaveService.create_policy(
            db,
            LeavePolicyCreate(
                name="Monthly accrual",
                leave_types=[PolicyLeaveTypeIn(leave_type_id=cl.id)],
                accrual_type="monthly",
                effective_from=date(2020, 1, 1),
            ),
            actor_id=hr_admin.id,
        )
        joiner = await make_employee(db, date_of_joining=date(2025, 7, 1))
        await LeaveService.initialize_employee(db, joiner, 2025)

        bal = await ledger.get_balance(db, joiner.id, cl.id, 2025)
        assert bal.allocated == Decimal("6")

    async def test_rollover_carries_capped_amount(self, db, test_employee, clock):
        el = await make_leave_type(
            db, code="EL", name="Earned Leave",
            carry_forward_allowed=True, max_carry_forward_days=Decimal("5"),
        )
        await make_balance(db, test_employee.id, el.id, year=2024, allocated=Decimal("12"))

        result = await LeaveService.rollover(db, 2024)
        assert result.processed == 1
        assert result.carried_total == Decimal("5")
        assert result.forfeited_total == Decimal("7")

        next_year = await ledger.get_balance(db, test_employee.id, el.id, 2025)
        assert next_year.carried_forward == Decimal("5")
        assert next_year.allocated == Decimal("12")

        again = await LeaveService.rollover(db, 2024)
        assert again.carried_total == Decimal("5")
        rows = (await db.execute(
            select(LeaveBalance).where(LeaveBalance.year == 2025)
        )).scalars().all()
        assert len(rows) == 1


# ═════════════════════════════════════════════════════════════════════
# Catalogue administration
# ═════════════════════════════════════════════════════════════════════


class TestCatalogueAdministration:

    async def test_editing_allocation_leaves_opened_balances(
        self, db, test_employee, leave_type, balance, hr_admin,
    ):
        updated = await LeaveService.update_leave_type(
            db, leave_type.id, LeaveTypeUpdate(max_days_per_year=Decimal("20")),
            actor_id=hr_admin.id,
        )
        assert updated.max_days_per_year == Decimal("20")

        await db.refresh(balance)
        assert balance.allocated == Decimal("12")

        newcomer = await make_employee(db)
        await LeaveService.initialize_employee(db, newcomer, 2025)
        opened = await ledger.get_balance(db, newcomer.id, leave_type.id, 2025)
        assert opened.allocated == Decimal("20")

    async def test_deactivated_type_is_hidden_and_closed_to_requests(
        self, db, test_employee, leave_type, balance, clock,
    ):
        await LeaveService.update_leave_type(db, leave_type.id, LeaveTypeUpdate(is_active=False))

        assert await LeaveService.list_leave_types(db) == []
        assert [t.code for t in await LeaveService.list_leave_types(db, include_inactive=True)] == ["CL"]
        with pytest.raises(NotFoundException):
            await _apply(db, test_employee, leave_type, clock)

    async def test_rename_to_existing_name_conflicts(self, db, leave_type):
        await make_leave_type(db, code="EL", name="Earned Leave")
        with pytest.raises(ConflictError):
            await LeaveService.update_leave_type(
                db, leave_type.id, LeaveTypeUpdate(name="Earned Leave"),
            )

    async def test_deactivated_policy_stops_applying(
        self, db, test_employee, leave_type, balance, clock, hr_admin,
    ):
        policy = await LeaveService.create_policy(
            db,
            LeavePolicyCreate(
                name="Sandwich policy",
                leave_types=[PolicyLeaveTypeIn(leave_type_id=leave_type.id)],
                sandwich_leave=True,
                effective_from=date(2025, 1, 1),
            ),
            actor_id=hr_admin.id,
        )
        deactivated = await LeaveService.deactivate_policy(db, policy.id, actor_id=hr_admin.id)
        assert deactivated.is_active is False
        assert await LeaveService.list_policies(db) == []
        assert len(await LeaveService.list_policies(db, include_inactive=True)) == 1

        leave = await _apply(db, test_employee, leave_type, clock, start=FRI, end=NEXT_MON)
        assert leave.total_days == Decimal("2")

    async def test_deactivate_unknown_policy(self, db):
        with pytest.raises(NotFoundException):
            await LeaveService.deactivate_policy(db, uuid.uuid4())

    async def test_moved_holiday_changes_day_count(self, db, test_employee, leave_type, balance, clock):
        holi = await make_holiday(db, name="Holi", day=date(2025, 3, 5))
        preview = LeavePreviewRequest(leave_type_id=leave_type.id, start_date=TUE, end_date=NEXT_MON)

        before = await LeaveService.preview(db, test_employee, preview, clock)
        await LeaveService.update_holiday(db, holi.id, HolidayUpdate(date=date(2025, 3, 14)))
        after = await LeaveService.preview(db, test_employee, preview, clock)

        assert before.total_days == 4
        assert after.total_days == 5

    async def test_deleted_holiday_is_charged_again(self, db, test_employee, leave_type, balance, clock):
        holi = await make_holiday(db, name="Holi", day=date(2025, 3, 5))
        await LeaveService.delete_holiday(db, holi.id)

        assert await LeaveService.list_holidays(db, year=2025) == []
        leave = await _apply(db, test_employee, leave_type, clock)
        assert leave.total_days == Decimal("3")

        with pytest.raises(NotFoundException):
            await LeaveService.delete_holiday(db, holi.id)

    async def test_holiday_edit_cannot_duplicate_name_and_date(self, db):
        await make_holiday(db, name="Holi", day=date(2025, 3, 14))
        other = await make_holiday(db, name="Holi", day=date(2025, 3, 5))
        with pytest.raises(ConflictError):
            await LeaveService.update_holiday(db, other.id, HolidayUpdate(date=date(2025, 3, 14)))


# ═════════════════════════════════════════════════════════════════════
# API endpoints
# ═════════════════════════════════════════════════════════════════════


class TestLeaveAPI:

    async def test_apply_and_approve_over_http(
        self, client, auth_headers, manager_headers, leave_type, balance,
    ):
        resp = await client.post(
            "/api/v1/leave/requests",
            json={
                "leave_type_id": str(leave_type.id),
                "start_date": "2025-03-04",
                "end_date": "2025-03-06",
                "reason": "Family function",
                "contact_during_leave": {"phone": "+91-9000000000"},
            },
            headers=auth_headers,
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["status"] == "pending"
        assert Decimal(body["total_days"]) == Decimal("3")
        assert body["contact_during_leave"]["phone"] == "+91-9000000000"

        resp = await client.put(
            f"/api/v1/leave/requests/{body['id']}/approve",
            json={"note": "Approved"},
            headers=manager_headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "approved"

        resp = await client.get("/api/v1/leave/balances", headers=auth_headers)
        assert resp.status_code == 200
        [row] = resp.json()
        assert Decimal(row["used"]) == Decimal("3")
        assert Decimal(row["remaining"]) == Decimal("9")

    async def test_insufficient_balance_problem_detail(
        self, client, db, auth_headers, test_employee, leave_type,
    ):
        await make_balance(db, test_employee.id, leave_type.id, allocated=Decimal("2"))
        resp = await client.post(
            "/api/v1/leave/requests",
            json={
                "leave_type_id": str(leave_type.id),
                "start_date": "2025-03-03",
                "end_date": "2025-03-07",
                "reason": "Vacation",
            },
            headers=auth_headers,
        )
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith("application/problem+json")
        problem = resp.json()
        assert problem["type"].endswith("/insufficient-balance")
        assert problem["detail"] == "Insufficient balance: available 2, requested 5"

    async def test_reject_without_reason_is_422(
        self, client, db, auth_headers, manager_headers, test_employee, leave_type, balance, clock,
    ):
        leave = await _apply(db, test_employee, leave_type, clock)
        await db.commit()
        resp = await client.put(
            f"/api/v1/leave/requests/{leave.id}/reject",
            json={"reason": ""},
            headers=manager_headers,
        )
        assert resp.status_code == 422

    async def test_history_endpoint(self, client, db, auth_headers, test_employee, leave_type, balance, clock):
        leave = await _apply(db, test_employee, leave_type, clock)
        await db.commit()

        resp = await client.post(
            f"/api/v1/leave/requests/{leave.id}/comments",
            json={"text": "Booked tickets"},
            headers=auth_headers,
        )
        assert resp.status_code == 201

        resp = await client.get(f"/api/v1/leave/requests/{leave.id}/history", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["request"]["id"] == str(leave.id)
        assert [t["to_status"] for t in body["transitions"]] == ["pending"]
        assert [c["text"] for c in body["comments"]] == ["Booked tickets"]

    async def test_admin_endpoints_require_hr_role(self, client, auth_headers, leave_type):
        resp = await client.post(
            "/api/v1/leave/balances/initialize", json={"year": 2025}, headers=auth_headers,
        )
        assert resp.status_code == 403

    async def test_initialize_and_rollover_endpoints(self, client, admin_headers, test_employee, leave_type):
        resp = await client.post(
            "/api/v1/leave/balances/initialize", json={"year": 2025}, headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["created"] >= 1

        resp = await client.post(
            "/api/v1/leave/balances/rollover", json={"from_year": 2025}, headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["to_year"] == 2026

    async def test_create_leave_type_conflict(self, client, admin_headers, leave_type):
        resp = await client.post(
            "/api/v1/leave/types",
            json={"code": "CL", "name": "Another Casual", "max_days_per_year": 10, "max_consecutive_days": 3},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    async def test_create_holiday_and_list(self, client, admin_headers, auth_headers):
        resp = await client.post(
            "/api/v1/leave/holidays",
            json={"name": "Independence Day", "date": "2025-08-15", "is_recurring": True, "holiday_type": "national"},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text

        resp = await client.get("/api/v1/leave/holidays?year=2026", headers=auth_headers)
        assert resp.status_code == 200
        assert [h["name"] for h in resp.json()] == ["Independence Day"]

    async def test_manager_sees_report_balances(self, client, manager_headers, auth_headers, test_employee, manager, balance):
        resp = await client.get(f"/api/v1/leave/balances/{test_employee.id}", headers=manager_headers)
        assert resp.status_code == 200
        assert len(resp.json()) == 1

        resp = await client.get(f"/api/v1/leave/balances/{manager.id}", headers=auth_headers)
        assert resp.status_code == 403

    async def test_unauthenticated_rejected(self, client):
        resp = await client.get("/api/v1/leave/requests")
        assert resp.status_code == 401

    async def test_edit_leave_type_over_http(self, client, auth_headers, admin_headers, leave_type):
        body = {"max_consecutive_days": 3, "color": "#112233"}
        resp = await client.patch(f"/api/v1/leave/types/{leave_type.id}", json=body, headers=auth_headers)
        assert resp.status_code == 403

        resp = await client.patch(f"/api/v1/leave/types/{leave_type.id}", json=body, headers=admin_headers)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["code"] == "CL"
        assert data["max_consecutive_days"] == 3
        assert data["color"] == "#112233"

    async def test_deactivate_policy_over_http(self, client, admin_headers, leave_type):
        resp = await client.post(
            "/api/v1/leave/policies",
            json={
                "name": "Default",
                "leave_types": [{"leave_type_id": str(leave_type.id)}],
                "effective_from": "2025-01-01",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        policy_id = resp.json()["id"]

        resp = await client.put(f"/api/v1/leave/policies/{policy_id}/deactivate", headers=admin_headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_active"] is False

    async def test_edit_and_delete_holiday_over_http(self, client, db, admin_headers, auth_headers):
        holi = await make_holiday(db, name="Holi", day=date(2025, 3, 14))

        resp = await client.patch(
            f"/api/v1/leave/holidays/{holi.id}",
            json={"name": "Holi (observed)"},
            headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == "Holi (observed)"

        resp = await client.delete(f"/api/v1/leave/holidays/{holi.id}", headers=auth_headers)
        assert resp.status_code == 403

        resp = await client.delete(f"/api/v1/leave/holidays/{holi.id}", headers=admin_headers)
        assert resp.status_code == 204

        resp = await client.get("/api/v1/leave/holidays?year=2025", headers=auth_headers)
        assert resp.json() == []
