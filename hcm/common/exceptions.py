"""Custom exceptions and RFC 7807 Problem Detail error handlers.

Error families:
  - validation (422)   → fix the input and retry
  - policy (422)       → the request content itself is not allowed
  - concurrency (409)  → state moved underneath the caller; refresh and retry
  - invariant (500)    → a bug in the accounting core, never user input
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://hcm.example.com/errors"


def _fmt_days(value: Decimal | int | float) -> str:
    """Render a day amount without a trailing '.0' (2 instead of 2.0)."""
    d = Decimal(str(value)).normalize()
    return f"{d:f}"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        first = next(iter(errors.values()), [])
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail=first[0] if first else "One or more fields failed validation.",
            errors=errors,
        )


# ── Validation: date ranges / day counting ──────────────────────────

class InvalidRangeError(AppException):
    """422 — end date precedes (or, for new requests, equals) the start date."""

    def __init__(self, detail: str = "End date must be after start date.") -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-range",
            title="Invalid Date Range",
            detail=detail,
            errors={"end_date": [detail]},
        )


class NoChargeableDaysError(AppException):
    """422 — every day in the range is an excluded weekend or holiday."""

    def __init__(self) -> None:
        detail = (
            "No leave days found in the selected range "
            "(all days are weekends or holidays)."
        )
        super().__init__(
            status_code=422,
            error_type="no-chargeable-days",
            title="No Chargeable Days",
            detail=detail,
            errors={"dates": [detail]},
        )


# ── Policy errors ───────────────────────────────────────────────────

class PolicyViolation(AppException):
    """422 — the request is not allowed by leave policy; retrying as-is is futile."""

    def __init__(self, error_type: str, title: str, detail: str) -> None:
        super().__init__(
            status_code=422,
            error_type=error_type,
            title=title,
            detail=detail,
        )


class NotEligibleYetError(PolicyViolation):
    def __init__(self, leave_type_name: str, required_months: int, tenure_months: int) -> None:
        self.required_months = required_months
        self.tenure_months = tenure_months
        super().__init__(
            "not-eligible-yet",
            "Not Eligible Yet",
            f"{leave_type_name} requires {required_months} month(s) of service; "
            f"current tenure is {tenure_months} month(s).",
        )


class NotApplicableError(PolicyViolation):
    def __init__(self, leave_type_name: str, applicable_to: list[str]) -> None:
        super().__init__(
            "not-applicable",
            "Leave Type Not Applicable",
            f"{leave_type_name} is only applicable to: {', '.join(applicable_to)}.",
        )


class ExceedsConsecutiveLimitError(PolicyViolation):
    def __init__(self, leave_type_name: str, limit: int, requested: int) -> None:
        self.limit = limit
        self.requested = requested
        super().__init__(
            "exceeds-consecutive-limit",
            "Exceeds Consecutive Limit",
            f"{leave_type_name} allows a maximum of {limit} consecutive days; "
            f"requested {requested}.",
        )


class TooFarInAdvanceError(PolicyViolation):
    def __init__(self, max_advance_days: int, days_ahead: int) -> None:
        super().__init__(
            "too-far-in-advance",
            "Too Far In Advance",
            f"Leave may be applied at most {max_advance_days} day(s) in advance; "
            f"requested start is {days_ahead} day(s) away.",
        )


class OverlappingLeaveError(PolicyViolation):
    def __init__(self, start: str, end: str) -> None:
        super().__init__(
            "overlapping-leave",
            "Overlapping Leave",
            f"You already have a pending or approved leave request overlapping {start} to {end}.",
        )


class EncashmentNotAllowedError(PolicyViolation):
    def __init__(self, leave_type_name: str) -> None:
        super().__init__(
            "encashment-not-allowed",
            "Encashment Not Allowed",
            f"{leave_type_name} cannot be encashed.",
        )


# ── Concurrency / state errors ──────────────────────────────────────

class InsufficientBalanceError(AppException):
    """409 — the balance row cannot cover the requested days right now."""

    def __init__(self, available: Decimal, requested: Decimal) -> None:
        self.available = Decimal(str(available))
        self.requested = Decimal(str(requested))
        self.shortfall = max(Decimal("0"), self.requested - self.available)
        super().__init__(
            status_code=409,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient balance: available {_fmt_days(self.available)}, "
                f"requested {_fmt_days(self.requested)}"
            ),
            errors={
                "balance": [
                    f"Short by {_fmt_days(self.shortfall)} day(s)."
                ]
            },
        )


class InvalidTransitionError(AppException):
    """409 — the leave request is not in a state that allows this action."""

    def __init__(self, current: str, attempted: str) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid Transition",
            detail=f"Cannot {attempted} a leave request that is {current}.",
        )


class AlreadyCheckedInError(AppException):
    def __init__(self) -> None:
        super().__init__(
            status_code=409,
            error_type="already-checked-in",
            title="Already Checked In",
            detail="You have already checked in today.",
        )


class NoCheckInTodayError(AppException):
    def __init__(self) -> None:
        super().__init__(
            status_code=409,
            error_type="no-check-in-today",
            title="No Check-In Today",
            detail="You must check in before checking out.",
        )


# ── Invariant violations (bugs, not user errors) ────────────────────

class LedgerInvariantError(RuntimeError):
    """A ledger transition found the balance in a state it should never be in."""


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    logger.warning(
        "%s %s rejected: %s (%s)",
        request.method, request.url.path, exc.detail, exc.error_type,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


async def _handle_invariant_violation(
    request: Request,
    exc: LedgerInvariantError,
) -> JSONResponse:
    logger.critical(
        "Ledger invariant violated during %s %s: %s",
        request.method, request.url.path, exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "type": f"{BASE_ERROR_URI}/ledger-invariant",
            "title": "Internal Accounting Error",
            "status": 500,
            "detail": "The leave ledger is in an unexpected state. The incident was logged.",
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(LedgerInvariantError, _handle_invariant_violation)  # type: ignore[arg-type]
