"""Shared test fixtures — async DB, client, clock, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import hashlib
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hcm.common.clock import FixedClock, get_clock
from hcm.common.constants import GenderType, UserRole
from hcm.config import settings
from hcm.database import Base, get_db
from hcm.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import hcm.auth.models  # noqa: F401
import hcm.core_hr.models  # noqa: F401
import hcm.leave.models  # noqa: F401
import hcm.attendance.models  # noqa: F401
import hcm.common.audit  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite:///file:hcm_test?mode=memory&cache=shared&uri=true"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Monday, 3 March 2025, 09:00 local time
DEFAULT_NOW = datetime(2025, 3, 3, 9, 0)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hcm.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Clock ───────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FixedClock:
    """Pinned clock; tests move it with ``clock.advance(...)``."""
    return FixedClock(DEFAULT_NOW)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(clock):
    """Create a fresh app instance with DB and clock dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_clock] = lambda: clock
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def make_employee(
    db: AsyncSession,
    *,
    first_name: str = "Test",
    last_name: str = "User",
    email: str | None = None,
    gender: GenderType | None = GenderType.female,
    date_of_joining: date = date(2024, 1, 15),
    reporting_manager_id: uuid.UUID | None = None,
    l2_manager_id: uuid.UUID | None = None,
    department_id: uuid.UUID | None = None,
    role: str | None = None,
    grade: str | None = None,
):
    from hcm.core_hr.models import Employee

    employee = Employee(
        id=uuid.uuid4(),
        employee_code=f"E-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"{first_name.lower()}.{uuid.uuid4().hex[:6]}@example.com",
        gender=gender,
        date_of_joining=date_of_joining,
        reporting_manager_id=reporting_manager_id,
        l2_manager_id=l2_manager_id,
        department_id=department_id,
        role=role,
        grade=grade,
        is_active=True,
    )
    db.add(employee)
    await db.commit()
    return employee


async def make_leave_type(
    db: AsyncSession,
    *,
    code: str = "CL",
    name: str = "Casual Leave",
    max_days_per_year: Decimal = Decimal("12"),
    max_consecutive_days: int = 5,
    carry_forward_allowed: bool = False,
    max_carry_forward_days: Decimal = Decimal("0"),
    encashment_allowed: bool = False,
    eligibility_months: int = 0,
    applicable_genders: list[str] | None = None,
):
    from hcm.leave.models import LeaveType

    leave_type = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        max_days_per_year=max_days_per_year,
        max_consecutive_days=max_consecutive_days,
        carry_forward_allowed=carry_forward_allowed,
        max_carry_forward_days=max_carry_forward_days,
        encashment_allowed=encashment_allowed,
        attachment_required=False,
        eligibility_months=eligibility_months,
        applicable_genders=applicable_genders or ["all"],
        is_active=True,
    )
    db.add(leave_type)
    await db.commit()
    return leave_type


async def make_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    year: int = 2025,
    allocated: Decimal = Decimal("12"),
    used: Decimal = Decimal("0"),
    pending: Decimal = Decimal("0"),
    carried_forward: Decimal = Decimal("0"),
):
    from hcm.leave.models import LeaveBalance

    balance = LeaveBalance(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year,
        allocated=allocated,
        used=used,
        pending=pending,
        carried_forward=carried_forward,
        encashed=Decimal("0"),
    )
    db.add(balance)
    await db.commit()
    return balance


async def make_holiday(
    db: AsyncSession,
    *,
    name: str,
    day: date,
    is_recurring: bool = False,
):
    from hcm.attendance.models import Holiday

    holiday = Holiday(
        id=uuid.uuid4(),
        name=name,
        date=day,
        is_recurring=is_recurring,
        is_active=True,
    )
    db.add(holiday)
    await db.commit()
    return holiday


@pytest.fixture
async def manager(db):
    return await make_employee(db, first_name="Maya", last_name="Manager")


@pytest.fixture
async def test_employee(db, manager):
    """Active employee reporting to ``manager``."""
    return await make_employee(db, reporting_manager_id=manager.id)


@pytest.fixture
async def hr_admin(db):
    from hcm.auth.models import RoleAssignment

    admin = await make_employee(db, first_name="Hari", last_name="Admin")
    db.add(RoleAssignment(
        id=uuid.uuid4(),
        employee_id=admin.id,
        role=UserRole.hr_admin,
        is_active=True,
    ))
    await db.commit()
    return admin


@pytest.fixture
async def leave_type(db):
    return await make_leave_type(db)


@pytest.fixture
async def balance(db, test_employee, leave_type):
    return await make_balance(db, test_employee.id, leave_type.id)


# ── Auth helpers ────────────────────────────────────────────────────

TOKEN_TTL = timedelta(hours=24)


def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + TOKEN_TTL
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def headers_for(
    db: AsyncSession,
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
) -> dict[str, str]:
    """Bearer auth headers with a valid session persisted in the DB."""
    from hcm.auth.models import UserSession

    token = create_access_token(employee_id, role)
    db.add(UserSession(
        id=uuid.uuid4(),
        employee_id=employee_id,
        token_hash=hashlib.sha256(token.encode()).hexdigest(),
        expires_at=datetime.now(timezone.utc) + TOKEN_TTL,
        is_revoked=False,
        created_at=datetime.now(timezone.utc),
    ))
    await db.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def auth_headers(db, test_employee) -> dict[str, str]:
    return await headers_for(db, test_employee.id)


@pytest.fixture
async def manager_headers(db, manager) -> dict[str, str]:
    return await headers_for(db, manager.id, UserRole.manager)


@pytest.fixture
async def admin_headers(db, hr_admin) -> dict[str, str]:
    return await headers_for(db, hr_admin.id, UserRole.hr_admin)
