"""001 – Leave & attendance core: people, leave ledger, attendance, audit.

Revision ID: 001_leave_attendance_core
Revises:
Create Date: 2025-01-06 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_leave_attendance_core"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("gender_type", ["male", "female", "other", "undisclosed"]),
    ("gender_applicability", ["all", "male", "female"]),
    ("user_role", ["employee", "manager", "hr_admin", "system_admin"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled", "withdrawn"]),
    ("day_treatment", ["include", "exclude"]),
    ("accrual_type", ["monthly", "quarterly", "yearly"]),
    ("accrual_start", ["joining", "calendar_year", "financial_year"]),
    ("holiday_type", ["national", "religious", "regional", "company", "optional"]),
    (
        "attendance_status",
        ["present", "absent", "late", "half_day", "holiday", "leave"],
    ),
    ("attendance_source", ["self_service", "admin"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL UNIQUE,
            code        VARCHAR(20) UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code        VARCHAR(20)  NOT NULL UNIQUE,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100) NOT NULL,
            display_name         VARCHAR(255),
            email                VARCHAR(255) NOT NULL UNIQUE,
            gender               gender_type,
            department_id        UUID REFERENCES departments(id),
            role                 VARCHAR(100),
            grade                VARCHAR(50),
            date_of_joining      DATE NOT NULL,
            reporting_manager_id UUID REFERENCES employees(id),
            l2_manager_id        UUID REFERENCES employees(id),
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_manager    ON employees(reporting_manager_id)")
    op.execute("CREATE INDEX idx_employees_l2_manager ON employees(l2_manager_id)")

    # ── 3. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            token_hash   VARCHAR(512) NOT NULL,
            expires_at   TIMESTAMPTZ NOT NULL,
            is_revoked   BOOLEAN DEFAULT FALSE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_user_sessions_employee ON user_sessions(employee_id)")
    op.execute("CREATE INDEX idx_user_sessions_token    ON user_sessions(token_hash)")

    # ── 4. role_assignments ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE role_assignments (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            role         user_role NOT NULL,
            assigned_by  UUID REFERENCES employees(id),
            assigned_at  TIMESTAMPTZ DEFAULT NOW(),
            is_active    BOOLEAN DEFAULT TRUE
        )
    """)
    op.execute("CREATE INDEX idx_role_assignments_employee ON role_assignments(employee_id)")

    # ── 5. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                   VARCHAR(10)  NOT NULL UNIQUE,
            name                   VARCHAR(100) NOT NULL UNIQUE,
            description            TEXT,
            max_days_per_year      NUMERIC(5,1) NOT NULL,
            max_consecutive_days   INTEGER NOT NULL
                                   CONSTRAINT ck_leave_type_consecutive_min CHECK (max_consecutive_days >= 1),
            carry_forward_allowed  BOOLEAN DEFAULT FALSE,
            max_carry_forward_days NUMERIC(5,1) DEFAULT 0,
            encashment_allowed     BOOLEAN DEFAULT FALSE,
            attachment_required    BOOLEAN DEFAULT FALSE,
            eligibility_months     INTEGER DEFAULT 0,
            applicable_genders     JSONB NOT NULL DEFAULT '["all"]',
            color                  VARCHAR(7) DEFAULT '#3B82F6',
            is_active              BOOLEAN DEFAULT TRUE,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 6. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name                    VARCHAR(150) NOT NULL UNIQUE,
            description             TEXT,
            departments             JSONB NOT NULL DEFAULT '[]',
            roles                   JSONB NOT NULL DEFAULT '[]',
            grades                  JSONB NOT NULL DEFAULT '[]',
            probation_period_months INTEGER DEFAULT 0,
            accrual_type            accrual_type NOT NULL DEFAULT 'yearly',
            accrual_start           accrual_start NOT NULL DEFAULT 'calendar_year',
            weekend_policy          day_treatment NOT NULL DEFAULT 'exclude',
            holiday_policy          day_treatment NOT NULL DEFAULT 'exclude',
            sandwich_leave          BOOLEAN DEFAULT FALSE,
            advance_leave_allowed   BOOLEAN DEFAULT TRUE,
            max_advance_days        INTEGER DEFAULT 90,
            effective_from          DATE NOT NULL,
            effective_to            DATE,
            is_active               BOOLEAN DEFAULT TRUE,
            created_at              TIMESTAMPTZ DEFAULT NOW(),
            CHECK (effective_to IS NULL OR effective_to >= effective_from)
        )
    """)

    op.execute("""
        CREATE TABLE leave_policy_leave_types (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            policy_id            UUID NOT NULL REFERENCES leave_policies(id) ON DELETE CASCADE,
            leave_type_id        UUID NOT NULL REFERENCES leave_types(id),
            allocation           NUMERIC(5,1),
            carry_forward_limit  NUMERIC(5,1),
            max_consecutive_days INTEGER,
            CONSTRAINT uq_policy_leave_type UNIQUE (policy_id, leave_type_id)
        )
    """)

    # ── 7. leave_balances ─────────────────────────────────────────────────
    # Counters change only through guarded single-row UPDATEs
    op.execute("""
        CREATE TABLE leave_balances (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL REFERENCES employees(id),
            leave_type_id   UUID NOT NULL REFERENCES leave_types(id),
            year            INTEGER NOT NULL,
            allocated       NUMERIC(5,1) NOT NULL DEFAULT 0,
            used            NUMERIC(5,1) NOT NULL DEFAULT 0,
            pending         NUMERIC(5,1) NOT NULL DEFAULT 0,
            carried_forward NUMERIC(5,1) NOT NULL DEFAULT 0,
            encashed        NUMERIC(5,1) NOT NULL DEFAULT 0,
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type_id, year),
            CONSTRAINT ck_leave_balance_counters_nonneg CHECK (
                allocated >= 0 AND used >= 0 AND pending >= 0
                AND carried_forward >= 0 AND encashed >= 0
            ),
            CONSTRAINT ck_leave_balance_remaining_nonneg CHECK (
                allocated + carried_forward - used - pending - encashed >= 0
            )
        )
    """)

    # ── 8. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id          UUID NOT NULL REFERENCES employees(id),
            leave_type_id        UUID NOT NULL REFERENCES leave_types(id),
            balance_year         INTEGER NOT NULL,
            start_date           DATE NOT NULL,
            end_date             DATE NOT NULL,
            total_days           NUMERIC(5,1) NOT NULL,
            reason               TEXT NOT NULL,
            status               leave_status NOT NULL DEFAULT 'pending',
            is_emergency         BOOLEAN DEFAULT FALSE,
            handover_notes       TEXT,
            contact_during_leave JSONB,
            applied_at           TIMESTAMPTZ NOT NULL,
            approved_by          UUID REFERENCES employees(id),
            approved_at          TIMESTAMPTZ,
            rejected_by          UUID REFERENCES employees(id),
            rejected_at          TIMESTAMPTZ,
            rejection_reason     TEXT,
            cancelled_by         UUID REFERENCES employees(id),
            cancelled_at         TIMESTAMPTZ,
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_range CHECK (end_date > start_date),
            CONSTRAINT ck_leave_request_days  CHECK (total_days >= 1)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_status "
        "ON leave_requests(employee_id, status)"
    )
    op.execute("""
        CREATE INDEX idx_leave_req_emp_dates
            ON leave_requests(employee_id, start_date, end_date)
            WHERE status IN ('pending', 'approved')
    """)

    op.execute("""
        CREATE TABLE leave_request_transitions (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id UUID NOT NULL REFERENCES leave_requests(id),
            from_status      leave_status,
            to_status        leave_status NOT NULL,
            actor_id         UUID NOT NULL REFERENCES employees(id),
            occurred_at      TIMESTAMPTZ NOT NULL,
            note             TEXT
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_transitions_request "
        "ON leave_request_transitions(leave_request_id, occurred_at)"
    )

    op.execute("""
        CREATE TABLE leave_comments (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id UUID NOT NULL REFERENCES leave_requests(id),
            author_id        UUID NOT NULL REFERENCES employees(id),
            text             TEXT NOT NULL,
            created_at       TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX idx_leave_comments_request ON leave_comments(leave_request_id)")

    # ── 9. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name          VARCHAR(150) NOT NULL,
            date          DATE NOT NULL,
            description   TEXT,
            is_recurring  BOOLEAN DEFAULT FALSE,
            holiday_type  holiday_type NOT NULL DEFAULT 'company',
            applicable_to gender_applicability NOT NULL DEFAULT 'all',
            is_active     BOOLEAN DEFAULT TRUE,
            created_at    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_holiday_name_date UNIQUE (name, date)
        )
    """)
    op.execute("CREATE INDEX idx_holidays_date ON holidays(date)")

    # ── 10. attendance_records ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance_records (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id   UUID NOT NULL REFERENCES employees(id),
            date          DATE NOT NULL,
            check_in      TIMESTAMPTZ,
            check_out     TIMESTAMPTZ,
            break_minutes INTEGER NOT NULL DEFAULT 0,
            total_hours   NUMERIC(5,2),
            status        attendance_status NOT NULL DEFAULT 'absent',
            notes         TEXT,
            source        attendance_source NOT NULL DEFAULT 'self_service',
            updated_by    UUID REFERENCES employees(id),
            created_at    TIMESTAMPTZ DEFAULT NOW(),
            updated_at    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_emp_date UNIQUE (employee_id, date),
            CONSTRAINT ck_attendance_break_nonneg CHECK (break_minutes >= 0)
        )
    """)
    op.execute("CREATE INDEX idx_attendance_date   ON attendance_records(date)")
    op.execute("CREATE INDEX idx_attendance_status ON attendance_records(status)")

    # ── 11. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID REFERENCES employees(id),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity   ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action   ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "attendance_records",
        "holidays",
        "leave_comments",
        "leave_request_transitions",
        "leave_requests",
        "leave_balances",
        "leave_policy_leave_types",
        "leave_policies",
        "leave_types",
        "role_assignments",
        "user_sessions",
        "employees",
        "departments",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
