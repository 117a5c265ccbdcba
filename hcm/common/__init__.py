"""Common module — shared utilities for the HCM core."""

from hcm.common.audit import AuditTrail, create_audit_entry
from hcm.common.clock import FixedClock, SystemClock, get_clock
from hcm.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    LedgerInvariantError,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Clock
    "FixedClock",
    "SystemClock",
    "get_clock",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "LedgerInvariantError",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
]
