"""ORM models."""

from payroll_run_engine.models.base import Base, TimestampMixin
from payroll_run_engine.models.payroll import (
    PayrollLineItem,
    PayrollRun,
    PayrollRunError,
    StatutoryBracketVersion,
)
from payroll_run_engine.models.workforce import (
    Employee,
    PublicHoliday,
    Tenant,
    TimeEntry,
    TimeTrackingConfig,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Employee",
    "PayrollLineItem",
    "PayrollRun",
    "PayrollRunError",
    "PublicHoliday",
    "StatutoryBracketVersion",
    "Tenant",
    "TimeEntry",
    "TimeTrackingConfig",
]
