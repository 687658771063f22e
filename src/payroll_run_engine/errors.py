"""Error taxonomy for the payroll run engine.

Three families matter to the orchestrator:

- EmployeeCalculationError: recoverable, recorded against one employee and
  excluded from the committed set. The run still completes.
- SystemicCalculationError: fatal to the whole pass. The run ends in 'failed'.
- InvariantViolationError: a broken arithmetic contract. Never caught and
  coerced; it fails the pass and is re-raised to the caller.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID


class PayrollEngineError(Exception):
    """Base class for all engine errors."""


# ===== Per-employee (recoverable) =====


class EmployeeCalculationError(PayrollEngineError):
    """Raised when a single employee cannot be calculated."""

    code = "EMPLOYEE_ERROR"

    def __init__(self, employee_id: UUID, message: str):
        self.employee_id = employee_id
        self.message = message
        super().__init__(message)


class BelowMinimumWageError(EmployeeCalculationError):
    """Raised when an employee's base salary is below the statutory minimum."""

    code = "BELOW_MINIMUM_WAGE"

    def __init__(self, employee_id: UUID, base_salary: Decimal, minimum_wage: Decimal):
        self.base_salary = base_salary
        self.minimum_wage = minimum_wage
        super().__init__(
            employee_id,
            f"Base salary {base_salary} for employee {employee_id} is below "
            f"the statutory minimum wage {minimum_wage}",
        )


class DataIncompleteError(EmployeeCalculationError):
    """Raised when an employee has no time-tracking configuration at all."""

    code = "DATA_INCOMPLETE"

    def __init__(self, employee_id: UUID, reason: str | None = None):
        self.reason = reason
        msg = f"Time-tracking data incomplete for employee {employee_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(employee_id, msg)


class InvalidFiscalPartsError(EmployeeCalculationError):
    """Raised when an employee's family quotient is below one part."""

    code = "INVALID_FISCAL_PARTS"

    def __init__(self, employee_id: UUID, fiscal_parts: Decimal):
        self.fiscal_parts = fiscal_parts
        super().__init__(
            employee_id,
            f"Fiscal parts {fiscal_parts} for employee {employee_id} must be at least 1",
        )


# ===== Systemic (fatal to the pass) =====


class SystemicCalculationError(PayrollEngineError):
    """Raised when the whole calculation pass must fail."""


class RosterUnavailableError(SystemicCalculationError):
    """Raised when the employee roster cannot be read."""

    def __init__(self, tenant_id: UUID, reason: str):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Roster unavailable for tenant {tenant_id}: {reason}")


class UnknownBracketVersionError(SystemicCalculationError):
    """Raised when no bracket table set covers the period end date."""

    def __init__(self, as_of_date: date):
        self.as_of_date = as_of_date
        super().__init__(f"No statutory bracket table effective on {as_of_date}")


class CommitFailedError(SystemicCalculationError):
    """Raised when line items and totals cannot be written."""

    def __init__(self, run_id: UUID, reason: str):
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Commit failed for payroll run {run_id}: {reason}")


# ===== Lifecycle =====


class PayrollRunNotFoundError(PayrollEngineError):
    """Raised when a payroll run does not exist (or belongs to another tenant)."""

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} not found")


class InvalidTransitionError(PayrollEngineError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RunConflictError(PayrollEngineError):
    """Raised when a calculation is already in flight for the run."""

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} is already being calculated")


class OverlappingRunError(PayrollEngineError):
    """Raised when a new run overlaps an existing run of the same tenant."""

    def __init__(self, existing_run_id: UUID, run_number: str):
        self.existing_run_id = existing_run_id
        self.run_number = run_number
        super().__init__(
            f"A payroll run already exists for this period ({run_number}, {existing_run_id})"
        )


class ImmutableRunError(PayrollEngineError):
    """Raised on any attempt to mutate an approved or paid run."""

    def __init__(self, run_id: UUID, status: str, what: str = "payroll run"):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Cannot modify {what} of run {run_id} in status '{status}'")


# ===== Defects =====


class InvariantViolationError(PayrollEngineError):
    """Raised when computed amounts break the reconciliation contract."""

    def __init__(self, employee_id: UUID | None, detail: str):
        self.employee_id = employee_id
        self.detail = detail
        super().__init__(f"Invariant violated for employee {employee_id}: {detail}")
