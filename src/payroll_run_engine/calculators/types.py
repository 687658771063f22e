"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payroll_run_engine.calculators.money import ZERO


class OvertimeBucket(str, Enum):
    """Overtime buckets, each priced with its own premium multiplier."""

    HOURS_41_TO_46 = "hours_41_to_46"
    HOURS_ABOVE_46 = "hours_above_46"
    SATURDAY = "saturday"
    SUNDAY = "sunday"  # any rest day other than Saturday
    NIGHT_WORK = "night_work"
    PUBLIC_HOLIDAY = "public_holiday"


@dataclass(frozen=True)
class OvertimeBreakdown:
    """Hours per overtime bucket for one employee and period."""

    hours_41_to_46: Decimal = ZERO
    hours_above_46: Decimal = ZERO
    saturday: Decimal = ZERO
    sunday: Decimal = ZERO
    night_work: Decimal = ZERO
    public_holiday: Decimal = ZERO

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, Decimal):
                raise TypeError(f"{f.name} must be a Decimal, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{f.name} cannot be negative: {value}")

    @classmethod
    def zero(cls) -> OvertimeBreakdown:
        return cls()

    def hours_for(self, bucket: OvertimeBucket) -> Decimal:
        return getattr(self, bucket.value)

    def items(self) -> list[tuple[OvertimeBucket, Decimal]]:
        """Buckets in a fixed order."""
        return [(bucket, self.hours_for(bucket)) for bucket in OvertimeBucket]

    @property
    def tiered_hours(self) -> Decimal:
        return self.hours_41_to_46 + self.hours_above_46

    @property
    def rest_day_hours(self) -> Decimal:
        return self.saturday + self.sunday

    @property
    def is_zero(self) -> bool:
        return all(hours == 0 for _, hours in self.items())


@dataclass(frozen=True)
class AttendanceSummary:
    """Worked hours and overtime for one employee and period."""

    total_hours: Decimal
    breakdown: OvertimeBreakdown
    days_worked: int = 0

    def __post_init__(self) -> None:
        if self.total_hours < 0:
            raise ValueError(f"total_hours cannot be negative: {self.total_hours}")
        # Night and holiday hours stack on top of other buckets, so only the
        # tiered and rest-day buckets are bounded by the hours worked.
        bounded = self.breakdown.tiered_hours + self.breakdown.rest_day_hours
        if bounded > self.total_hours:
            raise ValueError(
                f"Overtime buckets ({bounded}h) exceed hours worked ({self.total_hours}h)"
            )

    @classmethod
    def empty(cls) -> AttendanceSummary:
        return cls(total_hours=ZERO, breakdown=OvertimeBreakdown.zero(), days_worked=0)


# ===== Brackets =====


@dataclass(frozen=True)
class StatutoryBracket:
    """One slice of a bracket table.

    ``upper_bound`` of None means the bracket is unbounded above. A bracket
    applies ``rate`` to the portion of income inside it and adds
    ``flat_amount`` once whenever any income reaches it.
    """

    upper_bound: Decimal | None
    rate: Decimal
    flat_amount: Decimal = ZERO

    def __post_init__(self) -> None:
        if self.rate < 0 or self.rate > 1:
            raise ValueError(f"Bracket rate must be within [0, 1]: {self.rate}")
        if self.flat_amount < 0:
            raise ValueError(f"Bracket flat amount cannot be negative: {self.flat_amount}")
        if self.upper_bound is not None and self.upper_bound <= 0:
            raise ValueError(f"Bracket upper bound must be positive: {self.upper_bound}")


@dataclass(frozen=True)
class BracketTableSet:
    """Bracket tables for the three withholdings, valid over a date range.

    The employer tables price the employer's side of the same two social
    contributions. They are optional; a set without them charges the
    employer nothing on top of gross.
    """

    version: str
    effective_start: date
    effective_end: date | None
    minimum_wage: Decimal
    contribution_a: tuple[StatutoryBracket, ...]
    contribution_b: tuple[StatutoryBracket, ...]
    income_tax: tuple[StatutoryBracket, ...]
    employer_contribution_a: tuple[StatutoryBracket, ...] = ()
    employer_contribution_b: tuple[StatutoryBracket, ...] = ()

    def covers(self, as_of: date) -> bool:
        if as_of < self.effective_start:
            return False
        return self.effective_end is None or as_of <= self.effective_end


@dataclass(frozen=True)
class StatutoryDeductions:
    """The three statutory withholdings, each already rounded to the unit."""

    contribution_a: Decimal
    contribution_b: Decimal
    income_tax: Decimal
    bracket_version: str = ""

    @property
    def total(self) -> Decimal:
        return self.contribution_a + self.contribution_b + self.income_tax


@dataclass(frozen=True)
class EmployerContributions:
    """Employer-side social contributions, each rounded to the unit."""

    contribution_a: Decimal
    contribution_b: Decimal

    @property
    def total(self) -> Decimal:
        return self.contribution_a + self.contribution_b


# ===== Provider records =====


@dataclass(frozen=True)
class EmployeeRecord:
    """Roster entry as handed to the calculators."""

    employee_id: UUID
    employee_number: str
    full_name: str
    employment_type: str
    base_salary: Decimal
    non_taxable_allowances: Decimal = ZERO
    hire_date: date | None = None
    termination_date: date | None = None
    # Family quotient: 1 for a single filer, +1 for a spouse, +0.5 per child
    fiscal_parts: Decimal = Decimal("1")


@dataclass(frozen=True)
class TimeEntryRecord:
    """A closed (or still open) clock-in interval in local time."""

    clock_in: datetime
    clock_out: datetime | None


@dataclass(frozen=True)
class TimeTrackingSettings:
    """Per-employee overrides of the overtime policy."""

    rest_days: frozenset[int] = frozenset({7})  # ISO weekdays
    night_start: time | None = None
    night_end: time | None = None
    # Weekly hours after which overtime starts, instead of the policy default
    weekly_hours_threshold: Decimal | None = None


@dataclass(frozen=True)
class EmployeeTimeData:
    """Everything the aggregator needs for one employee."""

    employee_id: UUID
    entries: tuple[TimeEntryRecord, ...] = ()
    settings: TimeTrackingSettings | None = None
    holidays: frozenset[date] = frozenset()


# ===== Results =====


@dataclass
class LineItemCandidate:
    """A computed line item before persistence."""

    employee_id: UUID
    employee_name: str
    employee_number: str
    employment_type: str

    base_salary: Decimal
    non_taxable_allowances: Decimal
    overtime_pay: Decimal
    gross_salary: Decimal
    taxable_gross: Decimal
    contribution_a: Decimal
    contribution_b: Decimal
    income_tax: Decimal
    total_deductions: Decimal
    net_salary: Decimal

    employer_contribution_a: Decimal
    employer_contribution_b: Decimal
    total_employer_cost: Decimal
    fiscal_parts: Decimal

    total_hours: Decimal
    days_worked: int
    overtime: OvertimeBreakdown
    bracket_version: str

    line_hash: str = ""

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "employee_id": str(self.employee_id),
            "base_salary": str(self.base_salary),
            "non_taxable_allowances": str(self.non_taxable_allowances),
            "overtime_pay": str(self.overtime_pay),
            "gross_salary": str(self.gross_salary),
            "taxable_gross": str(self.taxable_gross),
            "contribution_a": str(self.contribution_a),
            "contribution_b": str(self.contribution_b),
            "income_tax": str(self.income_tax),
            "total_deductions": str(self.total_deductions),
            "net_salary": str(self.net_salary),
            "employer_contribution_a": str(self.employer_contribution_a),
            "employer_contribution_b": str(self.employer_contribution_b),
            "total_employer_cost": str(self.total_employer_cost),
            "fiscal_parts": str(self.fiscal_parts),
            "total_hours": str(self.total_hours),
            "days_worked": self.days_worked,
            "overtime": {bucket.value: str(hours) for bucket, hours in self.overtime.items()},
            "bracket_version": self.bracket_version,
        }


@dataclass
class EmployeeFailure:
    """A recoverable per-employee failure."""

    employee_id: UUID
    employee_name: str | None
    code: str
    message: str


@dataclass
class CalculationPassResult:
    """Outcome of computing every employee of a run."""

    line_items: list[LineItemCandidate] = field(default_factory=list)
    failures: list[EmployeeFailure] = field(default_factory=list)

    @property
    def total_employees(self) -> int:
        return len(self.line_items) + len(self.failures)

    def summary(self) -> str:
        return (
            f"{len(self.line_items)} of {self.total_employees} employees calculated, "
            f"{len(self.failures)} skipped"
        )
