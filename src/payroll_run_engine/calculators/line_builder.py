"""Line item builder with deterministic hashing."""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal

from payroll_run_engine.calculators.constants import PayConstants
from payroll_run_engine.calculators.deductions import StatutoryDeductionCalculator
from payroll_run_engine.calculators.money import ZERO, round_to_unit
from payroll_run_engine.calculators.types import (
    AttendanceSummary,
    EmployeeRecord,
    EmployerContributions,
    LineItemCandidate,
    OvertimeBreakdown,
    StatutoryDeductions,
)
from payroll_run_engine.errors import (
    BelowMinimumWageError,
    InvalidFiscalPartsError,
    InvariantViolationError,
)


class LineItemBuilder:
    """Builds one employee's line item for a period.

    Order of operations:
    - reject a base salary below the minimum wage of the period
    - overtime pay = sum of bucket hours x hourly rate x multiplier, rounded
    - gross = base + overtime pay + non-taxable allowances
    - taxable gross = gross - non-taxable allowances (never negative)
    - withholdings from the bracket tables in effect at period end, income
      tax split over the employee's fiscal parts
    - net = gross - total deductions, then reconciled
    - employer contributions on taxable gross; employer cost = gross + them
    """

    def __init__(
        self,
        calculator: StatutoryDeductionCalculator | None = None,
        constants: PayConstants | None = None,
    ):
        self.calculator = calculator or StatutoryDeductionCalculator()
        self.constants = constants or PayConstants()

    @staticmethod
    def compute_line_hash(line: LineItemCandidate) -> str:
        """Compute deterministic hash for a line item.

        The hash is based on the canonical representation of defining fields,
        ensuring identical inputs produce identical hashes.
        """
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def hourly_rate(self, base_salary: Decimal) -> Decimal:
        return base_salary / self.constants.standard_monthly_hours

    def overtime_pay(self, base_salary: Decimal, breakdown: OvertimeBreakdown) -> Decimal:
        """Premium pay for all overtime buckets, rounded to the unit."""
        if breakdown.is_zero:
            return ZERO
        hourly = self.hourly_rate(base_salary)
        total = sum(
            (hours * hourly * self.constants.multipliers[bucket] for bucket, hours in breakdown.items()),
            ZERO,
        )
        return round_to_unit(total)

    def build_line_item(
        self,
        employee: EmployeeRecord,
        attendance: AttendanceSummary,
        period_end: date,
    ) -> LineItemCandidate:
        """Build a line item candidate.

        Raises:
            BelowMinimumWageError: If base salary is below the period's minimum wage.
            InvalidFiscalPartsError: If the employee has fewer than one fiscal part.
            UnknownBracketVersionError: If no bracket tables cover period_end.
            InvariantViolationError: If the computed amounts do not reconcile.
        """
        table_set = self.calculator.registry.select(period_end)
        if employee.base_salary < table_set.minimum_wage:
            raise BelowMinimumWageError(
                employee.employee_id, employee.base_salary, table_set.minimum_wage
            )
        if employee.fiscal_parts < 1:
            raise InvalidFiscalPartsError(employee.employee_id, employee.fiscal_parts)

        allowances = employee.non_taxable_allowances
        overtime_pay = self.overtime_pay(employee.base_salary, attendance.breakdown)
        gross = employee.base_salary + overtime_pay + allowances
        taxable_gross = max(ZERO, gross - allowances)

        deductions = self.calculator.compute_with_tables(
            taxable_gross, table_set, employee.fiscal_parts
        )
        total_deductions = deductions.total
        net = gross - total_deductions
        employer = self.calculator.compute_employer_contributions(taxable_gross, table_set)

        line = LineItemCandidate(
            employee_id=employee.employee_id,
            employee_name=employee.full_name,
            employee_number=employee.employee_number,
            employment_type=employee.employment_type,
            base_salary=employee.base_salary,
            non_taxable_allowances=allowances,
            overtime_pay=overtime_pay,
            gross_salary=gross,
            taxable_gross=taxable_gross,
            contribution_a=deductions.contribution_a,
            contribution_b=deductions.contribution_b,
            income_tax=deductions.income_tax,
            total_deductions=total_deductions,
            net_salary=net,
            employer_contribution_a=employer.contribution_a,
            employer_contribution_b=employer.contribution_b,
            total_employer_cost=gross + employer.total,
            fiscal_parts=employee.fiscal_parts,
            total_hours=attendance.total_hours,
            days_worked=attendance.days_worked,
            overtime=attendance.breakdown,
            bracket_version=table_set.version,
        )
        self.verify_reconciliation(line, deductions, employer)
        line.line_hash = self.compute_line_hash(line)
        return line

    @staticmethod
    def verify_reconciliation(
        line: LineItemCandidate,
        deductions: StatutoryDeductions,
        employer: EmployerContributions | None = None,
    ) -> None:
        """Check the arithmetic contract of a line item.

        Raises:
            InvariantViolationError: On any mismatch.
        """
        problems: list[str] = []
        if line.total_deductions != deductions.total:
            problems.append(
                f"total_deductions {line.total_deductions} != sum of withholdings {deductions.total}"
            )
        if line.net_salary != line.gross_salary - line.total_deductions:
            problems.append(
                f"net {line.net_salary} != gross {line.gross_salary} - deductions {line.total_deductions}"
            )
        if employer is not None and line.total_employer_cost != line.gross_salary + employer.total:
            problems.append(
                f"employer cost {line.total_employer_cost} != gross {line.gross_salary}"
                f" + employer contributions {employer.total}"
            )
        if line.taxable_gross > line.gross_salary:
            problems.append(f"taxable gross {line.taxable_gross} exceeds gross {line.gross_salary}")
        for name in (
            "contribution_a",
            "contribution_b",
            "income_tax",
            "employer_contribution_a",
            "employer_contribution_b",
        ):
            if getattr(line, name) < 0:
                problems.append(f"{name} is negative")
        if problems:
            raise InvariantViolationError(line.employee_id, "; ".join(problems))

    @staticmethod
    def sum_totals(lines: list[LineItemCandidate]) -> dict[str, Decimal]:
        """Aggregate run totals from line items."""
        totals = {
            "total_gross": ZERO,
            "total_deductions": ZERO,
            "total_net": ZERO,
            "total_contribution_a": ZERO,
            "total_contribution_b": ZERO,
            "total_income_tax": ZERO,
            "total_employer_cost": ZERO,
        }
        for line in lines:
            totals["total_gross"] += line.gross_salary
            totals["total_deductions"] += line.total_deductions
            totals["total_net"] += line.net_salary
            totals["total_contribution_a"] += line.contribution_a
            totals["total_contribution_b"] += line.contribution_b
            totals["total_income_tax"] += line.income_tax
            totals["total_employer_cost"] += line.total_employer_cost
        return totals
