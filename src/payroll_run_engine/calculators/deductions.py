"""Statutory deduction calculation from versioned bracket tables."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from payroll_run_engine.calculators.constants import DEFAULT_BRACKET_TABLES
from payroll_run_engine.calculators.money import ZERO, round_to_unit
from payroll_run_engine.calculators.types import (
    BracketTableSet,
    EmployerContributions,
    StatutoryBracket,
    StatutoryDeductions,
)
from payroll_run_engine.errors import UnknownBracketVersionError

logger = logging.getLogger(__name__)

SINGLE_PART = Decimal("1")


def sort_brackets(brackets: Iterable[StatutoryBracket]) -> list[StatutoryBracket]:
    """Order brackets by upper bound, the unbounded bracket last."""
    return sorted(
        brackets,
        key=lambda b: (b.upper_bound is None, b.upper_bound if b.upper_bound is not None else ZERO),
    )


def validate_brackets(brackets: Sequence[StatutoryBracket], name: str) -> None:
    """Reject empty tables, duplicate bounds and a bounded top bracket."""
    if not brackets:
        raise ValueError(f"Bracket table '{name}' is empty")
    ordered = sort_brackets(brackets)
    if ordered[-1].upper_bound is not None:
        raise ValueError(f"Bracket table '{name}' must end with an unbounded bracket")
    if sum(1 for b in ordered if b.upper_bound is None) > 1:
        raise ValueError(f"Bracket table '{name}' has more than one unbounded bracket")
    bounds = [b.upper_bound for b in ordered if b.upper_bound is not None]
    if len(bounds) != len(set(bounds)):
        raise ValueError(f"Bracket table '{name}' has duplicate upper bounds")


def calculate_progressive(amount: Decimal, brackets: Iterable[StatutoryBracket]) -> Decimal:
    """Fold an amount through progressive brackets (unrounded).

    Each bracket taxes only the slice of ``amount`` between the previous
    bracket's upper bound and its own. A bracket's flat amount is added once
    when any part of the amount reaches it.
    """
    if amount <= 0:
        return ZERO

    total = ZERO
    remaining = amount
    lower = ZERO

    for bracket in sort_brackets(brackets):
        if remaining <= 0:
            break

        if bracket.upper_bound is None:
            in_bracket = remaining
        else:
            in_bracket = min(remaining, bracket.upper_bound - lower)
            lower = bracket.upper_bound

        if in_bracket > 0:
            total += bracket.flat_amount + in_bracket * bracket.rate
            remaining -= in_bracket

    return total


class BracketRegistry:
    """Immutable collection of bracket table sets, selectable by date."""

    def __init__(self, table_sets: Iterable[BracketTableSet] = DEFAULT_BRACKET_TABLES):
        table_sets = tuple(table_sets)
        for table_set in table_sets:
            validate_brackets(table_set.contribution_a, f"{table_set.version}/contribution_a")
            validate_brackets(table_set.contribution_b, f"{table_set.version}/contribution_b")
            validate_brackets(table_set.income_tax, f"{table_set.version}/income_tax")
            for name in ("employer_contribution_a", "employer_contribution_b"):
                if getattr(table_set, name):
                    validate_brackets(getattr(table_set, name), f"{table_set.version}/{name}")
        # Latest effective start first, so the most recent version wins on overlap
        self._table_sets = tuple(
            sorted(table_sets, key=lambda t: t.effective_start, reverse=True)
        )

    @property
    def versions(self) -> list[str]:
        return [t.version for t in self._table_sets]

    def select(self, as_of: date) -> BracketTableSet:
        """Return the table set in effect on ``as_of``.

        Raises:
            UnknownBracketVersionError: If no table set covers the date.
        """
        for table_set in self._table_sets:
            if table_set.covers(as_of):
                return table_set
        raise UnknownBracketVersionError(as_of)

    def __len__(self) -> int:
        return len(self._table_sets)


class StatutoryDeductionCalculator:
    """Computes the three statutory withholdings for a taxable gross.

    Each withholding is rounded half-up to the whole unit on its own, and the
    total is the sum of the rounded parts. Income tax uses the family
    quotient: the schedule is applied to taxable gross divided by the
    employee's fiscal parts and the result multiplied back.
    """

    def __init__(self, registry: BracketRegistry | None = None):
        self.registry = registry or BracketRegistry()

    def compute_deductions(
        self,
        taxable_gross: Decimal,
        period_end: date,
        fiscal_parts: Decimal = SINGLE_PART,
    ) -> StatutoryDeductions:
        if not isinstance(taxable_gross, Decimal):
            raise TypeError("taxable_gross must be a Decimal")
        if taxable_gross < 0:
            raise ValueError(f"Taxable gross cannot be negative: {taxable_gross}")

        table_set = self.registry.select(period_end)
        return self.compute_with_tables(taxable_gross, table_set, fiscal_parts)

    def compute_with_tables(
        self,
        taxable_gross: Decimal,
        table_set: BracketTableSet,
        fiscal_parts: Decimal = SINGLE_PART,
    ) -> StatutoryDeductions:
        if fiscal_parts < SINGLE_PART:
            raise ValueError(f"Fiscal parts must be at least 1: {fiscal_parts}")
        tax_per_part = calculate_progressive(taxable_gross / fiscal_parts, table_set.income_tax)
        return StatutoryDeductions(
            contribution_a=round_to_unit(calculate_progressive(taxable_gross, table_set.contribution_a)),
            contribution_b=round_to_unit(calculate_progressive(taxable_gross, table_set.contribution_b)),
            income_tax=round_to_unit(tax_per_part * fiscal_parts),
            bracket_version=table_set.version,
        )

    def compute_employer_contributions(
        self, taxable_gross: Decimal, table_set: BracketTableSet
    ) -> EmployerContributions:
        """Employer's share, assessed on the same base as the employee's."""
        return EmployerContributions(
            contribution_a=round_to_unit(
                calculate_progressive(taxable_gross, table_set.employer_contribution_a)
            ),
            contribution_b=round_to_unit(
                calculate_progressive(taxable_gross, table_set.employer_contribution_b)
            ),
        )
