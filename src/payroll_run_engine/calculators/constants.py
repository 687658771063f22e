"""Statutory constants and the built-in bracket tables.

Defaults follow the Côte d'Ivoire regime (currency XOF, no minor unit).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from payroll_run_engine.calculators.types import (
    BracketTableSet,
    OvertimeBucket,
    StatutoryBracket,
)

MINIMUM_WAGE = Decimal("75000")  # SMIG
STANDARD_MONTHLY_HOURS = Decimal("173.33")
STANDARD_WEEKLY_HOURS = Decimal("40")
SECOND_TIER_WEEKLY_HOURS = Decimal("46")

NIGHT_START = time(21, 0)
NIGHT_END = time(5, 0)

DEFAULT_MULTIPLIERS: Mapping[OvertimeBucket, Decimal] = MappingProxyType(
    {
        OvertimeBucket.HOURS_41_TO_46: Decimal("1.15"),
        OvertimeBucket.HOURS_ABOVE_46: Decimal("1.50"),
        OvertimeBucket.SATURDAY: Decimal("1.50"),
        OvertimeBucket.SUNDAY: Decimal("1.75"),
        OvertimeBucket.NIGHT_WORK: Decimal("1.75"),
        OvertimeBucket.PUBLIC_HOLIDAY: Decimal("1.75"),
    }
)


@dataclass(frozen=True)
class OvertimePolicy:
    """Thresholds and night window used by the aggregator."""

    standard_weekly_hours: Decimal = STANDARD_WEEKLY_HOURS
    second_tier_weekly_hours: Decimal = SECOND_TIER_WEEKLY_HOURS
    night_start: time = NIGHT_START
    night_end: time = NIGHT_END

    def __post_init__(self) -> None:
        if self.second_tier_weekly_hours < self.standard_weekly_hours:
            raise ValueError("Second overtime threshold must not be below the standard threshold")


@dataclass(frozen=True)
class PayConstants:
    """Constants used by the line item builder."""

    standard_monthly_hours: Decimal = STANDARD_MONTHLY_HOURS
    multipliers: Mapping[OvertimeBucket, Decimal] = field(
        default_factory=lambda: DEFAULT_MULTIPLIERS
    )

    def __post_init__(self) -> None:
        if self.standard_monthly_hours <= 0:
            raise ValueError("Standard monthly hours must be positive")
        missing = [b.value for b in OvertimeBucket if b not in self.multipliers]
        if missing:
            raise ValueError(f"Missing overtime multipliers: {', '.join(missing)}")


# CNPS retirement pension: 6.3% of gross, capped at 3,375,000
CNPS_PENSION_BRACKETS = (
    StatutoryBracket(upper_bound=Decimal("3375000"), rate=Decimal("0.063")),
    StatutoryBracket(upper_bound=None, rate=Decimal("0")),
)

# CMU universal health coverage: flat monthly amount
CMU_BRACKETS = (
    StatutoryBracket(upper_bound=None, rate=Decimal("0"), flat_amount=Decimal("1000")),
)

# Employer CNPS: pension 7.7% up to 3,375,000, plus family benefits (5%),
# maternity (0.75%) and work accident (2%) on the first 70,000
CNPS_EMPLOYER_BRACKETS = (
    StatutoryBracket(upper_bound=Decimal("70000"), rate=Decimal("0.1545")),
    StatutoryBracket(upper_bound=Decimal("3375000"), rate=Decimal("0.077")),
    StatutoryBracket(upper_bound=None, rate=Decimal("0")),
)

# Employer CMU share
CMU_EMPLOYER_BRACKETS = (
    StatutoryBracket(upper_bound=None, rate=Decimal("0"), flat_amount=Decimal("500")),
)

# ITS monthly schedule (2024 reform)
ITS_2024_BRACKETS = (
    StatutoryBracket(upper_bound=Decimal("75000"), rate=Decimal("0")),
    StatutoryBracket(upper_bound=Decimal("240000"), rate=Decimal("0.16")),
    StatutoryBracket(upper_bound=Decimal("800000"), rate=Decimal("0.21")),
    StatutoryBracket(upper_bound=Decimal("2400000"), rate=Decimal("0.24")),
    StatutoryBracket(upper_bound=Decimal("8000000"), rate=Decimal("0.28")),
    StatutoryBracket(upper_bound=None, rate=Decimal("0.32")),
)

CI_2024 = BracketTableSet(
    version="CI-2024",
    effective_start=date(2024, 1, 1),
    effective_end=None,
    minimum_wage=MINIMUM_WAGE,
    contribution_a=CNPS_PENSION_BRACKETS,
    contribution_b=CMU_BRACKETS,
    income_tax=ITS_2024_BRACKETS,
    employer_contribution_a=CNPS_EMPLOYER_BRACKETS,
    employer_contribution_b=CMU_EMPLOYER_BRACKETS,
)

DEFAULT_BRACKET_TABLES: tuple[BracketTableSet, ...] = (CI_2024,)
