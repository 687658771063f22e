"""Payroll calculation engine."""

from payroll_run_engine.calculators.constants import OvertimePolicy, PayConstants
from payroll_run_engine.calculators.deductions import BracketRegistry, StatutoryDeductionCalculator
from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.overtime import OvertimeAggregator, OvertimeService

__all__ = [
    "BracketRegistry",
    "LineItemBuilder",
    "OvertimeAggregator",
    "OvertimePolicy",
    "OvertimeService",
    "PayConstants",
    "StatutoryDeductionCalculator",
]
