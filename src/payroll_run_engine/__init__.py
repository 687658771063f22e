"""Payroll run calculation engine."""

__version__ = "1.0.0"
