"""Payroll run, line item and bracket table models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_run_engine.models.base import Base, TimestampMixin


# ===== Payroll Runs =====


class PayrollRun(Base, TimestampMixin):
    """A tenant's payroll run for one pay period."""

    __tablename__ = "payroll_run"

    run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    run_number: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Totals stay NULL until the run is calculated
    total_gross: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_deductions: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_net: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_contribution_a: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_contribution_b: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_income_tax: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_employer_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    engine_version: Mapped[str | None] = mapped_column(String, nullable=True)

    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    # Stamped by the calculation claim; a stale stamp lets another pass take over
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "run_number", name="payroll_run_tenant_number_unique"),
        CheckConstraint(
            "status IN ('draft', 'calculating', 'calculated', 'approved', 'paid', 'failed')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="payroll_run_dates_check"),
    )

    # Relationships
    line_items: Mapped[list[PayrollLineItem]] = relationship(
        back_populates="payroll_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PayrollLineItem.employee_number",
    )
    errors: Mapped[list[PayrollRunError]] = relationship(
        back_populates="payroll_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_incomplete(self) -> bool:
        """True when the last pass skipped employees."""
        return self.error_count > 0


class PayrollLineItem(Base, TimestampMixin):
    """One employee's computed pay for a run."""

    __tablename__ = "payroll_line_item"

    line_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.run_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)

    # Snapshot of the employee at calculation time
    employee_name: Mapped[str] = mapped_column(String, nullable=False)
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    employment_type: Mapped[str] = mapped_column(String, nullable=False)

    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    non_taxable_allowances: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    overtime_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    gross_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    taxable_gross: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    contribution_a: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    contribution_b: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    income_tax: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    employer_contribution_a: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    employer_contribution_b: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_employer_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    fiscal_parts: Mapped[Decimal] = mapped_column(Numeric(3, 1), nullable=False)

    total_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    days_worked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hours_41_to_46: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    hours_above_46: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    saturday_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    sunday_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    night_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    public_holiday_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)

    bracket_version: Mapped[str] = mapped_column(String, nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False)
    line_hash: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="payroll_line_item_run_employee_unique"),
        CheckConstraint(
            "net_salary = gross_salary - total_deductions",
            name="payroll_line_item_net_check",
        ),
        CheckConstraint(
            "total_deductions = contribution_a + contribution_b + income_tax",
            name="payroll_line_item_deductions_check",
        ),
        CheckConstraint(
            "total_employer_cost = gross_salary + employer_contribution_a + employer_contribution_b",
            name="payroll_line_item_employer_cost_check",
        ),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="line_items")

    @property
    def overtime(self) -> dict[str, Decimal]:
        """Overtime buckets keyed the way the API reports them."""
        return {
            "hours_41_to_46": self.hours_41_to_46,
            "hours_above_46": self.hours_above_46,
            "saturday": self.saturday_hours,
            "sunday": self.sunday_hours,
            "night_work": self.night_hours,
            "public_holiday": self.public_holiday_hours,
        }


class PayrollRunError(Base, TimestampMixin):
    """A recoverable per-employee failure recorded by the last pass."""

    __tablename__ = "payroll_run_error"

    run_error_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.run_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_name: Mapped[str | None] = mapped_column(String, nullable=True)
    error_code: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="errors")


# ===== Statutory Brackets =====


class StatutoryBracketVersion(Base, TimestampMixin):
    """Versioned set of statutory bracket tables for one country.

    ``payload`` holds the minimum wage and the bracket lists, with every
    amount and rate stored as a decimal string::

        {
            "minimum_wage": "75000",
            "contribution_a": [{"upper_bound": "3375000", "rate": "0.063"}, ...],
            "contribution_b": [{"upper_bound": null, "rate": "0", "flat_amount": "1000"}],
            "income_tax": [...],
            "employer_contribution_a": [...],  # optional
            "employer_contribution_b": [...]   # optional
        }
    """

    __tablename__ = "statutory_bracket_version"

    bracket_version_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    version: Mapped[str] = mapped_column(String, nullable=False)
    effective_start: Mapped[date] = mapped_column(Date, nullable=False)
    effective_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("country_code", "version", name="statutory_bracket_version_unique"),
        CheckConstraint(
            "effective_end IS NULL OR effective_end >= effective_start",
            name="statutory_bracket_version_dates_check",
        ),
    )
