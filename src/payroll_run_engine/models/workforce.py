"""Read models for the tenant roster and time tracking.

These tables are owned by the wider HR suite. The engine only reads them
through the SQL adapters in ``payroll_run_engine.providers``.
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_run_engine.models.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """Tenant (employer organisation)."""

    __tablename__ = "tenant"

    tenant_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False, default="CI")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="XOF")


class Employee(Base, TimestampMixin):
    """Employee as seen by payroll."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    employment_type: Mapped[str] = mapped_column(String, nullable=False, default="full_time")
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    # Transport, housing and similar allowances exempt from tax and contributions.
    non_taxable_allowances: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    # Family quotient for income tax: 1 + 1 for a spouse + 0.5 per child
    fiscal_parts: Mapped[Decimal] = mapped_column(
        Numeric(3, 1), nullable=False, default=Decimal("1")
    )
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_number", name="employee_tenant_number_unique"),
        CheckConstraint(
            "status IN ('active', 'on_leave', 'terminated')",
            name="employee_status_check",
        ),
        CheckConstraint("base_salary >= 0", name="employee_base_salary_check"),
        CheckConstraint("fiscal_parts >= 1", name="employee_fiscal_parts_check"),
    )

    time_tracking_config: Mapped[TimeTrackingConfig | None] = relationship(
        back_populates="employee", uselist=False
    )

    @property
    def full_name(self) -> str:
        """Get full name."""
        return f"{self.first_name} {self.last_name}"


class TimeTrackingConfig(Base, TimestampMixin):
    """Per-employee time-tracking settings (rest days, night window)."""

    __tablename__ = "time_tracking_config"

    config_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    # ISO weekdays (1 = Monday .. 7 = Sunday)
    rest_days: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=lambda: [7])
    night_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    night_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    weekly_hours_threshold: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="time_tracking_config")


class TimeEntry(Base, TimestampMixin):
    """A clock-in / clock-out pair."""

    __tablename__ = "time_entry"

    time_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    clock_in: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    clock_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="approved")
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="time_entry_status_check",
        ),
    )


class PublicHoliday(Base):
    """Public holiday calendar entry."""

    __tablename__ = "public_holiday"

    holiday_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("country_code", "holiday_date", name="public_holiday_country_date_unique"),
    )
