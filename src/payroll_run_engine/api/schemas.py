"""Pydantic schemas for API request/response models.

Monetary amounts are ``Decimal`` and serialize as JSON strings.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator


# ============================================================================
# Payroll Run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for creating a new payroll run."""

    period_start: date
    period_end: date
    pay_date: date
    name: str | None = None
    created_by: UUID | None = None

    @model_validator(mode="after")
    def check_period(self) -> "PayrollRunCreate":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    run_id: UUID
    tenant_id: UUID
    run_number: str
    name: str | None = None
    period_start: date
    period_end: date
    pay_date: date
    status: str
    employee_count: int
    error_count: int
    is_incomplete: bool
    generation: int

    total_gross: Decimal | None = None
    total_deductions: Decimal | None = None
    total_net: Decimal | None = None
    total_contribution_a: Decimal | None = None
    total_contribution_b: Decimal | None = None
    total_income_tax: Decimal | None = None
    total_employer_cost: Decimal | None = None

    failure_reason: str | None = None
    engine_version: str | None = None
    created_by: UUID | None = None
    approved_by: UUID | None = None
    created_at: datetime
    calculated_at: datetime | None = None
    approved_at: datetime | None = None
    paid_at: datetime | None = None


class PayrollRunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[PayrollRunResponse]
    total: int


# ============================================================================
# Line item schemas
# ============================================================================


class OvertimeHoursResponse(BaseModel):
    """Hours per overtime bucket."""

    hours_41_to_46: Decimal
    hours_above_46: Decimal
    saturday: Decimal
    sunday: Decimal
    night_work: Decimal
    public_holiday: Decimal


class LineItemResponse(BaseModel):
    """Schema for a payroll line item."""

    model_config = ConfigDict(from_attributes=True)

    line_item_id: UUID
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
    overtime: OvertimeHoursResponse
    bracket_version: str
    generation: int
    line_hash: str


class RunErrorResponse(BaseModel):
    """A per-employee calculation error."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    employee_name: str | None = None
    error_code: str
    message: str


class PayrollRunDetailResponse(PayrollRunResponse):
    """Run with its line items and errors."""

    line_items: list[LineItemResponse]
    errors: list[RunErrorResponse]


# ============================================================================
# Status and actions
# ============================================================================


class RunStatusResponse(BaseModel):
    """Run status with calculation progress."""

    model_config = ConfigDict(from_attributes=True)

    run_id: UUID
    status: str
    processed: int
    total: int
    progress_percent: int
    employee_count: int
    error_count: int
    is_incomplete: bool
    failure_reason: str | None = None
    message: str


class ApprovalRequest(BaseModel):
    """Schema for approving a run."""

    approver_id: UUID | None = None
    allow_incomplete: bool = False


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str | None = None
