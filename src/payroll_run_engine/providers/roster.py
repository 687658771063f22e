"""Employee roster provider."""

from __future__ import annotations

import logging
from datetime import date
from typing import Protocol
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.types import EmployeeRecord
from payroll_run_engine.errors import RosterUnavailableError
from payroll_run_engine.models import Employee

logger = logging.getLogger(__name__)


class RosterProvider(Protocol):
    """Source of the employees to pay for a period."""

    async def list_active_employees(
        self,
        tenant_id: UUID,
        as_of_date: date,
        period_start: date,
    ) -> list[EmployeeRecord]:
        """Employees hired by ``as_of_date`` and not terminated before ``period_start``."""
        ...


class SqlRosterProvider:
    """Roster read from the ``employee`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active_employees(
        self,
        tenant_id: UUID,
        as_of_date: date,
        period_start: date,
    ) -> list[EmployeeRecord]:
        # Employees terminated during the period are still paid for it.
        stmt = (
            select(Employee)
            .where(
                Employee.tenant_id == tenant_id,
                Employee.hire_date <= as_of_date,
                or_(
                    Employee.termination_date.is_(None),
                    Employee.termination_date >= period_start,
                ),
                or_(
                    Employee.status != "terminated",
                    Employee.termination_date >= period_start,
                ),
            )
            .order_by(Employee.employee_number)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Failed to load roster for tenant %s", tenant_id)
            raise RosterUnavailableError(tenant_id, str(e)) from e

        return [_to_record(emp) for emp in result.scalars().all()]


def _to_record(emp: Employee) -> EmployeeRecord:
    return EmployeeRecord(
        employee_id=emp.employee_id,
        employee_number=emp.employee_number,
        full_name=emp.full_name,
        employment_type=emp.employment_type,
        base_salary=emp.base_salary,
        non_taxable_allowances=emp.non_taxable_allowances,
        hire_date=emp.hire_date,
        termination_date=emp.termination_date,
        fiscal_parts=emp.fiscal_parts,
    )
