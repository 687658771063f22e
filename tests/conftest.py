"""Pytest fixtures for payroll run engine tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_run_engine.calculators.constants import CI_2024
from payroll_run_engine.database import make_session_factory
from payroll_run_engine.models import (
    Base,
    Employee,
    PublicHoliday,
    Tenant,
    TimeEntry,
    TimeTrackingConfig,
)
from payroll_run_engine.providers.bracket_tables import StaticBracketTableSource, table_set_to_row
from payroll_run_engine.services.pay_run_service import PayrollRunService
from payroll_run_engine.services.worker_pool import ProgressTracker, WorkerPool

# In-memory SQLite shared by every session of a test (StaticPool = one connection)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

JAN_START = date(2025, 1, 1)
JAN_END = date(2025, 1, 31)
JAN_PAY_DATE = date(2025, 2, 5)

# Tables of a second country, with a lower minimum wage
SN_2024 = replace(CI_2024, version="SN-2024", minimum_wage=Decimal("64223"))


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def tenant(session: AsyncSession) -> Tenant:
    tenant = Tenant(name="Société Ivoirienne de Test", country_code="CI", currency="XOF")
    session.add(tenant)
    session.add(table_set_to_row(CI_2024, "CI"))
    await session.commit()
    return tenant


@pytest.fixture
async def senegal_tenant(session: AsyncSession, tenant: Tenant) -> Tenant:
    """A second tenant in another country, stored after the default one."""
    other = Tenant(name="Société Sénégalaise de Test", country_code="SN", currency="XOF")
    session.add(other)
    session.add(table_set_to_row(SN_2024, "SN"))
    await session.commit()
    return other


@pytest.fixture
def make_employee(session: AsyncSession, tenant: Tenant):
    """Factory adding an employee (with time-tracking config unless disabled)."""
    counter = {"n": 0}

    async def _make(
        base_salary: str = "300000",
        allowances: str = "0",
        configured: bool = True,
        rest_days: list[int] | None = None,
        hire_date: date = date(2020, 1, 1),
        termination_date: date | None = None,
        status: str = "active",
        last_name: str | None = None,
        fiscal_parts: str = "1",
        weekly_hours_threshold: str | None = None,
    ) -> Employee:
        counter["n"] += 1
        employee = Employee(
            tenant_id=tenant.tenant_id,
            employee_number=f"EMP-{counter['n']:03d}",
            first_name="Employé",
            last_name=last_name or f"Numéro {counter['n']}",
            employment_type="full_time",
            status=status,
            base_salary=Decimal(base_salary),
            non_taxable_allowances=Decimal(allowances),
            hire_date=hire_date,
            termination_date=termination_date,
            fiscal_parts=Decimal(fiscal_parts),
        )
        session.add(employee)
        await session.flush()
        if configured:
            session.add(
                TimeTrackingConfig(
                    employee_id=employee.employee_id,
                    rest_days=rest_days or [7],
                    weekly_hours_threshold=(
                        Decimal(weekly_hours_threshold) if weekly_hours_threshold else None
                    ),
                )
            )
        await session.commit()
        return employee

    return _make


@pytest.fixture
def add_shifts(session: AsyncSession, tenant: Tenant):
    """Factory adding day shifts: add_shifts(employee, first_day, days, hours, start=8)."""

    async def _add(
        employee: Employee,
        first_day: date,
        days: int,
        hours: Decimal | str,
        start_hour: int = 8,
    ) -> None:
        minutes = int(Decimal(hours) * 60)
        for i in range(days):
            clock_in = datetime.combine(first_day + timedelta(days=i), time(start_hour, 0))
            session.add(
                TimeEntry(
                    tenant_id=tenant.tenant_id,
                    employee_id=employee.employee_id,
                    clock_in=clock_in,
                    clock_out=clock_in + timedelta(minutes=minutes),
                    status="approved",
                )
            )
        await session.commit()

    return _add


@pytest.fixture
async def new_year_holiday(session: AsyncSession) -> PublicHoliday:
    holiday = PublicHoliday(country_code="CI", holiday_date=date(2025, 1, 1), name="Jour de l'An")
    session.add(holiday)
    await session.commit()
    return holiday


@pytest.fixture
def worker_pool():
    pool = WorkerPool(max_workers=2)
    yield pool
    pool.shutdown()


@pytest.fixture
def progress() -> ProgressTracker:
    return ProgressTracker()


@pytest.fixture
def service(session, worker_pool, progress) -> PayrollRunService:
    return PayrollRunService(
        session,
        brackets=StaticBracketTableSource(),
        worker_pool=worker_pool,
        progress=progress,
    )


@pytest.fixture
def make_service(session, worker_pool, progress):
    """Build a service with overridden collaborators."""

    def _make(**overrides) -> PayrollRunService:
        kwargs = {
            "brackets": StaticBracketTableSource(),
            "worker_pool": worker_pool,
            "progress": progress,
        }
        kwargs.update(overrides)
        return PayrollRunService(session, **kwargs)

    return _make


@pytest.fixture
def create_january_run(service: PayrollRunService, tenant: Tenant):
    async def _create(name: str | None = None):
        return await service.create_run(
            tenant_id=tenant.tenant_id,
            period_start=JAN_START,
            period_end=JAN_END,
            pay_date=JAN_PAY_DATE,
            name=name,
        )

    return _create
