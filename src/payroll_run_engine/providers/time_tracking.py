"""Time-tracking source."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Protocol, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.types import (
    EmployeeTimeData,
    TimeEntryRecord,
    TimeTrackingSettings,
)
from payroll_run_engine.models import PublicHoliday, Tenant, TimeEntry, TimeTrackingConfig

logger = logging.getLogger(__name__)


class TimeTrackingSource(Protocol):
    """Source of time entries, per-employee settings and holidays."""

    async def load_time_data(
        self,
        tenant_id: UUID,
        employee_ids: Sequence[UUID],
        period_start: date,
        period_end: date,
    ) -> dict[UUID, EmployeeTimeData]:
        """Bulk-load time data for the given employees.

        Employees without a time-tracking configuration map to an
        ``EmployeeTimeData`` whose ``settings`` is None.
        """
        ...


class SqlTimeTrackingSource:
    """Time data read from the time-tracking tables."""

    def __init__(self, session: AsyncSession, default_country_code: str = "CI"):
        self.session = session
        self.default_country_code = default_country_code

    async def load_time_data(
        self,
        tenant_id: UUID,
        employee_ids: Sequence[UUID],
        period_start: date,
        period_end: date,
    ) -> dict[UUID, EmployeeTimeData]:
        if not employee_ids:
            return {}

        configs = await self._load_configs(employee_ids)
        entries = await self._load_entries(tenant_id, employee_ids, period_start, period_end)
        holidays = await self._load_holidays(tenant_id, period_start, period_end)

        logger.debug(
            "Loaded time data for %d employees (%d configured, %d with entries)",
            len(employee_ids),
            len(configs),
            len(entries),
        )
        return {
            employee_id: EmployeeTimeData(
                employee_id=employee_id,
                entries=tuple(entries.get(employee_id, ())),
                settings=configs.get(employee_id),
                holidays=holidays,
            )
            for employee_id in employee_ids
        }

    async def _load_configs(self, employee_ids: Sequence[UUID]) -> dict[UUID, TimeTrackingSettings]:
        result = await self.session.execute(
            select(TimeTrackingConfig).where(TimeTrackingConfig.employee_id.in_(employee_ids))
        )
        return {
            cfg.employee_id: TimeTrackingSettings(
                rest_days=frozenset(cfg.rest_days or ()),
                night_start=cfg.night_start,
                night_end=cfg.night_end,
                weekly_hours_threshold=cfg.weekly_hours_threshold,
            )
            for cfg in result.scalars().all()
        }

    async def _load_entries(
        self,
        tenant_id: UUID,
        employee_ids: Sequence[UUID],
        period_start: date,
        period_end: date,
    ) -> dict[UUID, list[TimeEntryRecord]]:
        window_start = datetime.combine(period_start, time.min)
        window_end = datetime.combine(period_end + timedelta(days=1), time.min)
        result = await self.session.execute(
            select(TimeEntry)
            .where(
                TimeEntry.tenant_id == tenant_id,
                TimeEntry.employee_id.in_(employee_ids),
                TimeEntry.clock_in >= window_start,
                TimeEntry.clock_in < window_end,
                TimeEntry.status != "rejected",
            )
            .order_by(TimeEntry.clock_in)
        )
        entries: dict[UUID, list[TimeEntryRecord]] = defaultdict(list)
        for row in result.scalars().all():
            entries[row.employee_id].append(
                TimeEntryRecord(clock_in=row.clock_in, clock_out=row.clock_out)
            )
        return entries

    async def _load_holidays(
        self, tenant_id: UUID, period_start: date, period_end: date
    ) -> frozenset[date]:
        tenant = await self.session.get(Tenant, tenant_id)
        country_code = tenant.country_code if tenant else self.default_country_code
        result = await self.session.execute(
            select(PublicHoliday.holiday_date).where(
                PublicHoliday.country_code == country_code,
                PublicHoliday.holiday_date >= period_start,
                PublicHoliday.holiday_date <= period_end,
            )
        )
        return frozenset(result.scalars().all())
