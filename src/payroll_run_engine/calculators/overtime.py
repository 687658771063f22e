"""Attendance and overtime aggregation.

Collapses raw clock-in/clock-out entries into worked hours and the six
overtime buckets:

- Each entry belongs to the calendar day of its clock-in.
- Weeks start on Monday. Hours on working days beyond the standard weekly
  threshold fall in the first tier up to the second threshold, and in the
  second tier beyond it. An employee's own weekly threshold replaces the
  standard one; the second threshold never drops below it.
- Hours on the employee's rest days never count toward the weekly
  thresholds. A Saturday rest day goes to the Saturday bucket. Every other
  rest day, whichever weekday it falls on, goes to the Sunday bucket, which
  carries the rest-day premium.
- Night hours (exact overlap with the night window) and public-holiday hours
  are tagged independently and stack with the other buckets.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from payroll_run_engine.calculators.constants import OvertimePolicy
from payroll_run_engine.calculators.money import ZERO, round_hours, seconds_to_hours
from payroll_run_engine.calculators.types import (
    AttendanceSummary,
    EmployeeTimeData,
    OvertimeBreakdown,
    TimeEntryRecord,
    TimeTrackingSettings,
)
from payroll_run_engine.errors import DataIncompleteError

if TYPE_CHECKING:
    from payroll_run_engine.providers.time_tracking import TimeTrackingSource

logger = logging.getLogger(__name__)

SATURDAY = 6


class OvertimeAggregator:
    """Pure aggregation of time entries for one employee and period."""

    def __init__(self, policy: OvertimePolicy | None = None):
        self.policy = policy or OvertimePolicy()

    def summarize(
        self,
        time_data: EmployeeTimeData,
        period_start: date,
        period_end: date,
    ) -> AttendanceSummary:
        """Aggregate one employee's time data.

        Raises:
            DataIncompleteError: If the employee has no time-tracking settings.
        """
        if time_data.settings is None:
            raise DataIncompleteError(time_data.employee_id, "no time-tracking configuration")

        return self.aggregate(
            time_data.entries,
            period_start,
            period_end,
            settings=time_data.settings,
            holidays=time_data.holidays,
        )

    def aggregate(
        self,
        entries: Iterable[TimeEntryRecord],
        period_start: date,
        period_end: date,
        settings: TimeTrackingSettings | None = None,
        holidays: Iterable[date] = (),
    ) -> AttendanceSummary:
        """Aggregate entries clocked in within [period_start, period_end]."""
        if period_end < period_start:
            raise ValueError(f"Period end {period_end} is before period start {period_start}")

        settings = settings or TimeTrackingSettings()
        holiday_set = frozenset(holidays)
        night_start = settings.night_start or self.policy.night_start
        night_end = settings.night_end or self.policy.night_end

        total = ZERO
        night = ZERO
        holiday = ZERO
        saturday = ZERO
        sunday = ZERO
        weekly: dict[date, Decimal] = defaultdict(lambda: ZERO)
        days: set[date] = set()

        for entry in entries:
            if entry.clock_out is None or entry.clock_out <= entry.clock_in:
                continue
            day = entry.clock_in.date()
            if day < period_start or day > period_end:
                continue

            # Round per entry so every later sum and difference is exact.
            hours = round_hours(seconds_to_hours((entry.clock_out - entry.clock_in).total_seconds()))
            total += hours
            days.add(day)
            night += round_hours(_night_overlap_hours(entry, night_start, night_end))

            if day in holiday_set:
                holiday += hours

            weekday = day.isoweekday()
            if weekday in settings.rest_days:
                if weekday == SATURDAY:
                    saturday += hours
                else:
                    sunday += hours
            else:
                week_start = day - timedelta(days=day.weekday())
                weekly[week_start] += hours

        standard = settings.weekly_hours_threshold or self.policy.standard_weekly_hours
        second = max(self.policy.second_tier_weekly_hours, standard)
        tier_one_cap = second - standard
        hours_41_to_46 = ZERO
        hours_above_46 = ZERO
        for worked in weekly.values():
            beyond_standard = max(ZERO, worked - standard)
            hours_41_to_46 += min(beyond_standard, tier_one_cap)
            hours_above_46 += max(ZERO, worked - second)

        breakdown = OvertimeBreakdown(
            hours_41_to_46=hours_41_to_46,
            hours_above_46=hours_above_46,
            saturday=saturday,
            sunday=sunday,
            night_work=night,
            public_holiday=holiday,
        )
        return AttendanceSummary(total_hours=total, breakdown=breakdown, days_worked=len(days))


def _night_overlap_hours(entry: TimeEntryRecord, night_start: time, night_end: time) -> Decimal:
    """Hours of the entry that fall inside the nightly window."""
    if night_start == night_end or entry.clock_out is None:
        return ZERO

    crosses_midnight = night_start > night_end
    seconds = 0.0
    # The window that began the previous evening can still cover the clock-in.
    day = entry.clock_in.date() - timedelta(days=1)
    while day <= entry.clock_out.date():
        window_start = datetime.combine(day, night_start)
        end_day = day + timedelta(days=1) if crosses_midnight else day
        window_end = datetime.combine(end_day, night_end)
        if entry.clock_in.tzinfo is not None:
            window_start = window_start.replace(tzinfo=entry.clock_in.tzinfo)
            window_end = window_end.replace(tzinfo=entry.clock_in.tzinfo)

        overlap_start = max(entry.clock_in, window_start)
        overlap_end = min(entry.clock_out, window_end)
        if overlap_end > overlap_start:
            seconds += (overlap_end - overlap_start).total_seconds()
        day += timedelta(days=1)

    return seconds_to_hours(seconds)


class OvertimeService:
    """Overtime lookups backed by a time-tracking source."""

    def __init__(
        self,
        source: TimeTrackingSource,
        aggregator: OvertimeAggregator | None = None,
    ):
        self.source = source
        self.aggregator = aggregator or OvertimeAggregator()

    async def get_attendance(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        period_start: date,
        period_end: date,
    ) -> AttendanceSummary:
        data = await self.source.load_time_data(tenant_id, [employee_id], period_start, period_end)
        time_data = data.get(employee_id, EmployeeTimeData(employee_id=employee_id))
        return self.aggregator.summarize(time_data, period_start, period_end)

    async def get_overtime_breakdown(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        period_start: date,
        period_end: date,
    ) -> OvertimeBreakdown:
        """Return the overtime breakdown of one employee for a period."""
        summary = await self.get_attendance(tenant_id, employee_id, period_start, period_end)
        logger.debug(
            "Overtime for employee %s (%s..%s): %s",
            employee_id,
            period_start,
            period_end,
            summary.breakdown,
        )
        return summary.breakdown
