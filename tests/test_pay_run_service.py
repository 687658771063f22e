"""Tests for the payroll run orchestrator."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from payroll_run_engine.calculators.constants import CMU_BRACKETS, CNPS_PENSION_BRACKETS, ITS_2024_BRACKETS
from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.types import BracketTableSet, CalculationPassResult
from payroll_run_engine.errors import (
    ImmutableRunError,
    InvalidTransitionError,
    InvariantViolationError,
    OverlappingRunError,
    PayrollRunNotFoundError,
    RosterUnavailableError,
    RunConflictError,
)
from payroll_run_engine.models import Employee, PayrollLineItem, PayrollRun, TimeTrackingConfig
from payroll_run_engine.models.base import utcnow
from payroll_run_engine.providers.bracket_tables import SqlBracketTableSource, StaticBracketTableSource
from payroll_run_engine.services.state_machine import PayrollRunStatus

JAN_START = date(2025, 1, 1)
JAN_END = date(2025, 1, 31)
FIRST_MONDAY = date(2025, 1, 6)

FUTURE_TABLES = BracketTableSet(
    version="CI-2030",
    effective_start=date(2030, 1, 1),
    effective_end=None,
    minimum_wage=Decimal("75000"),
    contribution_a=CNPS_PENSION_BRACKETS,
    contribution_b=CMU_BRACKETS,
    income_tax=ITS_2024_BRACKETS,
)


class FailingRoster:
    """Roster provider whose upstream is down."""

    async def list_active_employees(self, tenant_id, as_of_date, period_start):
        raise RosterUnavailableError(tenant_id, "HR service timeout")


async def line_item_count(session, run_id) -> int:
    result = await session.execute(
        select(func.count()).select_from(PayrollLineItem).where(PayrollLineItem.run_id == run_id)
    )
    return result.scalar_one()


class TestCreateRun:
    """Draft creation, numbering and overlap checks."""

    async def test_creates_draft_with_run_number(self, create_january_run):
        run = await create_january_run()

        assert run.status == PayrollRunStatus.DRAFT
        assert run.run_number == "PAY-2025-01"
        assert run.name == "Payroll January 2025"
        assert run.total_gross is None
        assert run.generation == 0

    async def test_overlapping_period_rejected(self, service, tenant, create_january_run):
        existing = await create_january_run()

        with pytest.raises(OverlappingRunError) as exc_info:
            await service.create_run(
                tenant_id=tenant.tenant_id,
                period_start=date(2025, 1, 15),
                period_end=date(2025, 2, 14),
                pay_date=date(2025, 2, 20),
            )

        assert exc_info.value.existing_run_id == existing.run_id

    async def test_inverted_period_rejected(self, service, tenant):
        with pytest.raises(ValueError):
            await service.create_run(
                tenant_id=tenant.tenant_id,
                period_start=JAN_END,
                period_end=JAN_START,
                pay_date=JAN_END,
            )

    async def test_second_run_in_same_month_gets_suffix(self, service, tenant):
        first = await service.create_run(tenant.tenant_id, date(2025, 1, 1), date(2025, 1, 15), date(2025, 1, 16))
        second = await service.create_run(tenant.tenant_id, date(2025, 1, 16), date(2025, 1, 31), date(2025, 2, 1))

        assert first.run_number == "PAY-2025-01"
        assert second.run_number == "PAY-2025-01-2"

    async def test_list_runs_most_recent_first(self, service, tenant, create_january_run):
        await create_january_run()
        await service.create_run(tenant.tenant_id, date(2025, 2, 1), date(2025, 2, 28), date(2025, 3, 5))

        runs = await service.list_runs(tenant.tenant_id)
        drafts = await service.list_runs(tenant.tenant_id, status="draft")
        approved = await service.list_runs(tenant.tenant_id, status="approved")

        assert [r.run_number for r in runs] == ["PAY-2025-02", "PAY-2025-01"]
        assert len(drafts) == 2
        assert approved == []

    async def test_runs_are_scoped_to_tenant(self, service, create_january_run):
        run = await create_january_run()

        with pytest.raises(PayrollRunNotFoundError):
            await service.get_run(run.run_id, tenant_id=uuid4())


class TestCalculateRun:
    """A full calculation pass."""

    async def test_january_scenario(self, service, make_employee, add_shifts, create_january_run):
        """100,000 base and a 46-hour week: six hours in the first tier."""
        employee = await make_employee(base_salary="100000")
        await add_shifts(employee, FIRST_MONDAY, 5, "9.2")
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        assert run.status == PayrollRunStatus.CALCULATED
        assert len(run.line_items) == 1
        line = run.line_items[0]
        assert line.total_hours == Decimal("46")
        assert line.hours_41_to_46 == Decimal("6")
        assert line.hours_above_46 == Decimal("0")
        assert line.days_worked == 5
        assert line.overtime_pay == Decimal("3981")
        assert line.gross_salary == Decimal("103981")
        assert line.contribution_a == Decimal("6551")
        assert line.contribution_b == Decimal("1000")
        assert line.income_tax == Decimal("4637")
        assert line.net_salary == Decimal("91793")
        assert line.net_salary == line.gross_salary - line.total_deductions
        assert line.total_employer_cost == Decimal("117913")
        assert line.bracket_version == "CI-2024"
        assert line.generation == 1

    async def test_totals_and_snapshots(self, service, make_employee, create_january_run):
        await make_employee(base_salary="300000", last_name="Kouassi")
        await make_employee(base_salary="150000", allowances="25000", last_name="Traoré")
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        assert run.employee_count == 2
        assert run.error_count == 0
        assert run.is_incomplete is False
        assert run.total_gross == sum(li.gross_salary for li in run.line_items)
        assert run.total_net == sum(li.net_salary for li in run.line_items)
        assert run.total_deductions == run.total_gross - run.total_net
        assert run.total_contribution_a == sum(li.contribution_a for li in run.line_items)
        assert run.total_income_tax == sum(li.income_tax for li in run.line_items)
        assert run.total_employer_cost == sum(li.total_employer_cost for li in run.line_items)
        assert run.calculated_at is not None
        assert [li.employee_name for li in run.line_items] == ["Employé Kouassi", "Employé Traoré"]
        assert run.line_items[1].taxable_gross == Decimal("150000")

    async def test_employee_errors_do_not_fail_the_run(self, service, make_employee, create_january_run):
        await make_employee(base_salary="300000")
        low = await make_employee(base_salary="60000")
        unconfigured = await make_employee(base_salary="200000", configured=False)
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.employee_count == 1
        assert run.error_count == 2
        assert run.is_incomplete is True
        codes = {e.employee_id: e.error_code for e in run.errors}
        assert codes == {
            low.employee_id: "BELOW_MINIMUM_WAGE",
            unconfigured.employee_id: "DATA_INCOMPLETE",
        }

        report = await service.get_status(run.run_id)
        assert report.message == "1 of 3 employees calculated, 2 skipped"
        assert report.processed == report.total == 3

    async def test_holiday_and_sunday_hours(
        self, service, make_employee, add_shifts, create_january_run, new_year_holiday
    ):
        employee = await make_employee(base_salary="173330")
        await add_shifts(employee, date(2025, 1, 1), 1, "8")  # Wednesday, New Year
        await add_shifts(employee, date(2025, 1, 12), 1, "4")  # Sunday
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        line = run.line_items[0]
        assert line.public_holiday_hours == Decimal("8")
        assert line.sunday_hours == Decimal("4")
        # 8h x 1000 x 1.75 + 4h x 1000 x 1.75
        assert line.overtime_pay == Decimal("21000")

    async def test_employer_cost_and_family_quotient(self, service, make_employee, create_january_run):
        await make_employee(base_salary="300000", fiscal_parts="2")
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        (line,) = run.line_items
        assert line.fiscal_parts == Decimal("2")
        assert line.income_tax == Decimal("24000")
        assert line.employer_contribution_a == Decimal("28525")
        assert line.employer_contribution_b == Decimal("500")
        assert line.total_employer_cost == Decimal("329025")
        assert run.total_net == Decimal("256100")
        assert run.total_employer_cost == Decimal("329025")

    async def test_employee_weekly_threshold(self, service, make_employee, add_shifts, create_january_run):
        """A 44-hour week is regular time for an employee on a 44-hour threshold."""
        employee = await make_employee(base_salary="100000", weekly_hours_threshold="44")
        await add_shifts(employee, FIRST_MONDAY, 5, "8.8")
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        (line,) = run.line_items
        assert line.total_hours == Decimal("44")
        assert line.hours_41_to_46 == Decimal("0")
        assert line.overtime_pay == Decimal("0")

    async def test_brackets_follow_the_run_tenant(self, make_service, session, senegal_tenant):
        """70,000 clears the second country's minimum wage but not the default one."""
        employee = Employee(
            tenant_id=senegal_tenant.tenant_id,
            employee_number="SN-001",
            first_name="Fatou",
            last_name="Diop",
            base_salary=Decimal("70000"),
            hire_date=date(2020, 1, 1),
        )
        session.add(employee)
        await session.flush()
        session.add(TimeTrackingConfig(employee_id=employee.employee_id))
        await session.commit()
        service = make_service(brackets=SqlBracketTableSource(session, "CI"))
        run = await service.create_run(senegal_tenant.tenant_id, JAN_START, JAN_END, date(2025, 2, 5))

        run = await service.calculate_run(run.run_id)

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.error_count == 0
        (line,) = run.line_items
        assert line.bracket_version == "SN-2024"

    async def test_roster_respects_hire_and_termination(self, service, make_employee, create_january_run):
        await make_employee()
        await make_employee(termination_date=date(2025, 1, 20), status="terminated")
        await make_employee(termination_date=date(2024, 12, 31), status="terminated")
        await make_employee(hire_date=date(2025, 2, 1))
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        assert run.employee_count == 2

    async def test_empty_roster_calculates_zero_totals(self, service, tenant, create_january_run):
        run = await create_january_run()

        run = await service.calculate_run(run.run_id)

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.employee_count == 0
        assert run.total_gross == Decimal("0")


class TestRecalculation:
    """Replacing a calculated generation."""

    async def test_recalculation_is_idempotent(self, service, session, make_employee, add_shifts, create_january_run):
        for base in ("100000", "250000", "900000"):
            employee = await make_employee(base_salary=base)
            await add_shifts(employee, FIRST_MONDAY, 5, "9.6")
        run = await create_january_run()

        first = await service.calculate_run(run.run_id)
        first_hashes = {li.employee_id: li.line_hash for li in first.line_items}
        first_total = first.total_net

        second = await service.recalculate_run(run.run_id)

        assert {li.employee_id: li.line_hash for li in second.line_items} == first_hashes
        assert second.total_net == first_total
        assert second.generation == 2
        assert all(li.generation == 2 for li in second.line_items)
        assert await line_item_count(session, run.run_id) == 3

    async def test_recalculate_picks_up_new_time_entries(
        self, service, make_employee, add_shifts, create_january_run
    ):
        employee = await make_employee(base_salary="173330")
        run = await create_january_run()
        await service.calculate_run(run.run_id)

        await add_shifts(employee, FIRST_MONDAY, 5, "9")
        run = await service.recalculate_run(run.run_id)

        assert run.line_items[0].hours_41_to_46 == Decimal("5")

    async def test_claim_clears_previous_totals(self, service, make_service, make_employee, create_january_run):
        await make_employee()
        run_id = (await create_january_run()).run_id
        await service.calculate_run(run_id)

        await make_service()._claim(run_id, (PayrollRunStatus.CALCULATED,))

        run = await service.get_run(run_id)
        assert run.status == PayrollRunStatus.CALCULATING
        assert run.total_gross is None
        assert run.total_net is None
        assert run.total_employer_cost is None
        # The previous generation stays until the new one is swapped in
        assert len(run.line_items) == 1

    async def test_recalculate_requires_calculated(self, service, create_january_run):
        run = await create_january_run()

        with pytest.raises(InvalidTransitionError):
            await service.recalculate_run(run.run_id)

    async def test_calculate_twice_is_rejected(self, service, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        await service.calculate_run(run.run_id)

        with pytest.raises(InvalidTransitionError):
            await service.calculate_run(run.run_id)


class TestConcurrency:
    """Only one pass per run at a time."""

    async def test_in_flight_run_rejects_calculate(self, service, make_service, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        other = make_service()

        # Another worker claims the run first
        await other._claim(run.run_id, (PayrollRunStatus.DRAFT, PayrollRunStatus.FAILED))

        with pytest.raises(RunConflictError):
            await service.calculate_run(run.run_id)

    async def test_second_claim_conflicts(self, make_service, create_january_run):
        run = await create_january_run()
        first, second = make_service(), make_service()
        allowed = (PayrollRunStatus.DRAFT, PayrollRunStatus.FAILED)

        await first._claim(run.run_id, allowed)

        with pytest.raises(RunConflictError):
            await second._claim(run.run_id, allowed)

    async def test_status_reports_honest_progress(self, service, session, progress, create_january_run):
        run = await create_january_run()
        await session.execute(
            update(PayrollRun).where(PayrollRun.run_id == run.run_id).values(status="calculating")
        )
        await session.commit()
        progress.start(run.run_id, 10)
        for _ in range(3):
            progress.advance(run.run_id)

        report = await service.get_status(run.run_id)

        assert report.status == "calculating"
        assert (report.processed, report.total) == (3, 10)
        assert report.progress_percent == 30
        assert report.message == "3 of 10 employees processed"


    async def test_stale_claim_is_taken_over(self, make_service, session, make_employee, create_january_run):
        await make_employee()
        run_id = (await create_january_run()).run_id
        # A pass that died two hours ago
        await session.execute(
            update(PayrollRun)
            .where(PayrollRun.run_id == run_id)
            .values(status="calculating", claimed_at=utcnow() - timedelta(hours=2))
        )
        await session.commit()

        run = await make_service(claim_timeout=timedelta(hours=1)).calculate_run(run_id)

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.employee_count == 1
        assert run.generation == 1

    async def test_claim_timeout_is_configurable(self, make_service, create_january_run):
        run_id = (await create_january_run()).run_id
        allowed = (PayrollRunStatus.DRAFT, PayrollRunStatus.FAILED)
        await make_service()._claim(run_id, allowed)

        with pytest.raises(RunConflictError):
            await make_service(claim_timeout=timedelta(hours=1))._claim(run_id, allowed)
        await make_service(claim_timeout=timedelta(microseconds=1))._claim(run_id, allowed)

    async def test_taken_over_pass_cannot_commit_or_fail_the_run(
        self, make_service, session, make_employee, create_january_run
    ):
        await make_employee()
        run_id = (await create_january_run()).run_id
        stale_stamp = utcnow() - timedelta(hours=2)
        await session.execute(
            update(PayrollRun)
            .where(PayrollRun.run_id == run_id)
            .values(status="calculating", claimed_at=stale_stamp)
        )
        await session.commit()
        await make_service(claim_timeout=timedelta(hours=1)).calculate_run(run_id)
        late = make_service()

        with pytest.raises(RunConflictError):
            await late._commit_pass(run_id, CalculationPassResult(), stale_stamp)
        await late._mark_failed(run_id, "late failure", stale_stamp)

        run = await late.get_run(run_id)
        assert run.status == PayrollRunStatus.CALCULATED
        assert run.failure_reason is None
        assert run.generation == 1
        assert len(run.line_items) == 1


class TestFailures:
    """Systemic failures and invariant violations."""

    async def test_missing_bracket_tables_fail_the_run(self, make_service, session, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        service = make_service(brackets=StaticBracketTableSource([FUTURE_TABLES]))

        run = await service.calculate_run(run.run_id)

        assert run.status == PayrollRunStatus.FAILED
        assert "No statutory bracket table" in run.failure_reason
        assert run.total_gross is None
        assert await line_item_count(session, run.run_id) == 0

    async def test_roster_failure_removes_previous_generation(
        self, service, make_service, session, make_employee, create_january_run
    ):
        await make_employee()
        run = await create_january_run()
        await service.calculate_run(run.run_id)
        assert await line_item_count(session, run.run_id) == 1

        run = await make_service(roster=FailingRoster()).recalculate_run(run.run_id)

        assert run.status == PayrollRunStatus.FAILED
        assert "HR service timeout" in run.failure_reason
        assert run.employee_count == 0
        assert run.total_net is None
        assert await line_item_count(session, run.run_id) == 0

    async def test_failed_run_can_be_retried(self, service, make_service, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        await make_service(roster=FailingRoster()).calculate_run(run.run_id)

        run = await service.calculate_run(run.run_id)

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.failure_reason is None
        assert run.employee_count == 1

    async def test_invariant_violation_propagates(
        self, service, session, make_employee, create_january_run, monkeypatch
    ):
        def broken(line, deductions, employer=None):
            raise InvariantViolationError(line.employee_id, "net does not reconcile")

        monkeypatch.setattr(LineItemBuilder, "verify_reconciliation", staticmethod(broken))
        await make_employee()
        run_id = (await create_january_run()).run_id

        with pytest.raises(InvariantViolationError):
            await service.calculate_run(run_id)

        report = await service.get_status(run_id)
        assert report.status == PayrollRunStatus.FAILED
        assert "net does not reconcile" in report.failure_reason
        assert await line_item_count(session, run_id) == 0


class TestApprovalAndPayment:
    """Approval, payment, deletion and immutability."""

    async def test_approve_and_pay(self, service, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        await service.calculate_run(run.run_id)
        approver = uuid4()

        run = await service.approve_run(run.run_id, approver_id=approver)
        assert run.status == PayrollRunStatus.APPROVED
        assert run.approved_by == approver
        assert run.approved_at is not None

        run = await service.mark_paid(run.run_id)
        assert run.status == PayrollRunStatus.PAID
        assert run.paid_at is not None

    async def test_approve_requires_calculated(self, service, create_january_run):
        run = await create_january_run()

        with pytest.raises(InvalidTransitionError):
            await service.approve_run(run.run_id)

    async def test_mark_paid_requires_approved(self, service, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        await service.calculate_run(run.run_id)

        with pytest.raises(InvalidTransitionError):
            await service.mark_paid(run.run_id)

    async def test_incomplete_run_needs_explicit_approval(self, service, make_employee, create_january_run):
        await make_employee()
        await make_employee(base_salary="50000")
        run = await create_january_run()
        await service.calculate_run(run.run_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.approve_run(run.run_id)
        assert "calculation errors" in str(exc_info.value)

        run = await service.approve_run(run.run_id, allow_incomplete=True)
        assert run.status == PayrollRunStatus.APPROVED

    async def test_run_without_line_items_cannot_be_approved(self, service, create_january_run):
        run = await create_january_run()
        await service.calculate_run(run.run_id)

        with pytest.raises(InvalidTransitionError):
            await service.approve_run(run.run_id)

    async def test_approved_line_items_are_immutable(self, service, session, make_employee, create_january_run):
        await make_employee()
        run_id = (await create_january_run()).run_id
        await service.calculate_run(run_id)
        await service.approve_run(run_id)

        run = await service.get_run(run_id)
        run.line_items[0].net_salary = Decimal("1")
        with pytest.raises(ImmutableRunError):
            await session.commit()
        await session.rollback()

        run = await service.get_run(run_id)
        run.total_net = Decimal("0")
        with pytest.raises(ImmutableRunError):
            await session.commit()
        await session.rollback()

    async def test_approved_run_cannot_be_recalculated_or_deleted(
        self, service, make_employee, create_january_run
    ):
        await make_employee()
        run = await create_january_run()
        await service.calculate_run(run.run_id)
        await service.approve_run(run.run_id)

        with pytest.raises(InvalidTransitionError):
            await service.recalculate_run(run.run_id)
        with pytest.raises(ImmutableRunError):
            await service.delete_run(run.run_id)

    async def test_paid_run_is_frozen(self, service, session, make_employee, create_january_run):
        await make_employee()
        run = await create_january_run()
        await service.calculate_run(run.run_id)
        await service.approve_run(run.run_id)
        await service.mark_paid(run.run_id)

        run = await service.get_run(run.run_id)
        run.status = PayrollRunStatus.APPROVED.value
        with pytest.raises(ImmutableRunError):
            await session.commit()
        await session.rollback()

    async def test_delete_only_in_draft(self, service, session, make_employee, create_january_run):
        await make_employee()
        draft = await create_january_run()
        await service.calculate_run(draft.run_id)

        with pytest.raises(InvalidTransitionError):
            await service.delete_run(draft.run_id)

    async def test_delete_draft(self, service, create_january_run):
        run = await create_january_run()

        await service.delete_run(run.run_id)

        with pytest.raises(PayrollRunNotFoundError):
            await service.get_run(run.run_id)
