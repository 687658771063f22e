"""Payroll run service - main orchestrator for payroll runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_run_engine.calculators.constants import PayConstants
from payroll_run_engine.calculators.deductions import StatutoryDeductionCalculator
from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.overtime import OvertimeAggregator
from payroll_run_engine.calculators.types import (
    CalculationPassResult,
    EmployeeFailure,
    EmployeeRecord,
    EmployeeTimeData,
    LineItemCandidate,
)
from payroll_run_engine.config import get_settings
from payroll_run_engine.errors import (
    CommitFailedError,
    EmployeeCalculationError,
    ImmutableRunError,
    InvalidTransitionError,
    OverlappingRunError,
    PayrollRunNotFoundError,
    RunConflictError,
    SystemicCalculationError,
)
from payroll_run_engine.models import PayrollLineItem, PayrollRun, PayrollRunError
from payroll_run_engine.models.base import utcnow
from payroll_run_engine.providers.bracket_tables import BracketTableSource, StaticBracketTableSource
from payroll_run_engine.providers.roster import RosterProvider, SqlRosterProvider
from payroll_run_engine.providers.time_tracking import SqlTimeTrackingSource, TimeTrackingSource
from payroll_run_engine.services.immutability import install_immutability_guard
from payroll_run_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus
from payroll_run_engine.services.worker_pool import (
    ProgressTracker,
    WorkerPool,
    get_progress_tracker,
    get_worker_pool,
)

logger = logging.getLogger(__name__)

MAX_FAILURE_REASON = 2000

RUN_TOTALS = (
    "total_gross",
    "total_deductions",
    "total_net",
    "total_contribution_a",
    "total_contribution_b",
    "total_income_tax",
    "total_employer_cost",
)


@dataclass(frozen=True)
class RunStatusReport:
    """Status of a run with pass progress."""

    run_id: UUID
    status: str
    processed: int
    total: int
    employee_count: int
    error_count: int
    failure_reason: str | None

    @property
    def is_incomplete(self) -> bool:
        return self.error_count > 0

    @property
    def progress_percent(self) -> int:
        if self.total <= 0:
            return 0
        return int(self.processed * 100 / self.total)

    @property
    def message(self) -> str:
        if self.status == PayrollRunStatus.CALCULATING:
            return f"{self.processed} of {self.total} employees processed"
        if self.status == PayrollRunStatus.FAILED:
            return f"Calculation failed: {self.failure_reason}"
        if self.status == PayrollRunStatus.DRAFT:
            return "Not calculated yet"
        total = self.employee_count + self.error_count
        return f"{self.employee_count} of {total} employees calculated, {self.error_count} skipped"


class PayrollRunService:
    """Service for managing the payroll run lifecycle.

    Operations:
    - create_run: Open a draft run for a tenant and period
    - calculate_run / recalculate_run: Compute every employee and commit
      line items and totals in one transaction
    - approve_run: Freeze a calculated run
    - mark_paid: Record payment of an approved run
    - delete_run: Remove a draft run

    Lifecycle commands commit their own transactions. A calculation pass
    commits twice: once for the claim, once for the results.

    The claim stamps ``claimed_at``. A run left in calculating by a pass
    that died is taken over by the next calculate or recalculate once its
    stamp is older than ``claim_timeout``. Only the holder of the current
    stamp can commit results or fail the run.
    """

    def __init__(
        self,
        session: AsyncSession,
        roster: RosterProvider | None = None,
        time_tracking: TimeTrackingSource | None = None,
        brackets: BracketTableSource | None = None,
        worker_pool: WorkerPool | None = None,
        progress: ProgressTracker | None = None,
        aggregator: OvertimeAggregator | None = None,
        constants: PayConstants | None = None,
        claim_timeout: timedelta | None = None,
    ):
        self.session = session
        self.roster = roster or SqlRosterProvider(session)
        self.time_tracking = time_tracking or SqlTimeTrackingSource(
            session, get_settings().default_country_code
        )
        self.brackets = brackets or StaticBracketTableSource()
        self.worker_pool = worker_pool or get_worker_pool()
        self.progress = progress or get_progress_tracker()
        self.aggregator = aggregator or OvertimeAggregator()
        self.constants = constants or PayConstants()
        self.claim_timeout = claim_timeout or timedelta(
            seconds=get_settings().claim_timeout_seconds
        )
        install_immutability_guard()

    # ===== Queries =====

    async def get_run(self, run_id: UUID, tenant_id: UUID | None = None) -> PayrollRun:
        """Load a run with its line items and errors.

        Raises:
            PayrollRunNotFoundError: If the run does not exist for this tenant.
        """
        stmt = (
            select(PayrollRun)
            .where(PayrollRun.run_id == run_id)
            .options(selectinload(PayrollRun.line_items), selectinload(PayrollRun.errors))
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            stmt = stmt.where(PayrollRun.tenant_id == tenant_id)
        run = (await self.session.execute(stmt)).scalar_one_or_none()
        if run is None:
            raise PayrollRunNotFoundError(run_id)
        return run

    async def list_runs(
        self,
        tenant_id: UUID,
        status: str | None = None,
    ) -> list[PayrollRun]:
        stmt = (
            select(PayrollRun)
            .where(PayrollRun.tenant_id == tenant_id)
            .order_by(PayrollRun.period_start.desc(), PayrollRun.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(PayrollRun.status == PayrollRunStatus(status).value)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_status(self, run_id: UUID, tenant_id: UUID | None = None) -> RunStatusReport:
        """Report status and progress of a run."""
        stmt = select(PayrollRun).where(PayrollRun.run_id == run_id).execution_options(
            populate_existing=True
        )
        if tenant_id is not None:
            stmt = stmt.where(PayrollRun.tenant_id == tenant_id)
        run = (await self.session.execute(stmt)).scalar_one_or_none()
        if run is None:
            raise PayrollRunNotFoundError(run_id)

        processed = total = run.employee_count + run.error_count
        if run.status == PayrollRunStatus.CALCULATING:
            progress = self.progress.get(run_id)
            processed, total = (progress.processed, progress.total) if progress else (0, 0)
        elif run.status in (PayrollRunStatus.DRAFT, PayrollRunStatus.FAILED):
            processed = total = 0

        return RunStatusReport(
            run_id=run.run_id,
            status=run.status,
            processed=processed,
            total=total,
            employee_count=run.employee_count,
            error_count=run.error_count,
            failure_reason=run.failure_reason,
        )

    # ===== Lifecycle =====

    async def create_run(
        self,
        tenant_id: UUID,
        period_start: date,
        period_end: date,
        pay_date: date,
        name: str | None = None,
        created_by: UUID | None = None,
    ) -> PayrollRun:
        """Create a draft run.

        Raises:
            ValueError: If the period is inverted.
            OverlappingRunError: If another run of the tenant overlaps the period.
        """
        if period_end < period_start:
            raise ValueError(f"Period end {period_end} is before period start {period_start}")

        overlapping = (
            await self.session.execute(
                select(PayrollRun)
                .where(
                    PayrollRun.tenant_id == tenant_id,
                    PayrollRun.period_start <= period_end,
                    PayrollRun.period_end >= period_start,
                )
                .limit(1)
            )
        ).scalar_one_or_none()
        if overlapping is not None:
            raise OverlappingRunError(overlapping.run_id, overlapping.run_number)

        run = PayrollRun(
            tenant_id=tenant_id,
            run_number=await self._next_run_number(tenant_id, period_start),
            name=name or f"Payroll {period_start:%B %Y}",
            period_start=period_start,
            period_end=period_end,
            pay_date=pay_date,
            status=PayrollRunStatus.DRAFT.value,
            employee_count=0,
            error_count=0,
            generation=0,
            created_by=created_by,
        )
        self.session.add(run)
        await self.session.commit()
        logger.info("Created payroll run %s (%s) for tenant %s", run.run_id, run.run_number, tenant_id)
        return run

    async def _next_run_number(self, tenant_id: UUID, period_start: date) -> str:
        base = f"PAY-{period_start:%Y-%m}"
        count = (
            await self.session.execute(
                select(func.count())
                .select_from(PayrollRun)
                .where(PayrollRun.tenant_id == tenant_id, PayrollRun.run_number.like(f"{base}%"))
            )
        ).scalar_one()
        return base if count == 0 else f"{base}-{count + 1}"

    async def calculate_run(self, run_id: UUID, tenant_id: UUID | None = None) -> PayrollRun:
        """Calculate a draft or failed run."""
        return await self._calculate(
            run_id, (PayrollRunStatus.DRAFT, PayrollRunStatus.FAILED), tenant_id
        )

    async def recalculate_run(self, run_id: UUID, tenant_id: UUID | None = None) -> PayrollRun:
        """Replace the line items of a calculated run with a fresh pass."""
        return await self._calculate(run_id, (PayrollRunStatus.CALCULATED,), tenant_id)

    async def approve_run(
        self,
        run_id: UUID,
        approver_id: UUID | None = None,
        allow_incomplete: bool = False,
        tenant_id: UUID | None = None,
    ) -> PayrollRun:
        """Approve a calculated run, freezing it and its line items."""
        run = await self.get_run(run_id, tenant_id)
        PayrollRunStateMachine.validate_transition(run.status, PayrollRunStatus.APPROVED)

        if run.employee_count == 0:
            raise InvalidTransitionError(
                run.status, PayrollRunStatus.APPROVED.value, "Payroll run has no line items"
            )
        if run.is_incomplete and not allow_incomplete:
            raise InvalidTransitionError(
                run.status,
                PayrollRunStatus.APPROVED.value,
                f"{run.error_count} employee(s) have calculation errors",
            )

        run.status = PayrollRunStatus.APPROVED.value
        run.approved_by = approver_id
        run.approved_at = utcnow()
        await self.session.commit()
        logger.info("Approved payroll run %s by %s", run_id, approver_id)
        return run

    async def mark_paid(self, run_id: UUID, tenant_id: UUID | None = None) -> PayrollRun:
        run = await self.get_run(run_id, tenant_id)
        PayrollRunStateMachine.validate_transition(run.status, PayrollRunStatus.PAID)
        run.status = PayrollRunStatus.PAID.value
        run.paid_at = utcnow()
        await self.session.commit()
        logger.info("Marked payroll run %s as paid", run_id)
        return run

    async def delete_run(self, run_id: UUID, tenant_id: UUID | None = None) -> None:
        """Delete a draft run.

        Raises:
            ImmutableRunError: If the run is approved or paid.
            InvalidTransitionError: If the run is in any other non-draft status.
        """
        run = await self.get_run(run_id, tenant_id)
        if PayrollRunStateMachine.is_immutable(run.status):
            raise ImmutableRunError(run_id, run.status)
        if run.status != PayrollRunStatus.DRAFT:
            raise InvalidTransitionError(run.status, "deleted", "Only draft runs can be deleted")
        await self.session.delete(run)
        await self.session.commit()
        logger.info("Deleted draft payroll run %s", run_id)

    # ===== Calculation pass =====

    async def _calculate(
        self,
        run_id: UUID,
        allowed: Sequence[PayrollRunStatus],
        tenant_id: UUID | None,
    ) -> PayrollRun:
        run = await self.get_run(run_id, tenant_id)
        previous_status = run.status
        # A calculating run is only claimable once its stamp is stale; _claim decides
        if previous_status not in allowed and previous_status != PayrollRunStatus.CALCULATING:
            raise InvalidTransitionError(
                previous_status,
                PayrollRunStatus.CALCULATING.value,
                f"only allowed from {', '.join(s.value for s in allowed)}",
            )

        claimed_at = await self._claim(run_id, allowed)
        if previous_status == PayrollRunStatus.CALCULATING:
            logger.warning("Took over stale calculation of payroll run %s", run_id)
        else:
            logger.info("Claimed payroll run %s for calculation (was %s)", run_id, previous_status)

        self.progress.start(run_id, 0)
        try:
            result = await self._compute(run)
            await self._commit_pass(run_id, result, claimed_at)
        except RunConflictError:
            logger.warning("Payroll run %s was taken over by another pass", run_id)
            raise
        except SystemicCalculationError as e:
            logger.error("Payroll run %s failed: %s", run_id, e)
            await self._mark_failed(run_id, str(e), claimed_at)
        except Exception as e:
            # Invariant violations and unexpected errors fail the run and propagate
            logger.exception("Payroll run %s failed unexpectedly", run_id)
            await self._mark_failed(run_id, f"{type(e).__name__}: {e}", claimed_at)
            raise
        finally:
            self.progress.finish(run_id)

        return await self.get_run(run_id)

    async def _claim(self, run_id: UUID, allowed: Sequence[PayrollRunStatus]) -> datetime:
        """Check-and-set the run to calculating, committed before the pass.

        Returns the claim stamp the pass must hold to commit its results.
        """
        claimed_at = utcnow()
        stale = and_(
            PayrollRun.status == PayrollRunStatus.CALCULATING.value,
            or_(
                PayrollRun.claimed_at.is_(None),
                PayrollRun.claimed_at < claimed_at - self.claim_timeout,
            ),
        )
        result = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.run_id == run_id,
                or_(PayrollRun.status.in_([s.value for s in allowed]), stale),
            )
            .values(
                status=PayrollRunStatus.CALCULATING.value,
                claimed_at=claimed_at,
                failure_reason=None,
                **{name: None for name in RUN_TOTALS},
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            current = (
                await self.session.execute(
                    select(PayrollRun.status).where(PayrollRun.run_id == run_id)
                )
            ).scalar_one_or_none()
            if current is None:
                raise PayrollRunNotFoundError(run_id)
            if current == PayrollRunStatus.CALCULATING:
                raise RunConflictError(run_id)
            raise InvalidTransitionError(current, PayrollRunStatus.CALCULATING.value)
        await self.session.commit()
        return claimed_at

    @staticmethod
    def _held_by(run_id: UUID, claimed_at: datetime):
        """Rows still calculating under the given claim stamp."""
        return and_(
            PayrollRun.run_id == run_id,
            PayrollRun.status == PayrollRunStatus.CALCULATING.value,
            PayrollRun.claimed_at == claimed_at,
        )

    async def _compute(self, run: PayrollRun) -> CalculationPassResult:
        """Load inputs on the event loop, compute employees on the pool."""
        registry = await self.brackets.load_registry(run.tenant_id)
        registry.select(run.period_end)  # fail fast when no tables cover the period

        employees = await self.roster.list_active_employees(
            run.tenant_id, run.period_end, run.period_start
        )
        time_data = await self.time_tracking.load_time_data(
            run.tenant_id,
            [e.employee_id for e in employees],
            run.period_start,
            run.period_end,
        )
        self.progress.start(run.run_id, len(employees))
        logger.info("Calculating %d employees for run %s", len(employees), run.run_id)

        builder = LineItemBuilder(StatutoryDeductionCalculator(registry), self.constants)
        aggregator = self.aggregator
        period_start, period_end = run.period_start, run.period_end

        def compute_employee(employee: EmployeeRecord) -> LineItemCandidate | EmployeeFailure:
            data = time_data.get(employee.employee_id, EmployeeTimeData(employee.employee_id))
            try:
                attendance = aggregator.summarize(data, period_start, period_end)
                return builder.build_line_item(employee, attendance, period_end)
            except EmployeeCalculationError as e:
                return EmployeeFailure(
                    employee_id=employee.employee_id,
                    employee_name=employee.full_name,
                    code=e.code,
                    message=e.message,
                )

        outcomes = await self.worker_pool.map(
            compute_employee,
            employees,
            on_done=lambda: self.progress.advance(run.run_id),
        )

        result = CalculationPassResult()
        for outcome in outcomes:
            if isinstance(outcome, EmployeeFailure):
                logger.warning(
                    "Skipped employee %s in run %s: %s", outcome.employee_id, run.run_id, outcome.message
                )
                result.failures.append(outcome)
            else:
                result.line_items.append(outcome)
        logger.info("Run %s: %s", run.run_id, result.summary())
        return result

    async def _commit_pass(
        self, run_id: UUID, result: CalculationPassResult, claimed_at: datetime
    ) -> None:
        """Swap in the new line-item generation and totals atomically.

        Raises:
            RunConflictError: If another pass has taken over the claim.
        """
        try:
            # Bumping the generation under the claim locks the row for the swap
            bumped = await self.session.execute(
                update(PayrollRun)
                .where(self._held_by(run_id, claimed_at))
                .values(generation=PayrollRun.generation + 1)
                .execution_options(synchronize_session=False)
            )
            if bumped.rowcount == 0:
                await self.session.rollback()
                raise RunConflictError(run_id)
            run = await self.session.get(PayrollRun, run_id, populate_existing=True)
            if run is None:
                raise PayrollRunNotFoundError(run_id)
            generation = run.generation

            await self.session.execute(delete(PayrollLineItem).where(PayrollLineItem.run_id == run_id))
            await self.session.execute(delete(PayrollRunError).where(PayrollRunError.run_id == run_id))

            for line in result.line_items:
                self.session.add(_to_line_item(run_id, generation, line))
            for failure in result.failures:
                self.session.add(
                    PayrollRunError(
                        run_id=run_id,
                        employee_id=failure.employee_id,
                        employee_name=failure.employee_name,
                        error_code=failure.code,
                        message=failure.message,
                    )
                )

            totals = LineItemBuilder.sum_totals(result.line_items)
            for key, value in totals.items():
                setattr(run, key, value)
            run.employee_count = len(result.line_items)
            run.error_count = len(result.failures)
            run.engine_version = get_settings().engine_version
            run.failure_reason = None
            run.calculated_at = utcnow()
            run.status = PayrollRunStatus.CALCULATED.value

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise CommitFailedError(run_id, str(e)) from e

    async def _mark_failed(self, run_id: UUID, reason: str, claimed_at: datetime) -> None:
        """Roll back the pass and leave the run failed with no line items."""
        await self.session.rollback()
        failed = await self.session.execute(
            update(PayrollRun)
            .where(self._held_by(run_id, claimed_at))
            .values(
                status=PayrollRunStatus.FAILED.value,
                failure_reason=reason[:MAX_FAILURE_REASON],
                employee_count=0,
                error_count=0,
                **{name: None for name in RUN_TOTALS},
            )
            .execution_options(synchronize_session=False)
        )
        if failed.rowcount == 0:
            # Another pass holds the run now; its outcome stands
            await self.session.rollback()
            logger.warning("Payroll run %s was taken over; not marking it failed", run_id)
            return
        await self.session.execute(delete(PayrollLineItem).where(PayrollLineItem.run_id == run_id))
        await self.session.execute(delete(PayrollRunError).where(PayrollRunError.run_id == run_id))
        await self.session.commit()


def _to_line_item(run_id: UUID, generation: int, line: LineItemCandidate) -> PayrollLineItem:
    ot = line.overtime
    return PayrollLineItem(
        run_id=run_id,
        employee_id=line.employee_id,
        employee_name=line.employee_name,
        employee_number=line.employee_number,
        employment_type=line.employment_type,
        base_salary=line.base_salary,
        non_taxable_allowances=line.non_taxable_allowances,
        overtime_pay=line.overtime_pay,
        gross_salary=line.gross_salary,
        taxable_gross=line.taxable_gross,
        contribution_a=line.contribution_a,
        contribution_b=line.contribution_b,
        income_tax=line.income_tax,
        total_deductions=line.total_deductions,
        net_salary=line.net_salary,
        employer_contribution_a=line.employer_contribution_a,
        employer_contribution_b=line.employer_contribution_b,
        total_employer_cost=line.total_employer_cost,
        fiscal_parts=line.fiscal_parts,
        total_hours=line.total_hours,
        days_worked=line.days_worked,
        hours_41_to_46=ot.hours_41_to_46,
        hours_above_46=ot.hours_above_46,
        saturday_hours=ot.saturday,
        sunday_hours=ot.sunday,
        night_hours=ot.night_work,
        public_holiday_hours=ot.public_holiday,
        bracket_version=line.bracket_version,
        generation=generation,
        line_hash=line.line_hash,
    )
