"""Payroll run API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from payroll_run_engine.api.dependencies import RunService, TenantId
from payroll_run_engine.api.schemas import (
    ApprovalRequest,
    ErrorResponse,
    PayrollRunCreate,
    PayrollRunDetailResponse,
    PayrollRunListResponse,
    PayrollRunResponse,
    RunStatusResponse,
)
from payroll_run_engine.services.state_machine import PayrollRunStatus

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Payroll Run CRUD
# ============================================================================


@router.post(
    "",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_payroll_run(
    service: RunService,
    tenant_id: TenantId,
    payload: PayrollRunCreate,
) -> PayrollRunResponse:
    """Create a new payroll run in draft status."""
    run = await service.create_run(
        tenant_id=tenant_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        pay_date=payload.pay_date,
        name=payload.name,
        created_by=payload.created_by,
    )
    return PayrollRunResponse.model_validate(run)


@router.get("", response_model=PayrollRunListResponse)
async def list_payroll_runs(
    service: RunService,
    tenant_id: TenantId,
    run_status: PayrollRunStatus | None = Query(None, alias="status"),
) -> PayrollRunListResponse:
    """List payroll runs of the tenant, most recent period first."""
    runs = await service.list_runs(tenant_id, run_status.value if run_status else None)
    return PayrollRunListResponse(
        items=[PayrollRunResponse.model_validate(r) for r in runs],
        total=len(runs),
    )


@router.get("/{run_id}", response_model=PayrollRunDetailResponse, responses=ERROR_RESPONSES)
async def get_payroll_run(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
) -> PayrollRunDetailResponse:
    """Get a payroll run with its line items and errors."""
    run = await service.get_run(run_id, tenant_id)
    return PayrollRunDetailResponse.model_validate(run)


@router.delete(
    "/{run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=ERROR_RESPONSES,
)
async def delete_payroll_run(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
) -> Response:
    """Delete a draft payroll run."""
    await service.delete_run(run_id, tenant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Calculation
# ============================================================================


@router.get("/{run_id}/status", response_model=RunStatusResponse, responses=ERROR_RESPONSES)
async def get_payroll_run_status(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
) -> RunStatusResponse:
    """Get run status and calculation progress."""
    report = await service.get_status(run_id, tenant_id)
    return RunStatusResponse.model_validate(report)


@router.post(
    "/{run_id}/calculate",
    response_model=PayrollRunDetailResponse,
    responses=ERROR_RESPONSES,
)
async def calculate_payroll_run(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
) -> PayrollRunDetailResponse:
    """Calculate a draft or failed run."""
    run = await service.calculate_run(run_id, tenant_id)
    return PayrollRunDetailResponse.model_validate(run)


@router.post(
    "/{run_id}/recalculate",
    response_model=PayrollRunDetailResponse,
    responses=ERROR_RESPONSES,
)
async def recalculate_payroll_run(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
) -> PayrollRunDetailResponse:
    """Replace the line items of a calculated run."""
    run = await service.recalculate_run(run_id, tenant_id)
    return PayrollRunDetailResponse.model_validate(run)


# ============================================================================
# Approval & payment
# ============================================================================


@router.post("/{run_id}/approve", response_model=PayrollRunResponse, responses=ERROR_RESPONSES)
async def approve_payroll_run(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
    payload: ApprovalRequest | None = None,
) -> PayrollRunResponse:
    """Approve a calculated run."""
    payload = payload or ApprovalRequest()
    run = await service.approve_run(
        run_id,
        approver_id=payload.approver_id,
        allow_incomplete=payload.allow_incomplete,
        tenant_id=tenant_id,
    )
    return PayrollRunResponse.model_validate(run)


@router.post("/{run_id}/mark-paid", response_model=PayrollRunResponse, responses=ERROR_RESPONSES)
async def mark_payroll_run_paid(
    run_id: UUID,
    service: RunService,
    tenant_id: TenantId,
) -> PayrollRunResponse:
    """Mark an approved run as paid."""
    run = await service.mark_paid(run_id, tenant_id)
    return PayrollRunResponse.model_validate(run)
