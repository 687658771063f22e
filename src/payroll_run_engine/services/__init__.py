"""Payroll run services."""

from payroll_run_engine.services.immutability import install_immutability_guard
from payroll_run_engine.services.pay_run_service import PayrollRunService, RunStatusReport
from payroll_run_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus
from payroll_run_engine.services.worker_pool import ProgressTracker, WorkerPool

__all__ = [
    "install_immutability_guard",
    "PayrollRunService",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "ProgressTracker",
    "RunStatusReport",
    "WorkerPool",
]
