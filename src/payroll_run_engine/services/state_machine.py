"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from payroll_run_engine.errors import InvalidTransitionError


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    CALCULATING = "calculating"
    CALCULATED = "calculated"
    APPROVED = "approved"
    PAID = "paid"
    FAILED = "failed"


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → calculating
    - calculating → calculated | failed
    - failed → calculating (retry)
    - calculated → calculating (recalculate)
    - calculated → approved
    - approved → paid
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[PayrollRunStatus, list[PayrollRunStatus]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.CALCULATING],
        PayrollRunStatus.CALCULATING: [PayrollRunStatus.CALCULATED, PayrollRunStatus.FAILED],
        PayrollRunStatus.CALCULATED: [PayrollRunStatus.CALCULATING, PayrollRunStatus.APPROVED],
        PayrollRunStatus.APPROVED: [PayrollRunStatus.PAID],
        PayrollRunStatus.PAID: [],  # Terminal state
        PayrollRunStatus.FAILED: [PayrollRunStatus.CALCULATING],
    }

    # Statuses a calculation pass may be claimed from
    CALCULATION_ALLOWED = {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.FAILED,
        PayrollRunStatus.CALCULATED,
    }

    # Statuses where the run and its line items are frozen
    IMMUTABLE = {
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.PAID,
    }

    # Statuses where totals are populated
    TOTALS_AVAILABLE = {
        PayrollRunStatus.CALCULATED,
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        try:
            allowed = cls.VALID_TRANSITIONS[PayrollRunStatus(from_status)]
            return PayrollRunStatus(to_status) in allowed
        except ValueError:
            return False

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str, reason: str | None = None) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(_value(from_status), _value(to_status), reason)

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def is_immutable(cls, status: str) -> bool:
        """Check if the run and its line items are frozen."""
        return status in cls.IMMUTABLE

    @classmethod
    def has_totals(cls, status: str) -> bool:
        return status in cls.TOTALS_AVAILABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[PayrollRunStatus]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(PayrollRunStatus(current_status), []))


def _value(status: str) -> str:
    return status.value if isinstance(status, PayrollRunStatus) else str(status)
