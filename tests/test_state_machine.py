"""Tests for payroll run state machine."""

import pytest

from payroll_run_engine.errors import InvalidTransitionError
from payroll_run_engine.services.state_machine import (
    PayrollRunStateMachine,
    PayrollRunStatus,
)


class TestPayrollRunStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        assert PayrollRunStateMachine.can_transition("draft", "calculating") is True
        assert PayrollRunStateMachine.can_transition("calculating", "calculated") is True
        assert PayrollRunStateMachine.can_transition("calculating", "failed") is True

        # retry and recalculation
        assert PayrollRunStateMachine.can_transition("failed", "calculating") is True
        assert PayrollRunStateMachine.can_transition("calculated", "calculating") is True

        assert PayrollRunStateMachine.can_transition("calculated", "approved") is True
        assert PayrollRunStateMachine.can_transition("approved", "paid") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip calculation
        assert PayrollRunStateMachine.can_transition("draft", "calculated") is False
        assert PayrollRunStateMachine.can_transition("draft", "approved") is False

        # Approved runs can't be recalculated
        assert PayrollRunStateMachine.can_transition("approved", "calculating") is False
        assert PayrollRunStateMachine.can_transition("approved", "calculated") is False

        # Failed runs can't be approved
        assert PayrollRunStateMachine.can_transition("failed", "approved") is False

        # Paid is terminal
        assert PayrollRunStateMachine.can_transition("paid", "draft") is False
        assert PayrollRunStateMachine.can_transition("paid", "calculating") is False

    def test_unknown_status_is_not_transitionable(self):
        assert PayrollRunStateMachine.can_transition("bogus", "calculating") is False
        assert PayrollRunStateMachine.can_transition("draft", "bogus") is False

    def test_every_status_has_a_transition_entry(self):
        """The transition table is exhaustive."""
        assert set(PayrollRunStateMachine.VALID_TRANSITIONS) == set(PayrollRunStatus)

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrollRunStateMachine.validate_transition("draft", PayrollRunStatus.APPROVED)

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "approved"

    def test_immutable_statuses(self):
        assert PayrollRunStateMachine.is_immutable("approved") is True
        assert PayrollRunStateMachine.is_immutable("paid") is True
        assert PayrollRunStateMachine.is_immutable("calculated") is False
        assert PayrollRunStateMachine.is_immutable("draft") is False

    def test_totals_available(self):
        assert PayrollRunStateMachine.has_totals("calculated") is True
        assert PayrollRunStateMachine.has_totals("draft") is False
        assert PayrollRunStateMachine.has_totals("failed") is False

    def test_get_next_statuses(self):
        assert PayrollRunStateMachine.get_next_statuses("calculated") == [
            PayrollRunStatus.CALCULATING,
            PayrollRunStatus.APPROVED,
        ]
        assert PayrollRunStateMachine.get_next_statuses("paid") == []
