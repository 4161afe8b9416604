"""Tests for status state machines."""

from types import SimpleNamespace

import pytest

from hr_ledger.exceptions import InvalidTransitionError
from hr_ledger.services.state_machine import (
    ApprovalStateMachine,
    JobRunStateMachine,
    LeaveRequestStateMachine,
    PayrollRunStateMachine,
    PayslipStateMachine,
)


class TestPayrollRunStateMachine:
    """Test payroll run transitions."""

    def test_valid_transitions(self):
        assert PayrollRunStateMachine.can_transition("draft", "calculated") is True
        assert PayrollRunStateMachine.can_transition("draft", "partial") is True
        assert PayrollRunStateMachine.can_transition("partial", "calculated") is True
        assert PayrollRunStateMachine.can_transition("calculated", "calculated") is True
        assert PayrollRunStateMachine.can_transition("calculated", "pending_approval") is True
        assert PayrollRunStateMachine.can_transition("pending_approval", "approved") is True
        assert PayrollRunStateMachine.can_transition("pending_approval", "rejected") is True
        assert PayrollRunStateMachine.can_transition("rejected", "draft") is True
        assert PayrollRunStateMachine.can_transition("approved", "paid") is True

    def test_invalid_transitions(self):
        # A partial run cannot be submitted
        assert PayrollRunStateMachine.can_transition("partial", "pending_approval") is False
        # Can't skip approval
        assert PayrollRunStateMachine.can_transition("calculated", "approved") is False
        assert PayrollRunStateMachine.can_transition("calculated", "paid") is False
        # Paid is terminal
        assert PayrollRunStateMachine.can_transition("paid", "draft") is False
        assert PayrollRunStateMachine.is_terminal("paid") is True

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrollRunStateMachine.validate_transition("draft", "paid")

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "paid"
        assert exc_info.value.status_code == 409

    def test_can_calculate(self):
        assert PayrollRunStateMachine.can_calculate("draft") is True
        assert PayrollRunStateMachine.can_calculate("calculated") is True
        assert PayrollRunStateMachine.can_calculate("partial") is True
        assert PayrollRunStateMachine.can_calculate("pending_approval") is False
        assert PayrollRunStateMachine.can_calculate("approved") is False
        assert PayrollRunStateMachine.can_calculate("paid") is False

    def test_results_immutable_once_submitted(self):
        assert PayrollRunStateMachine.are_results_immutable("pending_approval") is True
        assert PayrollRunStateMachine.are_results_immutable("paid") is True
        assert PayrollRunStateMachine.are_results_immutable("draft") is False

    def test_get_next_statuses(self):
        assert set(PayrollRunStateMachine.get_next_statuses("pending_approval")) == {
            "approved",
            "rejected",
        }
        assert PayrollRunStateMachine.get_next_statuses("paid") == []


class TestLeaveRequestStateMachine:
    def test_pending_can_be_decided_or_cancelled(self):
        for target in ("approved", "rejected", "cancelled"):
            assert LeaveRequestStateMachine.can_transition("pending", target) is True

    def test_only_approved_can_be_reversed(self):
        assert LeaveRequestStateMachine.can_transition("approved", "reversed") is True
        assert LeaveRequestStateMachine.can_transition("pending", "reversed") is False
        assert LeaveRequestStateMachine.can_transition("rejected", "reversed") is False

    def test_terminal_statuses(self):
        for status in ("rejected", "cancelled", "reversed"):
            assert LeaveRequestStateMachine.is_terminal(status) is True
        assert LeaveRequestStateMachine.is_terminal("approved") is False

    def test_transition_updates_entity(self):
        request = SimpleNamespace(status="pending")
        previous = LeaveRequestStateMachine.transition(request, "approved")

        assert previous == "pending"
        assert request.status == "approved"

    def test_transition_leaves_entity_untouched_on_error(self):
        request = SimpleNamespace(status="cancelled")
        with pytest.raises(InvalidTransitionError):
            LeaveRequestStateMachine.transition(request, "approved")
        assert request.status == "cancelled"


class TestPayslipStateMachine:
    def test_calculated_payslip_can_be_recomputed_or_paid(self):
        assert PayslipStateMachine.can_transition("calculated", "calculated") is True
        assert PayslipStateMachine.can_transition("calculated", "paid") is True
        assert PayslipStateMachine.can_transition("error", "calculated") is True

    def test_error_payslip_cannot_be_paid(self):
        assert PayslipStateMachine.can_transition("error", "paid") is False
        assert PayslipStateMachine.can_transition("pending", "paid") is False


class TestApprovalAndJobStateMachines:
    def test_approval_decided_once(self):
        assert ApprovalStateMachine.can_transition("pending", "approved") is True
        assert ApprovalStateMachine.is_terminal("approved") is True
        assert ApprovalStateMachine.is_terminal("rejected") is True

    def test_job_run_finalized_once(self):
        job = SimpleNamespace(status="running")
        JobRunStateMachine.transition(job, "partial")

        with pytest.raises(InvalidTransitionError):
            JobRunStateMachine.transition(job, "success")
