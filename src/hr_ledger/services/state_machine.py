"""Status state machines with transition validation.

Every status change in the service goes through one of these tables;
nothing assigns ``entity.status`` directly.
"""

from __future__ import annotations

from typing import Any, ClassVar

from hr_ledger.exceptions import InvalidTransitionError
from hr_ledger.models import (
    ApprovalStatus,
    JobRunStatus,
    LeaveRequestStatus,
    PayrollRunStatus,
    PayslipStatus,
)


class StateMachine:
    """Base class: subclasses declare ENTITY and VALID_TRANSITIONS."""

    ENTITY: ClassVar[str] = "entity"

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: ClassVar[dict[str, list[str]]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(
        cls, from_status: str, to_status: str, reason: str | None = None
    ) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(cls.ENTITY, from_status, to_status, reason)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(current_status, []))

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)

    @classmethod
    def transition(cls, entity: Any, to_status: str, reason: str | None = None) -> str:
        """Move ``entity.status`` to ``to_status``; returns the old status."""
        from_status = entity.status
        cls.validate_transition(from_status, to_status, reason)
        entity.status = to_status
        return from_status


class LeaveRequestStateMachine(StateMachine):
    """Leave request lifecycle.

    - pending → approved | rejected | cancelled
    - approved → reversed
    """

    ENTITY = "leave_request"

    VALID_TRANSITIONS = {
        LeaveRequestStatus.PENDING.value: [
            LeaveRequestStatus.APPROVED.value,
            LeaveRequestStatus.REJECTED.value,
            LeaveRequestStatus.CANCELLED.value,
        ],
        LeaveRequestStatus.APPROVED.value: [LeaveRequestStatus.REVERSED.value],
        LeaveRequestStatus.REJECTED.value: [],
        LeaveRequestStatus.CANCELLED.value: [],
        LeaveRequestStatus.REVERSED.value: [],
    }


class PayrollRunStateMachine(StateMachine):
    """Payroll run lifecycle.

    - draft → calculated | partial
    - calculated, partial → calculated | partial (recalculation)
    - calculated → pending_approval
    - pending_approval → approved | rejected
    - rejected → draft
    - approved → paid
    """

    ENTITY = "payroll_run"

    VALID_TRANSITIONS = {
        PayrollRunStatus.DRAFT.value: [
            PayrollRunStatus.CALCULATED.value,
            PayrollRunStatus.PARTIAL.value,
        ],
        PayrollRunStatus.CALCULATED.value: [
            PayrollRunStatus.CALCULATED.value,
            PayrollRunStatus.PARTIAL.value,
            PayrollRunStatus.PENDING_APPROVAL.value,
        ],
        PayrollRunStatus.PARTIAL.value: [
            PayrollRunStatus.CALCULATED.value,
            PayrollRunStatus.PARTIAL.value,
        ],
        PayrollRunStatus.PENDING_APPROVAL.value: [
            PayrollRunStatus.APPROVED.value,
            PayrollRunStatus.REJECTED.value,
        ],
        PayrollRunStatus.REJECTED.value: [PayrollRunStatus.DRAFT.value],
        PayrollRunStatus.APPROVED.value: [PayrollRunStatus.PAID.value],
        PayrollRunStatus.PAID.value: [],  # Terminal state
    }

    # Statuses where (re)calculation is allowed
    CALCULATION_ALLOWED = {
        PayrollRunStatus.DRAFT.value,
        PayrollRunStatus.CALCULATED.value,
        PayrollRunStatus.PARTIAL.value,
    }

    # Statuses where payslips are immutable
    RESULTS_IMMUTABLE = {
        PayrollRunStatus.PENDING_APPROVAL.value,
        PayrollRunStatus.APPROVED.value,
        PayrollRunStatus.PAID.value,
    }

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        return status in cls.RESULTS_IMMUTABLE


class PayslipStateMachine(StateMachine):
    ENTITY = "payslip"

    VALID_TRANSITIONS = {
        PayslipStatus.PENDING.value: [PayslipStatus.CALCULATED.value, PayslipStatus.ERROR.value],
        PayslipStatus.CALCULATED.value: [
            PayslipStatus.CALCULATED.value,
            PayslipStatus.ERROR.value,
            PayslipStatus.PAID.value,
        ],
        PayslipStatus.ERROR.value: [PayslipStatus.CALCULATED.value, PayslipStatus.ERROR.value],
        PayslipStatus.PAID.value: [],
    }


class ApprovalStateMachine(StateMachine):
    ENTITY = "approval_instance"

    VALID_TRANSITIONS = {
        ApprovalStatus.PENDING.value: [
            ApprovalStatus.APPROVED.value,
            ApprovalStatus.REJECTED.value,
        ],
        ApprovalStatus.APPROVED.value: [],
        ApprovalStatus.REJECTED.value: [],
    }


class JobRunStateMachine(StateMachine):
    """A job run is finalized exactly once."""

    ENTITY = "job_run"

    VALID_TRANSITIONS = {
        JobRunStatus.RUNNING.value: [
            JobRunStatus.SUCCESS.value,
            JobRunStatus.FAILED.value,
            JobRunStatus.PARTIAL.value,
        ],
        JobRunStatus.SUCCESS.value: [],
        JobRunStatus.FAILED.value: [],
        JobRunStatus.PARTIAL.value: [],
    }
