"""HR ledger services."""

from hr_ledger.services.accrual_service import AccrualService, JobOutcome
from hr_ledger.services.approval_service import ApprovalService
from hr_ledger.services.batch import BatchRunner, BatchSummary, ItemResult
from hr_ledger.services.leave_request_service import LeaveRequestService
from hr_ledger.services.ledger_service import (
    BalanceSnapshot,
    LeaveLedgerService,
    PostResult,
    fold_transactions,
)
from hr_ledger.services.payroll_run_service import PayrollRunService
from hr_ledger.services.state_machine import (
    ApprovalStateMachine,
    JobRunStateMachine,
    LeaveRequestStateMachine,
    PayrollRunStateMachine,
    PayslipStateMachine,
)

__all__ = [
    "AccrualService",
    "ApprovalService",
    "ApprovalStateMachine",
    "BalanceSnapshot",
    "BatchRunner",
    "BatchSummary",
    "ItemResult",
    "JobOutcome",
    "JobRunStateMachine",
    "LeaveLedgerService",
    "LeaveRequestService",
    "LeaveRequestStateMachine",
    "PayrollRunService",
    "PayrollRunStateMachine",
    "PayslipStateMachine",
    "PostResult",
    "fold_transactions",
]
