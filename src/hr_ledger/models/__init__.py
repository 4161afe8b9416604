"""ORM models."""

from hr_ledger.models.base import Base, as_utc, new_id, utcnow
from hr_ledger.models.employee import Employee
from hr_ledger.models.jobs import AuditEvent, JobRunLog, JobRunStatus, JobRunType
from hr_ledger.models.leave import (
    AccrualFrequency,
    CarryForwardPolicy,
    EntitlementRule,
    HolidayCalendarEntry,
    LeaveBalance,
    LeaveBalanceTransaction,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    RoundingMethod,
    TransactionType,
)
from hr_ledger.models.payroll import (
    CompanySettings,
    InsuranceBracket,
    PayrollRun,
    PayrollRunStatus,
    PayslipDetail,
    PayslipStatus,
    Refund,
    RefundStatus,
    TaxBracket,
    TimeImpactRecord,
)
from hr_ledger.models.workflow import (
    ApprovalAction,
    ApprovalDecision,
    ApprovalInstance,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
    Delegation,
    DecisionKind,
)

__all__ = [
    "AccrualFrequency",
    "ApprovalAction",
    "ApprovalDecision",
    "ApprovalInstance",
    "ApprovalStatus",
    "ApprovalStep",
    "ApprovalWorkflow",
    "AuditEvent",
    "Base",
    "CarryForwardPolicy",
    "CompanySettings",
    "DecisionKind",
    "Delegation",
    "Employee",
    "EntitlementRule",
    "HolidayCalendarEntry",
    "InsuranceBracket",
    "JobRunLog",
    "JobRunStatus",
    "JobRunType",
    "LeaveBalance",
    "LeaveBalanceTransaction",
    "LeaveRequest",
    "LeaveRequestStatus",
    "LeaveType",
    "PayrollRun",
    "PayrollRunStatus",
    "PayslipDetail",
    "PayslipStatus",
    "Refund",
    "RefundStatus",
    "RoundingMethod",
    "TaxBracket",
    "TimeImpactRecord",
    "TransactionType",
    "as_utc",
    "new_id",
    "utcnow",
]
