"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Schema for error response."""

    code: str
    kind: str
    detail: str
    details: dict[str, Any] | None = None


# ============================================================================
# Leave ledger schemas
# ============================================================================


class LeaveBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    balance_id: str
    employee_id: str
    leave_type_id: str
    entitled_days: Decimal
    accrued_days: Decimal
    taken_days: Decimal
    reserved_days: Decimal
    available_balance: Decimal
    max_balance_cap: Decimal | None = None
    carry_forward_cap: Decimal | None = None
    carried_forward_days: Decimal
    carry_forward_expires_on: date | None = None
    last_accrual_period: str | None = None
    version: int


class TransactionCreate(BaseModel):
    """Manual ledger posting (HR adjustment, encashment, retro correction)."""

    transaction_id: str = Field(min_length=1, max_length=128)
    leave_type_id: str
    amount: Decimal
    transaction_type: Literal[
        "accrual", "take", "adjustment", "encashment", "retro", "expiry", "reserve_release"
    ]
    reason: str | None = None
    request_id: str | None = None
    override: bool = False
    compensating: bool = False


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    employee_id: str
    leave_type_id: str
    amount: Decimal
    transaction_type: str
    request_id: str | None = None
    performed_by: str | None = None
    reason: str | None = None
    sequence: int
    created_at: datetime


class PostResponse(BaseModel):
    transaction_id: str
    is_new: bool
    transaction_type: str
    available_balance: Decimal


class BalanceCheckResponse(BaseModel):
    employee_id: str
    leave_type_id: str
    consistent: bool
    cached_available: Decimal
    folded_available: Decimal


# ============================================================================
# Leave request schemas
# ============================================================================


class LeaveRequestCreate(BaseModel):
    employee_id: str
    leave_type_id: str
    start_date: date
    end_date: date
    justification: str | None = None
    position_code: str | None = None


class LeaveRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: str
    employee_id: str
    leave_type_id: str
    rule_id: str | None = None
    start_date: date
    end_date: date
    requested_days: Decimal
    net_days: Decimal
    justification: str | None = None
    status: str
    approval_instance_id: str | None = None
    created_at: datetime


class ReviewRequest(BaseModel):
    """Approval action on a leave request or payroll run."""

    action: Literal["approve", "reject", "delegate", "override"]
    reason: str | None = None
    delegate_id: str | None = None
    delegate_until: datetime | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


# ============================================================================
# Job schemas
# ============================================================================


class AccrualJobRequest(BaseModel):
    period: str = Field(examples=["2024-03", "2024-Q1", "2024"])
    job_type: Literal["monthly_accrual", "quarterly_accrual", "annual_accrual"]
    dry_run: bool = False


class YearEndJobRequest(BaseModel):
    year: int = Field(ge=1900, le=9999)
    dry_run: bool = False


class CarryForwardExpiryRequest(BaseModel):
    as_of: date
    dry_run: bool = False


class JobOutcomeResponse(BaseModel):
    run_id: str
    run_type: str
    period: str
    status: str
    processed: int
    failed: int
    dry_run: bool
    errors: list[dict[str, Any]]
    items: list[dict[str, Any]]


class JobRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    run_type: str
    period: str
    status: str
    executed_by: str | None = None
    dry_run: bool
    summary: dict[str, Any]
    started_at: datetime
    finished_at: datetime | None = None


# ============================================================================
# Payroll schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    period: str = Field(examples=["2024-03"])
    employee_ids: list[str] | None = None


class PayrollRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    period: str
    status: str
    initiated_by: str | None = None
    approval_instance_id: str | None = None
    approval_round: int
    total_net_disbursement: Decimal | None = None
    finalized_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayslipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payslip_id: str
    run_id: str
    employee_id: str
    base_salary: Decimal
    allowances: Decimal
    overtime_pay: Decimal
    signing_bonus: Decimal
    leave_encashment: Decimal
    refunds: Decimal
    gross_salary: Decimal
    tax_deduction: Decimal
    tax_breakdown: list[dict[str, Any]]
    insurance_deduction: Decimal
    employer_insurance: Decimal
    insurance_bracket: str | None = None
    leave_deductions: Decimal
    time_penalties: Decimal
    total_deductions: Decimal
    net_salary: Decimal
    minimum_wage_alert: bool
    status: str
    error_message: str | None = None
    anomalies: list[dict[str, Any]] = []


class PayrollRunDetailResponse(PayrollRunResponse):
    payslips: list[PayslipResponse]


class PayslipAnomalyResponse(BaseModel):
    employee_id: str
    code: str
    severity: Literal["critical", "major"]
    message: str


class SubmitRunRequest(BaseModel):
    position_code: str | None = None


# ============================================================================
# Workflow schemas
# ============================================================================


class ApprovalStepSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_number: int = Field(ge=1)
    role: str
    sla_hours: int | None = Field(default=None, ge=1)
    can_delegate: bool = False
    can_override: bool = False


class WorkflowCreate(BaseModel):
    position_code: str
    name: str
    steps: list[ApprovalStepSchema] = Field(min_length=1)
    auto_escalate_hours: int = Field(default=48, ge=0)
    escalation_role: str | None = None


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    position_code: str
    name: str
    auto_escalate_hours: int
    escalation_role: str | None = None
    steps: list[ApprovalStepSchema]


class DelegationCreate(BaseModel):
    delegate_id: str
    role: str
    starts_at: datetime
    ends_at: datetime


class DelegationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delegation_id: str
    delegator_id: str
    delegate_id: str
    role: str
    starts_at: datetime
    ends_at: datetime


class DecisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    step_number: int
    actor_id: str | None = None
    actor_role: str | None = None
    action: str
    reason: str | None = None
    is_override: bool
    created_at: datetime


class ApprovalInstanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    instance_id: str
    entity_type: str
    entity_id: str
    status: str
    current_step: int
    acting_role: str
    step_started_at: datetime
    decisions: list[DecisionResponse]
