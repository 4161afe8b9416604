"""Payroll run, payslip and payroll configuration models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_ledger.models.base import Base, Money, TimestampMixin, UpdatedMixin, new_id

Rate = Numeric(8, 6)


class PayrollRunStatus(str, Enum):
    DRAFT = "draft"
    CALCULATED = "calculated"
    PARTIAL = "partial"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class PayslipStatus(str, Enum):
    PENDING = "pending"
    CALCULATED = "calculated"
    PAID = "paid"
    ERROR = "error"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"


class PayrollRun(Base, UpdatedMixin):
    """One payroll execution for a period; owns its payslips."""

    __tablename__ = "payroll_run"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    period: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(24), nullable=False, default=PayrollRunStatus.DRAFT.value
    )
    initiated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approval_instance_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Incremented each time the run is submitted; keys the approval instance
    approval_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_net_disbursement: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payslips: Mapped[list[PayslipDetail]] = relationship(
        back_populates="payroll_run",
        order_by="PayslipDetail.employee_id",
    )


class PayslipDetail(Base, UpdatedMixin):
    """Computed pay for one employee within one payroll run."""

    __tablename__ = "payslip_detail"

    payslip_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    run_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("payroll_run.run_id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("employee.employee_id"), nullable=False
    )

    base_salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    allowances: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    overtime_pay: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    signing_bonus: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    leave_encashment: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    refunds: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    gross_salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    leave_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    time_penalties: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax_deduction: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax_breakdown: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    insurance_deduction: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    employer_insurance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    insurance_bracket: Mapped[str | None] = mapped_column(String, nullable=True)
    total_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    net_salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    minimum_wage_alert: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # [{"code": "NEGATIVE_NET_PAY", "severity": "critical", "message": "..."}]
    anomalies: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PayslipStatus.PENDING.value
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="payslip_run_employee_unique"),
        CheckConstraint(
            "status IN ('pending', 'calculated', 'paid', 'error')",
            name="payslip_status_check",
        ),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="payslips")


# ===== Payroll configuration =====


class TaxBracket(Base, TimestampMixin):
    """Progressive income tax bracket; max_amount None means open-ended."""

    __tablename__ = "tax_bracket"

    bracket_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class InsuranceBracket(Base, TimestampMixin):
    """Social insurance salary range with employee and employer rates."""

    __tablename__ = "insurance_bracket"

    bracket_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    min_salary: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_salary: Mapped[Decimal] = mapped_column(Money, nullable=False)
    employee_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    employer_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CompanySettings(Base, UpdatedMixin):
    """Company-wide pay calendar and currency settings (single row)."""

    __tablename__ = "company_settings"

    settings_id: Mapped[str] = mapped_column(String(64), primary_key=True, default="default")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EGP")
    day_count_convention: Mapped[str] = mapped_column(String(16), nullable=False, default="calendar")
    minimum_wage: Mapped[Decimal] = mapped_column(Money, nullable=False)
    hours_per_day: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("8"))
    overtime_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("1.5")
    )

    __table_args__ = (
        CheckConstraint(
            "day_count_convention IN ('calendar', 'fixed_30', 'working_days')",
            name="company_settings_convention_check",
        ),
    )


class TimeImpactRecord(Base, TimestampMixin):
    """Per-period overtime/penalty feed from Time Management."""

    __tablename__ = "time_impact_record"

    record_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    employee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("employee.employee_id"), nullable=False
    )
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    # [{"reason": "Late arrival", "amount": "150.00"}]
    penalties: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    permissions: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("employee_id", "period", name="time_impact_employee_period_unique"),
    )


class Refund(Base, UpdatedMixin):
    """Signed pay adjustment picked up by the next payroll run for the employee.

    ``payroll_run_id`` is set when a run counts the refund, so no other open
    run can count it too; the link is dropped if the run is reopened.
    """

    __tablename__ = "refund"

    refund_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    employee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("employee.employee_id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=RefundStatus.PENDING.value
    )
    payroll_run_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("payroll_run.run_id"), nullable=True, index=True
    )

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'processed')", name="refund_status_check"),
    )
