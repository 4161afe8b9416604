"""Leave types, balances, ledger transactions, entitlement rules and requests."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from hr_ledger.models.base import Base, Days, TimestampMixin, UpdatedMixin, new_id, utcnow


class TransactionType(str, Enum):
    """Kinds of balance-affecting ledger entries."""

    ACCRUAL = "accrual"
    TAKE = "take"
    ADJUSTMENT = "adjustment"
    ENCASHMENT = "encashment"
    RETRO = "retro"
    EXPIRY = "expiry"
    RESERVE_RELEASE = "reserve_release"


class CarryForwardPolicy(str, Enum):
    NONE = "none"
    LIMITED = "limited"
    UNLIMITED = "unlimited"


class AccrualFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class RoundingMethod(str, Enum):
    NONE = "none"
    ARITHMETIC = "arithmetic"
    CEIL = "ceil"
    FLOOR = "floor"


class LeaveType(Base, TimestampMixin):
    """Leave type reference data (annual, sick, unpaid...)."""

    __tablename__ = "leave_type"

    leave_type_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    accrues: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class LeaveBalance(Base, UpdatedMixin):
    """Materialized projection of the ledger for one employee and leave type.

    Never written directly: LeaveLedgerService folds each accepted
    transaction into it, and rebuild_balance recomputes it from the ledger.
    """

    __tablename__ = "leave_balance"

    balance_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    employee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("employee.employee_id"), nullable=False, index=True
    )
    leave_type_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("leave_type.leave_type_id"), nullable=False, index=True
    )

    entitled_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    accrued_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    taken_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    reserved_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    available_balance: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))

    max_balance_cap: Mapped[Decimal | None] = mapped_column(Days, nullable=True)
    carry_forward_cap: Mapped[Decimal | None] = mapped_column(Days, nullable=True)
    carried_forward_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    carry_forward_expires_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_accrual_period: Mapped[str | None] = mapped_column(String(16), nullable=True)
    # Year whose year-end carry-forward has been applied to this balance
    last_year_end: Mapped[int | None] = mapped_column(Integer, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("employee_id", "leave_type_id", name="leave_balance_employee_type_unique"),
    )
    __mapper_args__ = {"version_id_col": version}


class LeaveBalanceTransaction(Base):
    """Append-only ledger row. The balance is the fold of these rows."""

    __tablename__ = "leave_balance_transaction"

    transaction_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    leave_type_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Days, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    performed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="leave_txn_amount_nonzero"),
        CheckConstraint(
            "transaction_type IN ('accrual', 'take', 'adjustment', 'encashment', "
            "'retro', 'expiry', 'reserve_release')",
            name="leave_txn_type_check",
        ),
        UniqueConstraint(
            "employee_id", "leave_type_id", "sequence", name="leave_txn_balance_sequence_unique"
        ),
        Index("ix_leave_txn_balance_created", "employee_id", "leave_type_id", "created_at"),
    )


class EntitlementRule(Base, TimestampMixin):
    """Eligibility, accrual and carry-forward policy for one leave type."""

    __tablename__ = "entitlement_rule"

    rule_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    leave_type_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("leave_type.leave_type_id"), nullable=False, index=True
    )

    eligible_employment_types: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    min_tenure_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_entitlement_days: Mapped[Decimal] = mapped_column(Days, nullable=False)

    accrual_frequency: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AccrualFrequency.MONTHLY.value
    )
    is_prorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rounding_method: Mapped[str] = mapped_column(
        String(16), nullable=False, default=RoundingMethod.NONE.value
    )
    max_balance_cap: Mapped[Decimal | None] = mapped_column(Days, nullable=True)

    expiry_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    carry_forward_policy: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CarryForwardPolicy.LIMITED.value
    )
    carry_forward_max_days: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    carry_forward_expiry_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "carry_forward_policy IN ('none', 'limited', 'unlimited')",
            name="entitlement_rule_cf_policy_check",
        ),
        CheckConstraint(
            "accrual_frequency IN ('monthly', 'quarterly', 'annual')",
            name="entitlement_rule_frequency_check",
        ),
    )


class LeaveRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


class LeaveRequest(Base, UpdatedMixin):
    """Employee leave request; balance effects go through the ledger."""

    __tablename__ = "leave_request"

    request_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    employee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("employee.employee_id"), nullable=False, index=True
    )
    leave_type_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("leave_type.leave_type_id"), nullable=False
    )
    rule_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("entitlement_rule.rule_id"), nullable=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    requested_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    net_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=LeaveRequestStatus.PENDING.value
    )
    approval_instance_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="leave_request_dates_check"),
    )


class HolidayCalendarEntry(Base):
    """Public holiday or blocked day excluded from net leave duration."""

    __tablename__ = "holiday_calendar_entry"

    entry_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    day: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
