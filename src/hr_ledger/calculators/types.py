"""Type definitions for the payslip calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any


class DayCountConvention(str, Enum):
    """How many days a pay period is divided into for daily rates."""

    CALENDAR = "calendar"  # actual days in the period
    FIXED_30 = "fixed_30"
    WORKING_DAYS = "working_days"  # Monday-Friday days in the period


@dataclass(frozen=True)
class TaxBracket:
    """Tax bracket for progressive taxation."""

    min_amount: Decimal
    max_amount: Decimal | None  # None = no upper limit
    rate: Decimal  # As decimal, e.g., 0.10 for 10%
    name: str = ""


@dataclass(frozen=True)
class BracketApplication:
    """How much of the income fell in one bracket, kept for disputes."""

    name: str
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "rate": str(self.rate),
            "taxable_amount": str(self.taxable_amount),
            "tax_amount": str(self.tax_amount),
        }


@dataclass(frozen=True)
class InsuranceBracket:
    """Salary range with independent employee/employer contribution rates."""

    name: str
    min_salary: Decimal
    max_salary: Decimal
    employee_rate: Decimal
    employer_rate: Decimal


@dataclass(frozen=True)
class InsuranceResult:
    employee_amount: Decimal
    employer_amount: Decimal
    bracket: str | None
    employee_rate: Decimal = Decimal("0")
    employer_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class Allowance:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class CompensationInputs:
    """Employee compensation fields resolved from the directory."""

    employee_id: str
    base_salary: Decimal
    allowances: tuple[Allowance, ...] = ()
    signing_bonus: Decimal = Decimal("0")
    refunds: Decimal = Decimal("0")
    hire_date: date | None = None
    termination_date: date | None = None


@dataclass(frozen=True)
class Penalty:
    reason: str
    amount: Decimal


@dataclass(frozen=True)
class TimeImpact:
    """Per-period Time Management input."""

    overtime_hours: Decimal = Decimal("0")
    penalties: tuple[Penalty, ...] = ()

    @property
    def total_penalties(self) -> Decimal:
        return sum((p.amount for p in self.penalties), Decimal("0"))


@dataclass(frozen=True)
class LeaveImpact:
    """Per-period Leave Ledger input."""

    unpaid_days: Decimal = Decimal("0")
    encashed_days: Decimal = Decimal("0")


@dataclass(frozen=True)
class PayrollConfig:
    """Read-only Payroll Configuration snapshot."""

    tax_brackets: tuple[TaxBracket, ...]
    insurance_brackets: tuple[InsuranceBracket, ...]
    minimum_wage: Decimal
    day_count_convention: DayCountConvention = DayCountConvention.CALENDAR
    hours_per_day: Decimal = Decimal("8")
    overtime_multiplier: Decimal = Decimal("1.5")
    currency: str = "EGP"
    # Holidays excluded from working-day counts
    holidays: tuple[date, ...] = ()


@dataclass
class PayslipResult:
    """Output of compute_payslip for one employee and period."""

    employee_id: str
    period: str
    status: str  # 'calculated' | 'error'
    base_salary: Decimal = Decimal("0")
    allowances: Decimal = Decimal("0")
    overtime_pay: Decimal = Decimal("0")
    signing_bonus: Decimal = Decimal("0")
    leave_encashment: Decimal = Decimal("0")
    refunds: Decimal = Decimal("0")
    gross_salary: Decimal = Decimal("0")
    tax_deduction: Decimal = Decimal("0")
    tax_breakdown: list[BracketApplication] = field(default_factory=list)
    insurance_deduction: Decimal = Decimal("0")
    employer_insurance: Decimal = Decimal("0")
    insurance_bracket: str | None = None
    leave_deductions: Decimal = Decimal("0")
    time_penalties: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_salary: Decimal = Decimal("0")
    minimum_wage_alert: bool = False
    prorated: bool = False
    days_in_period: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "calculated"

    def to_record(self) -> dict[str, Any]:
        """Field values for a PayslipDetail row."""
        return {
            "base_salary": self.base_salary,
            "allowances": self.allowances,
            "overtime_pay": self.overtime_pay,
            "signing_bonus": self.signing_bonus,
            "leave_encashment": self.leave_encashment,
            "refunds": self.refunds,
            "gross_salary": self.gross_salary,
            "tax_deduction": self.tax_deduction,
            "tax_breakdown": [b.to_dict() for b in self.tax_breakdown],
            "insurance_deduction": self.insurance_deduction,
            "employer_insurance": self.employer_insurance,
            "insurance_bracket": self.insurance_bracket,
            "leave_deductions": self.leave_deductions,
            "time_penalties": self.time_penalties,
            "total_deductions": self.total_deductions,
            "net_salary": self.net_salary,
            "minimum_wage_alert": self.minimum_wage_alert,
            "error_message": "; ".join(self.errors) or None,
        }


class AnomalySeverity(str, Enum):
    CRITICAL = "critical"  # blocks submission for approval
    MAJOR = "major"


@dataclass(frozen=True)
class PayslipAnomaly:
    """A pre-approval finding on one payslip."""

    code: str
    severity: AnomalySeverity
    message: str

    @property
    def blocking(self) -> bool:
        return self.severity == AnomalySeverity.CRITICAL

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "severity": self.severity.value, "message": self.message}
