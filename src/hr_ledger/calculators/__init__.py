"""Pure calculation functions for accrual and payroll."""

from hr_ledger.calculators.accrual import (
    CarryForwardSplit,
    accrual_amount,
    cap_headroom,
    carry_forward_split,
    resolve_job_type,
    round_days,
    select_rule,
)
from hr_ledger.calculators.payslip import (
    compute_payslip,
    days_in_period,
    detect_anomalies,
    prorated_base,
)
from hr_ledger.calculators.periods import Period, parse_period
from hr_ledger.calculators.tax_calculator import (
    TaxCalculator,
    insurance_contributions,
    progressive_tax,
)

__all__ = [
    "CarryForwardSplit",
    "Period",
    "TaxCalculator",
    "accrual_amount",
    "cap_headroom",
    "carry_forward_split",
    "compute_payslip",
    "days_in_period",
    "detect_anomalies",
    "insurance_contributions",
    "parse_period",
    "progressive_tax",
    "prorated_base",
    "resolve_job_type",
    "round_days",
    "select_rule",
]
