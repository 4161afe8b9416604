"""Payslip computation.

Pipeline (stable order per employee):
1) Prorate base salary for mid-period hire or termination
2) Earnings: allowances, overtime, signing bonus, leave encashment, refunds
3) Progressive income tax on gross (bracket breakdown retained)
4) Employee and employer insurance from the bracket containing gross
5) Unpaid leave deduction and time penalties
6) Net pay and minimum wage alert (informational, net is never adjusted)

``compute_payslip`` is pure: identical inputs give an identical result.
``detect_anomalies`` runs the pre-approval checks on a computed payslip.
"""

from __future__ import annotations

from decimal import Decimal

from hr_ledger.calculators.periods import Period, working_days
from hr_ledger.calculators.tax_calculator import (
    ZERO,
    TaxCalculator,
    insurance_contributions,
    money,
)
from hr_ledger.calculators.types import (
    CompensationInputs,
    AnomalySeverity,
    DayCountConvention,
    LeaveImpact,
    PayrollConfig,
    PayslipAnomaly,
    PayslipResult,
    TimeImpact,
)


def days_in_period(
    period: Period,
    convention: DayCountConvention | str,
    holidays: tuple = (),
) -> int:
    """Divisor for daily rates under the company's calendar convention."""
    convention = DayCountConvention(convention)
    if convention == DayCountConvention.FIXED_30:
        return 30
    if convention == DayCountConvention.WORKING_DAYS:
        return working_days(period.start, period.end, holidays)
    return period.days


def prorated_base(comp: CompensationInputs, period: Period) -> tuple[Decimal, bool]:
    """Scale base salary by calendar days employed within the period."""
    start = comp.hire_date if comp.hire_date and comp.hire_date > period.start else period.start
    end = comp.termination_date
    if start == period.start and (end is None or end >= period.end):
        return comp.base_salary, False

    employed = period.overlap_days(start, end)
    return money(comp.base_salary * Decimal(employed) / Decimal(period.days)), True


def compute_payslip(
    comp: CompensationInputs,
    period: Period,
    config: PayrollConfig,
    time_impact: TimeImpact | None,
    leave_impact: LeaveImpact | None,
) -> PayslipResult:
    """Compute one employee's payslip for a period.

    Missing time or leave input yields an ``error`` result with no amounts;
    the caller decides what that means for the run.
    """
    result = PayslipResult(employee_id=comp.employee_id, period=period.label, status="error")

    if time_impact is None:
        result.errors.append("Time management input unavailable")
    if leave_impact is None:
        result.errors.append("Leave ledger input unavailable")
    if result.errors:
        return result

    divisor = days_in_period(period, config.day_count_convention, config.holidays)
    result.days_in_period = divisor
    if divisor <= 0:
        result.errors.append(f"Period {period.label} has no payable days")
        return result

    daily_rate = comp.base_salary / Decimal(divisor)
    hourly_rate = daily_rate / config.hours_per_day

    base, result.prorated = prorated_base(comp, period)
    result.base_salary = base
    result.allowances = money(sum((a.amount for a in comp.allowances), ZERO))
    result.overtime_pay = money(
        time_impact.overtime_hours * hourly_rate * config.overtime_multiplier
    )
    result.signing_bonus = money(comp.signing_bonus)
    result.leave_encashment = money(daily_rate * leave_impact.encashed_days)
    result.refunds = money(comp.refunds)

    result.gross_salary = (
        result.base_salary
        + result.allowances
        + result.overtime_pay
        + result.signing_bonus
        + result.leave_encashment
        + result.refunds
    )

    result.tax_deduction, result.tax_breakdown = TaxCalculator(config.tax_brackets).calculate(
        result.gross_salary
    )

    insurance = insurance_contributions(result.gross_salary, config.insurance_brackets)
    result.insurance_deduction = insurance.employee_amount
    result.employer_insurance = insurance.employer_amount
    result.insurance_bracket = insurance.bracket

    result.leave_deductions = money(daily_rate * leave_impact.unpaid_days)
    result.time_penalties = money(time_impact.total_penalties)

    result.total_deductions = (
        result.tax_deduction
        + result.insurance_deduction
        + result.leave_deductions
        + result.time_penalties
    )
    result.net_salary = result.gross_salary - result.total_deductions
    result.minimum_wage_alert = result.net_salary < config.minimum_wage
    result.status = "calculated"
    return result


def detect_anomalies(result: PayslipResult, bank_account: str | None) -> list[PayslipAnomaly]:
    """Flag payslips that need attention before the run goes to approval.

    Negative net pay is critical. A missing bank account or net pay below
    the minimum wage is major. Payslips that failed to compute carry only
    the bank account check, since they have no amounts yet.
    """
    anomalies: list[PayslipAnomaly] = []
    if not (bank_account or "").strip():
        anomalies.append(
            PayslipAnomaly(
                code="MISSING_BANK_DETAILS",
                severity=AnomalySeverity.MAJOR,
                message="No bank account on file",
            )
        )
    if not result.success:
        return anomalies

    if result.net_salary < ZERO:
        anomalies.append(
            PayslipAnomaly(
                code="NEGATIVE_NET_PAY",
                severity=AnomalySeverity.CRITICAL,
                message=f"Net pay is negative: {result.net_salary}",
            )
        )
    elif result.minimum_wage_alert:
        anomalies.append(
            PayslipAnomaly(
                code="BELOW_MINIMUM_WAGE",
                severity=AnomalySeverity.MAJOR,
                message=f"Net pay {result.net_salary} is below the minimum wage",
            )
        )
    return anomalies
