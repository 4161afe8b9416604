"""Accrual, proration, rounding and carry-forward arithmetic."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from hr_ledger.calculators.periods import Period, months_between
from hr_ledger.exceptions import ValidationError

DAY = Decimal("0.01")

PERIODS_PER_YEAR = {"monthly": 12, "quarterly": 4, "annual": 1}

# Accrual job type -> (rule frequency, period kind)
JOB_TYPES = {
    "monthly_accrual": ("monthly", "month"),
    "quarterly_accrual": ("quarterly", "quarter"),
    "annual_accrual": ("annual", "year"),
}


class RuleLike(Protocol):
    rule_id: str
    eligible_employment_types: list
    min_tenure_months: int
    default_entitlement_days: Decimal
    accrual_frequency: str
    is_prorated: bool
    rounding_method: str
    is_active: bool


@dataclass(frozen=True)
class CarryForwardSplit:
    carry: Decimal
    forfeit: Decimal


def resolve_job_type(job_type: str, period: Period) -> str:
    """Return the rule frequency for a job type, checking the period fits it."""
    try:
        frequency, kind = JOB_TYPES[job_type]
    except KeyError:
        raise ValidationError(
            f"Unknown accrual job type '{job_type}'",
            {"allowed": sorted(JOB_TYPES)},
        ) from None
    if period.kind != kind:
        raise ValidationError(f"{job_type} needs a {kind} period, got '{period.label}'")
    return frequency


def round_days(value: Decimal, method: str) -> Decimal:
    if method == "ceil":
        return Decimal(math.ceil(value))
    if method == "floor":
        return Decimal(math.floor(value))
    if method == "arithmetic":
        return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return value.quantize(DAY, rounding=ROUND_HALF_UP)


def period_rate(default_entitlement_days: Decimal, frequency: str) -> Decimal:
    """Days granted per accrual period for an annual entitlement."""
    try:
        per_year = PERIODS_PER_YEAR[frequency]
    except KeyError:
        raise ValidationError(f"Unknown accrual frequency '{frequency}'") from None
    return Decimal(default_entitlement_days) / Decimal(per_year)


def accrual_amount(
    rule: RuleLike,
    period: Period,
    hire_date: date,
    termination_date: date | None = None,
) -> Decimal:
    """Days to accrue for one employee in one period.

    Prorated rules scale by days employed in period / days in period.
    """
    amount = period_rate(rule.default_entitlement_days, rule.accrual_frequency)
    if rule.is_prorated:
        employed = period.overlap_days(hire_date, termination_date)
        amount = amount * Decimal(employed) / Decimal(period.days)
    return round_days(amount, rule.rounding_method)


def cap_headroom(raw_balance: Decimal, cap: Decimal | None, amount: Decimal) -> Decimal:
    """Trim a positive accrual so the balance does not exceed its cap."""
    if cap is None:
        return amount
    return max(min(amount, cap - raw_balance), Decimal("0"))


def carry_forward_split(
    unused: Decimal,
    policy: str,
    max_days: Decimal,
) -> CarryForwardSplit:
    """Split unused days at year end into carried and forfeited parts."""
    unused = max(unused, Decimal("0"))
    if policy == "unlimited":
        carry = unused
    elif policy == "limited":
        carry = min(unused, max(max_days, Decimal("0")))
    elif policy == "none":
        carry = Decimal("0")
    else:
        raise ValidationError(f"Unknown carry-forward policy '{policy}'")
    return CarryForwardSplit(carry=carry, forfeit=unused - carry)


def rule_matches(rule: RuleLike, employment_type: str, hire_date: date, as_of: date) -> bool:
    if not rule.is_active:
        return False
    eligible = rule.eligible_employment_types or []
    if eligible and employment_type not in eligible:
        return False
    return months_between(hire_date, as_of) >= rule.min_tenure_months


def select_rule(
    rules: Iterable[RuleLike],
    employment_type: str,
    hire_date: date,
    as_of: date,
) -> RuleLike | None:
    """Pick the most senior rule the employee qualifies for."""
    matching = [r for r in rules if rule_matches(r, employment_type, hire_date, as_of)]
    if not matching:
        return None
    return max(matching, key=lambda r: (r.min_tenure_months, r.rule_id))
