"""Progressive income tax and bracketed social insurance."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from hr_ledger.calculators.types import (
    BracketApplication,
    InsuranceBracket,
    InsuranceResult,
    TaxBracket,
)
from hr_ledger.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_tax_brackets(brackets: Sequence[TaxBracket]) -> list[TaxBracket]:
    """Return brackets sorted by lower bound, rejecting overlaps.

    Only the highest bracket may be open-ended.
    """
    ordered = sorted(brackets, key=lambda b: b.min_amount)
    previous_max: Decimal | None = ZERO
    for i, bracket in enumerate(ordered):
        label = bracket.name or f"#{i + 1}"
        if bracket.min_amount < 0:
            raise ValidationError(f"Tax bracket {label} has a negative lower bound")
        if not ZERO <= bracket.rate <= Decimal("1"):
            raise ValidationError(f"Tax bracket {label} rate must be between 0 and 1")
        if bracket.max_amount is not None and bracket.max_amount <= bracket.min_amount:
            raise ValidationError(f"Tax bracket {label} upper bound must exceed its lower bound")
        if previous_max is None:
            raise ValidationError(f"Tax bracket {label} follows an open-ended bracket")
        if i > 0 and bracket.min_amount < previous_max:
            raise ValidationError(f"Tax bracket {label} overlaps the previous bracket")
        previous_max = bracket.max_amount
    return ordered


class TaxCalculator:
    """Applies a validated bracket table with marginal-rate accumulation.

    Income between a bracket's bounds is taxed at that bracket's rate only,
    so raising gross can never lower the tax.
    """

    def __init__(self, brackets: Sequence[TaxBracket]):
        self.brackets = validate_tax_brackets(brackets)

    def calculate(self, gross: Decimal) -> tuple[Decimal, list[BracketApplication]]:
        """Return total tax and the brackets that contributed to it."""
        if gross <= 0:
            return ZERO, []

        total = ZERO
        applied: list[BracketApplication] = []

        for i, bracket in enumerate(self.brackets):
            if gross <= bracket.min_amount:
                break

            upper = gross if bracket.max_amount is None else min(gross, bracket.max_amount)
            taxable = upper - bracket.min_amount
            if taxable <= 0:
                continue

            tax = money(taxable * bracket.rate)
            total += tax
            applied.append(
                BracketApplication(
                    name=bracket.name or f"Bracket {i + 1}",
                    rate=bracket.rate,
                    taxable_amount=money(taxable),
                    tax_amount=tax,
                )
            )

        return total, applied


def progressive_tax(
    gross: Decimal, brackets: Sequence[TaxBracket]
) -> tuple[Decimal, list[BracketApplication]]:
    return TaxCalculator(brackets).calculate(gross)


def insurance_contributions(
    gross: Decimal, brackets: Sequence[InsuranceBracket]
) -> InsuranceResult:
    """Employee and employer contributions from the bracket containing gross.

    Bounds are inclusive; when two brackets share a boundary the lower one
    wins. No matching bracket means no contribution.
    """
    for bracket in sorted(brackets, key=lambda b: b.min_salary):
        if bracket.max_salary < bracket.min_salary:
            raise ValidationError(f"Insurance bracket {bracket.name} has inverted bounds")
        if bracket.min_salary <= gross <= bracket.max_salary:
            return InsuranceResult(
                employee_amount=money(gross * bracket.employee_rate),
                employer_amount=money(gross * bracket.employer_rate),
                bracket=bracket.name,
                employee_rate=bracket.employee_rate,
                employer_rate=bracket.employer_rate,
            )

    return InsuranceResult(employee_amount=ZERO, employer_amount=ZERO, bracket=None)
