"""Unit tests for progressive tax and insurance brackets."""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from hr_ledger.calculators.tax_calculator import (
    TaxCalculator,
    insurance_contributions,
    progressive_tax,
    validate_tax_brackets,
)
from hr_ledger.calculators.types import InsuranceBracket, TaxBracket
from hr_ledger.exceptions import ValidationError

BRACKETS = [
    TaxBracket(min_amount=Decimal("0"), max_amount=Decimal("600"), rate=Decimal("0"), name="Exempt"),
    TaxBracket(min_amount=Decimal("600"), max_amount=Decimal("1200"), rate=Decimal("0.10"), name="Low"),
    TaxBracket(min_amount=Decimal("1200"), max_amount=None, rate=Decimal("0.20"), name="High"),
]

INSURANCE = [
    InsuranceBracket(
        name="Tier 1",
        min_salary=Decimal("0"),
        max_salary=Decimal("2000"),
        employee_rate=Decimal("0.11"),
        employer_rate=Decimal("0.1875"),
    ),
    InsuranceBracket(
        name="Tier 2",
        min_salary=Decimal("2000"),
        max_salary=Decimal("10000"),
        employee_rate=Decimal("0.09"),
        employer_rate=Decimal("0.15"),
    ),
]


class TestProgressiveTaxCalculation:
    """Test progressive tax bracket calculations."""

    def test_marginal_rates_accumulate(self):
        """Each slice of income is taxed at its own bracket's rate."""
        tax, breakdown = TaxCalculator(BRACKETS).calculate(Decimal("2000"))

        # 600 * 0 + 600 * 0.10 + 800 * 0.20
        assert tax == Decimal("220.00")
        assert [b.name for b in breakdown] == ["Exempt", "Low", "High"]
        assert [b.taxable_amount for b in breakdown] == [
            Decimal("600.00"),
            Decimal("600.00"),
            Decimal("800.00"),
        ]
        assert breakdown[2].tax_amount == Decimal("160.00")

    def test_income_within_first_bracket(self):
        tax, breakdown = progressive_tax(Decimal("500"), BRACKETS)

        assert tax == Decimal("0")
        assert len(breakdown) == 1

    def test_zero_and_negative_income(self):
        assert TaxCalculator(BRACKETS).calculate(Decimal("0")) == (Decimal("0"), [])
        assert TaxCalculator(BRACKETS).calculate(Decimal("-50")) == (Decimal("0"), [])

    def test_brackets_sorted_before_use(self):
        tax, _ = TaxCalculator(list(reversed(BRACKETS))).calculate(Decimal("2000"))
        assert tax == Decimal("220.00")

    def test_no_brackets_means_no_tax(self):
        assert TaxCalculator([]).calculate(Decimal("9999")) == (Decimal("0"), [])

    def test_breakdown_serializes_to_strings(self):
        _, breakdown = TaxCalculator(BRACKETS).calculate(Decimal("1000"))
        assert breakdown[1].to_dict() == {
            "name": "Low",
            "rate": "0.10",
            "taxable_amount": "400.00",
            "tax_amount": "40.00",
        }

    @settings(max_examples=200)
    @given(
        low=st.decimals(min_value=0, max_value=1_000_000, places=2),
        delta=st.decimals(min_value=0, max_value=100_000, places=2),
    )
    def test_tax_is_monotonic_in_gross(self, low: Decimal, delta: Decimal):
        """Raising gross never lowers the tax."""
        calculator = TaxCalculator(BRACKETS)
        assert calculator.calculate(low)[0] <= calculator.calculate(low + delta)[0]


class TestBracketValidation:
    def test_overlapping_brackets_rejected(self):
        with pytest.raises(ValidationError, match="overlaps"):
            validate_tax_brackets(
                [
                    TaxBracket(Decimal("0"), Decimal("1000"), Decimal("0.1")),
                    TaxBracket(Decimal("900"), Decimal("2000"), Decimal("0.2")),
                ]
            )

    def test_open_ended_bracket_must_be_last(self):
        with pytest.raises(ValidationError, match="open-ended"):
            validate_tax_brackets(
                [
                    TaxBracket(Decimal("0"), None, Decimal("0.1")),
                    TaxBracket(Decimal("1000"), Decimal("2000"), Decimal("0.2")),
                ]
            )

    def test_rate_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            validate_tax_brackets([TaxBracket(Decimal("0"), None, Decimal("1.5"))])

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValidationError):
            validate_tax_brackets([TaxBracket(Decimal("1000"), Decimal("500"), Decimal("0.1"))])

    def test_gaps_are_allowed(self):
        ordered = validate_tax_brackets(
            [
                TaxBracket(Decimal("1000"), None, Decimal("0.2")),
                TaxBracket(Decimal("0"), Decimal("500"), Decimal("0")),
            ]
        )
        assert [b.min_amount for b in ordered] == [Decimal("0"), Decimal("1000")]


class TestInsuranceContributions:
    def test_employee_and_employer_amounts(self):
        result = insurance_contributions(Decimal("1500"), INSURANCE)

        assert result.bracket == "Tier 1"
        assert result.employee_amount == Decimal("165.00")
        assert result.employer_amount == Decimal("281.25")

    def test_shared_boundary_uses_lower_bracket(self):
        result = insurance_contributions(Decimal("2000"), INSURANCE)
        assert result.bracket == "Tier 1"

    def test_no_matching_bracket_contributes_nothing(self):
        result = insurance_contributions(Decimal("25000"), INSURANCE)

        assert result.bracket is None
        assert result.employee_amount == Decimal("0")
        assert result.employer_amount == Decimal("0")
