"""Tests for the payslip computation pipeline."""

from datetime import date
from decimal import Decimal

import pytest

from hr_ledger.calculators.payslip import (
    compute_payslip,
    days_in_period,
    detect_anomalies,
    prorated_base,
)
from hr_ledger.calculators.periods import parse_period
from hr_ledger.calculators.types import (
    Allowance,
    CompensationInputs,
    DayCountConvention,
    InsuranceBracket,
    LeaveImpact,
    PayrollConfig,
    Penalty,
    TaxBracket,
    TimeImpact,
)

MARCH = parse_period("2024-03")


@pytest.fixture
def config() -> PayrollConfig:
    return PayrollConfig(
        tax_brackets=(
            TaxBracket(Decimal("0"), Decimal("5000"), Decimal("0"), "Exempt"),
            TaxBracket(Decimal("5000"), None, Decimal("0.10"), "Standard"),
        ),
        insurance_brackets=(
            InsuranceBracket(
                name="Standard",
                min_salary=Decimal("0"),
                max_salary=Decimal("20000"),
                employee_rate=Decimal("0.11"),
                employer_rate=Decimal("0.1875"),
            ),
        ),
        minimum_wage=Decimal("3000"),
    )


@pytest.fixture
def compensation() -> CompensationInputs:
    return CompensationInputs(
        employee_id="emp-1",
        base_salary=Decimal("10000"),
        allowances=(Allowance("Housing", Decimal("500")),),
        hire_date=date(2020, 1, 1),
    )


class TestComputePayslip:
    def test_full_pipeline(self, compensation, config):
        """Overtime, tax, insurance, unpaid leave and penalties in one period."""
        result = compute_payslip(
            compensation,
            MARCH,
            config,
            TimeImpact(
                overtime_hours=Decimal("10"),
                penalties=(Penalty("Late arrival", Decimal("100")),),
            ),
            LeaveImpact(unpaid_days=Decimal("2")),
        )

        assert result.status == "calculated"
        assert result.days_in_period == 31
        # 10000 / 31 / 8 per hour, 10 hours at 1.5x
        assert result.overtime_pay == Decimal("604.84")
        assert result.gross_salary == Decimal("11104.84")
        assert result.tax_deduction == Decimal("610.48")
        assert result.insurance_deduction == Decimal("1221.53")
        assert result.employer_insurance == Decimal("2082.16")
        assert result.insurance_bracket == "Standard"
        assert result.leave_deductions == Decimal("645.16")
        assert result.time_penalties == Decimal("100.00")
        assert result.total_deductions == Decimal("2577.17")
        assert result.net_salary == Decimal("8527.67")
        assert result.minimum_wage_alert is False

    def test_gross_and_net_identities(self, compensation, config):
        result = compute_payslip(
            compensation, MARCH, config, TimeImpact(), LeaveImpact(encashed_days=Decimal("3"))
        )

        assert result.gross_salary == (
            result.base_salary
            + result.allowances
            + result.overtime_pay
            + result.signing_bonus
            + result.leave_encashment
            + result.refunds
        )
        assert result.net_salary == result.gross_salary - result.total_deductions
        assert result.leave_encashment == Decimal("967.74")

    def test_deterministic(self, compensation, config):
        args = (compensation, MARCH, config, TimeImpact(), LeaveImpact())
        assert compute_payslip(*args) == compute_payslip(*args)

    def test_missing_time_input_is_error(self, compensation, config):
        result = compute_payslip(compensation, MARCH, config, None, LeaveImpact())

        assert result.status == "error"
        assert result.success is False
        assert result.net_salary == Decimal("0")
        assert result.to_record()["error_message"] == "Time management input unavailable"

    def test_missing_both_inputs_lists_both(self, compensation, config):
        result = compute_payslip(compensation, MARCH, config, None, None)
        assert len(result.errors) == 2

    def test_minimum_wage_alert_does_not_adjust_net(self, config):
        low = CompensationInputs(employee_id="emp-2", base_salary=Decimal("2000"))
        result = compute_payslip(low, MARCH, config, TimeImpact(), LeaveImpact())

        assert result.minimum_wage_alert is True
        assert result.net_salary == Decimal("2000") - result.insurance_deduction

    def test_refunds_and_signing_bonus_are_earnings(self, config):
        comp = CompensationInputs(
            employee_id="emp-3",
            base_salary=Decimal("4000"),
            signing_bonus=Decimal("1000"),
            refunds=Decimal("-250"),
        )
        result = compute_payslip(comp, MARCH, config, TimeImpact(), LeaveImpact())

        assert result.gross_salary == Decimal("4750.00")
        assert result.refunds == Decimal("-250.00")

    def test_to_record_matches_payslip_columns(self, compensation, config):
        record = compute_payslip(compensation, MARCH, config, TimeImpact(), LeaveImpact()).to_record()

        assert record["tax_breakdown"][1]["name"] == "Standard"
        assert record["error_message"] is None


class TestDetectAnomalies:
    def test_clean_payslip(self, compensation, config):
        result = compute_payslip(compensation, MARCH, config, TimeImpact(), LeaveImpact())
        assert detect_anomalies(result, "EG-0001") == []

    def test_negative_net_is_critical(self, config):
        comp = CompensationInputs(employee_id="emp-2", base_salary=Decimal("4000"))
        time = TimeImpact(penalties=(Penalty("Damaged equipment", Decimal("5000")),))
        result = compute_payslip(comp, MARCH, config, time, LeaveImpact())

        anomalies = detect_anomalies(result, "EG-0002")

        assert [a.code for a in anomalies] == ["NEGATIVE_NET_PAY"]
        assert anomalies[0].blocking is True
        assert anomalies[0].to_dict()["severity"] == "critical"

    def test_below_minimum_wage_is_major(self, config):
        low = CompensationInputs(employee_id="emp-2", base_salary=Decimal("2000"))
        result = compute_payslip(low, MARCH, config, TimeImpact(), LeaveImpact())

        anomalies = detect_anomalies(result, "EG-0002")

        assert [a.code for a in anomalies] == ["BELOW_MINIMUM_WAGE"]
        assert anomalies[0].blocking is False

    @pytest.mark.parametrize("bank_account", [None, "", "   "])
    def test_missing_bank_account(self, compensation, config, bank_account):
        result = compute_payslip(compensation, MARCH, config, TimeImpact(), LeaveImpact())

        anomalies = detect_anomalies(result, bank_account)

        assert [a.code for a in anomalies] == ["MISSING_BANK_DETAILS"]
        assert anomalies[0].blocking is False

    def test_failed_payslip_only_checks_bank_account(self, compensation, config):
        result = compute_payslip(compensation, MARCH, config, None, LeaveImpact())

        assert detect_anomalies(result, "EG-0001") == []
        assert [a.code for a in detect_anomalies(result, None)] == ["MISSING_BANK_DETAILS"]


class TestProration:
    def test_mid_period_hire(self):
        comp = CompensationInputs(
            employee_id="emp-1", base_salary=Decimal("10000"), hire_date=date(2024, 3, 16)
        )
        base, prorated = prorated_base(comp, MARCH)

        assert prorated is True
        assert base == Decimal("5161.29")

    def test_termination_within_period(self):
        comp = CompensationInputs(
            employee_id="emp-1",
            base_salary=Decimal("3100"),
            hire_date=date(2020, 1, 1),
            termination_date=date(2024, 3, 10),
        )
        assert prorated_base(comp, MARCH) == (Decimal("1000.00"), True)

    def test_full_period_not_prorated(self, compensation):
        assert prorated_base(compensation, MARCH) == (Decimal("10000"), False)


class TestDayCount:
    def test_conventions(self):
        assert days_in_period(MARCH, DayCountConvention.CALENDAR) == 31
        assert days_in_period(MARCH, "fixed_30") == 30
        assert days_in_period(MARCH, DayCountConvention.WORKING_DAYS) == 21

    def test_working_days_exclude_holidays(self):
        assert days_in_period(MARCH, "working_days", (date(2024, 3, 11),)) == 20
