"""Inputs owned by neighbouring HR modules.

Payroll and approvals consume these through small Protocols so a module
can be swapped for a remote client without touching the calculation code.
The Sql* classes read the tables this service keeps for them.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.calculators.periods import Period, working_days
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
from hr_ledger.config import get_settings
from hr_ledger.exceptions import NotFoundError
from hr_ledger.models import (
    CompanySettings,
    Employee,
    HolidayCalendarEntry,
    LeaveBalanceTransaction,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    TimeImpactRecord,
    TransactionType,
)
from hr_ledger.models import InsuranceBracket as InsuranceBracketRow
from hr_ledger.models import TaxBracket as TaxBracketRow

ZERO = Decimal("0")


class EmployeeDirectory(Protocol):
    async def get_employee(self, employee_id: str) -> Employee: ...

    async def active_employees(self, period: Period) -> list[Employee]: ...

    async def roles_of(self, actor_id: str) -> set[str]: ...

    async def compensation(self, employee: Employee) -> CompensationInputs: ...


class TimeManagementSource(Protocol):
    async def time_impact(self, employee_id: str, period: Period) -> TimeImpact | None: ...


class LeaveImpactSource(Protocol):
    async def leave_impact(self, employee_id: str, period: Period) -> LeaveImpact | None: ...


class PayrollConfigurationSource(Protocol):
    async def payroll_config(self, period: Period) -> PayrollConfig: ...


class SqlEmployeeDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_employee(self, employee_id: str) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def active_employees(self, period: Period) -> list[Employee]:
        result = await self.session.execute(
            select(Employee)
            .where(
                Employee.is_active.is_(True),
                Employee.hire_date <= period.end,
                or_(
                    Employee.termination_date.is_(None),
                    Employee.termination_date >= period.start,
                ),
            )
            .order_by(Employee.employee_id)
        )
        return list(result.scalars())

    async def roles_of(self, actor_id: str) -> set[str]:
        """Roles held by an actor; unknown actors hold none."""
        employee = await self.session.get(Employee, actor_id)
        if employee is None or not employee.is_active:
            return set()
        return set(employee.roles or [])

    async def compensation(self, employee: Employee) -> CompensationInputs:
        """Salary terms; refunds are claimed by the payroll run itself."""
        return CompensationInputs(
            employee_id=employee.employee_id,
            base_salary=Decimal(employee.base_salary),
            allowances=tuple(
                Allowance(name=a["name"], amount=Decimal(str(a["amount"])))
                for a in employee.allowances or []
            ),
            signing_bonus=Decimal(employee.signing_bonus or 0),
            hire_date=employee.hire_date,
            termination_date=employee.termination_date,
        )


class SqlTimeManagementSource:
    """Reads the per-period feed; no record means the feed has not arrived."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def time_impact(self, employee_id: str, period: Period) -> TimeImpact | None:
        result = await self.session.execute(
            select(TimeImpactRecord).where(
                TimeImpactRecord.employee_id == employee_id,
                TimeImpactRecord.period == period.label,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return TimeImpact(
            overtime_hours=Decimal(record.overtime_hours),
            penalties=tuple(
                Penalty(reason=p.get("reason", ""), amount=Decimal(str(p["amount"])))
                for p in record.penalties or []
            ),
        )


class SqlLeaveImpactSource:
    """Unpaid leave days and encashed days for a pay period.

    Unpaid days count approved requests of unpaid leave types, clipped to the
    period and excluding weekends and holidays. Encashed days are the
    encashment transactions posted during the period.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def leave_impact(self, employee_id: str, period: Period) -> LeaveImpact | None:
        holidays = await holidays_between(self.session, period.start, period.end)

        result = await self.session.execute(
            select(LeaveRequest)
            .join(LeaveType, LeaveType.leave_type_id == LeaveRequest.leave_type_id)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveRequestStatus.APPROVED.value,
                LeaveType.is_paid.is_(False),
                LeaveRequest.start_date <= period.end,
                LeaveRequest.end_date >= period.start,
            )
        )
        unpaid = sum(
            working_days(max(r.start_date, period.start), min(r.end_date, period.end), holidays)
            for r in result.scalars()
        )

        result = await self.session.execute(
            select(LeaveBalanceTransaction).where(
                LeaveBalanceTransaction.employee_id == employee_id,
                LeaveBalanceTransaction.transaction_type == TransactionType.ENCASHMENT.value,
            )
        )
        encashed = sum(
            (
                -Decimal(t.amount)
                for t in result.scalars()
                if period.contains(t.created_at.date())
            ),
            ZERO,
        )
        return LeaveImpact(unpaid_days=Decimal(unpaid), encashed_days=encashed)


class SqlPayrollConfigurationSource:
    """Company settings row (or environment defaults) plus active bracket tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def payroll_config(self, period: Period) -> PayrollConfig:
        settings = get_settings()
        company = await self.session.get(CompanySettings, "default")

        tax_rows = await self.session.execute(
            select(TaxBracketRow)
            .where(TaxBracketRow.is_active.is_(True))
            .order_by(TaxBracketRow.min_amount)
        )
        insurance_rows = await self.session.execute(
            select(InsuranceBracketRow)
            .where(InsuranceBracketRow.is_active.is_(True))
            .order_by(InsuranceBracketRow.min_salary)
        )

        return PayrollConfig(
            tax_brackets=tuple(
                TaxBracket(
                    min_amount=Decimal(b.min_amount),
                    max_amount=Decimal(b.max_amount) if b.max_amount is not None else None,
                    rate=Decimal(b.rate),
                    name=b.name,
                )
                for b in tax_rows.scalars()
            ),
            insurance_brackets=tuple(
                InsuranceBracket(
                    name=b.name,
                    min_salary=Decimal(b.min_salary),
                    max_salary=Decimal(b.max_salary),
                    employee_rate=Decimal(b.employee_rate),
                    employer_rate=Decimal(b.employer_rate),
                )
                for b in insurance_rows.scalars()
            ),
            minimum_wage=Decimal(company.minimum_wage) if company else settings.minimum_wage,
            day_count_convention=DayCountConvention(
                company.day_count_convention if company else settings.day_count_convention
            ),
            hours_per_day=Decimal(company.hours_per_day) if company else settings.hours_per_day,
            overtime_multiplier=(
                Decimal(company.overtime_multiplier) if company else settings.overtime_multiplier
            ),
            currency=company.currency if company else settings.currency,
            holidays=tuple(sorted(await holidays_between(self.session, period.start, period.end))),
        )


async def holidays_between(session: AsyncSession, start, end) -> set:
    """Holiday and blocked days in [start, end]."""
    result = await session.execute(
        select(HolidayCalendarEntry.day).where(
            HolidayCalendarEntry.day >= start,
            HolidayCalendarEntry.day <= end,
        )
    )
    return set(result.scalars())
