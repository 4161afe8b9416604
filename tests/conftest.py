"""Pytest fixtures for HR ledger tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from hr_ledger.database import build_engine, build_session_factory
from hr_ledger.models import (
    Base,
    Employee,
    EntitlementRule,
    InsuranceBracket,
    LeaveType,
    TaxBracket,
    TimeImpactRecord,
)
from hr_ledger.services.approval_service import ApprovalService

# In-memory SQLite with SAVEPOINT support; one database per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

ANNUAL = "annual"
UNPAID = "unpaid"


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh database for each test."""
    engine = build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_employee(session: AsyncSession):
    """Factory for directory employees; defaults to a full-time engineer."""

    async def _make(employee_id: str, **overrides) -> Employee:
        values = {
            "employee_id": employee_id,
            "full_name": employee_id.replace("-", " ").title(),
            "employment_type": "full_time",
            "hire_date": date(2020, 1, 1),
            "position_code": "ENG",
            "base_salary": Decimal("10000.00"),
            "bank_account": f"EG-{employee_id}",
            "allowances": [],
            "signing_bonus": Decimal("0"),
            "roles": [],
            "is_active": True,
        }
        values.update(overrides)
        employee = Employee(**values)
        session.add(employee)
        await session.flush()
        return employee

    return _make


@pytest.fixture
async def annual_leave(session: AsyncSession) -> LeaveType:
    leave_type = LeaveType(
        leave_type_id=ANNUAL, code="ANNUAL", name="Annual leave", is_paid=True, accrues=True
    )
    session.add(leave_type)
    await session.flush()
    return leave_type


@pytest.fixture
async def unpaid_leave(session: AsyncSession) -> LeaveType:
    leave_type = LeaveType(
        leave_type_id=UNPAID, code="UNPAID", name="Unpaid leave", is_paid=False, accrues=False
    )
    session.add(leave_type)
    await session.flush()
    return leave_type


@pytest.fixture
async def annual_rule(session: AsyncSession, annual_leave: LeaveType) -> EntitlementRule:
    """24 days a year, accrued monthly, capped at 30, up to 5 days carried for 3 months."""
    rule = EntitlementRule(
        rule_id="rule-annual",
        name="Annual leave - full time",
        leave_type_id=annual_leave.leave_type_id,
        eligible_employment_types=["full_time"],
        min_tenure_months=0,
        default_entitlement_days=Decimal("24"),
        accrual_frequency="monthly",
        is_prorated=False,
        rounding_method="none",
        max_balance_cap=Decimal("30"),
        carry_forward_policy="limited",
        carry_forward_max_days=Decimal("5"),
        carry_forward_expiry_months=3,
        is_active=True,
    )
    session.add(rule)
    await session.flush()
    return rule


@pytest.fixture
def make_workflow(session: AsyncSession):
    """Factory for approval chains: make_workflow("ENG", ["MANAGER", "HR"])."""

    async def _make(position_code: str, roles: list[str], **options):
        steps = [
            {"step_number": i, "role": role, **options.pop(f"step{i}", {})}
            for i, role in enumerate(roles, start=1)
        ]
        return await ApprovalService(session).create_workflow(
            position_code=position_code,
            name=f"{position_code} approval",
            steps=steps,
            **options,
        )

    return _make


@pytest.fixture
async def payroll_config(session: AsyncSession) -> None:
    """Two tax brackets (first 5000 exempt, 10% above) and one insurance bracket."""
    session.add_all(
        [
            TaxBracket(name="Exempt", min_amount=Decimal("0"), max_amount=Decimal("5000"), rate=Decimal("0")),
            TaxBracket(name="Standard", min_amount=Decimal("5000"), max_amount=None, rate=Decimal("0.10")),
            InsuranceBracket(
                name="Standard",
                min_salary=Decimal("0"),
                max_salary=Decimal("20000"),
                employee_rate=Decimal("0.11"),
                employer_rate=Decimal("0.1875"),
            ),
        ]
    )
    await session.flush()


@pytest.fixture
def add_time_record(session: AsyncSession):
    async def _add(employee_id: str, period: str, overtime_hours: str = "0", penalties=None):
        record = TimeImpactRecord(
            employee_id=employee_id,
            period=period,
            overtime_hours=Decimal(overtime_hours),
            penalties=penalties or [],
            permissions=[],
        )
        session.add(record)
        await session.flush()
        return record

    return _add
