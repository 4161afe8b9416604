"""Employee and organisation directory models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, Date, String
from sqlalchemy.orm import Mapped, mapped_column

from hr_ledger.models.base import Base, Money, UpdatedMixin, new_id


class Employee(Base, UpdatedMixin):
    """Directory record consumed by accrual, payroll and approvals."""

    __tablename__ = "employee"

    employee_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    employment_type: Mapped[str] = mapped_column(String(32), nullable=False, default="full_time")
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    position_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    base_salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    bank_account: Mapped[str | None] = mapped_column(String, nullable=True)
    # [{"name": "Housing", "amount": "500.00"}, ...]
    allowances: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    signing_bonus: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # System roles used for workflow step matching, e.g. ["MANAGER", "HR"]
    roles: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def is_employed_on(self, day: date) -> bool:
        if day < self.hire_date:
            return False
        return self.termination_date is None or day <= self.termination_date
