"""Entitlement & accrual batch jobs.

Jobs are synchronous: an HTTP call or CLI command runs one batch to the end.
Every run writes a JobRunLog (inserted ``running``, finalized once). Items
are isolated by BatchRunner, so one bad employee marks the run ``partial``
instead of aborting it. Ledger transaction ids are derived from the period
and the balance key, so re-running a job never double-applies.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.calculators.accrual import (
    accrual_amount,
    cap_headroom,
    carry_forward_split,
    resolve_job_type,
    select_rule,
)
from hr_ledger.calculators.periods import Period, add_months, parse_period
from hr_ledger.exceptions import NotFoundError, ValidationError
from hr_ledger.models import (
    Employee,
    EntitlementRule,
    JobRunLog,
    JobRunStatus,
    JobRunType,
    LeaveBalance,
    LeaveType,
    TransactionType,
    utcnow,
)
from hr_ledger.services.audit import record_audit
from hr_ledger.services.batch import BatchRunner, BatchSummary
from hr_ledger.services.ledger_service import BalanceSnapshot, LeaveLedgerService
from hr_ledger.services.state_machine import JobRunStateMachine

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class JobOutcome:
    """What a batch job reports back to its caller."""

    run_id: str
    run_type: str
    period: str
    status: str
    processed: int
    failed: int
    dry_run: bool
    errors: list[dict[str, Any]] = field(default_factory=list)
    items: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "run_type": self.run_type,
            "period": self.period,
            "status": self.status,
            "processed": self.processed,
            "failed": self.failed,
            "dry_run": self.dry_run,
            "errors": self.errors,
            "items": self.items,
        }


class AccrualService:
    """Runs accrual, year-end carry-forward and carried-day expiry jobs."""

    def __init__(self, session: AsyncSession, ledger: LeaveLedgerService | None = None):
        self.session = session
        self.ledger = ledger or LeaveLedgerService(session)

    # ----- accrual -----

    async def run_accrual(
        self,
        period: str,
        job_type: str,
        executed_by: str | None = None,
        dry_run: bool = False,
    ) -> JobOutcome:
        """Accrue one period of entitlement for every active employee.

        An employee with no matching rule for any accruing leave type fails;
        an employee who qualifies for some leave types but not others simply
        skips the ones they do not qualify for.
        """
        parsed = parse_period(period)
        frequency = resolve_job_type(job_type, parsed)

        rules = await self._rules_by_leave_type(frequency)
        employees = await self._employees_in(parsed)
        job = await self._start_job(JobRunType.ACCRUAL_RUN, parsed.label, executed_by, dry_run)

        async def accrue(employee: Employee) -> dict[str, Any]:
            return await self._accrue_employee(employee, parsed, rules, executed_by, dry_run)

        runner: BatchRunner[Employee] = BatchRunner(self.session, f"accrual {parsed.label}")
        summary = await runner.run(employees, lambda e: e.employee_id, accrue)
        return await self._finish_job(job, summary, {"job_type": job_type})

    async def _accrue_employee(
        self,
        employee: Employee,
        period: Period,
        rules: dict[str, list[EntitlementRule]],
        executed_by: str | None,
        dry_run: bool,
    ) -> dict[str, Any]:
        accruals = []
        for leave_type_id, candidates in sorted(rules.items()):
            rule = select_rule(
                candidates, employee.employment_type, employee.hire_date, period.end
            )
            if rule is None:
                continue

            transaction_id = f"accrual:{period.label}:{employee.employee_id}:{leave_type_id}"
            entry: dict[str, Any] = {
                "leave_type_id": leave_type_id,
                "rule_id": rule.rule_id,
                "transaction_id": transaction_id,
            }
            accruals.append(entry)

            if await self.ledger.get_transaction(transaction_id) is not None:
                entry.update(amount="0", status="already_applied")
                continue

            amount = accrual_amount(
                rule, period, employee.hire_date, employee.termination_date
            )
            balance = await self.ledger.find_balance(employee.employee_id, leave_type_id)
            raw = BalanceSnapshot.from_balance(balance).raw_available if balance else ZERO
            granted = cap_headroom(raw, rule.max_balance_cap, amount)
            entry["amount"] = str(granted)
            if granted < amount:
                entry["trimmed_by_cap"] = str(amount - granted)

            if granted <= 0:
                entry["status"] = "capped"
                continue
            if dry_run:
                entry["status"] = "dry_run"
                continue

            balance = await self.ledger.ensure_balance(
                employee.employee_id, leave_type_id, rule.max_balance_cap
            )
            await self.ledger.set_balance_cap(balance, rule.max_balance_cap)
            await self.ledger.apply_transaction(
                employee_id=employee.employee_id,
                leave_type_id=leave_type_id,
                amount=granted,
                transaction_type=TransactionType.ACCRUAL.value,
                transaction_id=transaction_id,
                reason=f"{rule.accrual_frequency} accrual for {period.label} ({rule.name})",
                performed_by=executed_by,
            )
            balance.last_accrual_period = period.label
            entry["status"] = "posted"

        if not accruals:
            raise ValidationError(
                f"No entitlement rule matches employee '{employee.employee_id}'",
                {"employment_type": employee.employment_type},
            )
        return {"accruals": accruals}

    # ----- year end -----

    async def run_year_end(
        self,
        year: int,
        executed_by: str | None = None,
        dry_run: bool = False,
    ) -> JobOutcome:
        """Carry unused days into the next year and forfeit the rest.

        Forfeited days are posted as an ``expiry`` transaction; the carried
        amount and its expiry date are stamped on the balance.
        """
        period = parse_period(str(year))
        rules = await self._rules_by_leave_type()
        employees = {e.employee_id: e for e in await self._all_employees()}
        balances = await self._balances()
        job = await self._start_job(JobRunType.YEAR_END, period.label, executed_by, dry_run)

        async def close_year(balance: LeaveBalance) -> dict[str, Any]:
            employee = employees.get(balance.employee_id)
            if employee is None:
                raise NotFoundError("Employee", balance.employee_id)
            return await self._close_year(
                balance, employee, period, rules, executed_by, dry_run
            )

        runner: BatchRunner[LeaveBalance] = BatchRunner(self.session, f"year-end {year}")
        summary = await runner.run(
            balances, lambda b: f"{b.employee_id}:{b.leave_type_id}", close_year
        )
        return await self._finish_job(job, summary)

    async def _close_year(
        self,
        balance: LeaveBalance,
        employee: Employee,
        period: Period,
        rules: dict[str, list[EntitlementRule]],
        executed_by: str | None,
        dry_run: bool,
    ) -> dict[str, Any]:
        year = period.start.year
        if balance.last_year_end is not None and balance.last_year_end >= year:
            return {"status": "already_applied"}

        rule = select_rule(
            rules.get(balance.leave_type_id, []),
            employee.employment_type,
            employee.hire_date,
            period.end,
        )
        if rule is None:
            raise ValidationError(
                f"No entitlement rule matches employee '{employee.employee_id}' "
                f"for leave type '{balance.leave_type_id}'"
            )

        split = carry_forward_split(
            balance.available_balance, rule.carry_forward_policy, rule.carry_forward_max_days
        )
        expiry_months = rule.carry_forward_expiry_months or rule.expiry_months
        expires_on = add_months(period.end, expiry_months) if expiry_months else None
        detail = {
            "rule_id": rule.rule_id,
            "unused": str(balance.available_balance),
            "carried": str(split.carry),
            "forfeited": str(split.forfeit),
            "expires_on": expires_on.isoformat() if expires_on and split.carry > 0 else None,
        }
        if dry_run:
            detail["status"] = "dry_run"
            return detail

        if split.forfeit > 0:
            await self.ledger.apply_transaction(
                employee_id=balance.employee_id,
                leave_type_id=balance.leave_type_id,
                amount=-split.forfeit,
                transaction_type=TransactionType.EXPIRY.value,
                transaction_id=f"year_end:{year}:{balance.employee_id}:{balance.leave_type_id}",
                reason=f"Forfeited at year end {year} ({rule.carry_forward_policy} carry-forward)",
                performed_by=executed_by,
            )

        balance.carry_forward_cap = (
            rule.carry_forward_max_days if rule.carry_forward_policy == "limited" else None
        )
        balance.carried_forward_days = split.carry
        balance.carry_forward_expires_on = expires_on if split.carry > 0 else None
        balance.last_year_end = year
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="leave_balance",
            entity_id=balance.balance_id,
            action=f"year_end:{year}",
            actor_id=executed_by,
            details=detail,
        )
        detail["status"] = "posted"
        return detail

    # ----- carried-day expiry -----

    async def run_carry_forward_expiry(
        self,
        as_of: date,
        executed_by: str | None = None,
        dry_run: bool = False,
    ) -> JobOutcome:
        """Expire carried-forward days still unused past their expiry date."""
        result = await self.session.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.carried_forward_days > 0,
                LeaveBalance.carry_forward_expires_on.is_not(None),
                LeaveBalance.carry_forward_expires_on < as_of,
            )
            .order_by(LeaveBalance.employee_id, LeaveBalance.leave_type_id)
        )
        balances = list(result.scalars())
        job = await self._start_job(
            JobRunType.CARRY_FORWARD, as_of.isoformat(), executed_by, dry_run
        )

        async def expire(balance: LeaveBalance) -> dict[str, Any]:
            return await self._expire_carried(balance, executed_by, dry_run)

        runner: BatchRunner[LeaveBalance] = BatchRunner(
            self.session, f"carry-forward expiry {as_of.isoformat()}"
        )
        summary = await runner.run(
            balances, lambda b: f"{b.employee_id}:{b.leave_type_id}", expire
        )
        return await self._finish_job(job, summary)

    async def _expire_carried(
        self,
        balance: LeaveBalance,
        executed_by: str | None,
        dry_run: bool,
    ) -> dict[str, Any]:
        expires_on = balance.carry_forward_expires_on
        amount = min(balance.carried_forward_days, balance.available_balance)
        detail = {"expires_on": expires_on.isoformat(), "expired": str(max(amount, ZERO))}
        if dry_run:
            detail["status"] = "dry_run"
            return detail

        if amount > 0:
            await self.ledger.apply_transaction(
                employee_id=balance.employee_id,
                leave_type_id=balance.leave_type_id,
                amount=-amount,
                transaction_type=TransactionType.EXPIRY.value,
                transaction_id=(
                    f"cf_expiry:{expires_on.isoformat()}:"
                    f"{balance.employee_id}:{balance.leave_type_id}"
                ),
                reason=f"Carried-forward days expired on {expires_on.isoformat()}",
                performed_by=executed_by,
            )
        balance.carried_forward_days = ZERO
        balance.carry_forward_expires_on = None
        await self.session.flush()
        detail["status"] = "posted"
        return detail

    # ----- job log -----

    async def get_job(self, run_id: str) -> JobRunLog:
        job = await self.session.get(JobRunLog, run_id)
        if job is None:
            raise NotFoundError("JobRunLog", run_id)
        return job

    async def list_jobs(self, run_type: str | None = None, limit: int = 50) -> list[JobRunLog]:
        stmt = select(JobRunLog).order_by(JobRunLog.started_at.desc()).limit(limit)
        if run_type:
            stmt = stmt.where(JobRunLog.run_type == run_type)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def _start_job(
        self,
        run_type: JobRunType,
        period: str,
        executed_by: str | None,
        dry_run: bool,
    ) -> JobRunLog:
        job = JobRunLog(
            run_type=run_type.value,
            period=period,
            status=JobRunStatus.RUNNING.value,
            executed_by=executed_by,
            dry_run=dry_run,
            summary={},
            started_at=utcnow(),
        )
        self.session.add(job)
        await self.session.flush()
        logger.info(
            "Job %s started: %s %s%s",
            job.run_id,
            run_type.value,
            period,
            " (dry run)" if dry_run else "",
        )
        return job

    async def _finish_job(
        self,
        job: JobRunLog,
        summary: BatchSummary,
        extra: dict[str, Any] | None = None,
    ) -> JobOutcome:
        JobRunStateMachine.transition(job, summary.status)
        items = [r.to_dict() for r in summary.results]
        job.summary = {
            "processed": summary.processed,
            "failed": summary.failed,
            "errors": summary.errors,
            "items": items,
            **(extra or {}),
        }
        job.finished_at = utcnow()
        await self.session.flush()

        log = logger.warning if summary.failed else logger.info
        log(
            "Job %s finished %s: %d processed, %d failed",
            job.run_id,
            job.status,
            summary.processed,
            summary.failed,
        )
        return JobOutcome(
            run_id=job.run_id,
            run_type=job.run_type,
            period=job.period,
            status=job.status,
            processed=summary.processed,
            failed=summary.failed,
            dry_run=job.dry_run,
            errors=summary.errors,
            items=items,
        )

    # ----- loaders -----

    async def _rules_by_leave_type(
        self, frequency: str | None = None
    ) -> dict[str, list[EntitlementRule]]:
        stmt = (
            select(EntitlementRule)
            .join(LeaveType, LeaveType.leave_type_id == EntitlementRule.leave_type_id)
            .where(EntitlementRule.is_active.is_(True))
        )
        if frequency is not None:
            stmt = stmt.where(
                EntitlementRule.accrual_frequency == frequency,
                LeaveType.accrues.is_(True),
            )
        result = await self.session.execute(stmt)
        grouped: dict[str, list[EntitlementRule]] = defaultdict(list)
        for rule in result.scalars():
            grouped[rule.leave_type_id].append(rule)
        return dict(grouped)

    async def _employees_in(self, period: Period) -> list[Employee]:
        """Active employees employed at some point within the period."""
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

    async def _all_employees(self) -> list[Employee]:
        result = await self.session.execute(select(Employee).order_by(Employee.employee_id))
        return list(result.scalars())

    async def _balances(self) -> list[LeaveBalance]:
        result = await self.session.execute(
            select(LeaveBalance).order_by(LeaveBalance.employee_id, LeaveBalance.leave_type_id)
        )
        return list(result.scalars())
