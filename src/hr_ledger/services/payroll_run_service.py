"""Payroll run service - orchestrates draft, calculation, approval and payment."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hr_ledger.calculators.payslip import compute_payslip, detect_anomalies
from hr_ledger.calculators.periods import Period, parse_period
from hr_ledger.calculators.tax_calculator import validate_tax_brackets
from hr_ledger.calculators.types import AnomalySeverity
from hr_ledger.config import get_settings
from hr_ledger.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from hr_ledger.models import (
    Employee,
    PayrollRun,
    PayrollRunStatus,
    PayslipDetail,
    PayslipStatus,
    Refund,
    RefundStatus,
    utcnow,
)
from hr_ledger.services.approval_service import ApprovalService
from hr_ledger.services.audit import record_audit
from hr_ledger.services.collaborators import (
    EmployeeDirectory,
    LeaveImpactSource,
    PayrollConfigurationSource,
    SqlEmployeeDirectory,
    SqlLeaveImpactSource,
    SqlPayrollConfigurationSource,
    SqlTimeManagementSource,
    TimeManagementSource,
)
from hr_ledger.services.state_machine import PayrollRunStateMachine, PayslipStateMachine

logger = logging.getLogger(__name__)

ENTITY = "payroll_run"


class PayrollRunService:
    """Service for managing payroll run lifecycle.

    Operations:
    - create_run: draft run with one pending payslip per employee
    - calculate_run: compute every payslip; missing inputs mark the run partial
    - submit_run / review_run: approval workflow for a calculated run; critical
      anomalies block submission
    - reopen_run: rejected → draft so the run can be corrected; releases refunds
    - finalize_run: approved → paid, total net disbursement fixed
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
        time_source: TimeManagementSource | None = None,
        leave_source: LeaveImpactSource | None = None,
        config_source: PayrollConfigurationSource | None = None,
        approvals: ApprovalService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.directory = directory or SqlEmployeeDirectory(session)
        self.time_source = time_source or SqlTimeManagementSource(session)
        self.leave_source = leave_source or SqlLeaveImpactSource(session)
        self.config_source = config_source or SqlPayrollConfigurationSource(session)
        self.approvals = approvals or ApprovalService(session, self.directory, clock)
        self.clock = clock

    async def create_run(
        self,
        period: str,
        initiated_by: str | None = None,
        employee_ids: list[str] | None = None,
    ) -> PayrollRun:
        """Draft a run for a month with one pending payslip per employee."""
        parsed = self._month(period)

        open_run = await self.session.execute(
            select(PayrollRun.run_id).where(
                PayrollRun.period == parsed.label,
                PayrollRun.status != PayrollRunStatus.PAID.value,
            )
        )
        existing = open_run.scalars().first()
        if existing is not None:
            raise ConflictError(
                f"Payroll run '{existing}' for {parsed.label} is still open",
                {"run_id": existing},
            )

        if employee_ids is None:
            employees = await self.directory.active_employees(parsed)
        else:
            duplicates = sorted({e for e in employee_ids if employee_ids.count(e) > 1})
            if duplicates:
                raise ConflictError(
                    "Duplicate payslip for employee(s) in one run",
                    {"employee_ids": duplicates},
                )
            employees = [await self.directory.get_employee(e) for e in employee_ids]
            outside = [
                e.employee_id
                for e in employees
                if e.hire_date > parsed.end
                or (e.termination_date is not None and e.termination_date < parsed.start)
            ]
            if outside:
                raise ValidationError(
                    f"Employee(s) not employed during {parsed.label}",
                    {"employee_ids": outside},
                )

        if not employees:
            raise ValidationError(f"No employees to pay for {parsed.label}")

        run = PayrollRun(
            period=parsed.label,
            status=PayrollRunStatus.DRAFT.value,
            initiated_by=initiated_by,
            payslips=[
                PayslipDetail(employee_id=e.employee_id, status=PayslipStatus.PENDING.value)
                for e in employees
            ],
        )
        self.session.add(run)
        await self.session.flush()

        self._record_audit(run, "created", initiated_by, {"employees": len(employees)})
        logger.info(
            "Payroll run %s drafted for %s with %d payslip(s)",
            run.run_id,
            parsed.label,
            len(employees),
        )
        return run

    async def get_run(self, run_id: str) -> PayrollRun:
        result = await self.session.execute(
            select(PayrollRun)
            .where(PayrollRun.run_id == run_id)
            .options(selectinload(PayrollRun.payslips))
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError("PayrollRun", run_id)
        return run

    async def list_runs(
        self, period: str | None = None, status: str | None = None
    ) -> list[PayrollRun]:
        stmt = select(PayrollRun).order_by(PayrollRun.created_at.desc())
        if period:
            stmt = stmt.where(PayrollRun.period == period)
        if status:
            stmt = stmt.where(PayrollRun.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def calculate_run(self, run_id: str, actor_id: str | None = None) -> PayrollRun:
        """(Re)compute every payslip of a run.

        An employee whose time or leave input is unavailable gets an
        ``error`` payslip and the run ends ``partial``; the others are
        still calculated.

        Pending refunds not yet counted by another run are linked to this
        run and paid through the payslip. A payslip that fails gives its
        refunds back.
        """
        run = await self.get_run(run_id)
        if not PayrollRunStateMachine.can_calculate(run.status):
            raise InvalidTransitionError(
                PayrollRunStateMachine.ENTITY,
                run.status,
                PayrollRunStatus.CALCULATED.value,
                "payslips are locked in this status",
            )

        period = parse_period(run.period)
        config = await self.config_source.payroll_config(period)
        validate_tax_brackets(config.tax_brackets)

        errors = 0
        alerts = 0
        critical = 0
        for payslip in run.payslips:
            employee = await self.directory.get_employee(payslip.employee_id)
            refunds = await self._claim_refunds(run, employee.employee_id)
            compensation = replace(
                await self.directory.compensation(employee),
                refunds=sum((Decimal(r.amount) for r in refunds), Decimal("0")),
            )
            time_impact = await self._fetch("time_management", self.time_source.time_impact, employee, period)
            leave_impact = await self._fetch("leave_ledger", self.leave_source.leave_impact, employee, period)

            result = compute_payslip(compensation, period, config, time_impact, leave_impact)
            for field, value in result.to_record().items():
                setattr(payslip, field, value)
            anomalies = detect_anomalies(result, employee.bank_account)
            payslip.anomalies = [a.to_dict() for a in anomalies]
            PayslipStateMachine.transition(payslip, result.status)

            for anomaly in anomalies:
                if anomaly.blocking:
                    critical += 1
                    logger.warning(
                        "Payslip for %s in run %s: %s",
                        employee.employee_id,
                        run.run_id,
                        anomaly.message,
                    )

            if not result.success:
                for refund in refunds:
                    refund.payroll_run_id = None
                errors += 1
                logger.warning(
                    "Payslip for %s in run %s failed: %s",
                    employee.employee_id,
                    run.run_id,
                    payslip.error_message,
                )
            elif result.minimum_wage_alert:
                alerts += 1
                logger.warning(
                    "Net pay %s for %s in run %s is below the minimum wage %s",
                    result.net_salary,
                    employee.employee_id,
                    run.run_id,
                    config.minimum_wage,
                )

        status = PayrollRunStatus.PARTIAL.value if errors else PayrollRunStatus.CALCULATED.value
        PayrollRunStateMachine.transition(run, status)
        await self.session.flush()

        self._record_audit(
            run,
            f"calculated:{status}",
            actor_id,
            {
                "payslips": len(run.payslips),
                "errors": errors,
                "minimum_wage_alerts": alerts,
                "critical_anomalies": critical,
            },
        )
        logger.info(
            "Payroll run %s calculated: %d payslip(s), %d error(s), status %s",
            run.run_id,
            len(run.payslips),
            errors,
            status,
        )
        return run

    async def submit_run(
        self,
        run_id: str,
        actor_id: str | None = None,
        position_code: str | None = None,
        now: datetime | None = None,
    ) -> PayrollRun:
        """Send a fully calculated run into the approval workflow.

        Refused while any payslip carries a critical anomaly; correct the
        inputs and recalculate first.
        """
        run = await self.get_run(run_id)
        PayrollRunStateMachine.validate_transition(
            run.status,
            PayrollRunStatus.PENDING_APPROVAL.value,
            "only a fully calculated run can be submitted",
        )
        blocking = [
            a for a in self.anomalies_of(run) if a["severity"] == AnomalySeverity.CRITICAL.value
        ]
        if blocking:
            raise ValidationError(
                f"Payroll run '{run.run_id}' has {len(blocking)} critical anomaly(ies)",
                {"anomalies": blocking},
            )

        run.approval_round += 1
        instance = await self.approvals.start(
            ENTITY,
            self.approval_key(run),
            position_code or get_settings().payroll_approval_position,
            now,
        )
        run.approval_instance_id = instance.instance_id
        PayrollRunStateMachine.transition(run, PayrollRunStatus.PENDING_APPROVAL.value)
        await self.session.flush()
        self._record_audit(run, "submitted", actor_id)
        return run

    async def review_run(
        self,
        run_id: str,
        action: str,
        actor_id: str,
        reason: str | None = None,
        delegate_id: str | None = None,
        delegate_until: datetime | None = None,
        now: datetime | None = None,
    ) -> PayrollRun:
        run = await self.get_run(run_id)
        if run.status != PayrollRunStatus.PENDING_APPROVAL.value:
            raise InvalidTransitionError(
                PayrollRunStateMachine.ENTITY,
                run.status,
                PayrollRunStatus.APPROVED.value,
                "run is not awaiting approval",
            )

        status = await self.approvals.advance(
            ENTITY,
            self.approval_key(run),
            action,
            actor_id,
            reason=reason,
            delegate_id=delegate_id,
            delegate_until=delegate_until,
            now=now,
        )
        if status in (PayrollRunStatus.APPROVED.value, PayrollRunStatus.REJECTED.value):
            PayrollRunStateMachine.transition(run, status)
            self._record_audit(run, status, actor_id, {"reason": reason} if reason else None)
        await self.session.flush()
        return run

    async def reopen_run(self, run_id: str, actor_id: str | None = None) -> PayrollRun:
        """Return a rejected run to draft for correction and recalculation."""
        run = await self.get_run(run_id)
        PayrollRunStateMachine.transition(
            run, PayrollRunStatus.DRAFT.value, "only a rejected run can be reopened"
        )
        result = await self.session.execute(
            select(Refund).where(
                Refund.payroll_run_id == run.run_id,
                Refund.status == RefundStatus.PENDING.value,
            )
        )
        for refund in result.scalars():
            refund.payroll_run_id = None
        await self.session.flush()
        self._record_audit(run, "reopened", actor_id)
        return run

    async def finalize_run(self, run_id: str, actor_id: str | None = None) -> PayrollRun:
        """Mark an approved run paid and fix its total net disbursement."""
        run = await self.get_run(run_id)
        PayrollRunStateMachine.validate_transition(run.status, PayrollRunStatus.PAID.value)

        total = Decimal("0")
        for payslip in run.payslips:
            PayslipStateMachine.transition(payslip, PayslipStatus.PAID.value)
            total += payslip.net_salary

        run.total_net_disbursement = total
        run.finalized_at = self.clock()
        PayrollRunStateMachine.transition(run, PayrollRunStatus.PAID.value)

        await self.session.execute(
            update(Refund)
            .where(
                Refund.payroll_run_id == run.run_id,
                Refund.status == RefundStatus.PENDING.value,
            )
            .values(status=RefundStatus.PROCESSED.value)
        )
        await self.session.flush()

        self._record_audit(run, "paid", actor_id, {"total_net_disbursement": str(total)})
        logger.info("Payroll run %s paid: total net %s", run.run_id, total)
        return run

    @staticmethod
    def approval_key(run: PayrollRun) -> str:
        return f"{run.run_id}:r{run.approval_round}"

    @staticmethod
    def anomalies_of(run: PayrollRun) -> list[dict]:
        """Anomalies from the last calculation, tagged with their employee."""
        return [
            {"employee_id": p.employee_id, **anomaly}
            for p in run.payslips
            for anomaly in p.anomalies or []
        ]

    async def _claim_refunds(self, run: PayrollRun, employee_id: str) -> list[Refund]:
        """Link the employee's uncounted pending refunds to this run."""
        result = await self.session.execute(
            select(Refund)
            .where(
                Refund.employee_id == employee_id,
                Refund.status == RefundStatus.PENDING.value,
                or_(Refund.payroll_run_id.is_(None), Refund.payroll_run_id == run.run_id),
            )
            .order_by(Refund.created_at)
        )
        refunds = list(result.scalars())
        for refund in refunds:
            refund.payroll_run_id = run.run_id
        return refunds

    async def _fetch(self, source: str, fetch, employee: Employee, period: Period):
        try:
            return await fetch(employee.employee_id, period)
        except UpstreamUnavailableError as exc:
            logger.warning("%s unavailable for %s: %s", source, employee.employee_id, exc.message)
            return None

    def _month(self, period: str) -> Period:
        parsed = parse_period(period)
        if parsed.kind != "month":
            raise ValidationError(f"Payroll runs are monthly; got '{period}'")
        return parsed

    def _record_audit(
        self,
        run: PayrollRun,
        action: str,
        actor_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        record_audit(
            self.session,
            entity_type=ENTITY,
            entity_id=run.run_id,
            action=action,
            actor_id=actor_id,
            details=details,
        )
