"""Leave requests: reserve on submit, take on approval, compensate on reversal.

Paid leave moves through the ledger as reserve (negative reserve_release),
release (positive reserve_release) and take. Unpaid leave never touches a
balance; payroll picks it up as unpaid days instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.calculators.accrual import select_rule
from hr_ledger.calculators.periods import working_days
from hr_ledger.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from hr_ledger.models import (
    Employee,
    EntitlementRule,
    HolidayCalendarEntry,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    TransactionType,
    utcnow,
)
from hr_ledger.services.approval_service import ApprovalService
from hr_ledger.services.audit import record_audit
from hr_ledger.services.ledger_service import LeaveLedgerService
from hr_ledger.services.state_machine import LeaveRequestStateMachine

logger = logging.getLogger(__name__)

ENTITY = "leave_request"


class LeaveRequestService:
    def __init__(
        self,
        session: AsyncSession,
        ledger: LeaveLedgerService | None = None,
        approvals: ApprovalService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.ledger = ledger or LeaveLedgerService(session)
        self.approvals = approvals or ApprovalService(session, clock=clock)

    async def submit(
        self,
        employee_id: str,
        leave_type_id: str,
        start_date: date,
        end_date: date,
        actor_id: str | None = None,
        justification: str | None = None,
        position_code: str | None = None,
        now: datetime | None = None,
    ) -> LeaveRequest:
        """Create a pending request, reserve its days and start approval.

        Net days exclude weekends and calendar holidays. Requests touching a
        blocked day are refused.
        """
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")

        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        leave_type = await self.session.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundError("LeaveType", leave_type_id)
        if not employee.is_employed_on(start_date) or not employee.is_employed_on(end_date):
            raise ValidationError("Leave must fall within the employee's employment")

        entries = await self._calendar(start_date, end_date)
        blocked = sorted(e.day.isoformat() for e in entries if e.is_blocked)
        if blocked:
            raise ValidationError("Leave overlaps blocked days", {"blocked": blocked})

        net_days = Decimal(working_days(start_date, end_date, {e.day for e in entries}))
        if net_days <= 0:
            raise ValidationError("Requested range contains no working days")

        position = position_code or employee.position_code
        if not position:
            raise ValidationError(f"Employee '{employee_id}' has no position code for approval")

        rule = await self._rule_for(employee, leave_type_id, start_date)

        async with self.session.begin_nested():
            request = LeaveRequest(
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                rule_id=rule.rule_id if rule else None,
                start_date=start_date,
                end_date=end_date,
                requested_days=Decimal((end_date - start_date).days + 1),
                net_days=net_days,
                justification=justification,
                status=LeaveRequestStatus.PENDING.value,
            )
            self.session.add(request)
            await self.session.flush()

            if leave_type.is_paid:
                await self._post(
                    request,
                    -net_days,
                    "reserve",
                    f"Reserved for leave {start_date.isoformat()}..{end_date.isoformat()}",
                    actor_id,
                )

            instance = await self.approvals.start(ENTITY, request.request_id, position, now)
            request.approval_instance_id = instance.instance_id
            record_audit(
                self.session,
                entity_type=ENTITY,
                entity_id=request.request_id,
                action="submitted",
                actor_id=actor_id,
                details={"net_days": str(net_days)},
            )
            await self.session.flush()

        logger.info(
            "Leave request %s submitted: %s day(s) of %s for %s",
            request.request_id,
            net_days,
            leave_type.code,
            employee_id,
        )
        return request

    async def review(
        self,
        request_id: str,
        action: str,
        actor_id: str,
        reason: str | None = None,
        delegate_id: str | None = None,
        delegate_until: datetime | None = None,
        now: datetime | None = None,
    ) -> LeaveRequest:
        """Pass an approval action through; settle the ledger once decided."""
        request = await self.get_request(request_id)
        if request.status != LeaveRequestStatus.PENDING.value:
            raise InvalidTransitionError(
                LeaveRequestStateMachine.ENTITY,
                request.status,
                LeaveRequestStatus.APPROVED.value,
                "request is no longer pending",
            )

        status = await self.approvals.advance(
            ENTITY,
            request_id,
            action,
            actor_id,
            reason=reason,
            delegate_id=delegate_id,
            delegate_until=delegate_until,
            now=now,
        )

        paid = await self._is_paid(request)
        if status == "approved":
            if paid:
                await self._post(request, request.net_days, "release", "Reservation released", actor_id)
                # Days were checked when reserved; the take consumes them unconditionally
                await self._post(
                    request, -request.net_days, "take", "Approved leave", actor_id, override=True
                )
            LeaveRequestStateMachine.transition(request, LeaveRequestStatus.APPROVED.value)
        elif status == "rejected":
            if paid:
                await self._post(request, request.net_days, "release", "Request rejected", actor_id)
            LeaveRequestStateMachine.transition(request, LeaveRequestStatus.REJECTED.value)

        await self.session.flush()
        return request

    async def cancel(
        self,
        request_id: str,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> LeaveRequest:
        """Cancel a pending request or reverse an approved one.

        History is never edited: a reversal posts a compensating take.
        """
        request = await self.get_request(request_id)
        paid = await self._is_paid(request)

        if request.status == LeaveRequestStatus.PENDING.value:
            LeaveRequestStateMachine.transition(request, LeaveRequestStatus.CANCELLED.value)
            if paid:
                await self._post(
                    request, request.net_days, "release", reason or "Request cancelled", actor_id
                )
        else:
            LeaveRequestStateMachine.transition(
                request, LeaveRequestStatus.REVERSED.value, "only pending or approved requests"
            )
            if paid:
                await self._post(
                    request,
                    request.net_days,
                    "take:reversal",
                    reason or "Approved leave reversed",
                    actor_id,
                    compensating=True,
                )

        record_audit(
            self.session,
            entity_type=ENTITY,
            entity_id=request_id,
            action=request.status,
            actor_id=actor_id,
            details={"reason": reason},
        )
        await self.session.flush()
        logger.info("Leave request %s %s by %s", request_id, request.status, actor_id)
        return request

    async def get_request(self, request_id: str) -> LeaveRequest:
        request = await self.session.get(LeaveRequest, request_id)
        if request is None:
            raise NotFoundError("LeaveRequest", request_id)
        return request

    async def list_requests(
        self, employee_id: str, status: str | None = None
    ) -> list[LeaveRequest]:
        stmt = (
            select(LeaveRequest)
            .where(LeaveRequest.employee_id == employee_id)
            .order_by(LeaveRequest.start_date)
        )
        if status:
            stmt = stmt.where(LeaveRequest.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def _post(
        self,
        request: LeaveRequest,
        amount: Decimal,
        suffix: str,
        reason: str,
        actor_id: str | None,
        override: bool = False,
        compensating: bool = False,
    ) -> None:
        kind = suffix.split(":")[0]
        transaction_type = (
            TransactionType.TAKE.value if kind == "take" else TransactionType.RESERVE_RELEASE.value
        )
        await self.ledger.apply_transaction(
            employee_id=request.employee_id,
            leave_type_id=request.leave_type_id,
            amount=amount,
            transaction_type=transaction_type,
            transaction_id=f"{request.request_id}:{suffix}",
            reason=reason,
            performed_by=actor_id,
            request_id=request.request_id,
            override=override,
            compensating=compensating,
        )

    async def _is_paid(self, request: LeaveRequest) -> bool:
        leave_type = await self.session.get(LeaveType, request.leave_type_id)
        return bool(leave_type and leave_type.is_paid)

    async def _calendar(self, start: date, end: date) -> list[HolidayCalendarEntry]:
        result = await self.session.execute(
            select(HolidayCalendarEntry).where(
                HolidayCalendarEntry.day >= start,
                HolidayCalendarEntry.day <= end,
            )
        )
        return list(result.scalars())

    async def _rule_for(
        self, employee: Employee, leave_type_id: str, as_of: date
    ) -> EntitlementRule | None:
        result = await self.session.execute(
            select(EntitlementRule).where(
                EntitlementRule.leave_type_id == leave_type_id,
                EntitlementRule.is_active.is_(True),
            )
        )
        return select_rule(
            list(result.scalars()), employee.employment_type, employee.hire_date, as_of
        )
