"""Tests for the leave request lifecycle and its ledger effects."""

from datetime import date
from decimal import Decimal

import pytest

from hr_ledger.exceptions import (
    AuthorizationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ValidationError,
)
from hr_ledger.models import HolidayCalendarEntry
from hr_ledger.services.approval_service import ApprovalService
from hr_ledger.services.leave_request_service import LeaveRequestService
from hr_ledger.services.ledger_service import LeaveLedgerService

from .conftest import ANNUAL, T0, UNPAID

MONDAY = date(2024, 3, 11)
FRIDAY = date(2024, 3, 15)


@pytest.fixture
async def setup(session, make_employee, make_workflow, annual_leave):
    await make_employee("emp-1")
    await make_employee("mgr-1", roles=["MANAGER"])
    await make_employee("hr-1", roles=["HR"])
    await make_workflow("ENG", ["MANAGER", "HR"], step2={"can_override": True})
    await LeaveLedgerService(session).apply_transaction(
        employee_id="emp-1",
        leave_type_id=ANNUAL,
        amount=Decimal("10"),
        transaction_type="adjustment",
        transaction_id="grant:emp-1",
    )


@pytest.fixture
def service(session) -> LeaveRequestService:
    ledger = LeaveLedgerService(session)
    return LeaveRequestService(
        session, ledger=ledger, approvals=ApprovalService(session, clock=lambda: T0)
    )


async def balance(service: LeaveRequestService, leave_type_id: str = ANNUAL):
    return await service.ledger.get_balance("emp-1", leave_type_id)


async def submit_week(service: LeaveRequestService, leave_type_id: str = ANNUAL):
    return await service.submit(
        "emp-1", leave_type_id, MONDAY, FRIDAY, actor_id="emp-1", justification="Holiday", now=T0
    )


class TestSubmit:
    async def test_submit_reserves_net_days(self, service, setup):
        request = await submit_week(service)

        assert request.status == "pending"
        assert request.requested_days == Decimal("5")
        assert request.net_days == Decimal("5")
        assert request.approval_instance_id is not None

        current = await balance(service)
        assert current.reserved_days == Decimal("5")
        assert current.available_balance == Decimal("5")

        reserve = await service.ledger.get_transaction(f"{request.request_id}:reserve")
        assert reserve.transaction_type == "reserve_release"
        assert reserve.amount == Decimal("-5")
        assert reserve.request_id == request.request_id

    async def test_holidays_reduce_net_days(self, session, service, setup):
        session.add(HolidayCalendarEntry(day=date(2024, 3, 13), name="Founders day"))
        await session.flush()

        request = await submit_week(service)

        assert request.requested_days == Decimal("5")
        assert request.net_days == Decimal("4")

    async def test_blocked_day_refused(self, session, service, setup):
        session.add(
            HolidayCalendarEntry(day=date(2024, 3, 14), name="Year-end close", is_blocked=True)
        )
        await session.flush()

        with pytest.raises(ValidationError) as exc_info:
            await submit_week(service)

        assert exc_info.value.details["blocked"] == ["2024-03-14"]

    async def test_weekend_only_range_refused(self, service, setup):
        with pytest.raises(ValidationError):
            await service.submit("emp-1", ANNUAL, date(2024, 3, 16), date(2024, 3, 17), now=T0)

    async def test_inverted_range_refused(self, service, setup):
        with pytest.raises(ValidationError):
            await service.submit("emp-1", ANNUAL, FRIDAY, MONDAY, now=T0)

    async def test_insufficient_balance_leaves_nothing_behind(self, service, setup):
        with pytest.raises(InsufficientBalanceError):
            await service.submit("emp-1", ANNUAL, date(2024, 3, 4), date(2024, 3, 22), now=T0)

        assert await service.list_requests("emp-1") == []
        current = await balance(service)
        assert current.reserved_days == Decimal("0")
        assert current.available_balance == Decimal("10")


class TestReview:
    async def test_full_approval_converts_reservation_to_take(self, service, setup):
        request = await submit_week(service)

        await service.review(request.request_id, "approve", "mgr-1", now=T0)
        assert request.status == "pending"

        await service.review(request.request_id, "approve", "hr-1", now=T0)
        assert request.status == "approved"

        current = await balance(service)
        assert current.reserved_days == Decimal("0")
        assert current.taken_days == Decimal("5")
        assert current.available_balance == Decimal("5")
        assert (await service.ledger.verify_balance("emp-1", ANNUAL)).consistent

    async def test_rejection_releases_reservation(self, service, setup):
        request = await submit_week(service)

        await service.review(request.request_id, "reject", "mgr-1", reason="Release week", now=T0)

        assert request.status == "rejected"
        current = await balance(service)
        assert current.reserved_days == Decimal("0")
        assert current.available_balance == Decimal("10")

    async def test_hr_override_approves_in_one_step(self, service, setup):
        request = await submit_week(service)

        await service.review(request.request_id, "override", "hr-1", reason="Urgent", now=T0)

        assert request.status == "approved"
        assert (await balance(service)).taken_days == Decimal("5")

    async def test_wrong_reviewer_changes_nothing(self, service, setup):
        request = await submit_week(service)

        with pytest.raises(AuthorizationError):
            await service.review(request.request_id, "approve", "hr-1", now=T0)

        assert request.status == "pending"
        assert (await balance(service)).reserved_days == Decimal("5")

    async def test_decided_request_cannot_be_reviewed(self, service, setup):
        request = await submit_week(service)
        await service.review(request.request_id, "reject", "mgr-1", now=T0)

        with pytest.raises(InvalidTransitionError):
            await service.review(request.request_id, "approve", "mgr-1", now=T0)


class TestCancel:
    async def test_cancel_pending_releases(self, service, setup):
        request = await submit_week(service)

        await service.cancel(request.request_id, actor_id="emp-1", reason="Plans changed")

        assert request.status == "cancelled"
        current = await balance(service)
        assert current.reserved_days == Decimal("0")
        assert current.available_balance == Decimal("10")

    async def test_cancel_approved_posts_compensating_take(self, service, setup):
        request = await submit_week(service)
        await service.review(request.request_id, "override", "hr-1", now=T0)

        await service.cancel(request.request_id, actor_id="hr-1")

        assert request.status == "reversed"
        reversal = await service.ledger.get_transaction(f"{request.request_id}:take:reversal")
        assert reversal.transaction_type == "take"
        assert reversal.amount == Decimal("5")

        current = await balance(service)
        assert current.taken_days == Decimal("0")
        assert current.available_balance == Decimal("10")

        ids = [t.transaction_id for t in await service.ledger.list_transactions("emp-1", ANNUAL)]
        assert ids == [
            "grant:emp-1",
            f"{request.request_id}:reserve",
            f"{request.request_id}:release",
            f"{request.request_id}:take",
            f"{request.request_id}:take:reversal",
        ]

    async def test_rejected_request_cannot_be_cancelled(self, service, setup):
        request = await submit_week(service)
        await service.review(request.request_id, "reject", "mgr-1", now=T0)

        with pytest.raises(InvalidTransitionError):
            await service.cancel(request.request_id)


class TestUnpaidLeave:
    async def test_unpaid_leave_never_touches_the_ledger(self, service, setup, unpaid_leave):
        request = await submit_week(service, UNPAID)
        await service.review(request.request_id, "override", "hr-1", now=T0)

        assert request.status == "approved"
        assert await service.ledger.list_transactions("emp-1", UNPAID) == []
        assert await service.ledger.find_balance("emp-1", UNPAID) is None

    async def test_list_requests_filters_by_status(self, service, setup, unpaid_leave):
        first = await submit_week(service, UNPAID)
        await service.submit("emp-1", UNPAID, date(2024, 4, 1), date(2024, 4, 2), now=T0)
        await service.cancel(first.request_id)

        pending = await service.list_requests("emp-1", status="pending")

        assert [r.start_date for r in pending] == [date(2024, 4, 1)]
        assert len(await service.list_requests("emp-1")) == 2
