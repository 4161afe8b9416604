"""Tests for multi-step approval workflows.

Covers role-gated advancement, lazy SLA escalation, delegation windows
and HR override.
"""

from datetime import timedelta

import pytest

from hr_ledger.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hr_ledger.services.approval_service import ApprovalService

from .conftest import T0

ENTITY = "leave_request"


def hours(n: float):
    return T0 + timedelta(hours=n)


@pytest.fixture
async def people(make_employee):
    await make_employee("mgr-1", roles=["MANAGER"])
    await make_employee("hr-1", roles=["HR"])
    await make_employee("dir-1", roles=["DIRECTOR"])
    await make_employee("ceo-1", roles=["CEO"])
    await make_employee("emp-1")
    await make_employee("emp-2")


@pytest.fixture
async def workflow(make_workflow, people):
    return await make_workflow(
        "ENG",
        ["MANAGER", "HR", "DIRECTOR"],
        step1={"sla_hours": 24, "can_delegate": True},
        step2={"can_override": True},
        escalation_role="CEO",
    )


@pytest.fixture
def service(session) -> ApprovalService:
    return ApprovalService(session, clock=lambda: T0)


async def started(service: ApprovalService, entity_id: str = "req-1"):
    return await service.start(ENTITY, entity_id, "ENG", now=T0)


class TestWorkflowConfiguration:
    async def test_steps_are_ordered(self, service, workflow):
        loaded = await service.get_workflow("ENG")

        assert [s.role for s in loaded.steps] == ["MANAGER", "HR", "DIRECTOR"]
        assert loaded.steps[0].sla_hours == 24
        assert loaded.escalation_role == "CEO"

    async def test_duplicate_position_rejected(self, service, workflow):
        with pytest.raises(ConflictError):
            await service.create_workflow("ENG", "again", [{"step_number": 1, "role": "HR"}])

    async def test_empty_chain_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_workflow("OPS", "empty", [])

    async def test_duplicate_step_numbers_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_workflow(
                "OPS",
                "dup",
                [{"step_number": 1, "role": "HR"}, {"step_number": 1, "role": "CFO"}],
            )

    async def test_unknown_position(self, service):
        with pytest.raises(NotFoundError):
            await service.get_workflow("NOPE")


class TestAdvance:
    async def test_full_chain_approves(self, service, workflow):
        await started(service)

        assert await service.advance(ENTITY, "req-1", "approve", "mgr-1", now=hours(1)) == "pending"
        assert await service.advance(ENTITY, "req-1", "approve", "hr-1", now=hours(2)) == "pending"
        assert await service.advance(ENTITY, "req-1", "approve", "dir-1", now=hours(3)) == "approved"

        history = await service.history(ENTITY, "req-1")
        assert [(d.step_number, d.action, d.actor_id) for d in history] == [
            (1, "approved", "mgr-1"),
            (2, "approved", "hr-1"),
            (3, "approved", "dir-1"),
        ]

    async def test_reject_at_second_step(self, service, workflow):
        await started(service)
        await service.advance(ENTITY, "req-1", "approve", "mgr-1", now=hours(1))

        status = await service.advance(
            ENTITY, "req-1", "reject", "hr-1", reason="Team at capacity", now=hours(2)
        )

        assert status == "rejected"
        history = await service.history(ENTITY, "req-1")
        assert history[-1].action == "rejected"
        assert history[-1].reason == "Team at capacity"
        assert history[-1].actor_role == "HR"

    async def test_wrong_role_cannot_act(self, service, workflow):
        await started(service)

        with pytest.raises(AuthorizationError) as exc_info:
            await service.advance(ENTITY, "req-1", "approve", "hr-1", now=hours(1))

        assert exc_info.value.details["required_role"] == "MANAGER"

    async def test_decided_instance_is_final(self, service, workflow):
        await started(service)
        await service.advance(ENTITY, "req-1", "reject", "mgr-1", now=hours(1))

        with pytest.raises(InvalidTransitionError):
            await service.advance(ENTITY, "req-1", "approve", "mgr-1", now=hours(2))

    async def test_unknown_action(self, service, workflow):
        await started(service)

        with pytest.raises(ValidationError):
            await service.advance(ENTITY, "req-1", "escalate", "mgr-1")

    async def test_one_instance_per_entity(self, service, workflow):
        await started(service)

        with pytest.raises(ConflictError):
            await started(service)

    async def test_missing_instance(self, service, workflow):
        with pytest.raises(NotFoundError):
            await service.get_instance(ENTITY, "nope")


class TestEscalation:
    async def test_within_sla_nothing_happens(self, service, workflow):
        await started(service)

        instance = await service.get_instance(ENTITY, "req-1", now=hours(23))

        assert instance.acting_role == "MANAGER"
        assert instance.decisions == []

    async def test_one_window_moves_to_next_role(self, service, workflow):
        await started(service)

        instance = await service.get_instance(ENTITY, "req-1", now=hours(25))

        assert instance.acting_role == "HR"
        assert instance.current_step == 1
        escalation = instance.decisions[0]
        assert escalation.action == "escalated"
        assert escalation.actor_id is None

    async def test_each_elapsed_window_escalates_once(self, service, workflow):
        await started(service)

        instance = await service.get_instance(ENTITY, "req-1", now=hours(50))

        assert instance.acting_role == "DIRECTOR"
        assert [d.action for d in instance.decisions] == ["escalated", "escalated"]

        with pytest.raises(AuthorizationError):
            await service.advance(ENTITY, "req-1", "approve", "hr-1", now=hours(50))
        assert await service.advance(ENTITY, "req-1", "approve", "dir-1", now=hours(51)) == "pending"

        instance = await service.get_instance(ENTITY, "req-1", now=hours(51))
        assert instance.current_step == 2
        assert instance.acting_role == "HR"

    async def test_escalation_ends_at_escalation_role(self, service, workflow):
        await started(service)

        instance = await service.get_instance(ENTITY, "req-1", now=hours(24 * 10))

        assert instance.acting_role == "CEO"
        assert len(instance.decisions) == 3


class TestDelegation:
    async def test_delegate_acts_within_window(self, service, workflow):
        await started(service)

        status = await service.advance(
            ENTITY,
            "req-1",
            "delegate",
            "mgr-1",
            delegate_id="emp-2",
            delegate_until=hours(48),
            now=hours(1),
        )
        assert status == "pending"

        assert await service.advance(ENTITY, "req-1", "approve", "emp-2", now=hours(2)) == "pending"
        history = await service.history(ENTITY, "req-1", now=hours(2))
        assert [d.action for d in history] == ["delegated", "approved"]
        assert history[1].actor_role == "MANAGER"

        delegations = await service.list_delegations("emp-2")
        assert [d.role for d in delegations] == ["MANAGER"]

    async def test_delegation_outside_window_does_not_count(self, service, workflow):
        await started(service)
        await service.set_delegation("mgr-1", "emp-2", "MANAGER", hours(10), hours(20))

        with pytest.raises(AuthorizationError):
            await service.advance(ENTITY, "req-1", "approve", "emp-2", now=hours(1))

    async def test_step_without_delegation_rejects_it(self, service, workflow):
        await started(service)
        await service.advance(ENTITY, "req-1", "approve", "mgr-1", now=hours(1))

        with pytest.raises(AuthorizationError):
            await service.advance(
                ENTITY, "req-1", "delegate", "hr-1", delegate_id="emp-2", now=hours(2)
            )

    async def test_cannot_delegate_to_self(self, service, workflow):
        with pytest.raises(ValidationError):
            await service.set_delegation("mgr-1", "mgr-1", "MANAGER", T0, hours(24))

    async def test_delegator_must_hold_role(self, service, workflow):
        with pytest.raises(AuthorizationError):
            await service.set_delegation("emp-1", "emp-2", "MANAGER", T0, hours(24))

    async def test_window_must_be_positive(self, service, workflow):
        with pytest.raises(ValidationError):
            await service.set_delegation("mgr-1", "emp-2", "MANAGER", hours(5), hours(1))

    async def test_open_ended_delegation_refused(self, service, workflow):
        with pytest.raises(ValidationError, match="end date"):
            await service.set_delegation("mgr-1", "emp-2", "MANAGER", T0, None)

        assert await service.list_delegations("emp-2") == []

    async def test_step_delegation_needs_an_end(self, service, workflow):
        await started(service)

        with pytest.raises(ValidationError):
            await service.advance(
                ENTITY, "req-1", "delegate", "mgr-1", delegate_id="emp-2", now=hours(1)
            )

        instance = await service.get_instance(ENTITY, "req-1", now=hours(1))
        assert instance.decisions == []

    async def test_delegation_expires_at_its_end(self, service, workflow):
        await started(service)
        await service.set_delegation("mgr-1", "emp-2", "MANAGER", T0, hours(3))

        with pytest.raises(AuthorizationError):
            await service.advance(ENTITY, "req-1", "approve", "emp-2", now=hours(4))


class TestOverride:
    async def test_override_role_approves_outright(self, service, workflow):
        await started(service)

        status = await service.advance(
            ENTITY, "req-1", "override", "hr-1", reason="Urgent", now=hours(1)
        )

        assert status == "approved"
        decision = (await service.history(ENTITY, "req-1"))[-1]
        assert decision.action == "overridden"
        assert decision.is_override is True
        assert decision.step_number == 1

    async def test_override_needs_override_role(self, service, workflow):
        await started(service)

        with pytest.raises(AuthorizationError):
            await service.advance(ENTITY, "req-1", "override", "emp-1", now=hours(1))
