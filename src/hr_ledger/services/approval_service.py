"""Multi-step approval workflow shared by leave requests and payroll runs.

Escalation is lazy: there is no timer. Every read or action first calls
``evaluate_escalation``, which moves the acting role up the chain for each
SLA window that has fully elapsed since the step started.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hr_ledger.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hr_ledger.models import (
    ApprovalAction,
    ApprovalDecision,
    ApprovalInstance,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
    DecisionKind,
    Delegation,
    as_utc,
    utcnow,
)
from hr_ledger.services.audit import record_audit
from hr_ledger.services.collaborators import EmployeeDirectory, SqlEmployeeDirectory
from hr_ledger.services.state_machine import ApprovalStateMachine

logger = logging.getLogger(__name__)


class ApprovalService:
    """Service for approval workflow configuration and instances.

    Operations:
    - create_workflow / get_workflow: read-only chain per position code
    - start: attach a pending instance to an entity
    - advance: approve, reject, delegate or override
    - set_delegation: time-boxed role delegation
    - history: ordered decisions
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.directory = directory or SqlEmployeeDirectory(session)
        self.clock = clock

    # ----- configuration -----

    async def create_workflow(
        self,
        position_code: str,
        name: str,
        steps: list[dict[str, Any]],
        auto_escalate_hours: int = 48,
        escalation_role: str | None = None,
        created_by: str | None = None,
    ) -> ApprovalWorkflow:
        if not steps:
            raise ValidationError("A workflow needs at least one step")
        numbers = [s["step_number"] for s in steps]
        if len(set(numbers)) != len(numbers):
            raise ValidationError("Step numbers must be unique", {"step_numbers": numbers})
        if auto_escalate_hours < 0:
            raise ValidationError("auto_escalate_hours must not be negative")

        existing = await self.session.execute(
            select(ApprovalWorkflow.workflow_id).where(
                ApprovalWorkflow.position_code == position_code
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Workflow for position '{position_code}' already exists")

        workflow = ApprovalWorkflow(
            position_code=position_code,
            name=name,
            auto_escalate_hours=auto_escalate_hours,
            escalation_role=escalation_role,
            steps=[
                ApprovalStep(
                    step_number=s["step_number"],
                    role=s["role"],
                    sla_hours=s.get("sla_hours"),
                    can_delegate=s.get("can_delegate", False),
                    can_override=s.get("can_override", False),
                )
                for s in sorted(steps, key=lambda s: s["step_number"])
            ],
        )
        self.session.add(workflow)
        await self.session.flush()
        record_audit(
            self.session,
            entity_type="approval_workflow",
            entity_id=workflow.workflow_id,
            action="created",
            actor_id=created_by,
            details={"position_code": position_code, "steps": len(steps)},
        )
        logger.info("Workflow for %s created by %s", position_code, created_by)
        return workflow

    async def get_workflow(self, position_code: str) -> ApprovalWorkflow:
        result = await self.session.execute(
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.position_code == position_code)
            .options(selectinload(ApprovalWorkflow.steps))
        )
        workflow = result.scalar_one_or_none()
        if workflow is None:
            raise NotFoundError("ApprovalWorkflow", position_code)
        return workflow

    # ----- instances -----

    async def start(
        self,
        entity_type: str,
        entity_id: str,
        position_code: str,
        now: datetime | None = None,
    ) -> ApprovalInstance:
        """Create a pending instance at the first step of the workflow."""
        workflow = await self.get_workflow(position_code)
        first = workflow.steps[0]

        existing = await self._find_instance(entity_type, entity_id)
        if existing is not None:
            raise ConflictError(f"{entity_type} '{entity_id}' already has an approval instance")

        instance = ApprovalInstance(
            workflow_id=workflow.workflow_id,
            entity_type=entity_type,
            entity_id=entity_id,
            status=ApprovalStatus.PENDING.value,
            current_step=first.step_number,
            acting_role=first.role,
            step_started_at=now or self.clock(),
            workflow=workflow,
            decisions=[],
        )
        self.session.add(instance)
        await self.session.flush()
        logger.info(
            "Approval started for %s %s (workflow %s, role %s)",
            entity_type,
            entity_id,
            workflow.position_code,
            first.role,
        )
        return instance

    async def get_instance(
        self, entity_type: str, entity_id: str, now: datetime | None = None
    ) -> ApprovalInstance:
        """Load an instance, applying any escalation that has come due."""
        instance = await self._find_instance(entity_type, entity_id)
        if instance is None:
            raise NotFoundError("ApprovalInstance", f"{entity_type}/{entity_id}")
        await self.evaluate_escalation(instance, now or self.clock())
        return instance

    async def history(
        self, entity_type: str, entity_id: str, now: datetime | None = None
    ) -> list[ApprovalDecision]:
        instance = await self.get_instance(entity_type, entity_id, now)
        return list(instance.decisions)

    async def evaluate_escalation(
        self, instance: ApprovalInstance, now: datetime
    ) -> list[ApprovalDecision]:
        """Escalate the acting role once per elapsed SLA window."""
        if instance.status != ApprovalStatus.PENDING.value:
            return []

        workflow = instance.workflow
        step = workflow.step(instance.current_step)
        sla_hours = (step.sla_hours if step else None) or workflow.auto_escalate_hours
        if not sla_hours:
            return []

        now = as_utc(now)
        started = as_utc(instance.step_started_at)
        escalated: list[ApprovalDecision] = []

        while True:
            due = started + timedelta(hours=sla_hours)
            if now < due:
                break
            target = self._escalation_target(instance)
            if target is None:
                break

            previous = instance.acting_role
            instance.acting_role = target
            instance.step_started_at = due
            started = due
            escalated.append(
                self._add_decision(
                    instance,
                    DecisionKind.ESCALATED,
                    actor_id=None,
                    actor_role=target,
                    reason=f"SLA of {sla_hours}h elapsed; escalated from {previous} to {target}",
                )
            )
            logger.warning(
                "Approval %s/%s escalated from %s to %s",
                instance.entity_type,
                instance.entity_id,
                previous,
                target,
            )

        if escalated:
            await self.session.flush()
        return escalated

    async def advance(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str,
        reason: str | None = None,
        delegate_id: str | None = None,
        delegate_until: datetime | None = None,
        now: datetime | None = None,
    ) -> str:
        """Apply one action and return the instance's new status."""
        try:
            action = ApprovalAction(action)
        except ValueError:
            raise ValidationError(
                f"Unknown approval action '{action}'",
                {"allowed": [a.value for a in ApprovalAction]},
            ) from None

        now = now or self.clock()
        instance = await self.get_instance(entity_type, entity_id, now)

        if ApprovalStateMachine.is_terminal(instance.status):
            target = (
                ApprovalStatus.REJECTED.value
                if action == ApprovalAction.REJECT
                else ApprovalStatus.APPROVED.value
            )
            raise InvalidTransitionError(
                ApprovalStateMachine.ENTITY,
                instance.status,
                target,
                "approval already decided",
            )

        if action == ApprovalAction.OVERRIDE:
            await self._override(instance, actor_id, reason)
        elif action == ApprovalAction.DELEGATE:
            await self._delegate(instance, actor_id, delegate_id, delegate_until, reason, now)
        else:
            capacity = await self._acting_capacity(actor_id, instance.acting_role, now)
            if action == ApprovalAction.REJECT:
                self._add_decision(
                    instance,
                    DecisionKind.REJECTED,
                    actor_id=actor_id,
                    actor_role=capacity,
                    reason=reason,
                )
                ApprovalStateMachine.transition(instance, ApprovalStatus.REJECTED.value)
            else:
                self._add_decision(
                    instance,
                    DecisionKind.APPROVED,
                    actor_id=actor_id,
                    actor_role=capacity,
                    reason=reason,
                )
                following = instance.workflow.next_step(instance.current_step)
                if following is None:
                    ApprovalStateMachine.transition(instance, ApprovalStatus.APPROVED.value)
                else:
                    instance.current_step = following.step_number
                    instance.acting_role = following.role
                    instance.step_started_at = now

        record_audit(
            self.session,
            entity_type=entity_type,
            entity_id=entity_id,
            action=f"approval:{action.value}",
            actor_id=actor_id,
            details={"status": instance.status, "step": instance.current_step, "reason": reason},
        )
        await self.session.flush()
        logger.info(
            "Approval %s/%s: %s by %s -> %s",
            entity_type,
            entity_id,
            action.value,
            actor_id,
            instance.status,
        )
        return instance.status

    async def set_delegation(
        self,
        delegator_id: str,
        delegate_id: str,
        role: str,
        starts_at: datetime,
        ends_at: datetime | None,
    ) -> Delegation:
        """Let ``delegate_id`` act as ``role`` between the given instants.

        Delegations are always bounded; an open-ended one is refused.
        """
        if delegator_id == delegate_id:
            raise ValidationError("Cannot delegate to yourself")
        if ends_at is None:
            raise ValidationError("Delegation needs an explicit end date")
        if as_utc(ends_at) <= as_utc(starts_at):
            raise ValidationError("Delegation must end after it starts")
        if role not in await self.directory.roles_of(delegator_id):
            raise AuthorizationError(
                f"'{delegator_id}' does not hold role '{role}' and cannot delegate it"
            )

        delegation = Delegation(
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            role=role,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        self.session.add(delegation)
        await self.session.flush()
        logger.info("Delegation %s -> %s for role %s", delegator_id, delegate_id, role)
        return delegation

    async def list_delegations(self, delegate_id: str | None = None) -> list[Delegation]:
        stmt = select(Delegation).order_by(Delegation.starts_at)
        if delegate_id is not None:
            stmt = stmt.where(Delegation.delegate_id == delegate_id)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    # ----- internals -----

    async def _override(
        self, instance: ApprovalInstance, actor_id: str, reason: str | None
    ) -> None:
        override_roles = {s.role for s in instance.workflow.steps if s.can_override}
        held = await self.directory.roles_of(actor_id) & override_roles
        if not held:
            raise AuthorizationError(f"'{actor_id}' holds no role allowed to override")
        self._add_decision(
            instance,
            DecisionKind.OVERRIDDEN,
            actor_id=actor_id,
            actor_role=sorted(held)[0],
            reason=reason,
            is_override=True,
        )
        ApprovalStateMachine.transition(instance, ApprovalStatus.APPROVED.value)
        logger.warning(
            "Approval %s/%s overridden by %s at step %d",
            instance.entity_type,
            instance.entity_id,
            actor_id,
            instance.current_step,
        )

    async def _delegate(
        self,
        instance: ApprovalInstance,
        actor_id: str,
        delegate_id: str | None,
        delegate_until: datetime | None,
        reason: str | None,
        now: datetime,
    ) -> None:
        step = instance.workflow.step(instance.current_step)
        if step is None or not step.can_delegate:
            raise AuthorizationError(f"Step {instance.current_step} does not allow delegation")
        if not delegate_id:
            raise ValidationError("delegate_id is required to delegate")
        if delegate_until is None:
            raise ValidationError("delegate_until is required to delegate")
        if instance.acting_role not in await self.directory.roles_of(actor_id):
            raise AuthorizationError(
                f"'{actor_id}' does not hold role '{instance.acting_role}'"
            )

        await self.set_delegation(actor_id, delegate_id, instance.acting_role, now, delegate_until)
        self._add_decision(
            instance,
            DecisionKind.DELEGATED,
            actor_id=actor_id,
            actor_role=instance.acting_role,
            reason=reason or f"Delegated to {delegate_id}",
        )

    async def _acting_capacity(self, actor_id: str, role: str, now: datetime) -> str:
        """Return the role the actor acts as, or raise AuthorizationError."""
        if role in await self.directory.roles_of(actor_id):
            return role

        now = as_utc(now)
        result = await self.session.execute(
            select(Delegation).where(
                Delegation.delegate_id == actor_id,
                Delegation.role == role,
            )
        )
        for delegation in result.scalars():
            if as_utc(delegation.starts_at) <= now <= as_utc(delegation.ends_at):
                return role

        raise AuthorizationError(
            f"'{actor_id}' cannot act as '{role}' on this step",
            {"required_role": role},
        )

    def _escalation_target(self, instance: ApprovalInstance) -> str | None:
        """Next-higher role after the one currently acting."""
        workflow = instance.workflow
        chain = [s.role for s in workflow.steps if s.step_number >= instance.current_step]
        if workflow.escalation_role:
            chain.append(workflow.escalation_role)

        try:
            position = chain.index(instance.acting_role)
        except ValueError:
            return None
        for role in chain[position + 1:]:
            if role != instance.acting_role:
                return role
        return None

    def _add_decision(
        self,
        instance: ApprovalInstance,
        kind: DecisionKind,
        *,
        actor_id: str | None,
        actor_role: str | None,
        reason: str | None,
        is_override: bool = False,
    ) -> ApprovalDecision:
        decision = ApprovalDecision(
            sequence=len(instance.decisions) + 1,
            step_number=instance.current_step,
            actor_id=actor_id,
            actor_role=actor_role,
            action=kind.value,
            reason=reason,
            is_override=is_override,
        )
        instance.decisions.append(decision)
        return decision

    async def _find_instance(self, entity_type: str, entity_id: str) -> ApprovalInstance | None:
        result = await self.session.execute(
            select(ApprovalInstance)
            .where(
                ApprovalInstance.entity_type == entity_type,
                ApprovalInstance.entity_id == entity_id,
            )
            .options(
                selectinload(ApprovalInstance.workflow).selectinload(ApprovalWorkflow.steps),
                selectinload(ApprovalInstance.decisions),
            )
        )
        return result.scalar_one_or_none()
