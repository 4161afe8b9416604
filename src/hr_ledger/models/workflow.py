"""Approval workflow configuration, instances, decisions and delegations."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_ledger.models.base import Base, TimestampMixin, UpdatedMixin, new_id


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalAction(str, Enum):
    """Actions an actor may request on a workflow instance."""

    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"
    OVERRIDE = "override"


class DecisionKind(str, Enum):
    """What ends up in the approval history."""

    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    OVERRIDDEN = "overridden"
    ESCALATED = "escalated"


class ApprovalWorkflow(Base, TimestampMixin):
    """Read-only multi-step sign-off chain for a position code."""

    __tablename__ = "approval_workflow"

    workflow_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    position_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    auto_escalate_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=48)
    escalation_role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    steps: Mapped[list[ApprovalStep]] = relationship(
        back_populates="workflow",
        order_by="ApprovalStep.step_number",
        cascade="all, delete-orphan",
    )

    def step(self, step_number: int) -> ApprovalStep | None:
        return next((s for s in self.steps if s.step_number == step_number), None)

    def next_step(self, step_number: int) -> ApprovalStep | None:
        later = [s for s in self.steps if s.step_number > step_number]
        return min(later, key=lambda s: s.step_number) if later else None


class ApprovalStep(Base):
    __tablename__ = "approval_step"

    step_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    workflow_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("approval_workflow.workflow_id", ondelete="CASCADE"), nullable=False
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False)
    sla_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_number", name="approval_step_number_unique"),
    )

    workflow: Mapped[ApprovalWorkflow] = relationship(back_populates="steps")


class ApprovalInstance(Base, UpdatedMixin):
    """A workflow applied to one leave request or payroll run."""

    __tablename__ = "approval_instance"

    instance_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    workflow_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("approval_workflow.workflow_id"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ApprovalStatus.PENDING.value
    )
    current_step: Mapped[int] = mapped_column(Integer, nullable=False)
    # Role currently allowed to act; differs from the step role after escalation
    acting_role: Mapped[str] = mapped_column(String(64), nullable=False)
    step_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="approval_instance_entity_unique"),
    )

    workflow: Mapped[ApprovalWorkflow] = relationship()
    decisions: Mapped[list[ApprovalDecision]] = relationship(
        back_populates="instance",
        order_by="ApprovalDecision.sequence",
    )


class ApprovalDecision(Base, TimestampMixin):
    """One entry of the ordered approval history."""

    __tablename__ = "approval_decision"

    decision_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    instance_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("approval_instance.instance_id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("instance_id", "sequence", name="approval_decision_sequence_unique"),
    )

    instance: Mapped[ApprovalInstance] = relationship(back_populates="decisions")


class Delegation(Base, TimestampMixin):
    """Time-boxed permission for a delegate to act as the delegator's role."""

    __tablename__ = "delegation"

    delegation_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    delegator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    delegate_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
