"""Batch job run log and audit trail models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from hr_ledger.models.base import Base, TimestampMixin, new_id, utcnow


class JobRunType(str, Enum):
    ACCRUAL_RUN = "accrual_run"
    YEAR_END = "year_end"
    CARRY_FORWARD = "carry_forward"
    CLEANUP = "cleanup"
    OTHER = "other"


class JobRunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class JobRunLog(Base):
    """Record of one synchronous batch run.

    Inserted as running; finalized exactly once, never deleted.
    """

    __tablename__ = "job_run_log"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    run_type: Mapped[str] = mapped_column(String(24), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=JobRunStatus.RUNNING.value
    )
    executed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    summary: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "run_type IN ('accrual_run', 'year_end', 'carry_forward', 'cleanup', 'other')",
            name="job_run_type_check",
        ),
        Index("ix_job_run_type_period", "run_type", "period"),
    )


class AuditEvent(Base, TimestampMixin):
    """Who did what to which entity."""

    __tablename__ = "audit_event"

    audit_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)
