"""Approval workflow configuration, delegation and history endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from hr_ledger.api.dependencies import ActorId, DbSession
from hr_ledger.api.schemas import (
    ApprovalInstanceResponse,
    DecisionResponse,
    DelegationCreate,
    DelegationResponse,
    ErrorResponse,
    WorkflowCreate,
    WorkflowResponse,
)
from hr_ledger.services.approval_service import ApprovalService

router = APIRouter(tags=["workflows"])


@router.post(
    "/workflows",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_workflow(
    db: DbSession,
    actor_id: ActorId,
    payload: WorkflowCreate,
) -> WorkflowResponse:
    workflow = await ApprovalService(db).create_workflow(
        position_code=payload.position_code,
        name=payload.name,
        steps=[s.model_dump() for s in payload.steps],
        auto_escalate_hours=payload.auto_escalate_hours,
        escalation_role=payload.escalation_role,
        created_by=actor_id,
    )
    await db.commit()
    return WorkflowResponse.model_validate(workflow)


@router.get(
    "/workflows/{position_code}",
    response_model=WorkflowResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(
    db: DbSession,
    position_code: Annotated[str, Path()],
) -> WorkflowResponse:
    workflow = await ApprovalService(db).get_workflow(position_code)
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/delegations",
    response_model=DelegationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def create_delegation(
    db: DbSession,
    actor_id: ActorId,
    payload: DelegationCreate,
) -> DelegationResponse:
    """Delegate one of the actor's roles for a bounded window."""
    delegation = await ApprovalService(db).set_delegation(
        actor_id, payload.delegate_id, payload.role, payload.starts_at, payload.ends_at
    )
    await db.commit()
    return DelegationResponse.model_validate(delegation)


@router.get("/delegations", response_model=list[DelegationResponse])
async def list_delegations(
    db: DbSession,
    delegate_id: Annotated[str | None, Query()] = None,
) -> list[DelegationResponse]:
    delegations = await ApprovalService(db).list_delegations(delegate_id)
    return [DelegationResponse.model_validate(d) for d in delegations]


@router.get(
    "/approvals/{entity_type}/{entity_id}",
    response_model=ApprovalInstanceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_approval(
    db: DbSession,
    entity_type: Annotated[str, Path()],
    entity_id: Annotated[str, Path()],
) -> ApprovalInstanceResponse:
    """Approval instance state; due escalations are applied on read."""
    instance = await ApprovalService(db).get_instance(entity_type, entity_id)
    await db.commit()
    return ApprovalInstanceResponse.model_validate(instance)


@router.get(
    "/approvals/{entity_type}/{entity_id}/history",
    response_model=list[DecisionResponse],
    responses={404: {"model": ErrorResponse}},
)
async def get_approval_history(
    db: DbSession,
    entity_type: Annotated[str, Path()],
    entity_id: Annotated[str, Path()],
) -> list[DecisionResponse]:
    decisions = await ApprovalService(db).history(entity_type, entity_id)
    await db.commit()
    return [DecisionResponse.model_validate(d) for d in decisions]
