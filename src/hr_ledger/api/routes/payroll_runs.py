"""Payroll run API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from hr_ledger.api.dependencies import ActorId, DbSession
from hr_ledger.api.schemas import (
    ApprovalInstanceResponse,
    ErrorResponse,
    PayrollRunCreate,
    PayrollRunDetailResponse,
    PayrollRunResponse,
    PayslipAnomalyResponse,
    PayslipResponse,
    ReviewRequest,
    SubmitRunRequest,
)
from hr_ledger.services.payroll_run_service import ENTITY, PayrollRunService

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])


@router.post(
    "",
    response_model=PayrollRunDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    payload: PayrollRunCreate,
) -> PayrollRunDetailResponse:
    """Draft a payroll run with one pending payslip per employee."""
    run = await PayrollRunService(db).create_run(payload.period, actor_id, payload.employee_ids)
    await db.commit()
    return PayrollRunDetailResponse.model_validate(run)


@router.get("", response_model=list[PayrollRunResponse])
async def list_payroll_runs(
    db: DbSession,
    period: Annotated[str | None, Query()] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[PayrollRunResponse]:
    runs = await PayrollRunService(db).list_runs(period, status_filter)
    return [PayrollRunResponse.model_validate(r) for r in runs]


@router.get(
    "/{run_id}",
    response_model=PayrollRunDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    db: DbSession,
    run_id: Annotated[str, Path()],
) -> PayrollRunDetailResponse:
    run = await PayrollRunService(db).get_run(run_id)
    return PayrollRunDetailResponse.model_validate(run)


@router.get(
    "/{run_id}/payslips",
    response_model=list[PayslipResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_payslips(
    db: DbSession,
    run_id: Annotated[str, Path()],
) -> list[PayslipResponse]:
    run = await PayrollRunService(db).get_run(run_id)
    return [PayslipResponse.model_validate(p) for p in run.payslips]


@router.get(
    "/{run_id}/anomalies",
    response_model=list[PayslipAnomalyResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_payroll_run_anomalies(
    db: DbSession,
    run_id: Annotated[str, Path()],
) -> list[PayslipAnomalyResponse]:
    """Findings from the last calculation; critical ones block submission."""
    service = PayrollRunService(db)
    run = await service.get_run(run_id)
    return [PayslipAnomalyResponse.model_validate(a) for a in service.anomalies_of(run)]


@router.post(
    "/{run_id}/calculate",
    response_model=PayrollRunDetailResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def calculate_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: Annotated[str, Path()],
) -> PayrollRunDetailResponse:
    """Compute all payslips; missing upstream input leaves the run partial."""
    run = await PayrollRunService(db).calculate_run(run_id, actor_id)
    await db.commit()
    return PayrollRunDetailResponse.model_validate(run)


@router.post(
    "/{run_id}/submit",
    response_model=PayrollRunResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def submit_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: Annotated[str, Path()],
    payload: SubmitRunRequest | None = None,
) -> PayrollRunResponse:
    run = await PayrollRunService(db).submit_run(
        run_id, actor_id, payload.position_code if payload else None
    )
    await db.commit()
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{run_id}/review",
    response_model=PayrollRunResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def review_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: Annotated[str, Path()],
    payload: ReviewRequest,
) -> PayrollRunResponse:
    run = await PayrollRunService(db).review_run(
        run_id,
        payload.action,
        actor_id,
        reason=payload.reason,
        delegate_id=payload.delegate_id,
        delegate_until=payload.delegate_until,
    )
    await db.commit()
    return PayrollRunResponse.model_validate(run)


@router.get(
    "/{run_id}/approval",
    response_model=ApprovalInstanceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run_approval(
    db: DbSession,
    run_id: Annotated[str, Path()],
) -> ApprovalInstanceResponse:
    """Current approval round with its ordered history."""
    service = PayrollRunService(db)
    run = await service.get_run(run_id)
    instance = await service.approvals.get_instance(ENTITY, service.approval_key(run))
    await db.commit()
    return ApprovalInstanceResponse.model_validate(instance)


@router.post(
    "/{run_id}/reopen",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reopen_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: Annotated[str, Path()],
) -> PayrollRunResponse:
    run = await PayrollRunService(db).reopen_run(run_id, actor_id)
    await db.commit()
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{run_id}/finalize",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def finalize_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: Annotated[str, Path()],
) -> PayrollRunResponse:
    """Mark an approved run paid and fix its total net disbursement."""
    run = await PayrollRunService(db).finalize_run(run_id, actor_id)
    await db.commit()
    return PayrollRunResponse.model_validate(run)
