"""Synchronous batch job endpoints (accrual, year-end, carried-day expiry)."""

from typing import Annotated

from fastapi import APIRouter, Path, Query

from hr_ledger.api.dependencies import ActorId, DbSession
from hr_ledger.api.schemas import (
    AccrualJobRequest,
    CarryForwardExpiryRequest,
    ErrorResponse,
    JobOutcomeResponse,
    JobRunResponse,
    YearEndJobRequest,
)
from hr_ledger.services.accrual_service import AccrualService

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post(
    "/run-accrual",
    response_model=JobOutcomeResponse,
    responses={400: {"model": ErrorResponse}},
)
async def run_accrual(
    db: DbSession,
    actor_id: ActorId,
    payload: AccrualJobRequest,
) -> JobOutcomeResponse:
    """Accrue leave for one period across all active employees."""
    outcome = await AccrualService(db).run_accrual(
        payload.period, payload.job_type, executed_by=actor_id, dry_run=payload.dry_run
    )
    await db.commit()
    return JobOutcomeResponse(**outcome.to_dict())


@router.post(
    "/year-end",
    response_model=JobOutcomeResponse,
    responses={400: {"model": ErrorResponse}},
)
async def run_year_end(
    db: DbSession,
    actor_id: ActorId,
    payload: YearEndJobRequest,
) -> JobOutcomeResponse:
    """Carry forward unused days and forfeit the excess."""
    outcome = await AccrualService(db).run_year_end(
        payload.year, executed_by=actor_id, dry_run=payload.dry_run
    )
    await db.commit()
    return JobOutcomeResponse(**outcome.to_dict())


@router.post(
    "/carry-forward-expiry",
    response_model=JobOutcomeResponse,
)
async def run_carry_forward_expiry(
    db: DbSession,
    actor_id: ActorId,
    payload: CarryForwardExpiryRequest,
) -> JobOutcomeResponse:
    """Expire carried-forward days whose expiry date has passed."""
    outcome = await AccrualService(db).run_carry_forward_expiry(
        payload.as_of, executed_by=actor_id, dry_run=payload.dry_run
    )
    await db.commit()
    return JobOutcomeResponse(**outcome.to_dict())


@router.get("", response_model=list[JobRunResponse])
async def list_jobs(
    db: DbSession,
    run_type: Annotated[str | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[JobRunResponse]:
    jobs = await AccrualService(db).list_jobs(run_type, limit)
    return [JobRunResponse.model_validate(j) for j in jobs]


@router.get(
    "/{run_id}",
    response_model=JobRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_job(
    db: DbSession,
    run_id: Annotated[str, Path()],
) -> JobRunResponse:
    job = await AccrualService(db).get_job(run_id)
    return JobRunResponse.model_validate(job)
