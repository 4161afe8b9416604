"""Leave balance, ledger and leave request endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, Response, status

from hr_ledger.api.dependencies import ActorId, DbSession
from hr_ledger.api.schemas import (
    BalanceCheckResponse,
    CancelRequest,
    ErrorResponse,
    LeaveBalanceResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
    PostResponse,
    ReviewRequest,
    TransactionCreate,
    TransactionResponse,
)
from hr_ledger.services.leave_request_service import LeaveRequestService
from hr_ledger.services.ledger_service import LeaveLedgerService

router = APIRouter(tags=["leave"])


# ============================================================================
# Balances and ledger
# ============================================================================


@router.get(
    "/employees/{employee_id}/leave-balances",
    response_model=list[LeaveBalanceResponse],
)
async def list_leave_balances(
    db: DbSession,
    employee_id: Annotated[str, Path()],
) -> list[LeaveBalanceResponse]:
    balances = await LeaveLedgerService(db).list_balances(employee_id)
    return [LeaveBalanceResponse.model_validate(b) for b in balances]


@router.get(
    "/employees/{employee_id}/leave-balances/{leave_type_id}",
    response_model=LeaveBalanceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_leave_balance(
    db: DbSession,
    employee_id: Annotated[str, Path()],
    leave_type_id: Annotated[str, Path()],
) -> LeaveBalanceResponse:
    balance = await LeaveLedgerService(db).get_balance(employee_id, leave_type_id)
    return LeaveBalanceResponse.model_validate(balance)


@router.get(
    "/employees/{employee_id}/leave-transactions",
    response_model=list[TransactionResponse],
)
async def list_leave_transactions(
    db: DbSession,
    employee_id: Annotated[str, Path()],
    leave_type_id: Annotated[str | None, Query()] = None,
) -> list[TransactionResponse]:
    """Ledger rows for an employee in posting order."""
    rows = await LeaveLedgerService(db).list_transactions(employee_id, leave_type_id)
    return [TransactionResponse.model_validate(r) for r in rows]


@router.post(
    "/employees/{employee_id}/leave-transactions",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def post_leave_transaction(
    db: DbSession,
    actor_id: ActorId,
    response: Response,
    employee_id: Annotated[str, Path()],
    payload: TransactionCreate,
) -> PostResponse:
    """Post a ledger transaction. Replaying a transaction_id returns 200."""
    result = await LeaveLedgerService(db).apply_transaction(
        employee_id=employee_id,
        leave_type_id=payload.leave_type_id,
        amount=payload.amount,
        transaction_type=payload.transaction_type,
        transaction_id=payload.transaction_id,
        reason=payload.reason,
        performed_by=actor_id,
        request_id=payload.request_id,
        override=payload.override,
        compensating=payload.compensating,
    )
    await db.commit()
    if not result.is_new:
        response.status_code = status.HTTP_200_OK
    return PostResponse(
        transaction_id=result.transaction_id,
        is_new=result.is_new,
        transaction_type=result.transaction_type,
        available_balance=result.available_balance,
    )


@router.post(
    "/employees/{employee_id}/leave-balances/{leave_type_id}/rebuild",
    response_model=LeaveBalanceResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def rebuild_leave_balance(
    db: DbSession,
    actor_id: ActorId,
    employee_id: Annotated[str, Path()],
    leave_type_id: Annotated[str, Path()],
) -> LeaveBalanceResponse:
    """Recompute the cached balance from the ledger."""
    balance = await LeaveLedgerService(db).rebuild_balance(employee_id, leave_type_id, actor_id)
    await db.commit()
    return LeaveBalanceResponse.model_validate(balance)


@router.get(
    "/employees/{employee_id}/leave-balances/{leave_type_id}/verify",
    response_model=BalanceCheckResponse,
    responses={404: {"model": ErrorResponse}},
)
async def verify_leave_balance(
    db: DbSession,
    employee_id: Annotated[str, Path()],
    leave_type_id: Annotated[str, Path()],
) -> BalanceCheckResponse:
    check = await LeaveLedgerService(db).verify_balance(employee_id, leave_type_id)
    return BalanceCheckResponse(
        employee_id=check.employee_id,
        leave_type_id=check.leave_type_id,
        consistent=check.consistent,
        cached_available=check.cached_available,
        folded_available=check.folded_available,
    )


# ============================================================================
# Leave requests
# ============================================================================


@router.post(
    "/leave-requests",
    response_model=LeaveRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def submit_leave_request(
    db: DbSession,
    actor_id: ActorId,
    payload: LeaveRequestCreate,
) -> LeaveRequestResponse:
    """Submit a leave request; its days are reserved until it is decided."""
    request = await LeaveRequestService(db).submit(
        employee_id=payload.employee_id,
        leave_type_id=payload.leave_type_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        actor_id=actor_id,
        justification=payload.justification,
        position_code=payload.position_code,
    )
    await db.commit()
    return LeaveRequestResponse.model_validate(request)


@router.get(
    "/leave-requests/{request_id}",
    response_model=LeaveRequestResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_leave_request(
    db: DbSession,
    request_id: Annotated[str, Path()],
) -> LeaveRequestResponse:
    request = await LeaveRequestService(db).get_request(request_id)
    return LeaveRequestResponse.model_validate(request)


@router.get(
    "/employees/{employee_id}/leave-requests",
    response_model=list[LeaveRequestResponse],
)
async def list_leave_requests(
    db: DbSession,
    employee_id: Annotated[str, Path()],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[LeaveRequestResponse]:
    requests = await LeaveRequestService(db).list_requests(employee_id, status_filter)
    return [LeaveRequestResponse.model_validate(r) for r in requests]


@router.post(
    "/leave-requests/{request_id}/review",
    response_model=LeaveRequestResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def review_leave_request(
    db: DbSession,
    actor_id: ActorId,
    request_id: Annotated[str, Path()],
    payload: ReviewRequest,
) -> LeaveRequestResponse:
    """Approve, reject, delegate or override the current approval step."""
    request = await LeaveRequestService(db).review(
        request_id,
        payload.action,
        actor_id,
        reason=payload.reason,
        delegate_id=payload.delegate_id,
        delegate_until=payload.delegate_until,
    )
    await db.commit()
    return LeaveRequestResponse.model_validate(request)


@router.post(
    "/leave-requests/{request_id}/cancel",
    response_model=LeaveRequestResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_leave_request(
    db: DbSession,
    actor_id: ActorId,
    request_id: Annotated[str, Path()],
    payload: CancelRequest | None = None,
) -> LeaveRequestResponse:
    """Cancel a pending request or reverse an approved one."""
    request = await LeaveRequestService(db).cancel(
        request_id, actor_id, payload.reason if payload else None
    )
    await db.commit()
    return LeaveRequestResponse.model_validate(request)
