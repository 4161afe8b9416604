"""Leave Balance Ledger - append-only transactions with a cached balance.

Provides idempotent, transactional posting of leave transactions with:
- Idempotency via caller-supplied transaction_id (the primary key)
- Compensating entries for corrections (no updates/deletes)
- Cached LeaveBalance kept equal to the fold of the ledger
- Optimistic concurrency on the cache (version column + bounded retry)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from hr_ledger.config import get_settings
from hr_ledger.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from hr_ledger.models import (
    Employee,
    LeaveBalance,
    LeaveBalanceTransaction,
    LeaveType,
    TransactionType,
)
from hr_ledger.services.audit import record_audit

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DAY = Decimal("0.01")

# Types whose amount must be negative unless the caller posts a compensating entry
DEBIT_ONLY = {
    TransactionType.TAKE.value,
    TransactionType.ENCASHMENT.value,
    TransactionType.EXPIRY.value,
}

# Negative entries of these types consume available balance
BALANCE_CHECKED = {
    TransactionType.TAKE.value,
    TransactionType.ENCASHMENT.value,
    TransactionType.RESERVE_RELEASE.value,
}


@dataclass(frozen=True)
class BalanceSnapshot:
    """Balance components as folded from the ledger."""

    entitled_days: Decimal = ZERO
    accrued_days: Decimal = ZERO
    taken_days: Decimal = ZERO
    reserved_days: Decimal = ZERO

    @property
    def raw_available(self) -> Decimal:
        return self.entitled_days + self.accrued_days - self.taken_days - self.reserved_days

    def available(self, cap: Decimal | None = None) -> Decimal:
        """Available balance clamped to [0, cap]; no upper bound without a cap."""
        value = max(self.raw_available, ZERO)
        if cap is not None:
            value = min(value, cap)
        return value

    def apply(self, transaction_type: str, amount: Decimal) -> BalanceSnapshot:
        """Return the snapshot after one more signed transaction."""
        if transaction_type == TransactionType.ADJUSTMENT.value:
            return self._replace(entitled_days=self.entitled_days + amount)
        if transaction_type in (
            TransactionType.ACCRUAL.value,
            TransactionType.RETRO.value,
            TransactionType.EXPIRY.value,
        ):
            return self._replace(accrued_days=self.accrued_days + amount)
        if transaction_type in (TransactionType.TAKE.value, TransactionType.ENCASHMENT.value):
            return self._replace(taken_days=self.taken_days - amount)
        if transaction_type == TransactionType.RESERVE_RELEASE.value:
            # Negative reserves days, positive releases them
            return self._replace(reserved_days=self.reserved_days - amount)
        raise ValidationError(f"Unknown transaction type '{transaction_type}'")

    def _replace(self, **changes: Decimal) -> BalanceSnapshot:
        values = {
            "entitled_days": self.entitled_days,
            "accrued_days": self.accrued_days,
            "taken_days": self.taken_days,
            "reserved_days": self.reserved_days,
        }
        values.update(changes)
        return BalanceSnapshot(**values)

    @classmethod
    def from_balance(cls, balance: LeaveBalance) -> BalanceSnapshot:
        return cls(
            entitled_days=balance.entitled_days,
            accrued_days=balance.accrued_days,
            taken_days=balance.taken_days,
            reserved_days=balance.reserved_days,
        )

    def write_to(self, balance: LeaveBalance) -> None:
        balance.entitled_days = self.entitled_days
        balance.accrued_days = self.accrued_days
        balance.taken_days = self.taken_days
        balance.reserved_days = self.reserved_days
        balance.available_balance = self.available(balance.max_balance_cap)


def fold_transactions(transactions: Iterable[LeaveBalanceTransaction]) -> BalanceSnapshot:
    """Fold ledger rows into balance components, starting from zero."""
    snapshot = BalanceSnapshot()
    for txn in transactions:
        snapshot = snapshot.apply(txn.transaction_type, Decimal(txn.amount))
    return snapshot


@dataclass(frozen=True)
class PostResult:
    """Result of a ledger posting.

    Always check `is_new`: False means the transaction_id was already
    applied and nothing changed.
    """

    transaction_id: str
    is_new: bool
    transaction_type: str
    available_balance: Decimal


@dataclass(frozen=True)
class BalanceCheck:
    """Cached balance compared with the fold of the ledger."""

    employee_id: str
    leave_type_id: str
    cached: BalanceSnapshot
    folded: BalanceSnapshot
    cached_available: Decimal
    folded_available: Decimal

    @property
    def consistent(self) -> bool:
        return self.cached == self.folded and self.cached_available == self.folded_available


class LeaveLedgerService:
    """Append-only leave ledger posting service.

    Notes:
    - leave_balance_transaction is append-only; corrections are new rows.
    - transaction_id is unique; replays return the existing row.
    - The cached balance is only written here.
    """

    def __init__(self, session: AsyncSession, max_retries: int | None = None):
        self.session = session
        if max_retries is None:
            max_retries = get_settings().ledger_max_retries
        # Counts attempts, so one means a single try with no retry
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.max_retries = max_retries

    async def apply_transaction(
        self,
        *,
        employee_id: str,
        leave_type_id: str,
        amount: Decimal | str | int,
        transaction_type: str,
        transaction_id: str,
        reason: str | None = None,
        performed_by: str | None = None,
        request_id: str | None = None,
        override: bool = False,
        compensating: bool = False,
    ) -> PostResult:
        """Post one signed transaction and fold it into the cached balance.

        Args:
            employee_id: Employee whose balance changes
            leave_type_id: Leave type of the balance
            amount: Signed number of days (non-zero, two decimals)
            transaction_type: One of TransactionType
            transaction_id: Caller-supplied natural key for deduplication
            reason: Free-text justification
            performed_by: Actor id
            request_id: Leave request that caused the entry, if any
            override: Skip the available-balance check (HR override)
            compensating: Allow a positive take/encashment/expiry (reversal)

        Returns:
            PostResult with the transaction id and whether it was new

        Raises:
            ValidationError, NotFoundError, InsufficientBalanceError,
            ConflictError (payload mismatch or retries exhausted)
        """
        amount = self._validate(transaction_type, amount, transaction_id, compensating)
        payload = {
            "employee_id": employee_id,
            "leave_type_id": leave_type_id,
            "amount": amount,
            "transaction_type": transaction_type,
            "request_id": request_id,
        }

        for attempt in range(1, self.max_retries + 1):
            existing = await self.get_transaction(transaction_id)
            if existing is not None:
                return await self._replay(existing, payload)

            try:
                async with self.session.begin_nested():
                    balance = await self.ensure_balance(employee_id, leave_type_id)
                    before = BalanceSnapshot.from_balance(balance)
                    available = before.available(balance.max_balance_cap)

                    if (
                        not override
                        and transaction_type in BALANCE_CHECKED
                        and amount < 0
                        and -amount > available
                    ):
                        raise InsufficientBalanceError(employee_id, leave_type_id, -amount, available)

                    self.session.add(
                        LeaveBalanceTransaction(
                            transaction_id=transaction_id,
                            employee_id=employee_id,
                            leave_type_id=leave_type_id,
                            amount=amount,
                            transaction_type=transaction_type,
                            request_id=request_id,
                            performed_by=performed_by,
                            reason=reason,
                            sequence=balance.version,
                        )
                    )
                    before.apply(transaction_type, amount).write_to(balance)
                    await self.session.flush()
            except (StaleDataError, IntegrityError) as exc:
                logger.warning(
                    "Ledger write conflict on %s/%s (attempt %d/%d): %s",
                    employee_id,
                    leave_type_id,
                    attempt,
                    self.max_retries,
                    type(exc).__name__,
                )
                continue
            except InsufficientBalanceError:
                logger.info(
                    "Rejected %s of %s day(s) for %s/%s: insufficient balance",
                    transaction_type,
                    amount,
                    employee_id,
                    leave_type_id,
                )
                raise

            logger.info(
                "Posted %s %s of %s day(s) for %s/%s, available %s",
                transaction_type,
                transaction_id,
                amount,
                employee_id,
                leave_type_id,
                balance.available_balance,
            )
            return PostResult(
                transaction_id=transaction_id,
                is_new=True,
                transaction_type=transaction_type,
                available_balance=balance.available_balance,
            )

        raise ConflictError(
            f"Balance {employee_id}/{leave_type_id} kept changing; gave up after "
            f"{self.max_retries} attempt(s)",
            {"transaction_id": transaction_id},
        )

    async def ensure_balance(
        self,
        employee_id: str,
        leave_type_id: str,
        max_balance_cap: Decimal | None = None,
    ) -> LeaveBalance:
        """Load the cached balance row, creating an empty one if missing.

        Always re-reads from the database so a retry sees the winner's write.
        """
        result = await self.session.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
            )
            .execution_options(populate_existing=True)
        )
        balance = result.scalar_one_or_none()
        if balance is not None:
            return balance

        if await self.session.get(Employee, employee_id) is None:
            raise NotFoundError("Employee", employee_id)
        if await self.session.get(LeaveType, leave_type_id) is None:
            raise NotFoundError("LeaveType", leave_type_id)

        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            entitled_days=ZERO,
            accrued_days=ZERO,
            taken_days=ZERO,
            reserved_days=ZERO,
            available_balance=ZERO,
            carried_forward_days=ZERO,
            max_balance_cap=max_balance_cap,
        )
        self.session.add(balance)
        await self.session.flush()
        return balance

    async def set_balance_cap(self, balance: LeaveBalance, cap: Decimal | None) -> None:
        """Change the cap and re-clamp available; the ledger is untouched."""
        if balance.max_balance_cap == cap:
            return
        balance.max_balance_cap = cap
        BalanceSnapshot.from_balance(balance).write_to(balance)
        await self.session.flush()

    async def find_balance(self, employee_id: str, leave_type_id: str) -> LeaveBalance | None:
        result = await self.session.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_balance(self, employee_id: str, leave_type_id: str) -> LeaveBalance:
        balance = await self.find_balance(employee_id, leave_type_id)
        if balance is None:
            raise NotFoundError("LeaveBalance", f"{employee_id}/{leave_type_id}")
        return balance

    async def list_balances(self, employee_id: str) -> list[LeaveBalance]:
        result = await self.session.execute(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id)
            .order_by(LeaveBalance.leave_type_id)
        )
        return list(result.scalars())

    async def list_transactions(
        self,
        employee_id: str,
        leave_type_id: str | None = None,
    ) -> list[LeaveBalanceTransaction]:
        """Ledger rows in posting order."""
        stmt = select(LeaveBalanceTransaction).where(
            LeaveBalanceTransaction.employee_id == employee_id
        )
        if leave_type_id is not None:
            stmt = stmt.where(LeaveBalanceTransaction.leave_type_id == leave_type_id)
        stmt = stmt.order_by(
            LeaveBalanceTransaction.leave_type_id,
            LeaveBalanceTransaction.sequence,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def verify_balance(self, employee_id: str, leave_type_id: str) -> BalanceCheck:
        """Compare the cached balance with a fresh fold of the ledger."""
        balance = await self.get_balance(employee_id, leave_type_id)
        folded = fold_transactions(await self.list_transactions(employee_id, leave_type_id))
        return BalanceCheck(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            cached=BalanceSnapshot.from_balance(balance),
            folded=folded,
            cached_available=balance.available_balance,
            folded_available=folded.available(balance.max_balance_cap),
        )

    async def rebuild_balance(
        self, employee_id: str, leave_type_id: str, actor_id: str | None = None
    ) -> LeaveBalance:
        """Recompute the cached balance from the ledger."""
        balance = await self.ensure_balance(employee_id, leave_type_id)
        folded = fold_transactions(await self.list_transactions(employee_id, leave_type_id))
        drifted = folded != BalanceSnapshot.from_balance(balance)
        if drifted:
            logger.warning(
                "Cached balance %s/%s drifted from ledger; rebuilding",
                employee_id,
                leave_type_id,
            )
        folded.write_to(balance)
        record_audit(
            self.session,
            entity_type="leave_balance",
            entity_id=balance.balance_id,
            action="rebuilt",
            actor_id=actor_id,
            details={
                "employee_id": employee_id,
                "leave_type_id": leave_type_id,
                "drifted": drifted,
            },
        )
        await self.session.flush()
        return balance

    async def rebuild_all(self, actor_id: str | None = None) -> int:
        """Rebuild every cached balance; returns the number rebuilt."""
        result = await self.session.execute(
            select(LeaveBalance.employee_id, LeaveBalance.leave_type_id).order_by(
                LeaveBalance.employee_id, LeaveBalance.leave_type_id
            )
        )
        keys = list(result.all())
        for employee_id, leave_type_id in keys:
            await self.rebuild_balance(employee_id, leave_type_id, actor_id)
        return len(keys)

    def _validate(
        self,
        transaction_type: str,
        amount: Decimal | str | int,
        transaction_id: str,
        compensating: bool,
    ) -> Decimal:
        if not transaction_id or len(transaction_id) > 128:
            raise ValidationError("transaction_id must be 1-128 characters")
        try:
            TransactionType(transaction_type)
        except ValueError:
            raise ValidationError(
                f"Unknown transaction type '{transaction_type}'",
                {"allowed": [t.value for t in TransactionType]},
            ) from None
        try:
            value = Decimal(str(amount)).quantize(DAY, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise ValidationError(f"Amount '{amount}' is not a number") from None

        if value == 0:
            raise ValidationError("Amount must be non-zero")
        if transaction_type in DEBIT_ONLY and value > 0 and not compensating:
            raise ValidationError(f"{transaction_type} amounts must be negative")
        if transaction_type == TransactionType.ACCRUAL.value and value < 0:
            raise ValidationError("accrual amounts must be positive; use retro to correct")
        return value

    async def get_transaction(self, transaction_id: str) -> LeaveBalanceTransaction | None:
        result = await self.session.execute(
            select(LeaveBalanceTransaction).where(
                LeaveBalanceTransaction.transaction_id == transaction_id
            )
        )
        return result.scalar_one_or_none()

    async def _replay(self, existing: LeaveBalanceTransaction, payload: dict) -> PostResult:
        stored = {
            "employee_id": existing.employee_id,
            "leave_type_id": existing.leave_type_id,
            "amount": Decimal(existing.amount),
            "transaction_type": existing.transaction_type,
            "request_id": existing.request_id,
        }
        if stored != payload:
            mismatched = sorted(k for k in payload if payload[k] != stored[k])
            raise ConflictError(
                f"Transaction '{existing.transaction_id}' already exists with a different payload",
                {"transaction_id": existing.transaction_id, "fields": mismatched},
            )
        balance = await self.get_balance(existing.employee_id, existing.leave_type_id)
        logger.debug("Replayed transaction %s; no change", existing.transaction_id)
        return PostResult(
            transaction_id=existing.transaction_id,
            is_new=False,
            transaction_type=existing.transaction_type,
            available_balance=balance.available_balance,
        )
