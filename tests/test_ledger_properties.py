"""Property-based tests for the leave ledger.

The cached balance must always equal the fold of the ledger, whatever
sequence of postings, replays and rejections produced it.
"""

import asyncio
import random
from datetime import date
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select

from hr_ledger.database import build_engine, build_session_factory
from hr_ledger.exceptions import ConflictError, InsufficientBalanceError, ValidationError
from hr_ledger.models import Base, Employee, LeaveBalanceTransaction, LeaveType
from hr_ledger.services.ledger_service import BalanceSnapshot, LeaveLedgerService

from .conftest import ANNUAL, TEST_DATABASE_URL

days = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("20"), places=2)

# (transaction_type, sign) pairs that pass validation without `compensating`
signed_entries = st.one_of(
    st.tuples(st.just("adjustment"), days),
    st.tuples(st.just("adjustment"), days.map(lambda d: -d)),
    st.tuples(st.just("accrual"), days),
    st.tuples(st.just("retro"), days.map(lambda d: -d)),
    st.tuples(st.just("take"), days.map(lambda d: -d)),
    st.tuples(st.just("encashment"), days.map(lambda d: -d)),
    st.tuples(st.just("expiry"), days.map(lambda d: -d)),
    st.tuples(st.just("reserve_release"), days.map(lambda d: -d)),
    st.tuples(st.just("reserve_release"), days),
)


def fold(entries) -> BalanceSnapshot:
    snapshot = BalanceSnapshot()
    for kind, amount in entries:
        snapshot = snapshot.apply(kind, amount)
    return snapshot


class TestFoldProperties:
    @given(entries=st.lists(signed_entries, max_size=30), seed=st.integers())
    def test_fold_is_order_independent(self, entries, seed):
        shuffled = list(entries)
        random.Random(seed).shuffle(shuffled)
        assert fold(entries) == fold(shuffled)

    @given(
        entries=st.lists(signed_entries, max_size=30),
        cap=st.one_of(st.none(), st.decimals(min_value=0, max_value=50, places=2)),
    )
    def test_available_within_zero_and_cap(self, entries, cap):
        available = fold(entries).available(cap)
        assert available >= 0
        if cap is not None:
            assert available <= cap

    @given(entries=st.lists(signed_entries, max_size=20), taken=days)
    def test_compensating_entry_restores_snapshot(self, entries, taken):
        before = fold(entries)
        after = before.apply("take", -taken).apply("take", taken)
        assert after == before


def run_postings(operations) -> tuple[bool, int, int]:
    """Post operations against a fresh database.

    Returns (consistent, ledger row count, accepted transaction ids).
    """

    async def scenario():
        engine = build_engine(TEST_DATABASE_URL)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = build_session_factory(engine)
        try:
            async with factory() as session:
                session.add(
                    Employee(
                        employee_id="emp-1",
                        full_name="Emp One",
                        employment_type="full_time",
                        hire_date=date(2020, 1, 1),
                        position_code="ENG",
                        base_salary=Decimal("1000"),
                        allowances=[],
                        signing_bonus=Decimal("0"),
                        roles=[],
                        is_active=True,
                    )
                )
                session.add(LeaveType(leave_type_id=ANNUAL, code="ANNUAL", name="Annual"))
                await session.flush()

                ledger = LeaveLedgerService(session)
                accepted = set()
                for txn_id, (kind, amount) in operations:
                    try:
                        await ledger.apply_transaction(
                            employee_id="emp-1",
                            leave_type_id=ANNUAL,
                            amount=amount,
                            transaction_type=kind,
                            transaction_id=txn_id,
                        )
                    except (InsufficientBalanceError, ConflictError, ValidationError):
                        continue
                    accepted.add(txn_id)

                rows = await session.execute(
                    select(func.count()).select_from(LeaveBalanceTransaction)
                )
                count = rows.scalar_one()
                if not accepted:
                    return True, count, 0
                check = await ledger.verify_balance("emp-1", ANNUAL)
                return check.consistent, count, len(accepted)
        finally:
            await engine.dispose()

    return asyncio.run(scenario())


class TestLedgerConsistency:
    # Small id pool so replays and payload conflicts happen often
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow],
    )
    @given(
        operations=st.lists(
            st.tuples(st.sampled_from(["t1", "t2", "t3", "t4", "t5", "t6"]), signed_entries),
            max_size=15,
        )
    )
    def test_cached_balance_equals_fold(self, operations):
        consistent, count, accepted = run_postings(operations)

        assert consistent
        assert count == accepted
