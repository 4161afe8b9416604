"""Synchronous batch runner with per-item isolation.

A job is a list of items and a handler. Each item runs inside its own
SAVEPOINT: a failing item is rolled back and reported, the others keep
their effects. Results are yielded as a stream so callers can aggregate
or forward them without holding the whole batch.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.exceptions import HRLedgerError
from hr_ledger.models import JobRunStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one batch item."""

    key: str
    ok: bool
    detail: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"key": self.key, "ok": self.ok}
        if self.detail:
            data["detail"] = self.detail
        if self.error:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


@dataclass
class BatchSummary:
    processed: int = 0
    failed: int = 0
    results: list[ItemResult] = field(default_factory=list)

    def add(self, result: ItemResult) -> None:
        self.results.append(result)
        if result.ok:
            self.processed += 1
        else:
            self.failed += 1

    @property
    def errors(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.results if not r.ok]

    @property
    def status(self) -> str:
        if self.failed == 0:
            return JobRunStatus.SUCCESS.value
        if self.processed == 0:
            return JobRunStatus.FAILED.value
        return JobRunStatus.PARTIAL.value


class BatchRunner(Generic[T]):
    """Run a handler over items, one SAVEPOINT per item."""

    def __init__(self, session: AsyncSession, name: str):
        self.session = session
        self.name = name

    async def stream(
        self,
        items: Iterable[T],
        key: Callable[[T], str],
        handler: Callable[[T], Awaitable[dict[str, Any] | None]],
    ) -> AsyncIterator[ItemResult]:
        for item in items:
            item_key = key(item)
            try:
                async with self.session.begin_nested():
                    detail = await handler(item)
            except HRLedgerError as exc:
                logger.warning("%s: item %s failed: %s", self.name, item_key, exc.message)
                yield ItemResult(item_key, False, error=exc.message, error_code=exc.code)
                continue
            except Exception as exc:
                logger.exception("%s: item %s failed unexpectedly", self.name, item_key)
                yield ItemResult(item_key, False, error=str(exc), error_code="INTERNAL_ERROR")
                continue
            yield ItemResult(item_key, True, detail=detail or {})

    async def run(
        self,
        items: Iterable[T],
        key: Callable[[T], str],
        handler: Callable[[T], Awaitable[dict[str, Any] | None]],
    ) -> BatchSummary:
        summary = BatchSummary()
        async for result in self.stream(items, key, handler):
            summary.add(result)
        logger.info(
            "%s finished: %d processed, %d failed", self.name, summary.processed, summary.failed
        )
        return summary
