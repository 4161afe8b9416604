"""HR ledger command line interface.

Runs the batch jobs outside the HTTP API, e.g. from cron:

Usage:
    hr-ledger run-accrual --period 2024-03 --job-type monthly_accrual
    hr-ledger year-end --year 2024
    hr-ledger expire-carry-forward --as-of 2025-04-01
    hr-ledger rebuild-balances
    hr-ledger serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Any, Callable

from hr_ledger.calculators.accrual import JOB_TYPES
from hr_ledger.database import create_schema, dispose_db, get_session
from hr_ledger.exceptions import HRLedgerError
from hr_ledger.logging_config import configure_logging
from hr_ledger.services.accrual_service import AccrualService
from hr_ledger.services.ledger_service import LeaveLedgerService


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


async def _with_session(work: Callable[[Any], Any]) -> Any:
    await create_schema()
    try:
        async with get_session() as session:
            return await work(session)
    finally:
        await dispose_db()


class LedgerCli:
    """HR ledger command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="hr-ledger",
            description="HR payroll and leave ledger operational tools",
        )
        parser.add_argument(
            "--log-format",
            choices=["text", "json"],
            default=None,
            help="Override LOG_FORMAT for this invocation",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        accrual = subparsers.add_parser(
            "run-accrual",
            help="Accrue leave for one period",
        )
        accrual.add_argument(
            "--period",
            type=str,
            required=True,
            help="Period label: YYYY-MM, YYYY-Qn or YYYY",
        )
        accrual.add_argument(
            "--job-type",
            choices=sorted(JOB_TYPES),
            default="monthly_accrual",
            help="Accrual frequency to run (default: monthly_accrual)",
        )
        accrual.add_argument("--executed-by", type=str, help="Actor recorded on the job")
        accrual.add_argument(
            "--dry-run",
            action="store_true",
            help="Compute amounts without posting",
        )

        year_end = subparsers.add_parser(
            "year-end",
            help="Carry forward unused days and forfeit the excess",
        )
        year_end.add_argument("--year", type=int, required=True, help="Leave year to close")
        year_end.add_argument("--executed-by", type=str, help="Actor recorded on the job")
        year_end.add_argument("--dry-run", action="store_true")

        expiry = subparsers.add_parser(
            "expire-carry-forward",
            help="Expire carried-forward days past their expiry date",
        )
        expiry.add_argument(
            "--as-of",
            type=parse_date,
            default=None,
            help="Reference date (default: today)",
        )
        expiry.add_argument("--executed-by", type=str, help="Actor recorded on the job")
        expiry.add_argument("--dry-run", action="store_true")

        rebuild = subparsers.add_parser(
            "rebuild-balances",
            help="Recompute every cached balance from its ledger",
        )
        rebuild.add_argument("--executed-by", type=str, help="Actor recorded in the audit trail")

        subparsers.add_parser("serve", help="Run the HTTP API")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        if parsed.command != "serve":
            from hr_ledger.config import get_settings

            settings = get_settings()
            configure_logging(settings.log_level, parsed.log_format or settings.log_format)

        handlers: dict[str, Callable[..., int]] = {
            "run-accrual": self._cmd_run_accrual,
            "year-end": self._cmd_year_end,
            "expire-carry-forward": self._cmd_expire_carry_forward,
            "rebuild-balances": self._cmd_rebuild_balances,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except HRLedgerError as exc:
            print(json.dumps(exc.to_dict(), default=str), file=sys.stderr)
            return 2

    def _cmd_run_accrual(self, args: argparse.Namespace) -> int:
        """Run one accrual job."""

        async def work(session):
            return await AccrualService(session).run_accrual(
                args.period, args.job_type, executed_by=args.executed_by, dry_run=args.dry_run
            )

        return self._print_outcome(asyncio.run(_with_session(work)))

    def _cmd_year_end(self, args: argparse.Namespace) -> int:
        async def work(session):
            return await AccrualService(session).run_year_end(
                args.year, executed_by=args.executed_by, dry_run=args.dry_run
            )

        return self._print_outcome(asyncio.run(_with_session(work)))

    def _cmd_expire_carry_forward(self, args: argparse.Namespace) -> int:
        as_of = args.as_of or date.today()

        async def work(session):
            return await AccrualService(session).run_carry_forward_expiry(
                as_of, executed_by=args.executed_by, dry_run=args.dry_run
            )

        return self._print_outcome(asyncio.run(_with_session(work)))

    def _cmd_rebuild_balances(self, args: argparse.Namespace) -> int:
        """Rebuild cached balances from the ledger."""

        async def work(session):
            return await LeaveLedgerService(session).rebuild_all(args.executed_by)

        count = asyncio.run(_with_session(work))
        print(json.dumps({"rebuilt": count}))
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        from hr_ledger.__main__ import main as serve

        serve()
        return 0

    def _print_outcome(self, outcome) -> int:
        print(json.dumps(outcome.to_dict(), indent=2, default=str))
        # Partial batches exit non-zero so schedulers notice failed items
        return 0 if outcome.status == "success" else 1


def main() -> int:
    """CLI entry point."""
    cli = LedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
