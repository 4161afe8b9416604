"""Period labels and day counting shared by accrual and payroll."""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

from hr_ledger.exceptions import ValidationError

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$")
_YEAR_RE = re.compile(r"^(\d{4})$")


@dataclass(frozen=True)
class Period:
    """A closed date range identified by a label like 2024-03, 2024-Q1 or 2024."""

    label: str
    kind: str  # 'month' | 'quarter' | 'year'
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlap_days(self, start: date, end: date | None) -> int:
        """Days of [start, end] that fall inside this period."""
        lo = max(self.start, start)
        hi = min(self.end, end) if end is not None else self.end
        if hi < lo:
            return 0
        return (hi - lo).days + 1


def parse_period(label: str) -> Period:
    """Parse a period label, raising ValidationError when malformed."""
    label = label.strip()

    m = _MONTH_RE.match(label)
    if m:
        year, month = int(m.group(1)), int(m.group(2))
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month in period '{label}'")
        last = calendar.monthrange(year, month)[1]
        return Period(label, "month", date(year, month, 1), date(year, month, last))

    m = _QUARTER_RE.match(label)
    if m:
        year, quarter = int(m.group(1)), int(m.group(2))
        first_month = (quarter - 1) * 3 + 1
        last_month = first_month + 2
        last = calendar.monthrange(year, last_month)[1]
        return Period(label, "quarter", date(year, first_month, 1), date(year, last_month, last))

    m = _YEAR_RE.match(label)
    if m:
        year = int(m.group(1))
        return Period(label, "year", date(year, 1, 1), date(year, 12, 31))

    raise ValidationError(
        f"Unrecognised period '{label}' (expected YYYY-MM, YYYY-Qn or YYYY)"
    )


def iter_days(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def working_days(start: date, end: date, excluded: Iterable[date] = ()) -> int:
    """Count Monday-Friday days in [start, end] not listed in ``excluded``."""
    skip = set(excluded)
    return sum(1 for d in iter_days(start, end) if d.weekday() < 5 and d not in skip)


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def months_between(start: date, end: date) -> int:
    """Whole months elapsed from start to end (tenure)."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)
