from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional


MonthKey = str


@dataclass(frozen=True)
class BudgetInterval:
    """Budget period of one month key.

    ``end`` is the last day that belongs to the period, i.e. the day before the
    next payday.
    """

    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def overlaps(self, start: date, end: date) -> bool:
        return not (self.start > end or self.end < start)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def parse_month_key(value: MonthKey) -> date:
    """Return the first day of a ``YYYY-MM`` key, raising ValueError if malformed."""
    if not isinstance(value, str) or len(value) != 7 or value[4] != "-":
        raise ValueError(f"Invalid month key: {value!r}")
    try:
        return date(int(value[:4]), int(value[5:]), 1)
    except ValueError as exc:
        raise ValueError(f"Invalid month key: {value!r}") from exc


def try_parse_month_key(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return parse_month_key(value)
    except ValueError:
        return None


def try_parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def is_month_key(value: object) -> bool:
    return isinstance(value, str) and try_parse_month_key(value) is not None


def format_month_key(value: date) -> MonthKey:
    return f"{value.year:04d}-{value.month:02d}"


def add_months(key: MonthKey, count: int) -> MonthKey:
    first = parse_month_key(key)
    month_index = first.year * 12 + (first.month - 1) + count
    return f"{month_index // 12:04d}-{month_index % 12 + 1:02d}"


def months_between(start: MonthKey, end: MonthKey) -> int:
    """Whole months from ``start`` to ``end`` (negative when end is earlier)."""
    a = parse_month_key(start)
    b = parse_month_key(end)
    return (b.year - a.year) * 12 + (b.month - a.month)


def _payday_in(year: int, month: int, payday: int) -> date:
    return date(year, month, min(payday, days_in_month(year, month)))


def _clamp_payday(payday: int) -> int:
    try:
        value = int(payday)
    except (TypeError, ValueError):
        return 1
    return min(max(value, 1), 31)


def budget_interval(month_key: MonthKey, payday: int) -> BudgetInterval:
    """Resolve the budget period for ``month_key``.

    The period starts on the payday at or before the first of the month and
    runs up to the day before the following payday. A payday past the end of a
    short month snaps to its last day, so payday 1 yields the calendar month.
    """
    first = parse_month_key(month_key)
    payday = _clamp_payday(payday)
    if payday == 1:
        start = first
    else:
        previous = add_months(month_key, -1)
        prev_first = parse_month_key(previous)
        start = _payday_in(prev_first.year, prev_first.month, payday)

    if start.month == first.month and start.year == first.year:
        nxt = parse_month_key(add_months(month_key, 1))
        next_payday = _payday_in(nxt.year, nxt.month, payday)
    else:
        next_payday = _payday_in(first.year, first.month, payday)
    return BudgetInterval(start, next_payday - timedelta(days=1))


def month_key_for_date(value: date, payday: int) -> MonthKey:
    """Return the budget month whose interval contains ``value``."""
    key = format_month_key(value)
    interval = budget_interval(key, payday)
    if value > interval.end:
        return add_months(key, 1)
    if value < interval.start:
        return add_months(key, -1)
    return key
