import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from periods import (
    BudgetInterval,
    MonthKey,
    add_months,
    format_month_key,
    months_between,
    try_parse_date,
    try_parse_month_key,
)
from reimbursements import ReimbursementMap
from resolver import MonthResolver, ValueSource
from snapshot import (
    BucketConfig,
    BucketRecord,
    BucketType,
    PaymentSource,
    TransactionRecord,
)

logger = logging.getLogger(__name__)


class BucketPhase(str, Enum):
    standard = "standard"
    saving = "saving"
    spending = "spending"


@dataclass(frozen=True)
class BucketRow:
    bucket_id: int
    name: str
    display_name: str
    type: BucketType
    phase: BucketPhase
    cost_cents: int
    spent_cents: int
    source: ValueSource
    is_savings: bool = False
    saved_to_date_cents: Optional[int] = None
    transactions: tuple[TransactionRecord, ...] = ()

    @property
    def is_overridden(self) -> bool:
        return self.source == ValueSource.override


def _month_of(value: Optional[str]) -> Optional[MonthKey]:
    """Month key of a ``YYYY-MM`` or ``YYYY-MM-DD`` string, None if unparseable."""
    if not value:
        return None
    value = value.strip()
    if len(value) == 7:
        parsed = try_parse_month_key(value)
    else:
        parsed = try_parse_date(value)
    return format_month_key(parsed) if parsed else None


def fixed_cost(config: BucketConfig) -> int:
    if config.is_explicitly_deleted:
        return 0
    return config.amount


def daily_cost(config: BucketConfig, interval: BudgetInterval) -> int:
    """Daily amount times the number of active weekdays in the interval.

    Weekdays are numbered 0=Sunday through 6=Saturday.
    """
    if config.is_explicitly_deleted or not config.daily_amount:
        return 0
    active = set(config.active_days)
    count = sum(1 for day in interval.days() if (day.weekday() + 1) % 7 in active)
    return count * config.daily_amount


def _saving_window(bucket: BucketRecord) -> Optional[tuple[MonthKey, int]]:
    if bucket.type != BucketType.goal or bucket.payment_source != PaymentSource.income:
        return None
    start = _month_of(bucket.start_saving_date)
    target = _month_of(bucket.target_date)
    if start is None or target is None:
        return None
    total = months_between(start, target)
    if total <= 0:
        return None
    return start, total


def _saving_contributions(bucket: BucketRecord, until: MonthKey) -> list[tuple[MonthKey, int]]:
    """Saving amount of every saving month up to and including ``until``.

    Months without a saved entry split what is left of the target evenly over
    the remaining months, rounding down; the final month takes the rest.
    """
    window = _saving_window(bucket)
    if window is None:
        return []
    start, total = window
    archived = _month_of(bucket.archived_date)
    contributions: list[tuple[MonthKey, int]] = []
    saved = 0
    for index in range(total):
        key = add_months(start, index)
        if key > until or (archived is not None and key > archived):
            break
        remaining_months = total - index
        remaining = bucket.target_amount - saved
        entry = bucket.monthly_data.get(key)
        if entry is not None and not entry.is_explicitly_deleted:
            amount = entry.amount
        elif remaining_months == 1:
            amount = max(0, remaining)
        else:
            amount = max(0, remaining // remaining_months)
        saved += amount
        contributions.append((key, amount))
    return contributions


def is_saving_phase(bucket: BucketRecord, month_key: MonthKey) -> bool:
    window = _saving_window(bucket)
    if window is None:
        return False
    start, total = window
    if not (start <= month_key < add_months(start, total)):
        return False
    archived = _month_of(bucket.archived_date)
    return archived is None or month_key <= archived


def goal_saving_amount(bucket: BucketRecord, month_key: MonthKey) -> int:
    if not is_saving_phase(bucket, month_key):
        return 0
    contributions = _saving_contributions(bucket, month_key)
    return contributions[-1][1] if contributions else 0


def goal_saved_to_date(bucket: BucketRecord, month_key: MonthKey) -> int:
    if bucket.payment_source == PaymentSource.balance:
        return bucket.target_amount
    return sum(amount for _, amount in _saving_contributions(bucket, month_key))


def is_spending_phase(
    bucket: BucketRecord, month_key: MonthKey, interval: BudgetInterval, spent: int
) -> bool:
    if spent > 0:
        return True
    if _month_of(bucket.target_date) == month_key:
        return True
    event_start = try_parse_date(bucket.event_start_date)
    event_end = try_parse_date(bucket.event_end_date)
    if event_start is None or event_end is None:
        return False
    return interval.overlaps(event_start, event_end)


def _is_bucket_expense(txn: TransactionRecord) -> bool:
    return not txn.is_hidden and txn.is_expense


def bucket_rows(
    bucket: BucketRecord,
    month_key: MonthKey,
    interval: BudgetInterval,
    resolver: MonthResolver,
    transactions: Iterable[TransactionRecord],
    reimbursements: ReimbursementMap,
) -> list[BucketRow]:
    """Display rows of one bucket for the month: none, one, or a saving and a spending row.

    ``transactions`` are the bucket's own transactions from any date.
    """
    expenses = [txn for txn in transactions if _is_bucket_expense(txn)]
    current = tuple(txn for txn in expenses if interval.contains(txn.date))
    spent = sum(reimbursements.spend(txn) for txn in current)

    if bucket.type != BucketType.goal:
        effective = resolver.bucket_config(bucket.id)
        config = effective.value
        if bucket.type == BucketType.daily:
            cost = daily_cost(config, interval)
        else:
            cost = fixed_cost(config)
        planned = (
            effective.source == ValueSource.template
            and bucket.id in resolver.template.bucket_values
            and not config.is_explicitly_deleted
        )
        if cost <= 0 and spent <= 0 and not planned:
            return []
        return [
            BucketRow(
                bucket_id=bucket.id,
                name=bucket.name,
                display_name=bucket.name,
                type=bucket.type,
                phase=BucketPhase.standard,
                cost_cents=cost,
                spent_cents=spent,
                source=effective.source,
                is_savings=bucket.is_savings,
                transactions=current,
            )
        ]

    rows: list[BucketRow] = []
    saved_to_date = goal_saved_to_date(bucket, month_key)
    if is_saving_phase(bucket, month_key):
        entry = bucket.monthly_data.get(month_key)
        overridden = entry is not None and not entry.is_explicitly_deleted
        rows.append(
            BucketRow(
                bucket_id=bucket.id,
                name=bucket.name,
                display_name=f"Saving: {bucket.name}",
                type=bucket.type,
                phase=BucketPhase.saving,
                cost_cents=goal_saving_amount(bucket, month_key),
                spent_cents=0,
                source=ValueSource.override if overridden else ValueSource.none,
                is_savings=bucket.is_savings,
                saved_to_date_cents=saved_to_date,
            )
        )
    if is_spending_phase(bucket, month_key, interval, spent):
        past_spent = sum(
            reimbursements.spend(txn) for txn in expenses if txn.date < interval.start
        )
        rows.append(
            BucketRow(
                bucket_id=bucket.id,
                name=bucket.name,
                display_name=bucket.name,
                type=bucket.type,
                phase=BucketPhase.spending,
                cost_cents=max(0, bucket.target_amount - past_spent),
                spent_cents=spent,
                source=ValueSource.none,
                is_savings=bucket.is_savings,
                saved_to_date_cents=saved_to_date,
                transactions=current,
            )
        )
    if not rows:
        logger.debug(f"goal_dormant: bucket_id={bucket.id} month={month_key}")
    return rows
