import logging
import threading
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bucket_costs import BucketPhase, BucketRow, bucket_rows
from money import round_div
from periods import BudgetInterval, MonthKey, add_months, budget_interval
from reimbursements import ReimbursementMap, build_reimbursement_map
from resolver import MonthResolver, ValueSource
from snapshot import (
    BucketRecord,
    BudgetSnapshot,
    ForecastType,
    GroupRecord,
    SubCategoryRecord,
    TransactionRecord,
    TransactionType,
)

logger = logging.getLogger(__name__)

AVERAGE_MONTHS = 3


class ForecastClass(str, Enum):
    dream_spending = "dream_spending"
    dream_saving = "dream_saving"
    general_saving = "general_saving"
    fixed_ops = "fixed_ops"
    variable_ops = "variable_ops"


@dataclass(frozen=True)
class SubCategoryRow:
    sub_category_id: int
    name: str
    budget_cents: int
    spent_cents: int
    average_cents: int
    source: ValueSource
    forecast_class: ForecastClass
    transactions: tuple[TransactionRecord, ...] = ()

    @property
    def is_overridden(self) -> bool:
        return self.source == ValueSource.override


@dataclass(frozen=True)
class GroupSummary:
    group_id: int
    name: str
    forecast_type: ForecastType
    is_catch_all: bool
    total_budget_cents: int
    total_spent_cents: int
    is_auto: bool
    manual_limit_cents: int
    limit_source: ValueSource
    template_name: Optional[str]
    sub_categories: tuple[SubCategoryRow, ...] = ()
    buckets: tuple[BucketRow, ...] = ()
    catch_all_transactions: tuple[TransactionRecord, ...] = ()
    extra_spent_cents: int = 0

    @property
    def all_transactions(self) -> tuple[TransactionRecord, ...]:
        txns: list[TransactionRecord] = []
        for sub in self.sub_categories:
            txns.extend(sub.transactions)
        for row in self.buckets:
            txns.extend(row.transactions)
        txns.extend(self.catch_all_transactions)
        return tuple(txns)


@dataclass(frozen=True)
class ForecastBreakdown:
    dream_spending: int = 0
    dream_saving: int = 0
    general_saving: int = 0
    fixed_ops: int = 0
    variable_ops: int = 0

    @property
    def total(self) -> int:
        return (
            self.dream_spending
            + self.dream_saving
            + self.general_saving
            + self.fixed_ops
            + self.variable_ops
        )


@dataclass(frozen=True)
class MonthReport:
    month: MonthKey
    interval: BudgetInterval
    template_name: Optional[str]
    is_locked: bool
    groups: tuple[GroupSummary, ...]
    total_budget_cents: int
    total_spent_cents: int
    total_income_cents: int
    breakdown: ForecastBreakdown


def forecast_class_for(
    forecast_type: ForecastType, is_savings: bool = False
) -> ForecastClass:
    if is_savings or forecast_type == ForecastType.savings:
        return ForecastClass.general_saving
    if forecast_type == ForecastType.fixed:
        return ForecastClass.fixed_ops
    return ForecastClass.variable_ops


def _bucket_row_class(row: BucketRow, group: GroupRecord) -> ForecastClass:
    if row.phase == BucketPhase.saving:
        return ForecastClass.dream_saving
    if row.phase == BucketPhase.spending:
        return ForecastClass.dream_spending
    return forecast_class_for(group.forecast_type, row.is_savings)


def _is_countable_expense(txn: TransactionRecord) -> bool:
    return not txn.is_hidden and txn.is_expense


def sub_category_average(
    sub_category_id: int,
    month_key: MonthKey,
    payday: int,
    transactions: tuple[TransactionRecord, ...],
    reimbursements: ReimbursementMap,
) -> int:
    """Mean net spend of a sub-category over the budget months before ``month_key``."""
    total = 0
    for offset in range(1, AVERAGE_MONTHS + 1):
        interval = budget_interval(add_months(month_key, -offset), payday)
        total += sum(
            reimbursements.spend(txn)
            for txn in transactions
            if txn.sub_category_id == sub_category_id
            and _is_countable_expense(txn)
            and interval.contains(txn.date)
        )
    return round_div(total, AVERAGE_MONTHS)


class _MonthAggregation:
    def __init__(self, snapshot: BudgetSnapshot, month_key: MonthKey) -> None:
        self.snapshot = snapshot
        self.month_key = month_key
        self.interval = budget_interval(month_key, snapshot.payday)
        self.resolver = MonthResolver(
            month_key, snapshot.templates, snapshot.month_configs
        )
        self.reimbursements = build_reimbursement_map(snapshot.transactions)
        self.tally: dict[ForecastClass, int] = defaultdict(int)

        self.group_ids = {group.id for group in snapshot.groups}
        self.bucket_ids = {bucket.id for bucket in snapshot.buckets}
        self.grouped_subs = {
            sub.id
            for sub in snapshot.sub_categories
            if sub.budget_group_id in self.group_ids
        }
        self.current = tuple(
            txn
            for txn in snapshot.transactions
            if not txn.is_hidden and self.interval.contains(txn.date)
        )
        self.by_bucket: dict[int, list[TransactionRecord]] = defaultdict(list)
        for txn in snapshot.transactions:
            if txn.bucket_id in self.bucket_ids:
                self.by_bucket[txn.bucket_id].append(txn)
        catch_all = next((g for g in snapshot.groups if g.is_catch_all), None)
        self.catch_all_id = catch_all.id if catch_all else None

    def bucket_owner(self, bucket: BucketRecord) -> Optional[int]:
        if bucket.budget_group_id in self.group_ids:
            return bucket.budget_group_id
        for group in self.snapshot.groups:
            if bucket.id in group.linked_bucket_ids:
                return group.id
        return self.catch_all_id

    def sub_category_row(
        self, sub: SubCategoryRecord, group: GroupRecord
    ) -> SubCategoryRow:
        txns = tuple(
            txn
            for txn in self.current
            if txn.sub_category_id == sub.id
            and txn.is_expense
            and txn.bucket_id not in self.bucket_ids
        )
        effective = self.resolver.sub_category_budget(sub.id)
        forecast_class = forecast_class_for(group.forecast_type, sub.is_savings)
        self.tally[forecast_class] += effective.value
        return SubCategoryRow(
            sub_category_id=sub.id,
            name=sub.name,
            budget_cents=effective.value,
            spent_cents=sum(self.reimbursements.spend(txn) for txn in txns),
            average_cents=sub_category_average(
                sub.id,
                self.month_key,
                self.snapshot.payday,
                self.snapshot.transactions,
                self.reimbursements,
            ),
            source=effective.source,
            forecast_class=forecast_class,
            transactions=txns,
        )

    def group_bucket_rows(self, group: GroupRecord) -> list[BucketRow]:
        rows: list[BucketRow] = []
        for bucket in self.snapshot.buckets:
            if self.bucket_owner(bucket) != group.id:
                continue
            try:
                bucket_display = bucket_rows(
                    bucket,
                    self.month_key,
                    self.interval,
                    self.resolver,
                    self.by_bucket.get(bucket.id, ()),
                    self.reimbursements,
                )
            except (ValueError, TypeError, ArithmeticError) as exc:
                logger.warning(
                    f"bucket_skipped: bucket_id={bucket.id} month={self.month_key} error={exc}"
                )
                continue
            for row in bucket_display:
                self.tally[_bucket_row_class(row, group)] += row.cost_cents
            rows.extend(bucket_display)
        return rows

    def unclassified_transactions(self) -> tuple[TransactionRecord, ...]:
        return tuple(
            txn
            for txn in self.current
            if txn.is_expense
            and txn.type not in (TransactionType.transfer, TransactionType.income)
            and txn.bucket_id not in self.bucket_ids
            and (txn.sub_category_id is None or txn.sub_category_id not in self.grouped_subs)
        )

    def group_summary(self, group: GroupRecord) -> GroupSummary:
        subs = tuple(
            self.sub_category_row(sub, group)
            for sub in self.snapshot.sub_categories
            if sub.budget_group_id == group.id
        )
        buckets = tuple(self.group_bucket_rows(group))

        limit = self.resolver.group_limit(group.id)
        manual = limit.value
        children_total = sum(s.budget_cents for s in subs) + sum(
            b.cost_cents for b in buckets
        )
        group_class = forecast_class_for(group.forecast_type)
        if subs or buckets:
            total_budget = max(children_total, manual)
            is_auto = True
            buffer = total_budget - children_total
            if buffer > 0:
                self.tally[group_class] += buffer
        else:
            total_budget = manual
            is_auto = False
            self.tally[group_class] += total_budget

        catch_all_txns: tuple[TransactionRecord, ...] = ()
        if group.is_catch_all:
            catch_all_txns = self.unclassified_transactions()
        extra_spent = sum(self.reimbursements.spend(txn) for txn in catch_all_txns)

        return GroupSummary(
            group_id=group.id,
            name=group.name,
            forecast_type=group.forecast_type,
            is_catch_all=group.is_catch_all,
            total_budget_cents=total_budget,
            total_spent_cents=sum(s.spent_cents for s in subs)
            + sum(b.spent_cents for b in buckets)
            + extra_spent,
            is_auto=is_auto,
            manual_limit_cents=manual,
            limit_source=limit.source,
            template_name=limit.template_name,
            sub_categories=subs,
            buckets=buckets,
            catch_all_transactions=catch_all_txns,
            extra_spent_cents=extra_spent,
        )

    def report(self) -> MonthReport:
        groups = tuple(self.group_summary(group) for group in self.snapshot.groups)
        total_income = sum(
            txn.amount_cents
            for txn in self.current
            if txn.type == TransactionType.income
        )
        breakdown = ForecastBreakdown(
            **{cls.value: self.tally.get(cls, 0) for cls in ForecastClass}
        )
        return MonthReport(
            month=self.month_key,
            interval=self.interval,
            template_name=self.resolver.template_name,
            is_locked=self.resolver.is_locked,
            groups=groups,
            total_budget_cents=sum(g.total_budget_cents for g in groups),
            total_spent_cents=sum(g.total_spent_cents for g in groups),
            total_income_cents=total_income,
            breakdown=breakdown,
        )


def resolve_month(snapshot: BudgetSnapshot, month_key: MonthKey) -> MonthReport:
    """Compute the full budget report of one month from a snapshot.

    Raises ValueError only for a malformed month key; problems in the data
    itself never abort the report.
    """
    report = _MonthAggregation(snapshot, month_key).report()
    logger.debug(
        f"month_resolved: month={month_key} groups={len(report.groups)} "
        f"budget={report.total_budget_cents} spent={report.total_spent_cents}"
    )
    return report


class ReportCache:
    """Bounded memo of month reports keyed by snapshot content and month."""

    def __init__(self, maxsize: int = 32) -> None:
        self.maxsize = max(maxsize, 1)
        self._entries: "OrderedDict[tuple[str, MonthKey], MonthReport]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, snapshot: BudgetSnapshot, month_key: MonthKey) -> MonthReport:
        key = (snapshot.digest(), month_key)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                return cached
        report = resolve_month(snapshot, month_key)
        with self._lock:
            self._entries[key] = report
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
        return report

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
