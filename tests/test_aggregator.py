from datetime import date

from aggregator import ForecastClass, ReportCache, forecast_class_for, resolve_month
from resolver import ValueSource
from snapshot import (
    BucketConfig,
    BucketRecord,
    BucketType,
    BudgetSnapshot,
    ForecastType,
    GroupRecord,
    MonthConfigRecord,
    SubCategoryRecord,
    TemplateRecord,
    TransactionRecord,
    TransactionType,
)


def _expense(txn_id: int, day: date, amount: int, **kwargs) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        date=day,
        amount_cents=-amount,
        type=TransactionType.expense,
        **kwargs,
    )


def _snapshot(**kwargs) -> BudgetSnapshot:
    values = {
        "payday": 1,
        "groups": (
            GroupRecord(id=1, name="Housing", forecast_type=ForecastType.fixed),
            GroupRecord(id=2, name="Food", forecast_type=ForecastType.variable),
            GroupRecord(id=3, name="Savings", forecast_type=ForecastType.savings),
            GroupRecord(id=4, name="Other", is_catch_all=True),
        ),
        "sub_categories": (
            SubCategoryRecord(id=10, name="Groceries", budget_group_id=2),
            SubCategoryRecord(id=11, name="Restaurants", budget_group_id=2),
            SubCategoryRecord(id=12, name="Buffer", budget_group_id=3, is_savings=True),
            SubCategoryRecord(id=13, name="Hobbies"),
        ),
        "buckets": (
            BucketRecord(id=20, name="Rent", type=BucketType.fixed, budget_group_id=1),
            BucketRecord(
                id=21,
                name="Japan trip",
                type=BucketType.goal,
                budget_group_id=3,
                target_amount=60000,
                start_saving_date="2025-01",
                target_date="2025-06",
            ),
            BucketRecord(id=22, name="Lunch", type=BucketType.daily),
        ),
        "templates": (
            TemplateRecord(
                id=1,
                name="Standard",
                is_default=True,
                sub_category_values={10: 300000, 11: 50000, 12: 100000},
                bucket_values={
                    20: BucketConfig(amount=800000),
                    22: BucketConfig(daily_amount=10000, active_days=[1, 2, 3, 4, 5]),
                },
                group_values={1: 0, 2: 400000},
            ),
        ),
        "transactions": (
            _expense(100, date(2025, 3, 3), 120000, sub_category_id=10),
            _expense(101, date(2025, 3, 4), 30000, sub_category_id=13),
            _expense(102, date(2025, 3, 5), 5000),
            _expense(103, date(2025, 3, 6), 800000, bucket_id=20, sub_category_id=10),
            _expense(104, date(2025, 3, 7), 20000, bucket_id=21),
            _expense(105, date(2025, 3, 8), 9000, sub_category_id=11, is_hidden=True),
            TransactionRecord(
                id=106,
                date=date(2025, 3, 9),
                amount_cents=4000,
                type=TransactionType.income,
                linked_expense_id=100,
            ),
            TransactionRecord(
                id=107,
                date=date(2025, 3, 1),
                amount_cents=3500000,
                type=TransactionType.income,
                description="Salary",
            ),
            TransactionRecord(
                id=108,
                date=date(2025, 3, 10),
                amount_cents=-50000,
                type=TransactionType.transfer,
            ),
            _expense(109, date(2025, 2, 10), 90000, sub_category_id=10),
            _expense(110, date(2025, 1, 10), 60000, sub_category_id=10),
        ),
    }
    values.update(kwargs)
    return BudgetSnapshot(**values)


def _group(report, group_id: int):
    return next(g for g in report.groups if g.group_id == group_id)


def test_breakdown_partitions_total_budget() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    assert report.breakdown.total == report.total_budget_cents
    assert report.breakdown.fixed_ops == 800000
    assert report.breakdown.dream_saving == 12000
    assert report.breakdown.dream_spending == 60000
    assert report.breakdown.general_saving == 100000


def test_group_total_is_floored_by_manual_limit() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    food = _group(report, 2)
    assert food.is_auto
    assert food.manual_limit_cents == 400000
    assert food.total_budget_cents == 400000
    # 350000 from children plus a 50000 buffer
    assert report.breakdown.variable_ops == 400000 + _group(report, 4).total_budget_cents


def test_auto_floor_with_override_limit() -> None:
    snapshot = _snapshot(
        month_configs=(
            MonthConfigRecord(
                month="2025-03",
                sub_category_overrides={10: 30000, 11: 20000},
                group_overrides={2: 80000},
            ),
        )
    )
    food = _group(resolve_month(snapshot, "2025-03"), 2)
    assert sum(s.budget_cents for s in food.sub_categories) == 50000
    assert food.total_budget_cents == 80000
    assert food.limit_source == ValueSource.override


def test_children_above_manual_limit_win() -> None:
    snapshot = _snapshot(
        month_configs=(MonthConfigRecord(month="2025-03", group_overrides={2: 1000}),)
    )
    food = _group(resolve_month(snapshot, "2025-03"), 2)
    assert food.total_budget_cents == 350000


def test_spent_is_net_of_reimbursements_and_skips_hidden() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    food = _group(report, 2)
    groceries = next(s for s in food.sub_categories if s.sub_category_id == 10)
    restaurants = next(s for s in food.sub_categories if s.sub_category_id == 11)
    assert groceries.spent_cents == 116000
    # the rent payment is tagged with a bucket and counts there only
    assert [t.id for t in groceries.transactions] == [100]
    assert restaurants.spent_cents == 0
    assert food.total_spent_cents == 116000


def test_catch_all_collects_unclassified_spend() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    other = _group(report, 4)
    assert sorted(t.id for t in other.catch_all_transactions) == [101, 102]
    assert other.extra_spent_cents == 35000
    for group in report.groups:
        if group.group_id != 4:
            assert group.extra_spent_cents == 0
            assert 101 not in {t.id for t in group.all_transactions}


def test_orphan_bucket_is_claimed_by_catch_all() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    other = _group(report, 4)
    lunch = next(b for b in other.buckets if b.bucket_id == 22)
    # 21 weekdays in March 2025
    assert lunch.cost_cents == 210000


def test_linked_bucket_ids_claim_bucket_without_group() -> None:
    snapshot = _snapshot(
        groups=(
            GroupRecord(id=1, name="Housing", forecast_type=ForecastType.fixed),
            GroupRecord(id=2, name="Food", linked_bucket_ids=[22]),
            GroupRecord(id=3, name="Savings", forecast_type=ForecastType.savings),
            GroupRecord(id=4, name="Other", is_catch_all=True),
        )
    )
    report = resolve_month(snapshot, "2025-03")
    assert 22 in {b.bucket_id for b in _group(report, 2).buckets}
    assert 22 not in {b.bucket_id for b in _group(report, 4).buckets}


def test_goal_bucket_contributes_saving_and_spending() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    savings = _group(report, 3)
    phases = [(b.display_name, b.cost_cents, b.spent_cents) for b in savings.buckets]
    assert phases == [("Saving: Japan trip", 12000, 0), ("Japan trip", 60000, 20000)]


def test_average_uses_three_previous_months() -> None:
    report = resolve_month(_snapshot(), "2025-04")
    groceries = next(s for s in _group(report, 2).sub_categories if s.sub_category_id == 10)
    # (60000 + 90000 + 116000 + 800000) / 3, bucket payments included
    assert groceries.average_cents == 355333


def test_income_total_includes_reimbursements() -> None:
    report = resolve_month(_snapshot(), "2025-03")
    # salary plus the 4000 reimbursement of transaction 100
    assert report.total_income_cents == 3504000
    assert report.template_name == "Standard"


def test_no_template_degrades_to_zero_budgets() -> None:
    report = resolve_month(_snapshot(templates=()), "2025-03")
    assert report.template_name is None
    food = _group(report, 2)
    assert food.total_budget_cents == 0
    assert all(s.source == ValueSource.none for s in food.sub_categories)
    assert report.breakdown.total == report.total_budget_cents


def test_malformed_goal_dates_do_not_break_report() -> None:
    snapshot = _snapshot(
        buckets=(
            BucketRecord(
                id=21,
                name="Broken",
                type=BucketType.goal,
                budget_group_id=3,
                target_amount=5000,
                start_saving_date="2025-99",
                target_date="not a date",
            ),
        )
    )
    report = resolve_month(snapshot, "2025-03")
    savings = _group(report, 3)
    # the posted expense still yields a spending row
    assert [b.spent_cents for b in savings.buckets] == [20000]


def test_resolve_month_is_idempotent() -> None:
    snapshot = _snapshot()
    assert resolve_month(snapshot, "2025-03") == resolve_month(snapshot, "2025-03")


def test_report_cache_reuses_equal_snapshots() -> None:
    cache = ReportCache(maxsize=2)
    first = cache.get(_snapshot(), "2025-03")
    assert cache.get(_snapshot(), "2025-03") is first
    assert len(cache) == 1

    cache.get(_snapshot(), "2025-04")
    cache.get(_snapshot(), "2025-05")
    assert len(cache) == 2
    assert cache.get(_snapshot(), "2025-03") is not first

    cache.clear()
    assert len(cache) == 0


def test_forecast_class_for_group_types() -> None:
    assert forecast_class_for(ForecastType.fixed) == ForecastClass.fixed_ops
    assert forecast_class_for(ForecastType.variable) == ForecastClass.variable_ops
    assert forecast_class_for(ForecastType.savings) == ForecastClass.general_saving
    assert forecast_class_for(ForecastType.fixed, is_savings=True) == ForecastClass.general_saving
