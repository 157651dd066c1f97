from datetime import date

from bucket_costs import (
    BucketPhase,
    bucket_rows,
    daily_cost,
    goal_saved_to_date,
    goal_saving_amount,
    is_saving_phase,
    is_spending_phase,
)
from periods import BudgetInterval, budget_interval
from reimbursements import build_reimbursement_map
from resolver import MonthResolver, ValueSource
from snapshot import (
    BucketConfig,
    BucketRecord,
    BucketType,
    GoalMonth,
    MonthConfigRecord,
    PaymentSource,
    TemplateRecord,
    TransactionRecord,
    TransactionType,
)


def _goal(**kwargs) -> BucketRecord:
    values = {
        "id": 1,
        "name": "Japan trip",
        "type": BucketType.goal,
        "target_amount": 100000,
        "start_saving_date": "2025-01",
        "target_date": "2025-04",
    }
    values.update(kwargs)
    return BucketRecord(**values)


def _expense(txn_id: int, day: date, amount: int, bucket_id: int = 1) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        date=day,
        amount_cents=-amount,
        type=TransactionType.expense,
        bucket_id=bucket_id,
    )


def test_daily_bucket_counts_active_weekdays() -> None:
    # Monday 2025-03-03 through Sunday 2025-03-09
    week = BudgetInterval(date(2025, 3, 3), date(2025, 3, 9))
    config = BucketConfig(daily_amount=50, active_days=[1, 2, 3, 4, 5])
    assert daily_cost(config, week) == 250


def test_daily_bucket_weekend_only() -> None:
    week = BudgetInterval(date(2025, 3, 3), date(2025, 3, 9))
    config = BucketConfig(daily_amount=120, active_days=[0, 6, 9])
    assert config.active_days == (0, 6)
    assert daily_cost(config, week) == 240


def test_goal_saving_splits_target_over_remaining_months() -> None:
    bucket = _goal()
    amounts = [goal_saving_amount(bucket, m) for m in ("2025-01", "2025-02", "2025-03")]
    assert amounts == [33333, 33333, 33334]
    assert sum(amounts) == bucket.target_amount
    # the target month itself is not a saving month
    assert goal_saving_amount(bucket, "2025-04") == 0
    assert goal_saving_amount(bucket, "2024-12") == 0


def test_goal_saving_override_reshapes_later_months() -> None:
    bucket = _goal(monthly_data={"2025-01": GoalMonth(amount=50000)})
    assert goal_saving_amount(bucket, "2025-01") == 50000
    assert goal_saving_amount(bucket, "2025-02") == 25000
    assert goal_saving_amount(bucket, "2025-03") == 25000


def test_goal_zero_override_and_deleted_marker() -> None:
    skipped = _goal(monthly_data={"2025-02": GoalMonth(amount=0)})
    assert goal_saving_amount(skipped, "2025-02") == 0
    assert goal_saving_amount(skipped, "2025-03") == 66667

    deleted = _goal(
        monthly_data={"2025-02": GoalMonth(amount=0, is_explicitly_deleted=True)}
    )
    assert goal_saving_amount(deleted, "2025-02") == 33333


def test_goal_saving_stops_after_archive_month() -> None:
    bucket = _goal(archived_date="2025-02")
    assert is_saving_phase(bucket, "2025-02")
    assert not is_saving_phase(bucket, "2025-03")
    assert goal_saved_to_date(bucket, "2025-06") == 66666


def test_balance_funded_goal_never_saves() -> None:
    bucket = _goal(payment_source=PaymentSource.balance)
    assert not is_saving_phase(bucket, "2025-02")
    assert goal_saved_to_date(bucket, "2025-02") == 100000


def test_unparseable_goal_dates_disable_phases() -> None:
    bucket = _goal(start_saving_date="soon", target_date="later")
    interval = budget_interval("2025-02", 25)
    assert not is_saving_phase(bucket, "2025-02")
    assert not is_spending_phase(bucket, "2025-02", interval, 0)


def test_spending_phase_from_event_overlap() -> None:
    bucket = _goal(
        target_date="2025-09-01",
        event_start_date="2025-07-10",
        event_end_date="2025-07-20",
    )
    july = budget_interval("2025-07", 1)
    assert is_spending_phase(bucket, "2025-07", july, 0)
    assert not is_spending_phase(bucket, "2025-06", budget_interval("2025-06", 1), 0)

    open_ended = _goal(target_date="2025-09-01", event_start_date="2025-07-10")
    assert not is_spending_phase(open_ended, "2025-07", july, 0)


def test_goal_shows_saving_and_spending_rows_when_spent_in_saving_month() -> None:
    bucket = _goal(
        target_amount=60000, start_saving_date="2025-01", target_date="2025-06"
    )
    interval = budget_interval("2025-03", 1)
    resolver = MonthResolver("2025-03", [], [])
    txns = [
        _expense(1, date(2025, 2, 14), 1000),
        _expense(2, date(2025, 3, 5), 200),
    ]

    rows = bucket_rows(
        bucket, "2025-03", interval, resolver, txns, build_reimbursement_map(txns)
    )
    assert [row.phase for row in rows] == [BucketPhase.saving, BucketPhase.spending]
    saving, spending = rows
    assert saving.display_name == "Saving: Japan trip"
    assert saving.cost_cents == 12000
    assert saving.spent_cents == 0
    assert saving.saved_to_date_cents == 36000
    assert spending.spent_cents == 200
    assert spending.cost_cents == 60000 - 1000
    assert [t.id for t in spending.transactions] == [2]


def test_goal_without_spend_shows_only_saving_row() -> None:
    bucket = _goal(
        target_amount=60000, start_saving_date="2025-01", target_date="2025-06"
    )
    interval = budget_interval("2025-03", 1)
    rows = bucket_rows(
        bucket, "2025-03", interval, MonthResolver("2025-03", [], []), [],
        build_reimbursement_map([]),
    )
    assert [row.phase for row in rows] == [BucketPhase.saving]


def test_fixed_bucket_uses_effective_config() -> None:
    bucket = BucketRecord(id=3, name="Rent", type=BucketType.fixed)
    templates = [
        TemplateRecord(
            id=1, name="Standard", is_default=True, bucket_values={3: BucketConfig(amount=800000)}
        )
    ]
    configs = [MonthConfigRecord(month="2025-03", bucket_overrides={3: BucketConfig(amount=750000)})]
    interval = budget_interval("2025-03", 25)

    rows = bucket_rows(
        bucket, "2025-03", interval, MonthResolver("2025-03", templates, configs), [],
        build_reimbursement_map([]),
    )
    assert len(rows) == 1
    assert rows[0].phase == BucketPhase.standard
    assert rows[0].cost_cents == 750000
    assert rows[0].source == ValueSource.override
    assert rows[0].is_overridden


def test_unplanned_fixed_bucket_without_spend_is_hidden() -> None:
    bucket = BucketRecord(id=3, name="Gym", type=BucketType.fixed)
    templates = [TemplateRecord(id=1, name="Standard", is_default=True)]
    interval = budget_interval("2025-03", 25)
    rows = bucket_rows(
        bucket, "2025-03", interval, MonthResolver("2025-03", templates, []), [],
        build_reimbursement_map([]),
    )
    assert rows == []


def test_deleted_this_month_bucket_shows_when_spent() -> None:
    bucket = BucketRecord(id=3, name="Gym", type=BucketType.fixed)
    templates = [
        TemplateRecord(
            id=1, name="Standard", is_default=True, bucket_values={3: BucketConfig(amount=40000)}
        )
    ]
    configs = [MonthConfigRecord(month="2025-03", bucket_overrides={3: BucketConfig()})]
    interval = budget_interval("2025-03", 1)
    txns = [_expense(1, date(2025, 3, 2), 35000, bucket_id=3)]

    rows = bucket_rows(
        bucket, "2025-03", interval, MonthResolver("2025-03", templates, configs), txns,
        build_reimbursement_map(txns),
    )
    assert rows[0].cost_cents == 0
    assert rows[0].spent_cents == 35000
