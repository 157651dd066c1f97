import json
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from aggregator import ReportCache
from backup import BackupService
from database import Base
from resolver import EntityKind
from schemas import (
    BucketIn,
    BudgetLimitIn,
    BudgetMode,
    GroupIn,
    PaydayIn,
    SubCategoryIn,
    TransactionIn,
)
from services import (
    BucketService,
    BudgetService,
    CategoryService,
    GroupService,
    ReportService,
    SettingsService,
    TransactionService,
    load_snapshot,
)
from snapshot import BucketType, TransactionType


def _populate(session: Session) -> None:
    SettingsService(session).set_payday(PaydayIn(payday=20))
    group = GroupService(session).create(GroupIn(name="Food", is_catch_all=True))
    sub = CategoryService(session).create_sub(
        SubCategoryIn(name="Groceries", budget_group_id=group.id)
    )
    trip = BucketService(session).create(
        BucketIn(
            name="Trip",
            type=BucketType.goal,
            budget_group_id=group.id,
            target_amount=30_000,
            start_saving_date="2025-01",
            target_date="2025-04",
        )
    )
    budgets = BudgetService(session)
    budgets.set_budget_limit(
        BudgetLimitIn(
            kind=EntityKind.sub_category,
            entity_id=sub.id,
            month="2025-02",
            mode=BudgetMode.template,
            amount_cents=200_000,
        )
    )
    budgets.set_budget_limit(
        BudgetLimitIn(
            kind=EntityKind.bucket,
            entity_id=trip.id,
            month="2025-02",
            mode=BudgetMode.override,
            amount_cents=15_000,
        )
    )
    txns = TransactionService(session)
    expense = txns.create(
        TransactionIn(
            date=date(2025, 2, 3),
            amount_cents=-8_000,
            type=TransactionType.expense,
            sub_category_id=sub.id,
        )
    )
    payback = txns.create(
        TransactionIn(
            date=date(2025, 2, 4), amount_cents=3_000, type=TransactionType.income
        )
    )
    txns.link_reimbursement(payback.id, expense.id)


def test_backup_round_trip_restores_report() -> None:
    source_engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(source_engine)
    target_engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(target_engine)

    with Session(source_engine) as source:
        _populate(source)
        content = BackupService(source).export_json()
        original = ReportService(source, ReportCache()).month_report("2025-02")

    assert json.loads(content)["version"] == 1

    with Session(target_engine) as target:
        restored = BackupService(target).import_json(content)
        assert restored.payday == 20
        assert SettingsService(target).payday() == 20
        report = ReportService(target, ReportCache()).month_report("2025-02")
        assert report == original
        assert load_snapshot(target).transactions[1].linked_expense_id == 1


def test_import_replaces_existing_data() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _populate(session)
        empty = '{"version": 1, "exported_at": "2025-03-01T10:00:00", "data": {}}'
        BackupService(session).import_json(empty)
        snapshot = load_snapshot(session)
        assert snapshot.groups == ()
        assert snapshot.transactions == ()
        assert snapshot.payday == 25


def test_invalid_backup_leaves_store_untouched() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _populate(session)
        before = load_snapshot(session)
        service = BackupService(session)

        with pytest.raises(ValueError, match="Invalid backup"):
            service.import_json("not json")
        with pytest.raises(ValueError, match="Unsupported backup version"):
            service.import_json(
                '{"version": 9, "exported_at": "2025-03-01T10:00:00", "data": {}}'
            )
        two_catch_alls = json.dumps(
            {
                "version": 1,
                "exported_at": "2025-03-01T10:00:00",
                "data": {
                    "groups": [
                        {"id": 1, "name": "A", "is_catch_all": True},
                        {"id": 2, "name": "B", "is_catch_all": True},
                    ]
                },
            }
        )
        with pytest.raises(ValueError, match="Invalid backup"):
            service.import_json(two_catch_alls)

        assert load_snapshot(session) == before
