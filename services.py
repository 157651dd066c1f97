from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from aggregator import MonthReport, ReportCache
from bucket_costs import goal_saving_amount
from config import get_settings
from csv_utils import export_transactions, parse_csv
from models import (
    Account,
    AppSetting,
    Bucket,
    BudgetGroup,
    BudgetTemplate,
    MainCategory,
    MonthConfig,
    SubCategory,
    Transaction,
)
from periods import MonthKey, budget_interval, month_key_for_date
from resolver import EffectiveValue, EntityKind, MonthResolver, ValueSource
from schemas import (
    AccountIn,
    BucketIn,
    BudgetLimitIn,
    BudgetMode,
    DeleteScope,
    GroupIn,
    MainCategoryIn,
    OverrideClearIn,
    PaydayIn,
    SubCategoryIn,
    TemplateIn,
    TransactionIn,
)
from snapshot import (
    AccountRecord,
    BucketConfig,
    BucketRecord,
    BucketType,
    BudgetSnapshot,
    GroupRecord,
    MainCategoryRecord,
    MonthConfigRecord,
    SubCategoryRecord,
    TemplateRecord,
    TransactionRecord,
    TransactionType,
)

logger = logging.getLogger(__name__)

PAYDAY_KEY = "payday"
DEFAULT_TEMPLATE_NAME = "Standard"

_TEMPLATE_MAPS = {
    EntityKind.group: "group_values",
    EntityKind.sub_category: "sub_category_values",
    EntityKind.bucket: "bucket_values",
}
_OVERRIDE_MAPS = {
    EntityKind.group: "group_overrides",
    EntityKind.sub_category: "sub_category_overrides",
    EntityKind.bucket: "bucket_overrides",
}
_ENTITY_MODELS = {
    EntityKind.group: (BudgetGroup, "Group"),
    EntityKind.sub_category: (SubCategory, "Sub-category"),
    EntityKind.bucket: (Bucket, "Bucket"),
}

report_cache = ReportCache(get_settings().report_cache_size)


class MonthLockedError(ValueError):
    pass


class TemplateNotFound(ValueError):
    pass


class CategoryNotFound(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def _set_map_entry(obj, attr: str, key: str, value) -> None:
    values = dict(getattr(obj, attr) or {})
    values[key] = value
    setattr(obj, attr, values)


def _drop_map_entry(obj, attr: str, key: str) -> bool:
    values = dict(getattr(obj, attr) or {})
    if key not in values:
        return False
    del values[key]
    setattr(obj, attr, values)
    return True


def current_month_key(payday: int) -> MonthKey:
    today = datetime.now(ZoneInfo(get_settings().timezone)).date()
    return month_key_for_date(today, payday)


def load_snapshot(session: Session) -> BudgetSnapshot:
    """Read the whole store into an immutable snapshot for the report engine."""

    def records(model, record_cls, order):
        return tuple(
            record_cls.model_validate(row)
            for row in session.scalars(select(model).order_by(order))
        )

    return BudgetSnapshot(
        payday=SettingsService(session).payday(),
        accounts=records(Account, AccountRecord, Account.id),
        main_categories=records(MainCategory, MainCategoryRecord, MainCategory.id),
        groups=records(BudgetGroup, GroupRecord, BudgetGroup.id),
        sub_categories=records(SubCategory, SubCategoryRecord, SubCategory.id),
        buckets=records(Bucket, BucketRecord, Bucket.id),
        transactions=records(Transaction, TransactionRecord, Transaction.id),
        templates=records(BudgetTemplate, TemplateRecord, BudgetTemplate.id),
        month_configs=records(MonthConfig, MonthConfigRecord, MonthConfig.month),
    )


class SettingsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def payday(self) -> int:
        row = self.session.get(AppSetting, PAYDAY_KEY)
        if row is not None:
            try:
                return min(max(int(row.value), 1), 31)
            except ValueError:
                logger.warning(f"settings_invalid: key={PAYDAY_KEY} value={row.value!r}")
        return get_settings().default_payday

    def set_payday(self, data: PaydayIn) -> int:
        row = self.session.get(AppSetting, PAYDAY_KEY)
        if row is None:
            row = AppSetting(key=PAYDAY_KEY, value=str(data.payday))
            self.session.add(row)
        else:
            row.value = str(data.payday)
        self.session.commit()
        logger.info(f"payday_set: payday={data.payday}")
        return data.payday


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        return self.session.scalars(select(Account).order_by(Account.name)).all()

    def create(self, data: AccountIn) -> Account:
        name = data.name.strip()
        existing = self.session.scalar(
            select(Account).where(func.lower(Account.name) == name.lower())
        )
        if existing:
            raise ValueError("Account already exists")
        account = Account(name=name)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        for model, column in (
            (Transaction, Transaction.account_id),
            (SubCategory, SubCategory.account_id),
            (Bucket, Bucket.account_id),
            (BudgetGroup, BudgetGroup.default_account_id),
        ):
            self.session.execute(
                update(model).where(column == account_id).values({column.key: None})
            )
        self.session.delete(account)
        self.session.commit()


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_main(self) -> list[MainCategory]:
        return self.session.scalars(select(MainCategory).order_by(MainCategory.name)).all()

    def create_main(self, data: MainCategoryIn) -> MainCategory:
        name = data.name.strip()
        existing = self.session.scalar(
            select(MainCategory).where(func.lower(MainCategory.name) == name.lower())
        )
        if existing:
            raise ValueError("Category already exists")
        category = MainCategory(name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def list_sub(self) -> list[SubCategory]:
        return self.session.scalars(select(SubCategory).order_by(SubCategory.id)).all()

    def get_sub(self, sub_category_id: int) -> SubCategory:
        sub = self.session.get(SubCategory, sub_category_id)
        if not sub:
            raise ValueError("Sub-category not found")
        return sub

    def create_sub(self, data: SubCategoryIn) -> SubCategory:
        if data.main_category_id is not None and not self.session.get(
            MainCategory, data.main_category_id
        ):
            raise ValueError("Category not found")
        if data.budget_group_id is not None and not self.session.get(
            BudgetGroup, data.budget_group_id
        ):
            raise ValueError("Group not found")
        sub = SubCategory(
            name=data.name.strip(),
            icon=data.icon,
            main_category_id=data.main_category_id,
            budget_group_id=data.budget_group_id,
            is_savings=data.is_savings,
            account_id=data.account_id,
        )
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def set_group(self, sub_category_id: int, group_id: Optional[int]) -> SubCategory:
        sub = self.get_sub(sub_category_id)
        if group_id is not None and not self.session.get(BudgetGroup, group_id):
            raise ValueError("Group not found")
        sub.budget_group_id = group_id
        self.session.commit()
        logger.info(f"sub_category_linked: sub_category_id={sub.id} group_id={group_id}")
        return sub

    def delete_sub(self, sub_category_id: int) -> None:
        sub = self.get_sub(sub_category_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.sub_category_id == sub.id)
            .values(sub_category_id=None)
        )
        self.session.delete(sub)
        self.session.commit()


class GroupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[BudgetGroup]:
        return self.session.scalars(select(BudgetGroup).order_by(BudgetGroup.id)).all()

    def get(self, group_id: int) -> BudgetGroup:
        group = self.session.get(BudgetGroup, group_id)
        if not group:
            raise ValueError("Group not found")
        return group

    def _apply(self, group: BudgetGroup, data: GroupIn) -> None:
        if data.default_account_id is not None and not self.session.get(
            Account, data.default_account_id
        ):
            raise ValueError("Account not found")
        group.name = data.name.strip()
        group.icon = data.icon
        group.forecast_type = data.forecast_type
        group.default_account_id = data.default_account_id
        group.linked_bucket_ids = list(dict.fromkeys(data.linked_bucket_ids))
        group.is_catch_all = data.is_catch_all

    def _claim(self, group: BudgetGroup) -> None:
        """A bucket is listed by one group only and only one group is catch-all."""
        claimed = set(group.linked_bucket_ids or [])
        for other in self.list_all():
            if other.id == group.id:
                continue
            if group.is_catch_all and other.is_catch_all:
                other.is_catch_all = False
            if claimed and claimed & set(other.linked_bucket_ids or []):
                other.linked_bucket_ids = [
                    bucket_id
                    for bucket_id in other.linked_bucket_ids
                    if bucket_id not in claimed
                ]

    def create(self, data: GroupIn) -> BudgetGroup:
        group = BudgetGroup()
        self._apply(group, data)
        self.session.add(group)
        self.session.flush()
        self._claim(group)
        self.session.commit()
        self.session.refresh(group)
        return group

    def update(self, group_id: int, data: GroupIn) -> BudgetGroup:
        group = self.get(group_id)
        self._apply(group, data)
        self._claim(group)
        self.session.commit()
        self.session.refresh(group)
        return group

    def delete(self, group_id: int) -> None:
        group = self.get(group_id)
        self.session.execute(
            update(SubCategory)
            .where(SubCategory.budget_group_id == group.id)
            .values(budget_group_id=None)
        )
        self.session.execute(
            update(Bucket).where(Bucket.budget_group_id == group.id).values(budget_group_id=None)
        )
        self.session.delete(group)
        self.session.commit()
        logger.info(f"group_deleted: group_id={group_id}")


class BucketService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Bucket]:
        return self.session.scalars(select(Bucket).order_by(Bucket.id)).all()

    def get(self, bucket_id: int) -> Bucket:
        bucket = self.session.get(Bucket, bucket_id)
        if not bucket:
            raise ValueError("Bucket not found")
        return bucket

    def _apply(self, bucket: Bucket, data: BucketIn) -> None:
        if data.budget_group_id is not None and not self.session.get(
            BudgetGroup, data.budget_group_id
        ):
            raise ValueError("Group not found")
        bucket.name = data.name.strip()
        bucket.type = data.type
        bucket.icon = data.icon
        bucket.budget_group_id = data.budget_group_id
        bucket.account_id = data.account_id
        bucket.is_savings = data.is_savings
        bucket.target_amount = data.target_amount
        bucket.start_saving_date = data.start_saving_date
        bucket.target_date = data.target_date
        bucket.payment_source = data.payment_source
        bucket.event_start_date = data.event_start_date
        bucket.event_end_date = data.event_end_date

    def create(self, data: BucketIn) -> Bucket:
        bucket = Bucket(monthly_data={})
        self._apply(bucket, data)
        self.session.add(bucket)
        self.session.commit()
        self.session.refresh(bucket)
        return bucket

    def update(self, bucket_id: int, data: BucketIn) -> Bucket:
        bucket = self.get(bucket_id)
        self._apply(bucket, data)
        self.session.commit()
        self.session.refresh(bucket)
        return bucket

    def delete(self, bucket_id: int, month: MonthKey, scope: DeleteScope) -> None:
        bucket = self.get(bucket_id)
        key = str(bucket.id)
        if scope == DeleteScope.this_month:
            budgets = BudgetService(self.session)
            budgets.ensure_unlocked(month)
            if bucket.type == BucketType.goal:
                _set_map_entry(
                    bucket,
                    "monthly_data",
                    month,
                    {"amount": 0, "is_explicitly_deleted": False},
                )
            else:
                config = budgets.month_config(month, create=True)
                _set_map_entry(
                    config, "bucket_overrides", key, BucketConfig().model_dump(mode="json")
                )
            self.session.commit()
            logger.info(f"bucket_deleted: bucket_id={bucket.id} scope={scope.value} month={month}")
            return

        self.session.execute(
            update(Transaction).where(Transaction.bucket_id == bucket.id).values(bucket_id=None)
        )
        for group in self.session.scalars(select(BudgetGroup)):
            if bucket.id in (group.linked_bucket_ids or []):
                group.linked_bucket_ids = [
                    bid for bid in group.linked_bucket_ids if bid != bucket.id
                ]
        for template in self.session.scalars(select(BudgetTemplate)):
            _drop_map_entry(template, "bucket_values", key)
        for config in self.session.scalars(select(MonthConfig)):
            _drop_map_entry(config, "bucket_overrides", key)
        self.session.delete(bucket)
        self.session.commit()
        logger.info(f"bucket_deleted: bucket_id={bucket_id} scope={scope.value}")

    def archive(self, bucket_id: int, month: MonthKey) -> Bucket:
        bucket = self.get(bucket_id)
        if bucket.type != BucketType.goal:
            raise ValueError("Only goal buckets can be archived")
        bucket.archived_date = month
        self.session.commit()
        logger.info(f"bucket_archived: bucket_id={bucket.id} month={month}")
        return bucket


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def month_config(self, month: MonthKey, *, create: bool = False) -> Optional[MonthConfig]:
        config = self.session.scalar(select(MonthConfig).where(MonthConfig.month == month))
        if config is None and create:
            config = MonthConfig(
                month=month,
                is_locked=False,
                sub_category_overrides={},
                bucket_overrides={},
                group_overrides={},
            )
            self.session.add(config)
            self.session.flush()
        return config

    def ensure_unlocked(self, month: MonthKey) -> None:
        config = self.month_config(month)
        if config is not None and config.is_locked:
            raise MonthLockedError(f"Month {month} is locked")

    def list_templates(self) -> list[BudgetTemplate]:
        return self.session.scalars(select(BudgetTemplate).order_by(BudgetTemplate.id)).all()

    def get_template(self, template_id: int) -> BudgetTemplate:
        template = self.session.get(BudgetTemplate, template_id)
        if not template:
            raise TemplateNotFound("Template not found")
        return template

    def _default_template(self) -> Optional[BudgetTemplate]:
        return self.session.scalar(
            select(BudgetTemplate).where(BudgetTemplate.is_default.is_(True))
        )

    def governing_template(
        self, month: MonthKey, *, create: bool = False
    ) -> Optional[BudgetTemplate]:
        config = self.month_config(month)
        if config is not None and config.template_id is not None:
            assigned = self.session.get(BudgetTemplate, config.template_id)
            if assigned is not None:
                return assigned
        template = self._default_template()
        if template is not None or not create:
            return template
        template = self.session.scalar(
            select(BudgetTemplate).where(BudgetTemplate.name == DEFAULT_TEMPLATE_NAME)
        )
        if template is None:
            template = BudgetTemplate(
                name=DEFAULT_TEMPLATE_NAME,
                sub_category_values={},
                bucket_values={},
                group_values={},
            )
            self.session.add(template)
        template.is_default = True
        self.session.flush()
        logger.info(f"template_created: name={template.name} default=True")
        return template

    def _entity(self, kind: EntityKind, entity_id: int):
        model, label = _ENTITY_MODELS[kind]
        entity = self.session.get(model, entity_id)
        if entity is None:
            raise ValueError(f"{label} not found")
        return entity

    def _resolver(self, month: MonthKey) -> MonthResolver:
        templates = [TemplateRecord.model_validate(t) for t in self.list_templates()]
        config = self.month_config(month)
        configs = [MonthConfigRecord.model_validate(config)] if config else []
        return MonthResolver(month, templates, configs)

    @staticmethod
    def _stored_value(kind: EntityKind, data: BudgetLimitIn):
        if kind != EntityKind.bucket:
            return data.amount_cents
        return BucketConfig(
            amount=data.amount_cents,
            daily_amount=data.daily_amount_cents,
            active_days=data.active_days,
        ).model_dump(mode="json")

    def set_budget_limit(self, data: BudgetLimitIn) -> EffectiveValue:
        """Write a budget amount for one entity into the template or this month only."""
        self.ensure_unlocked(data.month)
        entity = self._entity(data.kind, data.entity_id)
        key = str(data.entity_id)

        if data.kind == EntityKind.bucket and entity.type == BucketType.goal:
            if data.mode != BudgetMode.override:
                raise ValueError("Goal saving amounts can only be changed per month")
            _set_map_entry(
                entity,
                "monthly_data",
                data.month,
                {"amount": data.amount_cents, "is_explicitly_deleted": False},
            )
        elif data.mode == BudgetMode.template:
            template = self.governing_template(data.month, create=True)
            _set_map_entry(
                template, _TEMPLATE_MAPS[data.kind], key, self._stored_value(data.kind, data)
            )
            config = self.month_config(data.month)
            if config is not None:
                _drop_map_entry(config, _OVERRIDE_MAPS[data.kind], key)
        else:
            config = self.month_config(data.month, create=True)
            _set_map_entry(
                config, _OVERRIDE_MAPS[data.kind], key, self._stored_value(data.kind, data)
            )
        self.session.commit()
        logger.info(
            f"budget_limit_set: kind={data.kind.value} id={data.entity_id} "
            f"month={data.month} mode={data.mode.value} amount={data.amount_cents}"
        )
        return self.effective_value(data.kind, data.entity_id, data.month)

    def clear_override(self, data: OverrideClearIn) -> EffectiveValue:
        self.ensure_unlocked(data.month)
        entity = self._entity(data.kind, data.entity_id)
        if data.kind == EntityKind.bucket and entity.type == BucketType.goal:
            _drop_map_entry(entity, "monthly_data", data.month)
        else:
            config = self.month_config(data.month)
            if config is not None:
                _drop_map_entry(config, _OVERRIDE_MAPS[data.kind], str(data.entity_id))
        self.session.commit()
        logger.info(
            f"override_cleared: kind={data.kind.value} id={data.entity_id} month={data.month}"
        )
        return self.effective_value(data.kind, data.entity_id, data.month)

    def effective_value(
        self, kind: EntityKind, entity_id: int, month: MonthKey
    ) -> EffectiveValue:
        entity = self._entity(kind, entity_id)
        resolver = self._resolver(month)
        if kind == EntityKind.bucket and entity.type == BucketType.goal:
            record = BucketRecord.model_validate(entity)
            entry = record.monthly_data.get(month)
            overridden = entry is not None and not entry.is_explicitly_deleted
            return EffectiveValue(
                ValueSource.override if overridden else ValueSource.none,
                goal_saving_amount(record, month),
                resolver.template_name,
            )
        return resolver.resolve(kind, entity_id)

    def toggle_month_lock(self, month: MonthKey) -> bool:
        config = self.month_config(month, create=True)
        config.is_locked = not config.is_locked
        self.session.commit()
        logger.info(f"month_lock_toggled: month={month} locked={config.is_locked}")
        return config.is_locked

    def assign_template(self, month: MonthKey, template_id: Optional[int]) -> MonthConfig:
        self.ensure_unlocked(month)
        if template_id is not None:
            self.get_template(template_id)
        config = self.month_config(month, create=True)
        config.template_id = template_id
        self.session.commit()
        logger.info(f"template_assigned: month={month} template_id={template_id}")
        return config

    def reset_month_to_template(self, month: MonthKey) -> None:
        self.ensure_unlocked(month)
        config = self.month_config(month)
        if config is not None:
            config.sub_category_overrides = {}
            config.bucket_overrides = {}
            config.group_overrides = {}
        for bucket in self.session.scalars(
            select(Bucket).where(Bucket.type == BucketType.goal)
        ):
            _drop_map_entry(bucket, "monthly_data", month)
        self.session.commit()
        logger.info(f"month_reset: month={month}")

    def create_template(self, data: TemplateIn) -> BudgetTemplate:
        name = data.name.strip()
        if self.session.scalar(
            select(BudgetTemplate).where(func.lower(BudgetTemplate.name) == name.lower())
        ):
            raise ValueError("Template name already exists")
        template = BudgetTemplate(
            name=name,
            is_default=self._default_template() is None,
            sub_category_values={},
            bucket_values={},
            group_values={},
        )
        if data.copy_from_month:
            resolver = self._resolver(data.copy_from_month)
            template.sub_category_values = {
                str(sub.id): resolver.sub_category_budget(sub.id).value
                for sub in self.session.scalars(select(SubCategory))
            }
            template.group_values = {
                str(group.id): resolver.group_limit(group.id).value
                for group in self.session.scalars(select(BudgetGroup))
            }
            template.bucket_values = {
                str(bucket.id): resolver.bucket_config(bucket.id).value.model_dump(mode="json")
                for bucket in self.session.scalars(
                    select(Bucket).where(Bucket.type != BucketType.goal)
                )
            }
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        logger.info(
            f"template_created: name={template.name} copy_from={data.copy_from_month}"
        )
        return template

    def set_default_template(self, template_id: int) -> BudgetTemplate:
        template = self.get_template(template_id)
        self.session.execute(
            update(BudgetTemplate)
            .where(BudgetTemplate.id != template.id)
            .values(is_default=False)
        )
        template.is_default = True
        self.session.commit()
        logger.info(f"template_default_set: template_id={template.id}")
        return template

    def year_plan(self, year: int) -> list[dict[str, object]]:
        templates = [TemplateRecord.model_validate(t) for t in self.list_templates()]
        configs = [
            MonthConfigRecord.model_validate(c)
            for c in self.session.scalars(
                select(MonthConfig).where(MonthConfig.month.like(f"{year:04d}-%"))
            )
        ]
        goal_entries: set[str] = set()
        for bucket in self.session.scalars(select(Bucket).where(Bucket.type == BucketType.goal)):
            goal_entries.update(bucket.monthly_data or {})
        plan: list[dict[str, object]] = []
        for month in range(1, 13):
            key = f"{year:04d}-{month:02d}"
            resolver = MonthResolver(key, templates, configs)
            config = resolver.config
            plan.append(
                {
                    "month": key,
                    "template_id": resolver.template.id if resolver.template else None,
                    "template_name": resolver.template_name,
                    "is_assigned": bool(config and config.template_id is not None),
                    "has_overrides": bool(config and config.has_overrides)
                    or key in goal_entries,
                    "is_locked": resolver.is_locked,
                }
            )
        return plan


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        if data.sub_category_id is not None and not self.session.get(
            SubCategory, data.sub_category_id
        ):
            raise ValueError("Sub-category not found")
        if data.bucket_id is not None and not self.session.get(Bucket, data.bucket_id):
            raise ValueError("Bucket not found")
        if data.account_id is not None and not self.session.get(Account, data.account_id):
            raise ValueError("Account not found")
        txn = Transaction(
            date=data.date,
            amount_cents=data.amount_cents,
            type=data.type,
            description=data.description.strip(),
            account_id=data.account_id,
            sub_category_id=data.sub_category_id,
            bucket_id=data.bucket_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def set_hidden(self, transaction_id: int, is_hidden: bool) -> Transaction:
        txn = self.get(transaction_id)
        txn.is_hidden = is_hidden
        self.session.commit()
        return txn

    def link_reimbursement(
        self, reimbursement_id: int, expense_id: Optional[int]
    ) -> Transaction:
        """Link an income transaction to the expense it pays back; None unlinks."""
        txn = self.get(reimbursement_id)
        if expense_id is None:
            txn.linked_expense_id = None
            self.session.commit()
            logger.info(f"reimbursement_unlinked: transaction_id={txn.id}")
            return txn
        if txn.type != TransactionType.income:
            raise ValueError("Only income transactions can reimburse an expense")
        if expense_id == txn.id:
            raise ValueError("A transaction cannot reimburse itself")
        expense = self.get(expense_id)
        if not TransactionRecord.model_validate(expense).is_expense:
            raise ValueError("Reimbursements can only be linked to expenses")
        txn.linked_expense_id = expense.id
        self.session.commit()
        logger.info(f"reimbursement_linked: transaction_id={txn.id} expense_id={expense.id}")
        return txn

    def list_for_month(self, month: MonthKey, payday: Optional[int] = None) -> list[Transaction]:
        if payday is None:
            payday = SettingsService(self.session).payday()
        interval = budget_interval(month, payday)
        stmt = (
            select(Transaction)
            .where(Transaction.date >= interval.start, Transaction.date <= interval.end)
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def transfer_candidates(self) -> list[tuple[Transaction, Transaction]]:
        """Pairs of same-day transactions with opposite amounts on different accounts.

        Each pair is returned as (outgoing, incoming).
        """
        linked_ids = select(Transaction.linked_expense_id).where(
            Transaction.linked_expense_id.is_not(None)
        )
        candidates = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.linked_expense_id.is_(None),
                Transaction.id.not_in(linked_ids),
                or_(Transaction.type.is_(None), Transaction.type != TransactionType.transfer),
                Transaction.amount_cents != 0,
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        ).all()
        used: set[int] = set()
        pairs: list[tuple[Transaction, Transaction]] = []
        for first in candidates:
            if first.id in used:
                continue
            for second in candidates:
                if (
                    second.id == first.id
                    or second.id in used
                    or second.account_id == first.account_id
                    or second.date != first.date
                    or second.amount_cents != -first.amount_cents
                ):
                    continue
                used.update((first.id, second.id))
                if first.amount_cents < 0:
                    pairs.append((first, second))
                else:
                    pairs.append((second, first))
                break
        return pairs

    def confirm_transfer(self, outgoing_id: int, incoming_id: int) -> None:
        outgoing = self.get(outgoing_id)
        incoming = self.get(incoming_id)
        if outgoing.amount_cents != -incoming.amount_cents:
            raise ValueError("Transfer amounts must cancel out")
        outgoing.type = TransactionType.transfer
        incoming.type = TransactionType.transfer
        self.session.commit()
        logger.info(f"transfer_confirmed: outgoing={outgoing.id} incoming={incoming.id}")


class ReportService:
    def __init__(self, session: Session, cache: Optional[ReportCache] = None) -> None:
        self.session = session
        self.cache = cache or report_cache

    def month_report(self, month: Optional[MonthKey] = None) -> MonthReport:
        snapshot = load_snapshot(self.session)
        if month is None:
            month = current_month_key(snapshot.payday)
        return self.cache.get(snapshot, month)


class CSVService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _resolve_category(self, name: str, subs: list[SubCategory]) -> int:
        wanted = name.strip().lower()
        exact = [sub for sub in subs if sub.name.strip().lower() == wanted]
        if len(exact) == 1:
            return exact[0].id
        if len(exact) > 1:
            raise CategoryAmbiguous(f"Category '{name}' matches several sub-categories")
        best_distance: Optional[int] = None
        best: list[SubCategory] = []
        for sub in subs:
            dist = int(Levenshtein.distance(wanted, sub.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [sub]
            elif dist == best_distance:
                best.append(sub)
        if best_distance is None or best_distance > 1:
            raise CategoryNotFound(f"Missing category '{name}'")
        if len(best) > 1:
            options = ", ".join(sorted({sub.name for sub in best}))
            raise CategoryAmbiguous(f"Category '{name}' is ambiguous; matches: {options}")
        return best[0].id

    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_csv(content)
        subs = self.session.scalars(select(SubCategory)).all()
        preview_rows: list[dict[str, object]] = []
        for idx, row in enumerate(rows, start=1):
            sub_category_id: Optional[int] = None
            if row.category:
                try:
                    sub_category_id = self._resolve_category(row.category, subs)
                except (CategoryNotFound, CategoryAmbiguous) as exc:
                    errors.append(f"Row {idx}: {exc}")
            preview_rows.append(
                {
                    "date": row.date,
                    "type": row.type.value if row.type else None,
                    "amount_cents": row.amount_cents,
                    "description": row.description,
                    "category": row.category,
                    "sub_category_id": sub_category_id,
                }
            )
        return preview_rows, errors

    def commit(self, content: str) -> int:
        preview_rows, errors = self.preview(content)
        if errors:
            raise ValueError("; ".join(errors))
        for row in preview_rows:
            self.session.add(
                Transaction(
                    date=row["date"],
                    amount_cents=row["amount_cents"],
                    type=TransactionType(row["type"]) if row["type"] else None,
                    description=row["description"],
                    sub_category_id=row["sub_category_id"],
                )
            )
        self.session.commit()
        logger.info(f"csv_imported: rows={len(preview_rows)}")
        return len(preview_rows)

    def export(self, month: Optional[MonthKey] = None) -> str:
        if month is None:
            transactions = self.session.scalars(
                select(Transaction).order_by(Transaction.date.asc(), Transaction.id.asc())
            ).all()
        else:
            transactions = TransactionService(self.session).list_for_month(month)
        return export_transactions(transactions)
