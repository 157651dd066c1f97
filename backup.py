import logging
from datetime import datetime

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

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
from services import PAYDAY_KEY, load_snapshot
from snapshot import BudgetSnapshot

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


class BackupDocument(BaseModel):
    version: int = BACKUP_VERSION
    exported_at: datetime
    data: BudgetSnapshot


def _json_map(values: dict) -> dict:
    return {
        str(key): value.model_dump(mode="json") if isinstance(value, BaseModel) else value
        for key, value in values.items()
    }


class BackupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def export_json(self) -> str:
        document = BackupDocument(
            exported_at=datetime.utcnow().replace(microsecond=0),
            data=load_snapshot(self.session),
        )
        return document.model_dump_json(indent=2)

    def import_json(self, content: str) -> BudgetSnapshot:
        """Replace the whole store with a backup; on any error nothing changes."""
        try:
            document = BackupDocument.model_validate_json(content)
        except ValidationError as exc:
            raise ValueError(f"Invalid backup: {exc.error_count()} validation errors") from exc
        if document.version != BACKUP_VERSION:
            raise ValueError(f"Unsupported backup version {document.version}")

        try:
            self._replace(document.data)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("Backup references records that do not exist") from exc
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"backup_imported: groups={len(document.data.groups)} "
            f"buckets={len(document.data.buckets)} "
            f"transactions={len(document.data.transactions)}"
        )
        return document.data

    def _replace(self, data: BudgetSnapshot) -> None:
        for model in (
            Transaction,
            MonthConfig,
            BudgetTemplate,
            Bucket,
            SubCategory,
            BudgetGroup,
            MainCategory,
            Account,
            AppSetting,
        ):
            self.session.execute(delete(model))
        self.session.expunge_all()

        self.session.add(AppSetting(key=PAYDAY_KEY, value=str(data.payday)))
        self.session.add_all(Account(id=a.id, name=a.name) for a in data.accounts)
        self.session.add_all(
            MainCategory(id=c.id, name=c.name) for c in data.main_categories
        )
        self.session.flush()
        self.session.add_all(
            BudgetGroup(
                id=g.id,
                name=g.name,
                icon=g.icon,
                forecast_type=g.forecast_type,
                default_account_id=g.default_account_id,
                linked_bucket_ids=list(g.linked_bucket_ids),
                is_catch_all=g.is_catch_all,
            )
            for g in data.groups
        )
        self.session.flush()
        self.session.add_all(
            SubCategory(
                id=s.id,
                name=s.name,
                icon=s.icon,
                main_category_id=s.main_category_id,
                budget_group_id=s.budget_group_id,
                is_savings=s.is_savings,
                account_id=s.account_id,
            )
            for s in data.sub_categories
        )
        self.session.add_all(
            Bucket(
                id=b.id,
                name=b.name,
                icon=b.icon,
                type=b.type,
                budget_group_id=b.budget_group_id,
                account_id=b.account_id,
                is_savings=b.is_savings,
                target_amount=b.target_amount,
                start_saving_date=b.start_saving_date,
                target_date=b.target_date,
                payment_source=b.payment_source,
                event_start_date=b.event_start_date,
                event_end_date=b.event_end_date,
                archived_date=b.archived_date,
                monthly_data=_json_map(b.monthly_data),
            )
            for b in data.buckets
        )
        self.session.add_all(
            BudgetTemplate(
                id=t.id,
                name=t.name,
                is_default=t.is_default,
                sub_category_values=_json_map(t.sub_category_values),
                bucket_values=_json_map(t.bucket_values),
                group_values=_json_map(t.group_values),
            )
            for t in data.templates
        )
        self.session.flush()
        self.session.add_all(
            MonthConfig(
                month=c.month,
                template_id=c.template_id,
                is_locked=c.is_locked,
                sub_category_overrides=_json_map(c.sub_category_overrides),
                bucket_overrides=_json_map(c.bucket_overrides),
                group_overrides=_json_map(c.group_overrides),
            )
            for c in data.month_configs
        )
        # links between transactions are restored once every row exists
        transactions = {
            t.id: Transaction(
                id=t.id,
                date=t.date,
                amount_cents=t.amount_cents,
                type=t.type,
                description=t.description,
                account_id=t.account_id,
                sub_category_id=t.sub_category_id,
                bucket_id=t.bucket_id,
                is_hidden=t.is_hidden,
            )
            for t in data.transactions
        }
        self.session.add_all(transactions.values())
        self.session.flush()
        for record in data.transactions:
            if record.linked_expense_id in transactions:
                transactions[record.id].linked_expense_id = record.linked_expense_id
        self.session.flush()
