import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from aggregator import GroupSummary, MonthReport, SubCategoryRow
from backup import BackupService
from bucket_costs import BucketRow
from config import get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import SessionLocal, session_scope
from models import Bucket, BudgetGroup, BudgetTemplate, SubCategory
from periods import budget_interval, is_month_key
from resolver import EffectiveValue, EntityKind
from schemas import (
    AccountIn,
    BucketArchiveIn,
    BucketDeleteIn,
    BucketIn,
    BudgetLimitIn,
    GroupIn,
    MainCategoryIn,
    OverrideClearIn,
    PaydayIn,
    ReimbursementLinkIn,
    SubCategoryGroupIn,
    SubCategoryIn,
    TemplateAssignIn,
    TemplateIn,
    TransactionHiddenIn,
    TransactionIn,
    TransferIn,
)
from services import (
    AccountService,
    BucketService,
    BudgetService,
    CSVService,
    CategoryService,
    GroupService,
    MonthLockedError,
    ReportService,
    SettingsService,
    TemplateNotFound,
    TransactionService,
)
from snapshot import BucketConfig

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Household Budget")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        payday = SettingsService(session).payday()
    logger.info(f"startup: payday={payday} cache_size={settings.report_cache_size}")


def require_csrf(request: Request) -> None:
    if not validate_csrf_token(request.headers.get(CSRF_HEADER, "")):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, MonthLockedError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TemplateNotFound) or str(exc).endswith("not found"):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _month_param(month: str) -> str:
    if not is_month_key(month):
        raise HTTPException(status_code=400, detail="Month must be formatted as YYYY-MM")
    return month


def _transaction_out(txn) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "amount_cents": txn.amount_cents,
        "type": txn.type.value if txn.type else None,
        "description": txn.description,
        "account_id": txn.account_id,
        "sub_category_id": txn.sub_category_id,
        "bucket_id": txn.bucket_id,
        "is_hidden": txn.is_hidden,
        "linked_expense_id": txn.linked_expense_id,
    }


def _effective_out(effective: EffectiveValue) -> dict[str, object]:
    value = effective.value
    if isinstance(value, BucketConfig):
        value = value.model_dump(mode="json")
    return {
        "source": effective.source.value,
        "value": value,
        "template_name": effective.template_name,
        "is_overridden": effective.is_overridden,
    }


def _sub_row_out(row: SubCategoryRow) -> dict[str, object]:
    return {
        "sub_category_id": row.sub_category_id,
        "name": row.name,
        "budget_cents": row.budget_cents,
        "spent_cents": row.spent_cents,
        "average_cents": row.average_cents,
        "source": row.source.value,
        "is_overridden": row.is_overridden,
        "forecast_class": row.forecast_class.value,
        "transactions": [_transaction_out(t) for t in row.transactions],
    }


def _bucket_row_out(row: BucketRow) -> dict[str, object]:
    return {
        "bucket_id": row.bucket_id,
        "name": row.name,
        "display_name": row.display_name,
        "type": row.type.value,
        "phase": row.phase.value,
        "cost_cents": row.cost_cents,
        "spent_cents": row.spent_cents,
        "source": row.source.value,
        "is_overridden": row.is_overridden,
        "saved_to_date_cents": row.saved_to_date_cents,
        "transactions": [_transaction_out(t) for t in row.transactions],
    }


def _group_summary_out(group: GroupSummary) -> dict[str, object]:
    return {
        "group_id": group.group_id,
        "name": group.name,
        "forecast_type": group.forecast_type.value,
        "is_catch_all": group.is_catch_all,
        "total_budget_cents": group.total_budget_cents,
        "total_spent_cents": group.total_spent_cents,
        "is_auto": group.is_auto,
        "manual_limit_cents": group.manual_limit_cents,
        "limit_source": group.limit_source.value,
        "template_name": group.template_name,
        "sub_categories": [_sub_row_out(s) for s in group.sub_categories],
        "buckets": [_bucket_row_out(b) for b in group.buckets],
        "catch_all_transactions": [
            _transaction_out(t) for t in group.catch_all_transactions
        ],
        "extra_spent_cents": group.extra_spent_cents,
    }


def _report_out(report: MonthReport) -> dict[str, object]:
    breakdown = report.breakdown
    return {
        "month": report.month,
        "interval": {
            "start": report.interval.start.isoformat(),
            "end": report.interval.end.isoformat(),
        },
        "template_name": report.template_name,
        "is_locked": report.is_locked,
        "total_budget_cents": report.total_budget_cents,
        "total_spent_cents": report.total_spent_cents,
        "total_income_cents": report.total_income_cents,
        "breakdown": {
            "dream_spending": breakdown.dream_spending,
            "dream_saving": breakdown.dream_saving,
            "general_saving": breakdown.general_saving,
            "fixed_ops": breakdown.fixed_ops,
            "variable_ops": breakdown.variable_ops,
        },
        "groups": [_group_summary_out(g) for g in report.groups],
    }


def _group_out(group: BudgetGroup) -> dict[str, object]:
    return {
        "id": group.id,
        "name": group.name,
        "icon": group.icon,
        "forecast_type": group.forecast_type.value,
        "default_account_id": group.default_account_id,
        "linked_bucket_ids": list(group.linked_bucket_ids or []),
        "is_catch_all": group.is_catch_all,
    }


def _sub_category_out(sub: SubCategory) -> dict[str, object]:
    return {
        "id": sub.id,
        "name": sub.name,
        "icon": sub.icon,
        "main_category_id": sub.main_category_id,
        "budget_group_id": sub.budget_group_id,
        "is_savings": sub.is_savings,
        "account_id": sub.account_id,
    }


def _bucket_out(bucket: Bucket) -> dict[str, object]:
    return {
        "id": bucket.id,
        "name": bucket.name,
        "icon": bucket.icon,
        "type": bucket.type.value,
        "budget_group_id": bucket.budget_group_id,
        "account_id": bucket.account_id,
        "is_savings": bucket.is_savings,
        "target_amount": bucket.target_amount,
        "start_saving_date": bucket.start_saving_date,
        "target_date": bucket.target_date,
        "payment_source": bucket.payment_source.value,
        "event_start_date": bucket.event_start_date,
        "event_end_date": bucket.event_end_date,
        "archived_date": bucket.archived_date,
        "monthly_data": dict(bucket.monthly_data or {}),
    }


def _template_out(template: BudgetTemplate) -> dict[str, object]:
    return {
        "id": template.id,
        "name": template.name,
        "is_default": template.is_default,
        "sub_category_values": dict(template.sub_category_values or {}),
        "bucket_values": dict(template.bucket_values or {}),
        "group_values": dict(template.group_values or {}),
    }


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"token": generate_csrf_token(), "header": CSRF_HEADER}


@app.get("/api/report")
def api_report(month: Optional[str] = None, db: Session = Depends(get_db)):
    if month is not None:
        _month_param(month)
    try:
        report = ReportService(db).month_report(month)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _report_out(report)


@app.get("/api/interval")
def api_interval(month: str, db: Session = Depends(get_db)):
    interval = budget_interval(_month_param(month), SettingsService(db).payday())
    return {"month": month, "start": interval.start.isoformat(), "end": interval.end.isoformat()}


@app.get("/api/settings")
def api_settings(db: Session = Depends(get_db)):
    return {"payday": SettingsService(db).payday()}


@app.put("/api/settings/payday", dependencies=[Depends(require_csrf)])
def api_set_payday(data: PaydayIn, db: Session = Depends(get_db)):
    return {"payday": SettingsService(db).set_payday(data)}


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [{"id": a.id, "name": a.name} for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": account.id, "name": account.name}


@app.get("/api/main-categories")
def api_main_categories(db: Session = Depends(get_db)):
    return [{"id": c.id, "name": c.name} for c in CategoryService(db).list_main()]


@app.post("/api/main-categories", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_main_category(data: MainCategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create_main(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": category.id, "name": category.name}


@app.get("/api/sub-categories")
def api_sub_categories(db: Session = Depends(get_db)):
    return [_sub_category_out(s) for s in CategoryService(db).list_sub()]


@app.post("/api/sub-categories", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_sub_category(data: SubCategoryIn, db: Session = Depends(get_db)):
    try:
        sub = CategoryService(db).create_sub(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _sub_category_out(sub)


@app.put("/api/sub-categories/{sub_category_id}/group", dependencies=[Depends(require_csrf)])
def api_set_sub_category_group(
    sub_category_id: int, data: SubCategoryGroupIn, db: Session = Depends(get_db)
):
    try:
        sub = CategoryService(db).set_group(sub_category_id, data.budget_group_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _sub_category_out(sub)


@app.delete("/api/sub-categories/{sub_category_id}", status_code=204, dependencies=[Depends(require_csrf)])
def api_delete_sub_category(sub_category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete_sub(sub_category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/groups")
def api_groups(db: Session = Depends(get_db)):
    return [_group_out(g) for g in GroupService(db).list_all()]


@app.post("/api/groups", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_group(data: GroupIn, db: Session = Depends(get_db)):
    try:
        group = GroupService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _group_out(group)


@app.put("/api/groups/{group_id}", dependencies=[Depends(require_csrf)])
def api_update_group(group_id: int, data: GroupIn, db: Session = Depends(get_db)):
    try:
        group = GroupService(db).update(group_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _group_out(group)


@app.delete("/api/groups/{group_id}", status_code=204, dependencies=[Depends(require_csrf)])
def api_delete_group(group_id: int, db: Session = Depends(get_db)):
    try:
        GroupService(db).delete(group_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/buckets")
def api_buckets(db: Session = Depends(get_db)):
    return [_bucket_out(b) for b in BucketService(db).list_all()]


@app.post("/api/buckets", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_bucket(data: BucketIn, db: Session = Depends(get_db)):
    try:
        bucket = BucketService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _bucket_out(bucket)


@app.put("/api/buckets/{bucket_id}", dependencies=[Depends(require_csrf)])
def api_update_bucket(bucket_id: int, data: BucketIn, db: Session = Depends(get_db)):
    try:
        bucket = BucketService(db).update(bucket_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _bucket_out(bucket)


@app.post("/api/buckets/{bucket_id}/delete", status_code=204, dependencies=[Depends(require_csrf)])
def api_delete_bucket(bucket_id: int, data: BucketDeleteIn, db: Session = Depends(get_db)):
    try:
        BucketService(db).delete(bucket_id, data.month, data.scope)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/buckets/{bucket_id}/archive", dependencies=[Depends(require_csrf)])
def api_archive_bucket(bucket_id: int, data: BucketArchiveIn, db: Session = Depends(get_db)):
    try:
        bucket = BucketService(db).archive(bucket_id, data.month)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _bucket_out(bucket)


@app.get("/api/budget/effective")
def api_effective_value(
    kind: EntityKind,
    entity_id: int,
    month: str,
    db: Session = Depends(get_db),
):
    try:
        effective = BudgetService(db).effective_value(kind, entity_id, _month_param(month))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _effective_out(effective)


@app.post("/api/budget/limit", dependencies=[Depends(require_csrf)])
def api_set_budget_limit(data: BudgetLimitIn, db: Session = Depends(get_db)):
    try:
        effective = BudgetService(db).set_budget_limit(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _effective_out(effective)


@app.post("/api/budget/clear-override", dependencies=[Depends(require_csrf)])
def api_clear_override(data: OverrideClearIn, db: Session = Depends(get_db)):
    try:
        effective = BudgetService(db).clear_override(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _effective_out(effective)


@app.post("/api/months/{month}/lock", dependencies=[Depends(require_csrf)])
def api_toggle_lock(month: str, db: Session = Depends(get_db)):
    locked = BudgetService(db).toggle_month_lock(_month_param(month))
    return {"month": month, "is_locked": locked}


@app.put("/api/months/{month}/template", dependencies=[Depends(require_csrf)])
def api_assign_template(month: str, data: TemplateAssignIn, db: Session = Depends(get_db)):
    try:
        config = BudgetService(db).assign_template(_month_param(month), data.template_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"month": config.month, "template_id": config.template_id}


@app.post("/api/months/{month}/reset", status_code=204, dependencies=[Depends(require_csrf)])
def api_reset_month(month: str, db: Session = Depends(get_db)):
    try:
        BudgetService(db).reset_month_to_template(_month_param(month))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/year-plan/{year}")
def api_year_plan(year: int, db: Session = Depends(get_db)):
    if not 1970 <= year <= 3000:
        raise HTTPException(status_code=400, detail="Year out of range")
    return BudgetService(db).year_plan(year)


@app.get("/api/templates")
def api_templates(db: Session = Depends(get_db)):
    return [_template_out(t) for t in BudgetService(db).list_templates()]


@app.post("/api/templates", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_template(data: TemplateIn, db: Session = Depends(get_db)):
    try:
        template = BudgetService(db).create_template(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _template_out(template)


@app.post("/api/templates/{template_id}/default", dependencies=[Depends(require_csrf)])
def api_set_default_template(template_id: int, db: Session = Depends(get_db)):
    try:
        template = BudgetService(db).set_default_template(template_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _template_out(template)


@app.get("/api/transactions")
def api_transactions(month: str, db: Session = Depends(get_db)):
    items = TransactionService(db).list_for_month(_month_param(month))
    return [_transaction_out(t) for t in items]


@app.post("/api/transactions", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _transaction_out(txn)


@app.put("/api/transactions/{transaction_id}/hidden", dependencies=[Depends(require_csrf)])
def api_hide_transaction(
    transaction_id: int, data: TransactionHiddenIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).set_hidden(transaction_id, data.is_hidden)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _transaction_out(txn)


@app.put("/api/transactions/{transaction_id}/reimbursement", dependencies=[Depends(require_csrf)])
def api_link_reimbursement(
    transaction_id: int, data: ReimbursementLinkIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).link_reimbursement(transaction_id, data.expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _transaction_out(txn)


@app.get("/api/transfer-candidates")
def api_transfer_candidates(db: Session = Depends(get_db)):
    return [
        {"outgoing": _transaction_out(outgoing), "incoming": _transaction_out(incoming)}
        for outgoing, incoming in TransactionService(db).transfer_candidates()
    ]


@app.post("/api/transfers", status_code=204, dependencies=[Depends(require_csrf)])
def api_confirm_transfer(data: TransferIn, db: Session = Depends(get_db)):
    try:
        TransactionService(db).confirm_transfer(data.outgoing_id, data.incoming_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/transactions/import", dependencies=[Depends(require_csrf)])
async def api_import_transactions(
    file: UploadFile = File(...),
    dry_run: bool = Query(False),
    db: Session = Depends(get_db),
):
    content = (await file.read()).decode("utf-8-sig")
    service = CSVService(db)
    if dry_run:
        rows, errors = service.preview(content)
        return {
            "rows": [{**row, "date": row["date"].isoformat()} for row in rows],
            "errors": errors,
        }
    try:
        count = service.commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"imported": count}


@app.get("/api/transactions/export")
def api_export_transactions(month: Optional[str] = None, db: Session = Depends(get_db)):
    if month is not None:
        _month_param(month)
    content = CSVService(db).export(month)
    filename = f"transactions-{month or 'all'}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/backup")
def api_export_backup(db: Session = Depends(get_db)):
    return Response(
        content=BackupService(db).export_json(),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="budget-backup.json"'},
    )


@app.post("/api/backup", dependencies=[Depends(require_csrf)])
async def api_import_backup(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = (await file.read()).decode("utf-8-sig")
    try:
        data = BackupService(db).import_json(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "groups": len(data.groups),
        "buckets": len(data.buckets),
        "transactions": len(data.transactions),
    }
