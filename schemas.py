from datetime import date
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from periods import is_month_key
from resolver import EntityKind
from snapshot import (
    BucketType,
    Cents,
    ForecastType,
    PaymentSource,
    SignedCents,
    TransactionType,
)


def _check_month_key(value: str) -> str:
    if not is_month_key(value):
        raise ValueError("Month must be formatted as YYYY-MM")
    return value


MonthKeyStr = Annotated[str, AfterValidator(_check_month_key)]


class BudgetMode(str, Enum):
    template = "template"
    override = "override"


class DeleteScope(str, Enum):
    this_month = "this_month"
    all = "all"


class BudgetLimitIn(BaseModel):
    kind: EntityKind
    entity_id: int
    month: MonthKeyStr
    mode: BudgetMode
    amount_cents: Cents = 0
    daily_amount_cents: Cents = 0
    active_days: list[int] = Field(default_factory=list)


class OverrideClearIn(BaseModel):
    kind: EntityKind
    entity_id: int
    month: MonthKeyStr


class TemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    copy_from_month: Optional[MonthKeyStr] = None


class TemplateAssignIn(BaseModel):
    template_id: Optional[int] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class MainCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class GroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(None, max_length=16)
    forecast_type: ForecastType = ForecastType.variable
    default_account_id: Optional[int] = None
    linked_bucket_ids: list[int] = Field(default_factory=list)
    is_catch_all: bool = False


class SubCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(None, max_length=16)
    main_category_id: Optional[int] = None
    budget_group_id: Optional[int] = None
    is_savings: bool = False
    account_id: Optional[int] = None


class SubCategoryGroupIn(BaseModel):
    budget_group_id: Optional[int] = None


class BucketIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: BucketType
    icon: Optional[str] = Field(None, max_length=16)
    budget_group_id: Optional[int] = None
    account_id: Optional[int] = None
    is_savings: bool = False
    target_amount: Cents = 0
    start_saving_date: Optional[str] = Field(None, max_length=10)
    target_date: Optional[str] = Field(None, max_length=10)
    payment_source: PaymentSource = PaymentSource.income
    event_start_date: Optional[str] = Field(None, max_length=10)
    event_end_date: Optional[str] = Field(None, max_length=10)


class BucketDeleteIn(BaseModel):
    month: MonthKeyStr
    scope: DeleteScope


class BucketArchiveIn(BaseModel):
    month: MonthKeyStr


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: date
    amount_cents: SignedCents
    type: Optional[TransactionType] = None
    description: str = Field("", max_length=200)
    account_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    bucket_id: Optional[int] = None


class TransactionHiddenIn(BaseModel):
    is_hidden: bool


class ReimbursementLinkIn(BaseModel):
    expense_id: Optional[int] = None


class PaydayIn(BaseModel):
    payday: int = Field(..., ge=1, le=31)


class CSVRow(BaseModel):
    date: date
    type: Optional[TransactionType]
    amount_cents: int
    description: str
    category: Optional[str]


class TransferIn(BaseModel):
    outgoing_id: int
    incoming_id: int
