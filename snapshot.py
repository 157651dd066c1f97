import hashlib
from datetime import date
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, field_validator, model_validator

from money import coerce_cents


class TransactionType(str, Enum):
    expense = "expense"
    income = "income"
    transfer = "transfer"


class BucketType(str, Enum):
    fixed = "fixed"
    daily = "daily"
    goal = "goal"


class PaymentSource(str, Enum):
    income = "income"
    balance = "balance"


class ForecastType(str, Enum):
    variable = "variable"
    fixed = "fixed"
    savings = "savings"


Cents = Annotated[int, BeforeValidator(coerce_cents)]
SignedCents = Annotated[
    int, BeforeValidator(lambda value: coerce_cents(value, allow_negative=True))
]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class AccountRecord(_Record):
    id: int
    name: str


class MainCategoryRecord(_Record):
    id: int
    name: str


class GroupRecord(_Record):
    id: int
    name: str
    icon: Optional[str] = None
    forecast_type: ForecastType = ForecastType.variable
    default_account_id: Optional[int] = None
    linked_bucket_ids: tuple[int, ...] = ()
    is_catch_all: bool = False

    @field_validator("linked_bucket_ids", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return value or ()


class SubCategoryRecord(_Record):
    id: int
    name: str
    icon: Optional[str] = None
    main_category_id: Optional[int] = None
    budget_group_id: Optional[int] = None
    is_savings: bool = False
    account_id: Optional[int] = None


class BucketConfig(_Record):
    """Per-month FIXED/DAILY configuration of a bucket."""

    amount: Cents = 0
    daily_amount: Cents = 0
    active_days: tuple[int, ...] = ()
    is_explicitly_deleted: bool = False

    @field_validator("active_days", mode="before")
    @classmethod
    def _valid_weekdays(cls, value):
        if not value:
            return ()
        days: set[int] = set()
        for item in value:
            try:
                day = int(item)
            except (TypeError, ValueError):
                continue
            if 0 <= day <= 6:
                days.add(day)
        return tuple(sorted(days))


class GoalMonth(_Record):
    amount: Cents = 0
    is_explicitly_deleted: bool = False


class BucketRecord(_Record):
    id: int
    name: str
    type: BucketType
    icon: Optional[str] = None
    budget_group_id: Optional[int] = None
    account_id: Optional[int] = None
    is_savings: bool = False
    # goal fields; dates are kept as entered and parsed by the cost calculator
    target_amount: Cents = 0
    start_saving_date: Optional[str] = None
    target_date: Optional[str] = None
    payment_source: PaymentSource = PaymentSource.income
    event_start_date: Optional[str] = None
    event_end_date: Optional[str] = None
    archived_date: Optional[str] = None
    monthly_data: dict[str, GoalMonth] = {}

    @field_validator("monthly_data", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return value or {}


class TransactionRecord(_Record):
    id: int
    date: date
    amount_cents: SignedCents
    type: Optional[TransactionType] = None
    description: str = ""
    account_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    bucket_id: Optional[int] = None
    is_hidden: bool = False
    linked_expense_id: Optional[int] = None

    @property
    def is_expense(self) -> bool:
        if self.type is None:
            return self.amount_cents < 0
        return self.type == TransactionType.expense


class TemplateRecord(_Record):
    id: int
    name: str
    is_default: bool = False
    sub_category_values: dict[int, Cents] = {}
    bucket_values: dict[int, BucketConfig] = {}
    group_values: dict[int, Cents] = {}

    @field_validator(
        "sub_category_values", "bucket_values", "group_values", mode="before"
    )
    @classmethod
    def _none_is_empty(cls, value):
        return value or {}


class MonthConfigRecord(_Record):
    month: str
    template_id: Optional[int] = None
    is_locked: bool = False
    sub_category_overrides: dict[int, Cents] = {}
    bucket_overrides: dict[int, BucketConfig] = {}
    group_overrides: dict[int, Cents] = {}

    @field_validator(
        "sub_category_overrides", "bucket_overrides", "group_overrides", mode="before"
    )
    @classmethod
    def _none_is_empty(cls, value):
        return value or {}

    @property
    def has_overrides(self) -> bool:
        return bool(
            self.sub_category_overrides or self.bucket_overrides or self.group_overrides
        )


class BudgetSnapshot(_Record):
    """Everything the month report is computed from."""

    payday: int = 25
    accounts: tuple[AccountRecord, ...] = ()
    main_categories: tuple[MainCategoryRecord, ...] = ()
    groups: tuple[GroupRecord, ...] = ()
    sub_categories: tuple[SubCategoryRecord, ...] = ()
    buckets: tuple[BucketRecord, ...] = ()
    transactions: tuple[TransactionRecord, ...] = ()
    templates: tuple[TemplateRecord, ...] = ()
    month_configs: tuple[MonthConfigRecord, ...] = ()

    @field_validator("payday", mode="before")
    @classmethod
    def _clamp_payday(cls, value):
        try:
            day = int(value)
        except (TypeError, ValueError):
            return 25
        return min(max(day, 1), 31)

    @model_validator(mode="after")
    def _single_catch_all_and_default(self):
        if sum(1 for g in self.groups if g.is_catch_all) > 1:
            raise ValueError("Only one group can be the catch-all group")
        if sum(1 for t in self.templates if t.is_default) > 1:
            raise ValueError("Only one template can be the default template")
        return self

    def digest(self) -> str:
        return hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()
