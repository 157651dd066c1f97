from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from snapshot import BucketType, ForecastType, PaymentSource, TransactionType


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class MainCategory(Base, TimestampMixin):
    __tablename__ = "main_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="main_category"
    )


class BudgetGroup(Base, TimestampMixin):
    __tablename__ = "budget_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    forecast_type: Mapped[ForecastType] = mapped_column(
        SAEnum(ForecastType), nullable=False, default=ForecastType.variable
    )
    default_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )
    linked_bucket_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_catch_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="budget_group"
    )


class SubCategory(Base, TimestampMixin):
    __tablename__ = "sub_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    main_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("main_categories.id", ondelete="SET NULL")
    )
    budget_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_groups.id", ondelete="SET NULL")
    )
    is_savings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )

    main_category: Mapped[Optional[MainCategory]] = relationship(
        "MainCategory", back_populates="sub_categories"
    )
    budget_group: Mapped[Optional[BudgetGroup]] = relationship(
        "BudgetGroup", back_populates="sub_categories"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="sub_category"
    )

    __table_args__ = (
        UniqueConstraint("main_category_id", "name", name="uq_sub_category_main_name"),
    )


class Bucket(Base, TimestampMixin):
    __tablename__ = "buckets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    type: Mapped[BucketType] = mapped_column(SAEnum(BucketType), nullable=False)
    budget_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_groups.id", ondelete="SET NULL")
    )
    account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )
    is_savings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    target_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_saving_date: Mapped[Optional[str]] = mapped_column(String(10))
    target_date: Mapped[Optional[str]] = mapped_column(String(10))
    payment_source: Mapped[PaymentSource] = mapped_column(
        SAEnum(PaymentSource), nullable=False, default=PaymentSource.income
    )
    event_start_date: Mapped[Optional[str]] = mapped_column(String(10))
    event_end_date: Mapped[Optional[str]] = mapped_column(String(10))
    archived_date: Mapped[Optional[str]] = mapped_column(String(10))
    # month key -> {"amount": cents, "is_explicitly_deleted": bool}
    monthly_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="bucket"
    )

    __table_args__ = (
        CheckConstraint("target_amount >= 0", name="ck_bucket_target_positive"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[Optional[TransactionType]] = mapped_column(SAEnum(TransactionType))
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )
    sub_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sub_categories.id", ondelete="SET NULL")
    )
    bucket_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("buckets.id", ondelete="SET NULL")
    )
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    linked_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )

    sub_category: Mapped[Optional[SubCategory]] = relationship(
        "SubCategory", back_populates="transactions"
    )
    bucket: Mapped[Optional[Bucket]] = relationship("Bucket", back_populates="transactions")
    account: Mapped[Optional[Account]] = relationship("Account")

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_sub_category_date", "sub_category_id", "date"),
        Index("ix_transactions_bucket_date", "bucket_id", "date"),
    )


class BudgetTemplate(Base, TimestampMixin):
    __tablename__ = "budget_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # maps are keyed by the entity id as a string
    sub_category_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    bucket_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    group_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class MonthConfig(Base, TimestampMixin):
    __tablename__ = "month_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)
    template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_templates.id", ondelete="SET NULL")
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sub_category_overrides: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict
    )
    bucket_overrides: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    group_overrides: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    template: Mapped[Optional[BudgetTemplate]] = relationship("BudgetTemplate")


class AppSetting(Base, TimestampMixin):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[str] = mapped_column(String(200), nullable=False)
