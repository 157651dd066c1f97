"""initial budget schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "main_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "budget_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=16)),
        sa.Column(
            "forecast_type",
            sa.Enum("variable", "fixed", "savings", name="forecasttype"),
            nullable=False,
        ),
        sa.Column(
            "default_account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
        ),
        sa.Column("linked_bucket_ids", sa.JSON(), nullable=False),
        sa.Column("is_catch_all", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "sub_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=16)),
        sa.Column(
            "main_category_id",
            sa.Integer(),
            sa.ForeignKey("main_categories.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "budget_group_id",
            sa.Integer(),
            sa.ForeignKey("budget_groups.id", ondelete="SET NULL"),
        ),
        sa.Column("is_savings", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL")
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "main_category_id", "name", name="uq_sub_category_main_name"
        ),
    )

    op.create_table(
        "buckets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=16)),
        sa.Column(
            "type", sa.Enum("fixed", "daily", "goal", name="buckettype"), nullable=False
        ),
        sa.Column(
            "budget_group_id",
            sa.Integer(),
            sa.ForeignKey("budget_groups.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL")
        ),
        sa.Column("is_savings", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("target_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_saving_date", sa.String(length=10)),
        sa.Column("target_date", sa.String(length=10)),
        sa.Column(
            "payment_source",
            sa.Enum("income", "balance", name="paymentsource"),
            nullable=False,
        ),
        sa.Column("event_start_date", sa.String(length=10)),
        sa.Column("event_end_date", sa.String(length=10)),
        sa.Column("archived_date", sa.String(length=10)),
        sa.Column("monthly_data", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("target_amount >= 0", name="ck_bucket_target_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("expense", "income", "transfer", name="transactiontype")
        ),
        sa.Column("description", sa.String(length=200), nullable=False, server_default=""),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL")
        ),
        sa.Column(
            "sub_category_id",
            sa.Integer(),
            sa.ForeignKey("sub_categories.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "bucket_id", sa.Integer(), sa.ForeignKey("buckets.id", ondelete="SET NULL")
        ),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "linked_expense_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index(
        "ix_transactions_sub_category_date", "transactions", ["sub_category_id", "date"]
    )
    op.create_index("ix_transactions_bucket_date", "transactions", ["bucket_id", "date"])

    op.create_table(
        "budget_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sub_category_values", sa.JSON(), nullable=False),
        sa.Column("bucket_values", sa.JSON(), nullable=False),
        sa.Column("group_values", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "month_configs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month", sa.String(length=7), nullable=False, unique=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("budget_templates.id", ondelete="SET NULL"),
        ),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sub_category_overrides", sa.JSON(), nullable=False),
        sa.Column("bucket_overrides", sa.JSON(), nullable=False),
        sa.Column("group_overrides", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=50), primary_key=True),
        sa.Column("value", sa.String(length=200), nullable=False),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("app_settings")
    op.drop_table("month_configs")
    op.drop_table("budget_templates")
    op.drop_index("ix_transactions_bucket_date", table_name="transactions")
    op.drop_index("ix_transactions_sub_category_date", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("buckets")
    op.drop_table("sub_categories")
    op.drop_table("budget_groups")
    op.drop_table("main_categories")
    op.drop_table("accounts")
