"""initial ledger schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


WALLET_TYPES = (
    "cash",
    "mfs",
    "bank",
    "credit_card",
    "debit_card",
    "virtual_card",
    "other",
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*WALLET_TYPES, name="wallettype"), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "is_savings_wallet", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )

    op.create_table(
        "custom_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column(
            "semantic_type",
            sa.Enum("income", "expense", "savings", name="semantictype"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "slug", name="uq_custom_category_user_slug"),
    )

    op.create_table(
        "budget_months",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "rollover_planned_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "rollover_actual_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_budget_user_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )

    op.create_table(
        "category_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_month_id",
            sa.Integer(),
            sa.ForeignKey("budget_months.id"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("limit_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "budget_month_id", "category", name="uq_category_limit_month_category"
        ),
        sa.CheckConstraint("limit_cents >= 0", name="ck_category_limit_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "budget_month_id",
            sa.Integer(),
            sa.ForeignKey("budget_months.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("planned_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("actual_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "income", "expense", "transfer", "savings", name="transactiontype"
            ),
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime()),
        sa.Column("source_wallet_id", sa.Integer(), sa.ForeignKey("wallets.id")),
        sa.Column("destination_wallet_id", sa.Integer(), sa.ForeignKey("wallets.id")),
        sa.Column("linked_goal_id", sa.String(length=64)),
        *_timestamps(),
        sa.CheckConstraint("actual_cents >= 0", name="ck_transactions_actual_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_budget_month", "transactions", ["budget_month_id"]
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("entity_name", sa.String(length=200), nullable=False),
        sa.Column("change_type", sa.String(length=40), nullable=False),
        sa.Column("details_json", sa.Text()),
        sa.Column("amount_delta_cents", sa.Integer()),
        sa.Column("previous_balance_cents", sa.Integer()),
        sa.Column("new_balance_cents", sa.Integer()),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_audit_user_timestamp", "audit_events", ["user_id", "timestamp"]
    )
    op.create_index(
        "ix_audit_entity_timestamp", "audit_events", ["entity_id", "timestamp"]
    )
    op.create_index(
        "ix_audit_user_type_timestamp",
        "audit_events",
        ["user_id", "entity_type", "timestamp"],
    )

    op.create_table(
        "rate_counters",
        sa.Column("key", sa.String(length=200), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("rate_counters")
    op.drop_index("ix_audit_user_type_timestamp", table_name="audit_events")
    op.drop_index("ix_audit_entity_timestamp", table_name="audit_events")
    op.drop_index("ix_audit_user_timestamp", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_transactions_budget_month", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("category_limits")
    op.drop_table("budget_months")
    op.drop_table("custom_categories")
    op.drop_table("wallets")
