"""recurring rules and posted classification

Revision ID: 202610150900
Revises: 202610010900
Create Date: 2026-10-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610150900"
down_revision = "202610010900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "recurring_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "income", "expense", "transfer", "savings", name="transactiontype"
            ),
        ),
        sa.Column(
            "frequency",
            sa.Enum(
                "daily", "weekly", "monthly", "yearly", name="recurrencefrequency"
            ),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("next_run_date", sa.Date(), nullable=False),
        sa.Column("last_run_date", sa.Date()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_user_active", "recurring_rules", ["user_id", "active"]
    )
    op.create_index("ix_recurring_next_run", "recurring_rules", ["next_run_date"])

    with op.batch_alter_table("transactions") as batch_op:
        batch_op.add_column(sa.Column("applied_kind", sa.String(length=20)))
        batch_op.add_column(sa.Column("origin_rule_id", sa.Integer()))
        batch_op.create_foreign_key(
            "fk_transactions_origin_rule",
            "recurring_rules",
            ["origin_rule_id"],
            ["id"],
        )
        batch_op.create_index(
            "ix_transactions_origin_rule", ["origin_rule_id", "date"]
        )


def downgrade():
    with op.batch_alter_table("transactions") as batch_op:
        batch_op.drop_index("ix_transactions_origin_rule")
        batch_op.drop_constraint("fk_transactions_origin_rule", type_="foreignkey")
        batch_op.drop_column("origin_rule_id")
        batch_op.drop_column("applied_kind")
    op.drop_index("ix_recurring_next_run", table_name="recurring_rules")
    op.drop_index("ix_recurring_user_active", table_name="recurring_rules")
    op.drop_table("recurring_rules")
