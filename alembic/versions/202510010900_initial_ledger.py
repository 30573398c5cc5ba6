"""initial ledger schema

Revision ID: 202510010900
Revises:
Create Date: 2025-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510010900"
down_revision = None
branch_labels = None
depends_on = None

CATEGORIES = (
    "salary",
    "freelance",
    "investments",
    "other_income",
    "rent",
    "energy",
    "water",
    "internet",
    "phone",
    "condo_fee",
    "subscriptions",
    "food",
    "transport",
    "health",
    "education",
    "leisure",
    "clothing",
    "other",
)


def _category():
    return sa.Enum(*CATEGORIES, name="category")


def _kind():
    return sa.Enum(
        "income", "fixed_expense", "variable_expense", name="transactionkind"
    )


def _payment_method():
    return sa.Enum("cash_or_transfer", "credit_card", name="paymentmethod")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("limit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "closing_day >= 1 AND closing_day <= 31", name="ck_card_closing_day"
        ),
        sa.CheckConstraint("due_day >= 1 AND due_day <= 31", name="ck_card_due_day"),
        sa.CheckConstraint("limit_cents >= 0", name="ck_card_limit_positive"),
    )

    op.create_table(
        "card_closing_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("period", sa.String(length=7), nullable=False),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "card_id", "period", name="uq_closing_override_card_period"
        ),
        sa.CheckConstraint(
            "closing_day >= 1 AND closing_day <= 31", name="ck_closing_override_day"
        ),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id")),
        *_timestamps(),
    )

    op.create_table(
        "recurring_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", _category(), nullable=False),
        sa.Column("kind", _kind(), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("payment_method", _payment_method(), nullable=False),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id")),
        sa.Column("spender_member_id", sa.Integer()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_period", sa.String(length=7)),
        sa.Column("end_period", sa.String(length=7)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_template_amount_positive"),
        sa.CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31", name="ck_template_day_of_month"
        ),
    )

    op.create_table(
        "ledger_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", _category(), nullable=False),
        sa.Column("kind", _kind(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("payment_method", _payment_method(), nullable=False),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id")),
        sa.Column("invoice_period", sa.String(length=7)),
        sa.Column("spender_member_id", sa.Integer()),
        sa.Column("creator_member_id", sa.Integer()),
        sa.Column(
            "status",
            sa.Enum("pending", "completed", name="recordstatus"),
            nullable=False,
            server_default="completed",
        ),
        sa.Column(
            "is_installment", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("installment_group_id", sa.String(length=32)),
        sa.Column("installment_index", sa.Integer()),
        sa.Column("installment_count", sa.Integer()),
        sa.Column("installment_amount_cents", sa.Integer()),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "recurring_template_id",
            sa.Integer(),
            sa.ForeignKey("recurring_templates.id", ondelete="SET NULL"),
        ),
        sa.Column("recurring_period", sa.String(length=7)),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_template_id",
            "recurring_period",
            name="uq_record_template_period",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_records_amount_positive"),
        sa.CheckConstraint(
            "installment_index IS NULL OR "
            "(installment_index >= 1 AND installment_index <= installment_count)",
            name="ck_records_installment_index",
        ),
    )
    op.create_index("ix_records_date", "ledger_records", ["date"])
    op.create_index(
        "ix_records_card_invoice", "ledger_records", ["card_id", "invoice_period"]
    )
    op.create_index(
        "ix_records_installment_group", "ledger_records", ["installment_group_id"]
    )


def downgrade():
    op.drop_index("ix_records_installment_group", table_name="ledger_records")
    op.drop_index("ix_records_card_invoice", table_name="ledger_records")
    op.drop_index("ix_records_date", table_name="ledger_records")
    op.drop_table("ledger_records")
    op.drop_table("recurring_templates")
    op.drop_table("members")
    op.drop_table("card_closing_overrides")
    op.drop_table("cards")
