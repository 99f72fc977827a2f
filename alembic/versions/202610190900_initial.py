"""initial finance schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(12, 2)
TRANSACTION_TYPE = sa.Enum("income", "expense", "transfer", name="transactiontype")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(length=80), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=30), unique=True),
        sa.Column("password_hash", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum("checking", "savings", "investment", name="accounttype"),
            nullable=False,
        ),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("bank_name", sa.String(length=120)),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("credit_limit", MONEY, nullable=False),
        sa.Column("used_amount", MONEY, nullable=False),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column("bank_name", sa.String(length=120)),
        *_timestamps(),
        sa.CheckConstraint("used_amount >= 0", name="ck_credit_card_used_non_negative"),
        sa.CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_credit_card_closing"
        ),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_credit_card_due"),
    )
    op.create_index("ix_credit_cards_user", "credit_cards", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "bucket",
            sa.Enum("necessities", "wants", "savings", name="budgetbucket"),
        ),
        sa.Column("transaction_type", TRANSACTION_TYPE, nullable=False),
        sa.Column("color", sa.String(length=9)),
        sa.Column("icon", sa.String(length=60)),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "transaction_type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "recurrences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id")),
        sa.Column("credit_card_id", sa.Uuid(), sa.ForeignKey("credit_cards.id")),
        sa.Column(
            "category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("installments", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_execution_date", sa.Date(), nullable=False),
        sa.Column("last_executed_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint(
            "(account_id IS NULL) <> (credit_card_id IS NULL)",
            name="ck_recurrence_single_target",
        ),
        sa.CheckConstraint("amount > 0", name="ck_recurrence_amount_positive"),
        sa.CheckConstraint(
            "installments IS NULL OR installments >= 2",
            name="ck_recurrence_installments",
        ),
    )
    op.create_index(
        "ix_recurrences_user_active", "recurrences", ["user_id", "is_active"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id")),
        sa.Column("credit_card_id", sa.Uuid(), sa.ForeignKey("credit_cards.id")),
        sa.Column(
            "category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "confirmed", name="transactionstatus"),
            nullable=False,
        ),
        sa.Column("confirmed_at", sa.DateTime()),
        sa.Column("installments", sa.Integer()),
        sa.Column("current_installment", sa.Integer()),
        sa.Column("transfer_to_account_id", sa.Uuid(), sa.ForeignKey("accounts.id")),
        sa.Column(
            "is_investment_transfer",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "is_card_payment", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("transfer_group_id", sa.Uuid()),
        sa.Column("card_delta", MONEY),
        sa.Column("recurrence_id", sa.Uuid(), sa.ForeignKey("recurrences.id")),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurrence_id", "occurrence_date", name="uq_txn_recurrence_occurrence"
        ),
        sa.CheckConstraint(
            "(account_id IS NULL) <> (credit_card_id IS NULL)",
            name="ck_transaction_single_target",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_status", "transactions", ["user_id", "status"]
    )
    op.create_index(
        "ix_transactions_recurrence_status",
        "transactions",
        ["recurrence_id", "status"],
    )
    op.create_index(
        "ix_transactions_transfer_group", "transactions", ["transfer_group_id"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("total_income", MONEY, nullable=False),
        sa.Column("necessities_budget", MONEY, nullable=False),
        sa.Column("wants_budget", MONEY, nullable=False),
        sa.Column("savings_budget", MONEY, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "month", "year", "is_default", name="uq_budget_user_period_kind"
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month"),
        sa.CheckConstraint("total_income >= 0", name="ck_budget_income_positive"),
    )
    op.create_index(
        "ix_budget_user_default_created",
        "budgets",
        ["user_id", "is_default", "created_at"],
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_amount", MONEY, nullable=False),
        sa.Column("current_amount", MONEY, nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "completed", "paused", name="goalstatus"),
            nullable=False,
        ),
        sa.Column("monthly_contribution", MONEY, nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("target_amount > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint(
            "current_amount >= 0", name="ck_goal_current_non_negative"
        ),
    )
    op.create_index("ix_goals_user_status", "goals", ["user_id", "status"])

    op.create_table(
        "assets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "stock",
                "fii",
                "crypto",
                "fixed_income",
                "etf",
                "fund",
                name="assettype",
            ),
            nullable=False,
        ),
        sa.Column("quantity", sa.Numeric(20, 8), nullable=False),
        sa.Column("average_price", MONEY, nullable=False),
        sa.Column("current_price", MONEY, nullable=False),
        sa.Column("sector", sa.String(length=80)),
        sa.Column("exchange", sa.String(length=20)),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("region", sa.String(length=80)),
        *_timestamps(),
        sa.CheckConstraint("quantity >= 0", name="ck_asset_quantity_non_negative"),
    )
    op.create_index("ix_assets_user", "assets", ["user_id"])


def downgrade():
    op.drop_index("ix_assets_user", table_name="assets")
    op.drop_table("assets")
    op.drop_index("ix_goals_user_status", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_budget_user_default_created", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_transfer_group", table_name="transactions")
    op.drop_index("ix_transactions_recurrence_status", table_name="transactions")
    op.drop_index("ix_transactions_user_status", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recurrences_user_active", table_name="recurrences")
    op.drop_table("recurrences")
    op.drop_table("categories")
    op.drop_index("ix_credit_cards_user", table_name="credit_cards")
    op.drop_table("credit_cards")
    op.drop_index("ix_accounts_user", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
    for name in (
        "transactiontype",
        "transactionstatus",
        "accounttype",
        "budgetbucket",
        "frequency",
        "goalstatus",
        "assettype",
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
