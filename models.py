import datetime as dt
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


MONEY = Numeric(12, 2, asdecimal=True)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class TransactionStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class AccountType(str, Enum):
    checking = "checking"
    savings = "savings"
    investment = "investment"


class BudgetBucket(str, Enum):
    necessities = "necessities"
    wants = "wants"
    savings = "savings"


class GoalStatus(str, Enum):
    active = "active"
    completed = "completed"
    paused = "paused"


class AssetType(str, Enum):
    stock = "stock"
    fii = "fii"
    crypto = "crypto"
    fixed_income = "fixed_income"
    etf = "etf"
    fund = "fund"


class SettlementKind(str, Enum):
    account = "account"
    credit_card = "credit_card"


@dataclass(frozen=True)
class SettlementTarget:
    """Where money settles: a bank account or a credit card, never both."""

    kind: SettlementKind
    id: uuid.UUID

    @classmethod
    def from_ids(
        cls,
        account_id: Optional[uuid.UUID],
        credit_card_id: Optional[uuid.UUID],
    ) -> "SettlementTarget":
        if account_id and credit_card_id:
            raise ValueError("Choose either an account or a credit card, not both")
        if account_id:
            return cls(SettlementKind.account, account_id)
        if credit_card_id:
            return cls(SettlementKind.credit_card, credit_card_id)
        raise ValueError("An account or a credit card is required")

    @property
    def is_card(self) -> bool:
        return self.kind == SettlementKind.credit_card

    def as_columns(self) -> dict[str, Optional[uuid.UUID]]:
        return {
            "account_id": self.id if self.kind == SettlementKind.account else None,
            "credit_card_id": self.id if self.is_card else None,
        }


class TimestampMixin:
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, default=dt.datetime.utcnow, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime,
        default=dt.datetime.utcnow,
        onupdate=dt.datetime.utcnow,
        nullable=False,
    )


class SettlementMixin:
    """Shared accessors for rows that carry account_id / credit_card_id."""

    @property
    def settlement(self) -> SettlementTarget:
        return SettlementTarget.from_ids(self.account_id, self.credit_card_id)

    def set_settlement(self, target: SettlementTarget) -> None:
        for column, value in target.as_columns().items():
            setattr(self, column, value)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), unique=True)
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    bank_name: Mapped[Optional[str]] = mapped_column(String(120))

    __table_args__ = (Index("ix_accounts_user", "user_id"),)


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    credit_limit: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    used_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    bank_name: Mapped[Optional[str]] = mapped_column(String(120))

    __table_args__ = (
        CheckConstraint("used_amount >= 0", name="ck_credit_card_used_non_negative"),
        CheckConstraint("closing_day BETWEEN 1 AND 31", name="ck_credit_card_closing"),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_credit_card_due"),
        Index("ix_credit_cards_user", "user_id"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bucket: Mapped[Optional[BudgetBucket]] = mapped_column(SAEnum(BudgetBucket))
    transaction_type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(9), default="#1565C0")
    icon: Mapped[Optional[str]] = mapped_column(String(60))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "transaction_type", "name", name="uq_category_user_type_name"
        ),
    )


class Recurrence(Base, TimestampMixin, SettlementMixin):
    __tablename__ = "recurrences"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("accounts.id"))
    credit_card_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("credit_cards.id")
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    installments: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_execution_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    last_executed_date: Mapped[Optional[dt.date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurrence"
    )

    __table_args__ = (
        CheckConstraint(
            "(account_id IS NULL) <> (credit_card_id IS NULL)",
            name="ck_recurrence_single_target",
        ),
        CheckConstraint("amount > 0", name="ck_recurrence_amount_positive"),
        CheckConstraint(
            "installments IS NULL OR installments >= 2",
            name="ck_recurrence_installments",
        ),
        Index("ix_recurrences_user_active", "user_id", "is_active"),
    )

    @property
    def is_forever(self) -> bool:
        return self.end_date is None and not self.installments


class Transaction(Base, TimestampMixin, SettlementMixin):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("accounts.id"))
    credit_card_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("credit_cards.id")
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.confirmed
    )
    confirmed_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime)
    installments: Mapped[Optional[int]] = mapped_column(Integer)
    current_installment: Mapped[Optional[int]] = mapped_column(Integer)
    transfer_to_account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("accounts.id")
    )
    is_investment_transfer: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_card_payment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    # rows written together by a transfer or card payment share this id
    transfer_group_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    # change actually applied to the card's used amount, after the zero floor
    card_delta: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    recurrence_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("recurrences.id")
    )
    occurrence_date: Mapped[Optional[dt.date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    recurrence: Mapped[Optional["Recurrence"]] = relationship(
        "Recurrence", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurrence_id", "occurrence_date", name="uq_txn_recurrence_occurrence"
        ),
        CheckConstraint(
            "(account_id IS NULL) <> (credit_card_id IS NULL)",
            name="ck_transaction_single_target",
        ),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_status", "user_id", "status"),
        Index("ix_transactions_recurrence_status", "recurrence_id", "status"),
        Index("ix_transactions_transfer_group", "transfer_group_id"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    necessities_budget: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    wants_budget: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    savings_budget: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "month", "year", "is_default", name="uq_budget_user_period_kind"
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month"),
        CheckConstraint("total_income >= 0", name="ck_budget_income_positive"),
        Index("ix_budget_user_default_created", "user_id", "is_default", "created_at"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    target_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[GoalStatus] = mapped_column(
        SAEnum(GoalStatus), nullable=False, default=GoalStatus.active
    )
    monthly_contribution: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("target_amount > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_amount >= 0", name="ck_goal_current_non_negative"),
        Index("ix_goals_user_status", "user_id", "status"),
    )


class Asset(Base, TimestampMixin):
    __tablename__ = "assets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AssetType] = mapped_column(SAEnum(AssetType), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    average_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    current_price: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    sector: Mapped[Optional[str]] = mapped_column(String(80))
    exchange: Mapped[Optional[str]] = mapped_column(String(20))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    region: Mapped[Optional[str]] = mapped_column(String(80))

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_asset_quantity_non_negative"),
        Index("ix_assets_user", "user_id"),
    )
