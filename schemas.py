import datetime as dt
import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountType,
    AssetType,
    BudgetBucket,
    Frequency,
    GoalStatus,
    TransactionStatus,
    TransactionType,
)


class RegisterIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=80)
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(
        ..., min_length=3, max_length=200, pattern=r"^[^@\s]+@[^@\s]+$"
    )
    phone: Optional[str] = Field(default=None, max_length=30)
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    balance: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    bank_name: Optional[str] = Field(default=None, max_length=120)


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    type: Optional[AccountType] = None
    bank_name: Optional[str] = Field(default=None, max_length=120)


class CreditCardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    credit_limit: Decimal = Field(..., ge=0, decimal_places=2)
    used_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)
    bank_name: Optional[str] = Field(default=None, max_length=120)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    bucket: Optional[BudgetBucket] = None
    transaction_type: TransactionType
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=60)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bucket: Optional[BudgetBucket] = None
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=60)


class TransactionIn(BaseModel):
    account_id: Optional[uuid.UUID] = None
    credit_card_id: Optional[uuid.UUID] = None
    category_id: uuid.UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=200)
    date: dt.date
    status: TransactionStatus = TransactionStatus.confirmed


class ConfirmIn(BaseModel):
    account_id: Optional[uuid.UUID] = None


class RecurrenceIn(BaseModel):
    account_id: Optional[uuid.UUID] = None
    credit_card_id: Optional[uuid.UUID] = None
    category_id: uuid.UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=200)
    frequency: Frequency
    start_date: dt.date
    end_date: Optional[dt.date] = None
    installments: Optional[int] = Field(default=None, ge=1)
    include_start: bool = True


class RecurrenceUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category_id: Optional[uuid.UUID] = None
    account_id: Optional[uuid.UUID] = None
    credit_card_id: Optional[uuid.UUID] = None
    frequency: Optional[Frequency] = None
    is_active: Optional[bool] = None
    end_date: Optional[dt.date] = None


class BudgetIn(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)
    is_default: bool = False
    total_income: Decimal = Field(..., ge=0, decimal_places=2)
    necessities_budget: Optional[Decimal] = Field(default=None, ge=0)
    wants_budget: Optional[Decimal] = Field(default=None, ge=0)
    savings_budget: Optional[Decimal] = Field(default=None, ge=0)


class TransferIn(BaseModel):
    from_account_id: uuid.UUID
    to_account_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=200)


class CardPaymentIn(BaseModel):
    account_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=200)


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., gt=0, decimal_places=2)
    current_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    target_date: dt.date
    status: GoalStatus = GoalStatus.active
    monthly_contribution: Decimal = Field(
        default=Decimal("0.00"), ge=0, decimal_places=2
    )
    description: Optional[str] = Field(default=None, max_length=500)


class AssetIn(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=120)
    type: AssetType
    quantity: Decimal = Field(..., ge=0, decimal_places=8)
    average_price: Decimal = Field(..., ge=0, decimal_places=2)
    current_price: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    sector: Optional[str] = Field(default=None, max_length=80)
    exchange: Optional[str] = Field(default=None, max_length=20)
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    region: Optional[str] = Field(default=None, max_length=80)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    name: str
    email: str


class AuthOut(BaseModel):
    user: UserOut
    token: str


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: AccountType
    balance: Decimal
    bank_name: Optional[str]


class CreditCardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    credit_limit: Decimal
    used_amount: Decimal
    closing_day: int
    due_day: int
    bank_name: Optional[str]


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    bucket: Optional[BudgetBucket]
    transaction_type: TransactionType
    color: Optional[str]
    icon: Optional[str]
    is_default: bool


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    account_id: Optional[uuid.UUID]
    credit_card_id: Optional[uuid.UUID]
    category_id: uuid.UUID
    type: TransactionType
    amount: Decimal
    description: str
    date: dt.date
    status: TransactionStatus
    confirmed_at: Optional[dt.datetime]
    installments: Optional[int]
    current_installment: Optional[int]
    transfer_to_account_id: Optional[uuid.UUID]
    is_investment_transfer: bool
    is_card_payment: bool
    transfer_group_id: Optional[uuid.UUID]
    recurrence_id: Optional[uuid.UUID]


class RecurrenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    account_id: Optional[uuid.UUID]
    credit_card_id: Optional[uuid.UUID]
    category_id: uuid.UUID
    type: TransactionType
    amount: Decimal
    description: str
    frequency: Frequency
    start_date: dt.date
    end_date: Optional[dt.date]
    installments: Optional[int]
    is_active: bool
    next_execution_date: dt.date
    last_executed_date: Optional[dt.date]


class RecurrenceCreatedOut(BaseModel):
    recurrence: RecurrenceOut
    transactions: list[TransactionOut]
    total_value: Decimal


class RecurrenceUpdatedOut(BaseModel):
    recurrence: RecurrenceOut
    updated_transactions: list[TransactionOut]


class RecurrenceDetailsOut(BaseModel):
    recurrence: RecurrenceOut
    pending_transactions: list[TransactionOut]
    confirmed_transactions: list[TransactionOut]
    total_pending_amount: Decimal
    total_confirmed_amount: Decimal
    installment_progress: Optional[float] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    month: int
    year: int
    is_default: bool
    total_income: Decimal
    necessities_budget: Decimal
    wants_budget: Decimal
    savings_budget: Decimal
    necessities_spent: Decimal = Decimal("0.00")
    wants_spent: Decimal = Decimal("0.00")
    savings_spent: Decimal = Decimal("0.00")
    created_at: dt.datetime


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    target_amount: Decimal
    current_amount: Decimal
    target_date: dt.date
    status: GoalStatus
    monthly_contribution: Decimal
    description: Optional[str]


class AssetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    symbol: str
    name: str
    type: AssetType
    quantity: Decimal
    average_price: Decimal
    current_price: Decimal
    sector: Optional[str]
    exchange: Optional[str]
    currency: str
    region: Optional[str]


class TransferOut(BaseModel):
    from_account: AccountOut
    to_account: AccountOut
    transactions: list[TransactionOut]


class CardPaymentOut(BaseModel):
    account: AccountOut
    credit_card: CreditCardOut
    transactions: list[TransactionOut]


class DashboardOut(BaseModel):
    total_balance: Decimal
    total_credit_used: Decimal
    monthly_income: Decimal
    monthly_expenses: Decimal
    pending_count: int
    recent_transactions: list[TransactionOut]
    goals: list[GoalOut]
    budget: Optional[BudgetOut]
