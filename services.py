from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from auth import check_password, hash_password
from database import atomic
from models import (
    Account,
    AccountType,
    Asset,
    Budget,
    BudgetBucket,
    Category,
    CreditCard,
    Goal,
    GoalStatus,
    Recurrence,
    SettlementTarget,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from periods import Period, month_period
from recurrence import (
    RecurrenceEngine,
    installment_description,
    local_now,
    local_today,
)
from schemas import (
    AccountIn,
    AccountUpdate,
    AssetIn,
    BudgetIn,
    CardPaymentIn,
    CategoryIn,
    CategoryUpdate,
    CreditCardIn,
    GoalIn,
    RecurrenceIn,
    RecurrenceUpdate,
    RegisterIn,
    TransactionIn,
    TransferIn,
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

BUDGET_SPLIT = {
    BudgetBucket.necessities: Decimal("0.50"),
    BudgetBucket.wants: Decimal("0.30"),
    BudgetBucket.savings: Decimal("0.20"),
}

TRANSFER_CATEGORY_NAME = "Transfers"

# name, bucket, type, color, icon
DEFAULT_CATEGORIES = (
    ("Food", BudgetBucket.necessities, TransactionType.expense, "#E53935", "food"),
    ("Housing", BudgetBucket.necessities, TransactionType.expense, "#8E24AA", "home"),
    ("Transport", BudgetBucket.necessities, TransactionType.expense, "#3949AB", "car"),
    ("Entertainment", BudgetBucket.wants, TransactionType.expense, "#FB8C00", "movie"),
    ("Shopping", BudgetBucket.wants, TransactionType.expense, "#F4511E", "bag"),
    ("Investments", BudgetBucket.savings, TransactionType.expense, "#00897B", "chart"),
    ("Savings", BudgetBucket.savings, TransactionType.expense, "#43A047", "piggy"),
    ("Salary", None, TransactionType.income, "#1E88E5", "wallet"),
    (TRANSFER_CATEGORY_NAME, None, TransactionType.transfer, "#546E7A", "swap"),
)


class NotFoundError(ValueError):
    """The entity does not exist or belongs to another user."""


class ConflictError(ValueError):
    """The request is valid but clashes with the current state."""


def to_money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _sum_or_zero(session: Session, stmt) -> Decimal:
    return to_money(session.execute(stmt).scalar_one() or 0)


class BalanceMutator:
    """Moves money on accounts and credit cards.

    A confirmed income adds to an account and an expense subtracts from it.
    On a credit card an expense raises the used amount and an income lowers
    it; the used amount never goes below zero. Transfers carry no effect of
    their own, the orchestration moves both balances explicitly.
    """

    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def adjust_account(self, account_id: uuid.UUID, delta: Decimal) -> Account:
        account = AccountService(self.session, self.user_id).get(account_id)
        account.balance = to_money(account.balance + delta)
        return account

    def adjust_card(self, card_id: uuid.UUID, delta: Decimal) -> Decimal:
        """Moves the card's used amount and returns the change actually applied."""
        card = CreditCardService(self.session, self.user_id).get(card_id)
        before = to_money(card.used_amount)
        card.used_amount = max(ZERO, to_money(before + delta))
        return card.used_amount - before

    def apply(self, txn: Transaction) -> None:
        self._move(txn, 1)

    def reverse(self, txn: Transaction) -> None:
        self._move(txn, -1)

    def _move(self, txn: Transaction, sign: int) -> None:
        if txn.type == TransactionType.transfer:
            return
        amount = to_money(txn.amount)
        target = txn.settlement
        if target.is_card:
            requested = amount if txn.type == TransactionType.expense else -amount
            if sign > 0:
                txn.card_delta = self.adjust_card(target.id, requested)
            else:
                applied = requested if txn.card_delta is None else txn.card_delta
                self.adjust_card(target.id, -applied)
        else:
            delta = amount if txn.type == TransactionType.income else -amount
            self.adjust_account(target.id, delta * sign)
        self.session.flush()

    def ensure_target(self, target: SettlementTarget) -> None:
        if target.is_card:
            CreditCardService(self.session, self.user_id).get(target.id)
        else:
            AccountService(self.session, self.user_id).get(target.id)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: uuid.UUID) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def register(self, data: RegisterIn) -> User:
        username = data.username.strip()
        email = data.email.strip().lower()
        phone = data.phone.strip() if data.phone else None
        if not username:
            raise ValueError("Username cannot be empty")

        clashes = [User.username == username, User.email == email]
        if phone:
            clashes.append(User.phone == phone)
        existing = self.session.scalar(select(User).where(or_(*clashes)))
        if existing:
            if existing.username == username:
                raise ConflictError("Username already taken")
            if existing.email == email:
                raise ConflictError("Email already registered")
            raise ConflictError("Phone already registered")

        user = User(
            username=username,
            name=data.name.strip(),
            email=email,
            phone=phone,
            password_hash=hash_password(data.password),
        )
        with atomic(self.session):
            self.session.add(user)
            self.session.flush()
            CategoryService(self.session, user.id).seed_defaults()
        logger.info(f"user_registered: id={user.id} username={user.username}")
        return user

    def authenticate(self, identifier: str, password: str) -> Optional[User]:
        identifier = identifier.strip()
        stmt = select(User).where(
            or_(
                User.username == identifier,
                User.email == identifier.lower(),
                User.phone == identifier,
            )
        )
        user = self.session.scalar(stmt)
        if not user or not check_password(password, user.password_hash):
            logger.info("login_failed")
            return None
        return user


class AccountService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: uuid.UUID) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        name = data.name.strip()
        if not name:
            raise ValueError("Account name cannot be empty")
        account = Account(
            user_id=self.user_id,
            name=name,
            type=data.type,
            balance=to_money(data.balance),
            bank_name=data.bank_name,
        )
        with atomic(self.session):
            self.session.add(account)
        return account

    def update(self, account_id: uuid.UUID, data: AccountUpdate) -> Account:
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise ValueError("Account name cannot be empty")
        if "type" in changes and changes["type"] is None:
            raise ValueError("type cannot be empty")
        with atomic(self.session):
            account = self.get(account_id)
            for name, value in changes.items():
                setattr(account, name, value)
        logger.info(f"account_updated: id={account.id} fields={sorted(changes)}")
        return account

    def delete(self, account_id: uuid.UUID) -> None:
        with atomic(self.session):
            account = self.get(account_id)
            if to_money(account.balance) != ZERO:
                raise ConflictError("Account balance must be zero before deletion")
            in_use = self.session.scalar(
                select(func.count(Transaction.id)).where(
                    or_(
                        Transaction.account_id == account.id,
                        Transaction.transfer_to_account_id == account.id,
                    )
                )
            ) or 0
            in_use += self.session.scalar(
                select(func.count(Recurrence.id)).where(
                    Recurrence.account_id == account.id
                )
            ) or 0
            if in_use:
                raise ConflictError("Account still has transactions or recurrences")
            self.session.delete(account)
        logger.info(f"account_deleted: id={account_id}")


class CreditCardService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[CreditCard]:
        stmt = (
            select(CreditCard)
            .where(CreditCard.user_id == self.user_id)
            .order_by(CreditCard.name, CreditCard.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, card_id: uuid.UUID) -> CreditCard:
        card = self.session.get(CreditCard, card_id)
        if not card or card.user_id != self.user_id:
            raise NotFoundError("Credit card not found")
        return card

    def create(self, data: CreditCardIn) -> CreditCard:
        name = data.name.strip()
        if not name:
            raise ValueError("Card name cannot be empty")
        card = CreditCard(
            user_id=self.user_id,
            name=name,
            credit_limit=to_money(data.credit_limit),
            used_amount=to_money(data.used_amount),
            closing_day=data.closing_day,
            due_day=data.due_day,
            bank_name=data.bank_name,
        )
        with atomic(self.session):
            self.session.add(card)
        return card


class CategoryService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(
        self, transaction_type: Optional[TransactionType] = None
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.transaction_type, Category.name)
        )
        if transaction_type:
            stmt = stmt.where(Category.transaction_type == transaction_type)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: uuid.UUID) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _find(self, name: str, transaction_type: TransactionType) -> Optional[Category]:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.transaction_type == transaction_type,
            func.lower(Category.name) == name.lower(),
        )
        return self.session.scalar(stmt)

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValueError("Category name cannot be empty")
        if data.bucket and data.transaction_type != TransactionType.expense:
            raise ValueError("Only expense categories belong to a budget bucket")
        if self._find(name, data.transaction_type):
            raise ConflictError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=name,
            bucket=data.bucket,
            transaction_type=data.transaction_type,
            color=data.color,
            icon=data.icon,
            is_default=False,
        )
        with atomic(self.session):
            self.session.add(category)
        return category

    def update(self, category_id: uuid.UUID, data: CategoryUpdate) -> Category:
        changes = data.model_dump(exclude_unset=True)
        with atomic(self.session):
            category = self.get(category_id)
            if "name" in changes:
                name = (changes["name"] or "").strip()
                if not name:
                    raise ValueError("Category name cannot be empty")
                clash = self._find(name, category.transaction_type)
                if clash and clash.id != category.id:
                    raise ConflictError("Category with this name already exists")
                changes["name"] = name
            if (
                changes.get("bucket")
                and category.transaction_type != TransactionType.expense
            ):
                raise ValueError("Only expense categories belong to a budget bucket")
            for name, value in changes.items():
                setattr(category, name, value)
        logger.info(f"category_updated: id={category.id} fields={sorted(changes)}")
        return category

    def delete(self, category_id: uuid.UUID) -> None:
        with atomic(self.session):
            category = self.get(category_id)
            in_use = self.session.scalar(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id
                )
            ) or 0
            in_use += self.session.scalar(
                select(func.count(Recurrence.id)).where(
                    Recurrence.category_id == category.id
                )
            ) or 0
            if in_use:
                raise ConflictError("Category still has transactions or recurrences")
            self.session.delete(category)
        logger.info(f"category_deleted: id={category_id}")

    def seed_defaults(self) -> list[Category]:
        created: list[Category] = []
        for name, bucket, txn_type, color, icon in DEFAULT_CATEGORIES:
            if self._find(name, txn_type):
                continue
            category = Category(
                user_id=self.user_id,
                name=name,
                bucket=bucket,
                transaction_type=txn_type,
                color=color,
                icon=icon,
                is_default=True,
            )
            self.session.add(category)
            created.append(category)
        self.session.flush()
        return created

    def transfer_category(self) -> Category:
        category = self._find(TRANSFER_CATEGORY_NAME, TransactionType.transfer)
        if category:
            return category
        category = Category(
            user_id=self.user_id,
            name=TRANSFER_CATEGORY_NAME,
            transaction_type=TransactionType.transfer,
            is_default=True,
        )
        self.session.add(category)
        self.session.flush()
        return category


class TransactionService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, transaction_id: uuid.UUID) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def list(
        self, period: Optional[Period] = None, limit: int = 200
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.occurred_at.desc())
            .limit(limit)
        )
        if period:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        return list(self.session.scalars(stmt).all())

    def list_pending(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.status == TransactionStatus.pending,
            )
            .order_by(Transaction.date, Transaction.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def recent(self, limit: int = 10) -> list[Transaction]:
        return self.list(limit=limit)

    def create(
        self, data: TransactionIn, *, now: Optional[datetime] = None
    ) -> Transaction:
        if data.type == TransactionType.transfer:
            raise ValueError("Use the transfer endpoint to move money between accounts")
        target = SettlementTarget.from_ids(data.account_id, data.credit_card_id)
        mutator = BalanceMutator(self.session, self.user_id)
        mutator.ensure_target(target)
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        if category.transaction_type != data.type:
            raise ValueError("Category type mismatch")

        now = now or local_now()
        confirmed = data.status == TransactionStatus.confirmed
        txn = Transaction(
            user_id=self.user_id,
            category_id=category.id,
            type=data.type,
            amount=to_money(data.amount),
            description=data.description.strip(),
            date=data.date,
            occurred_at=datetime.combine(data.date, now.time()),
            status=data.status,
            confirmed_at=now if confirmed else None,
        )
        txn.set_settlement(target)
        with atomic(self.session):
            self.session.add(txn)
            self.session.flush()
            if confirmed:
                mutator.apply(txn)
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} "
            f"status={txn.status.value} amount={txn.amount}"
        )
        return txn

    def confirm(
        self,
        transaction_id: uuid.UUID,
        account_id: Optional[uuid.UUID] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Transaction:
        now = now or local_now()
        with atomic(self.session):
            txn = self.get(transaction_id)
            if txn.status != TransactionStatus.pending:
                raise ConflictError("Transaction is already confirmed")

            values: dict[str, object] = {
                "status": TransactionStatus.confirmed,
                "date": now.date(),
                "occurred_at": now,
                "confirmed_at": now,
            }
            if account_id is not None:
                account = AccountService(self.session, self.user_id).get(account_id)
                values.update(SettlementTarget.from_ids(account.id, None).as_columns())

            result = self.session.execute(
                update(Transaction)
                .where(
                    Transaction.id == txn.id,
                    Transaction.status == TransactionStatus.pending,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                raise ConflictError("Transaction is already confirmed")
            self.session.refresh(txn)

            BalanceMutator(self.session, self.user_id).apply(txn)

            if txn.recurrence_id:
                recurrence = self.session.get(Recurrence, txn.recurrence_id)
                recurrence.last_executed_date = now.date()
                if recurrence.is_forever:
                    RecurrenceEngine(self.session).create_next_pending(recurrence)
        logger.info(f"transaction_confirmed: id={txn.id} date={txn.date}")
        return txn

    def _delete_transfer_group(self, group_id: uuid.UUID) -> int:
        owned = (
            Transaction.user_id == self.user_id,
            Transaction.transfer_group_id == group_id,
        )
        rows = list(self.session.scalars(select(Transaction).where(*owned)).all())
        mutator = BalanceMutator(self.session, self.user_id)
        for row in rows:
            mutator.reverse(row)
        result = self.session.execute(delete(Transaction).where(*owned))
        if result.rowcount != len(rows):
            raise ConflictError("Transfer changed while it was being deleted")
        return len(rows)

    def delete(self, transaction_id: uuid.UUID) -> None:
        with atomic(self.session):
            txn = self.get(transaction_id)
            if txn.transfer_group_id is not None:
                # both sides of a transfer or card payment go together
                removed = self._delete_transfer_group(txn.transfer_group_id)
                logger.info(
                    f"transfer_deleted: group={txn.transfer_group_id} rows={removed}"
                )
                return
            status = txn.status
            if status == TransactionStatus.pending and txn.recurrence_id:
                recurrence = self.session.get(Recurrence, txn.recurrence_id)
                if recurrence.is_forever:
                    # next occurrence exists before the current one goes away
                    RecurrenceEngine(self.session).create_next_pending(recurrence)
            if status == TransactionStatus.confirmed:
                BalanceMutator(self.session, self.user_id).reverse(txn)

            result = self.session.execute(
                delete(Transaction).where(
                    Transaction.id == txn.id, Transaction.status == status
                )
            )
            if result.rowcount != 1:
                raise ConflictError("Transaction changed while it was being deleted")
        logger.info(f"transaction_deleted: id={transaction_id} status={status.value}")


@dataclass
class RecurrenceCreation:
    recurrence: Recurrence
    transactions: list[Transaction]
    total_value: Decimal


@dataclass
class RecurrenceUpdateResult:
    recurrence: Recurrence
    updated_transactions: list[Transaction] = field(default_factory=list)


@dataclass
class RecurrenceDetails:
    recurrence: Recurrence
    pending_transactions: list[Transaction]
    confirmed_transactions: list[Transaction]
    total_pending_amount: Decimal
    total_confirmed_amount: Decimal
    installment_progress: Optional[float]


class RecurrenceService:
    # fields copied onto pending transactions when they change
    PROPAGATED = ("type", "amount", "description", "category_id")

    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_active(self) -> list[Recurrence]:
        stmt = (
            select(Recurrence)
            .options(joinedload(Recurrence.category))
            .where(Recurrence.user_id == self.user_id, Recurrence.is_active.is_(True))
            .order_by(Recurrence.next_execution_date, Recurrence.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, recurrence_id: uuid.UUID) -> Recurrence:
        recurrence = self.session.get(Recurrence, recurrence_id)
        if not recurrence or recurrence.user_id != self.user_id:
            raise NotFoundError("Recurrence not found")
        return recurrence

    def _transactions(
        self, recurrence: Recurrence, status: TransactionStatus
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.recurrence_id == recurrence.id,
                Transaction.status == status,
            )
            .order_by(Transaction.occurrence_date, Transaction.date)
        )
        return list(self.session.scalars(stmt).all())

    def _check_category(
        self, category_id: uuid.UUID, txn_type: TransactionType
    ) -> Category:
        category = CategoryService(self.session, self.user_id).get(category_id)
        if category.transaction_type != txn_type:
            raise ValueError("Category type mismatch")
        return category

    def create(self, data: RecurrenceIn) -> RecurrenceCreation:
        if data.type == TransactionType.transfer:
            raise ValueError("Recurrences must be income or expense")
        if data.installments == 1:
            raise ValueError("A single installment is not a recurrence")
        target = SettlementTarget.from_ids(data.account_id, data.credit_card_id)
        BalanceMutator(self.session, self.user_id).ensure_target(target)
        self._check_category(data.category_id, data.type)
        end_date = None if data.installments else data.end_date
        if end_date is not None and end_date < data.start_date:
            raise ValueError("End date must be on or after the start date")

        engine = RecurrenceEngine(self.session)
        first = engine.first_occurrence(
            data.start_date, data.frequency, include_start=data.include_start
        )
        recurrence = Recurrence(
            user_id=self.user_id,
            category_id=data.category_id,
            type=data.type,
            amount=to_money(data.amount),
            description=data.description.strip(),
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=end_date,
            installments=data.installments,
            is_active=True,
            next_execution_date=first,
        )
        recurrence.set_settlement(target)

        with atomic(self.session):
            self.session.add(recurrence)
            self.session.flush()
            if data.installments:
                dates = engine.installment_dates(
                    recurrence, data.installments, include_start=data.include_start
                )
                recurrence.end_date = dates[-1]
                created = [
                    engine.materialize(
                        recurrence, day, installment=i, total=data.installments
                    )
                    for i, day in enumerate(dates, start=1)
                ]
            elif end_date is not None:
                dates = engine.dates_until(
                    recurrence, end_date, include_start=data.include_start
                )
                created = [engine.materialize(recurrence, day) for day in dates]
            else:
                created = [engine.materialize(recurrence, first)]
            transactions = [txn for txn in created if txn is not None]

        total_value = to_money(recurrence.amount * len(transactions))
        logger.info(
            f"recurrence_created: id={recurrence.id} "
            f"frequency={recurrence.frequency.value} "
            f"transactions={len(transactions)} total={total_value}"
        )
        return RecurrenceCreation(recurrence, transactions, total_value)

    def update(
        self, recurrence_id: uuid.UUID, data: RecurrenceUpdate
    ) -> RecurrenceUpdateResult:
        changes = data.model_dump(exclude_unset=True)
        required = self.PROPAGATED + ("frequency", "is_active")
        for name in required:
            if name in changes and changes[name] is None:
                raise ValueError(f"{name} cannot be empty")

        with atomic(self.session):
            recurrence = self.get(recurrence_id)
            if not changes:
                return RecurrenceUpdateResult(recurrence)

            new_type = changes.get("type", recurrence.type)
            if new_type == TransactionType.transfer:
                raise ValueError("Recurrences must be income or expense")
            if "type" in changes or "category_id" in changes:
                self._check_category(
                    changes.get("category_id", recurrence.category_id), new_type
                )

            retarget = "account_id" in changes or "credit_card_id" in changes
            if retarget:
                target = SettlementTarget.from_ids(
                    changes.get("account_id"), changes.get("credit_card_id")
                )
                BalanceMutator(self.session, self.user_id).ensure_target(target)
                recurrence.set_settlement(target)

            if "amount" in changes:
                changes["amount"] = to_money(changes["amount"])
            if "description" in changes:
                changes["description"] = changes["description"].strip()
            if changes.get("end_date") and changes["end_date"] < recurrence.start_date:
                raise ValueError("End date must be on or after the start date")

            for name in self.PROPAGATED + ("frequency", "is_active", "end_date"):
                if name in changes:
                    setattr(recurrence, name, changes[name])
            self.session.flush()

            pending = self._transactions(recurrence, TransactionStatus.pending)
            propagated = [name for name in self.PROPAGATED if name in changes]
            updated: list[Transaction] = []
            if propagated or retarget:
                for txn in pending:
                    for name in propagated:
                        setattr(txn, name, getattr(recurrence, name))
                    if "description" in changes and txn.current_installment:
                        txn.description = installment_description(
                            recurrence.description,
                            txn.current_installment,
                            txn.installments,
                        )
                    if retarget:
                        txn.set_settlement(recurrence.settlement)
                    updated.append(txn)

            if changes.get("is_active") and recurrence.is_forever and not pending:
                RecurrenceEngine(self.session).create_next_pending(recurrence)
            self.session.flush()

        logger.info(
            f"recurrence_updated: id={recurrence.id} fields={sorted(changes)} "
            f"pending_updated={len(updated)}"
        )
        return RecurrenceUpdateResult(recurrence, updated)

    def delete(self, recurrence_id: uuid.UUID) -> None:
        with atomic(self.session):
            recurrence = self.get(recurrence_id)
            result = self.session.execute(
                delete(Transaction).where(Transaction.recurrence_id == recurrence.id)
            )
            self.session.execute(
                delete(Recurrence).where(Recurrence.id == recurrence.id)
            )
        logger.info(
            f"recurrence_deleted: id={recurrence_id} transactions={result.rowcount}"
        )

    def details(self, recurrence_id: uuid.UUID) -> RecurrenceDetails:
        recurrence = self.get(recurrence_id)
        pending = self._transactions(recurrence, TransactionStatus.pending)
        confirmed = self._transactions(recurrence, TransactionStatus.confirmed)
        progress = None
        if recurrence.installments:
            progress = round(len(confirmed) / recurrence.installments * 100, 2)
        return RecurrenceDetails(
            recurrence=recurrence,
            pending_transactions=pending,
            confirmed_transactions=confirmed,
            total_pending_amount=to_money(sum((t.amount for t in pending), ZERO)),
            total_confirmed_amount=to_money(sum((t.amount for t in confirmed), ZERO)),
            installment_progress=progress,
        )


class BudgetService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.year.desc(), Budget.month.desc(), Budget.created_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def resolve(self, month: int, year: int) -> Optional[Budget]:
        """Budget governing ``month``/``year``.

        A budget saved for exactly that month wins. Otherwise the newest
        default budget created in or before that month applies; months
        older than every default have no budget.
        """
        exact = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.month == month,
                Budget.year == year,
                Budget.is_default.is_(False),
            )
        )
        if exact:
            return exact

        defaults = self.session.scalars(
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.is_default.is_(True))
            .order_by(Budget.created_at.desc())
        ).all()
        requested = (year, month)
        for budget in defaults:
            if (budget.created_at.year, budget.created_at.month) <= requested:
                return budget
        return None

    def upsert(self, data: BudgetIn, *, now: Optional[datetime] = None) -> Budget:
        total = to_money(data.total_income)
        allocations = {
            BudgetBucket.necessities: data.necessities_budget,
            BudgetBucket.wants: data.wants_budget,
            BudgetBucket.savings: data.savings_budget,
        }
        amounts = {
            bucket: to_money(total * BUDGET_SPLIT[bucket] if value is None else value)
            for bucket, value in allocations.items()
        }

        with atomic(self.session):
            budget = self.session.scalar(
                select(Budget).where(
                    Budget.user_id == self.user_id,
                    Budget.month == data.month,
                    Budget.year == data.year,
                    Budget.is_default.is_(data.is_default),
                )
            )
            if budget is None:
                created_at = now or local_now()
                budget = Budget(
                    user_id=self.user_id,
                    month=data.month,
                    year=data.year,
                    is_default=data.is_default,
                    created_at=created_at,
                    updated_at=created_at,
                )
                self.session.add(budget)
            budget.total_income = total
            budget.necessities_budget = amounts[BudgetBucket.necessities]
            budget.wants_budget = amounts[BudgetBucket.wants]
            budget.savings_budget = amounts[BudgetBucket.savings]
        logger.info(
            f"budget_saved: id={budget.id} period={data.year}-{data.month:02d} "
            f"default={data.is_default}"
        )
        return budget

    def spending_for_month(self, month: int, year: int) -> dict[BudgetBucket, Decimal]:
        period = month_period(year, month)
        stmt = (
            select(Category.bucket, func.coalesce(func.sum(Transaction.amount), 0))
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.status == TransactionStatus.confirmed,
                Transaction.is_investment_transfer.is_(False),
                Transaction.is_card_payment.is_(False),
                Transaction.date.between(period.start, period.end),
                Category.bucket.is_not(None),
            )
            .group_by(Category.bucket)
        )
        spent = {bucket: ZERO for bucket in BudgetBucket}
        for bucket, total in self.session.execute(stmt).all():
            spent[BudgetBucket(bucket)] = to_money(total or 0)
        return spent

    def describe(
        self,
        budget: Budget,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> dict[str, object]:
        """Budget row plus confirmed spending per bucket.

        Spending is measured for ``month``/``year`` when given, otherwise for
        the month the row was saved for.
        """
        spent = self.spending_for_month(month or budget.month, year or budget.year)
        return {
            "id": budget.id,
            "month": budget.month,
            "year": budget.year,
            "is_default": budget.is_default,
            "total_income": budget.total_income,
            "necessities_budget": budget.necessities_budget,
            "wants_budget": budget.wants_budget,
            "savings_budget": budget.savings_budget,
            "necessities_spent": spent[BudgetBucket.necessities],
            "wants_spent": spent[BudgetBucket.wants],
            "savings_spent": spent[BudgetBucket.savings],
            "created_at": budget.created_at,
        }

    def view(self, month: int, year: int) -> Optional[dict[str, object]]:
        budget = self.resolve(month, year)
        if budget is None:
            return None
        return self.describe(budget, month, year)

    def list_views(self) -> list[dict[str, object]]:
        return [self.describe(budget) for budget in self.list_all()]


@dataclass
class TransferResult:
    from_account: Account
    to_account: Account
    transactions: list[Transaction]


@dataclass
class CardPaymentResult:
    account: Account
    credit_card: CreditCard
    transactions: list[Transaction]


class TransferService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def _record(
        self,
        *,
        txn_type: TransactionType,
        amount: Decimal,
        description: str,
        category: Category,
        now: datetime,
        target: SettlementTarget,
        **flags: object,
    ) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            category_id=category.id,
            type=txn_type,
            amount=amount,
            description=description,
            date=now.date(),
            occurred_at=now,
            status=TransactionStatus.confirmed,
            confirmed_at=now,
            **flags,
        )
        txn.set_settlement(target)
        self.session.add(txn)
        return txn

    def transfer(
        self, data: TransferIn, *, now: Optional[datetime] = None
    ) -> TransferResult:
        amount = to_money(data.amount)
        if amount <= ZERO:
            raise ValueError("Amount must be positive")
        if data.from_account_id == data.to_account_id:
            raise ValueError("Source and destination accounts must differ")
        now = now or local_now()

        with atomic(self.session):
            accounts = AccountService(self.session, self.user_id)
            source = accounts.get(data.from_account_id)
            destination = accounts.get(data.to_account_id)
            if source.balance < amount:
                raise ConflictError("Insufficient balance")

            mutator = BalanceMutator(self.session, self.user_id)
            mutator.adjust_account(source.id, -amount)
            mutator.adjust_account(destination.id, amount)

            transactions: list[Transaction] = []
            if destination.type == AccountType.investment:
                group_id = uuid.uuid4()
                categories = CategoryService(self.session, self.user_id)
                category = categories.transfer_category()
                description = data.description or f"Transfer to {destination.name}"
                transactions = [
                    self._record(
                        txn_type=TransactionType.expense,
                        amount=amount,
                        description=description,
                        category=category,
                        now=now,
                        target=SettlementTarget.from_ids(source.id, None),
                        transfer_to_account_id=destination.id,
                        is_investment_transfer=True,
                        transfer_group_id=group_id,
                    ),
                    self._record(
                        txn_type=TransactionType.income,
                        amount=amount,
                        description=description,
                        category=category,
                        now=now,
                        target=SettlementTarget.from_ids(destination.id, None),
                        is_investment_transfer=True,
                        transfer_group_id=group_id,
                    ),
                ]
            self.session.flush()
        logger.info(
            f"transfer_completed: from={source.id} to={destination.id} amount={amount} "
            f"investment={bool(transactions)}"
        )
        return TransferResult(source, destination, transactions)

    def pay_card(
        self,
        card_id: uuid.UUID,
        data: CardPaymentIn,
        *,
        now: Optional[datetime] = None,
    ) -> CardPaymentResult:
        amount = to_money(data.amount)
        if amount <= ZERO:
            raise ValueError("Amount must be positive")
        now = now or local_now()

        with atomic(self.session):
            card = CreditCardService(self.session, self.user_id).get(card_id)
            account = AccountService(self.session, self.user_id).get(data.account_id)
            if account.balance < amount:
                raise ConflictError("Insufficient balance")

            mutator = BalanceMutator(self.session, self.user_id)
            mutator.adjust_account(account.id, -amount)
            card_delta = mutator.adjust_card(card.id, -amount)
            group_id = uuid.uuid4()

            category = CategoryService(self.session, self.user_id).transfer_category()
            description = data.description or f"Invoice payment {card.name}"
            transactions = [
                self._record(
                    txn_type=TransactionType.expense,
                    amount=amount,
                    description=description,
                    category=category,
                    now=now,
                    target=SettlementTarget.from_ids(account.id, None),
                    is_card_payment=True,
                    transfer_group_id=group_id,
                ),
                self._record(
                    txn_type=TransactionType.income,
                    amount=amount,
                    description=description,
                    category=category,
                    now=now,
                    target=SettlementTarget.from_ids(None, card.id),
                    is_card_payment=True,
                    transfer_group_id=group_id,
                    card_delta=card_delta,
                ),
            ]
            self.session.flush()
        logger.info(
            f"card_payment_completed: card={card.id} account={account.id} "
            f"amount={amount} used={card.used_amount}"
        )
        return CardPaymentResult(account, card, transactions)


class GoalService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.target_date, Goal.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def active(self, limit: int = 3) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id, Goal.status == GoalStatus.active)
            .order_by(Goal.target_date, Goal.created_at)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: GoalIn) -> Goal:
        name = data.name.strip()
        if not name:
            raise ValueError("Goal name cannot be empty")
        goal = Goal(
            user_id=self.user_id,
            name=name,
            target_amount=to_money(data.target_amount),
            current_amount=to_money(data.current_amount),
            target_date=data.target_date,
            status=data.status,
            monthly_contribution=to_money(data.monthly_contribution),
            description=data.description,
        )
        with atomic(self.session):
            self.session.add(goal)
        logger.info(f"goal_created: id={goal.id} target={goal.target_amount}")
        return goal


class AssetService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Asset]:
        stmt = (
            select(Asset)
            .where(Asset.user_id == self.user_id)
            .order_by(Asset.symbol, Asset.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: AssetIn) -> Asset:
        symbol = data.symbol.strip().upper()
        if not symbol:
            raise ValueError("Asset symbol cannot be empty")
        asset = Asset(
            user_id=self.user_id,
            symbol=symbol,
            name=data.name.strip(),
            type=data.type,
            quantity=data.quantity,
            average_price=to_money(data.average_price),
            current_price=to_money(data.current_price),
            sector=data.sector,
            exchange=data.exchange,
            currency=data.currency.upper(),
            region=data.region,
        )
        with atomic(self.session):
            self.session.add(asset)
        logger.info(f"asset_created: id={asset.id} symbol={asset.symbol}")
        return asset


class MetricsService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def _monthly_total(self, txn_type: TransactionType, period: Period) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.type == txn_type,
            Transaction.status == TransactionStatus.confirmed,
            Transaction.is_investment_transfer.is_(False),
            Transaction.is_card_payment.is_(False),
            Transaction.date.between(period.start, period.end),
        )
        return _sum_or_zero(self.session, stmt)

    def dashboard(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        period = month_period(today.year, today.month)
        total_balance = _sum_or_zero(
            self.session,
            select(func.coalesce(func.sum(Account.balance), 0)).where(
                Account.user_id == self.user_id
            ),
        )
        total_credit_used = _sum_or_zero(
            self.session,
            select(func.coalesce(func.sum(CreditCard.used_amount), 0)).where(
                CreditCard.user_id == self.user_id
            ),
        )
        pending_count = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id,
                Transaction.status == TransactionStatus.pending,
            )
        )
        return {
            "total_balance": total_balance,
            "total_credit_used": total_credit_used,
            "monthly_income": self._monthly_total(TransactionType.income, period),
            "monthly_expenses": self._monthly_total(TransactionType.expense, period),
            "pending_count": int(pending_count or 0),
            "recent_transactions": TransactionService(
                self.session, self.user_id
            ).recent(10),
            "goals": GoalService(self.session, self.user_id).active(3),
            "budget": BudgetService(self.session, self.user_id).view(
                today.month, today.year
            ),
        }
