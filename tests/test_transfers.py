from datetime import date, datetime
from decimal import Decimal

import pytest

from models import Account, AccountType, CreditCard, TransactionType
from schemas import AccountIn, CardPaymentIn, TransactionIn, TransferIn
from services import (
    AccountService,
    ConflictError,
    MetricsService,
    NotFoundError,
    TransactionService,
    TransferService,
)


NOW = datetime(2025, 4, 2, 8, 15)


def test_transfer_conserves_total_balance(session, owner):
    savings = AccountService(session, owner.id).create(
        AccountIn(name="Savings", type=AccountType.savings)
    )

    result = TransferService(session, owner.id).transfer(
        TransferIn(
            from_account_id=owner.checking.id,
            to_account_id=savings.id,
            amount=Decimal("250.25"),
        ),
        now=NOW,
    )

    assert result.from_account.balance == Decimal("749.75")
    assert result.to_account.balance == Decimal("250.25")
    assert result.from_account.balance + result.to_account.balance == Decimal(
        "1000.00"
    )
    assert result.transactions == []


def test_investment_transfer_records_flagged_pair(session, owner):
    result = TransferService(session, owner.id).transfer(
        TransferIn(
            from_account_id=owner.checking.id,
            to_account_id=owner.broker.id,
            amount=Decimal("400.00"),
        ),
        now=NOW,
    )

    outgoing, incoming = result.transactions
    assert outgoing.type == TransactionType.expense
    assert outgoing.account_id == owner.checking.id
    assert outgoing.transfer_to_account_id == owner.broker.id
    assert incoming.type == TransactionType.income
    assert incoming.account_id == owner.broker.id
    assert outgoing.is_investment_transfer and incoming.is_investment_transfer
    assert outgoing.description == "Transfer to Broker"
    assert session.get(Account, owner.broker.id).balance == Decimal("400.00")

    summary = MetricsService(session, owner.id).dashboard(today=NOW.date())
    assert summary["monthly_income"] == Decimal("0.00")
    assert summary["monthly_expenses"] == Decimal("0.00")
    assert summary["total_balance"] == Decimal("1000.00")


def test_transfer_rejects_bad_requests(session, owner, stranger):
    service = TransferService(session, owner.id)
    with pytest.raises(ValueError):
        service.transfer(
            TransferIn(
                from_account_id=owner.checking.id,
                to_account_id=owner.checking.id,
                amount=Decimal("1.00"),
            )
        )
    with pytest.raises(NotFoundError):
        service.transfer(
            TransferIn(
                from_account_id=owner.checking.id,
                to_account_id=stranger.checking.id,
                amount=Decimal("1.00"),
            )
        )
    with pytest.raises(ConflictError, match="Insufficient balance"):
        service.transfer(
            TransferIn(
                from_account_id=owner.checking.id,
                to_account_id=owner.broker.id,
                amount=Decimal("1000.01"),
            )
        )
    assert session.get(Account, owner.checking.id).balance == Decimal("1000.00")
    assert session.get(Account, stranger.checking.id).balance == Decimal("1000.00")


def test_card_payment_floors_used_amount(session, owner):
    TransactionService(session, owner.id).create(
        TransactionIn(
            credit_card_id=owner.card.id,
            category_id=owner.categories["Shopping"].id,
            type=TransactionType.expense,
            amount=Decimal("150.00"),
            description="Shoes",
            date=date(2025, 4, 1),
        ),
        now=NOW,
    )

    result = TransferService(session, owner.id).pay_card(
        owner.card.id,
        CardPaymentIn(account_id=owner.checking.id, amount=Decimal("200.00")),
        now=NOW,
    )

    assert result.credit_card.used_amount == Decimal("0.00")
    assert result.account.balance == Decimal("800.00")
    expense, income = result.transactions
    assert expense.account_id == owner.checking.id
    assert income.credit_card_id == owner.card.id
    assert expense.is_card_payment and income.is_card_payment

    summary = MetricsService(session, owner.id).dashboard(today=NOW.date())
    assert summary["monthly_expenses"] == Decimal("150.00")
    assert summary["total_credit_used"] == Decimal("0.00")


def test_deleting_overpayment_restores_card_and_account(session, owner):
    session.get(CreditCard, owner.card.id).used_amount = Decimal("50.00")
    session.commit()

    result = TransferService(session, owner.id).pay_card(
        owner.card.id,
        CardPaymentIn(account_id=owner.checking.id, amount=Decimal("100.00")),
        now=NOW,
    )
    assert result.credit_card.used_amount == Decimal("0.00")
    expense, income = result.transactions
    assert income.card_delta == Decimal("-50.00")
    assert expense.transfer_group_id == income.transfer_group_id

    # removing either side takes the whole payment back
    TransactionService(session, owner.id).delete(income.id)

    assert session.get(CreditCard, owner.card.id).used_amount == Decimal("50.00")
    assert session.get(Account, owner.checking.id).balance == Decimal("1000.00")
    with pytest.raises(NotFoundError):
        TransactionService(session, owner.id).get(expense.id)


def test_deleting_one_side_of_investment_transfer_removes_both(session, owner):
    result = TransferService(session, owner.id).transfer(
        TransferIn(
            from_account_id=owner.checking.id,
            to_account_id=owner.broker.id,
            amount=Decimal("300.00"),
        ),
        now=NOW,
    )
    outgoing, incoming = result.transactions

    TransactionService(session, owner.id).delete(outgoing.id)

    checking = session.get(Account, owner.checking.id).balance
    broker = session.get(Account, owner.broker.id).balance
    assert (checking, broker) == (Decimal("1000.00"), Decimal("0.00"))
    with pytest.raises(NotFoundError):
        TransactionService(session, owner.id).get(incoming.id)


def test_card_payment_needs_funds(session, owner):
    with pytest.raises(ConflictError):
        TransferService(session, owner.id).pay_card(
            owner.card.id,
            CardPaymentIn(account_id=owner.checking.id, amount=Decimal("5000.00")),
        )
    assert session.get(CreditCard, owner.card.id).used_amount == Decimal("0.00")


def test_dashboard_summarizes_month(session, owner):
    transactions = TransactionService(session, owner.id)
    transactions.create(
        TransactionIn(
            account_id=owner.checking.id,
            category_id=owner.categories["Salary"].id,
            type=TransactionType.income,
            amount=Decimal("3200.00"),
            description="Salary",
            date=date(2025, 4, 1),
        ),
        now=NOW,
    )
    transactions.create(
        TransactionIn(
            credit_card_id=owner.card.id,
            category_id=owner.categories["Food"].id,
            type=TransactionType.expense,
            amount=Decimal("75.40"),
            description="Market",
            date=date(2025, 4, 2),
            status="pending",
        ),
        now=NOW,
    )

    summary = MetricsService(session, owner.id).dashboard(today=NOW.date())

    assert summary["total_balance"] == Decimal("4200.00")
    assert summary["monthly_income"] == Decimal("3200.00")
    assert summary["monthly_expenses"] == Decimal("0.00")
    assert summary["pending_count"] == 1
    assert len(summary["recent_transactions"]) == 2
    assert summary["budget"] is None


def test_account_with_balance_cannot_be_deleted(session, owner):
    accounts = AccountService(session, owner.id)
    with pytest.raises(ConflictError):
        accounts.delete(owner.checking.id)

    empty = accounts.create(AccountIn(name="Old wallet", type=AccountType.checking))
    accounts.delete(empty.id)
    with pytest.raises(NotFoundError):
        accounts.get(empty.id)
