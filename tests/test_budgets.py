from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func, select

from models import Budget, BudgetBucket, TransactionStatus, TransactionType
from schemas import BudgetIn, CardPaymentIn, TransactionIn
from services import BudgetService, TransactionService, TransferService


def _budget(month: int, year: int, income: str, **overrides) -> BudgetIn:
    return BudgetIn(month=month, year=year, total_income=Decimal(income), **overrides)


def test_specific_budget_wins_over_default(session, owner):
    budgets = BudgetService(session, owner.id)
    budgets.upsert(
        _budget(1, 2025, "5000.00", is_default=True), now=datetime(2025, 1, 2)
    )
    specific = budgets.upsert(_budget(4, 2025, "6500.00"), now=datetime(2025, 2, 10))

    resolved = budgets.resolve(4, 2025)

    assert resolved.id == specific.id
    assert resolved.is_default is False


def test_default_budgets_cut_over_by_creation_month(session, owner):
    budgets = BudgetService(session, owner.id)
    march = budgets.upsert(
        _budget(3, 2025, "4000.00", is_default=True), now=datetime(2025, 3, 5)
    )
    june = budgets.upsert(
        _budget(6, 2025, "4800.00", is_default=True), now=datetime(2025, 6, 20)
    )

    assert budgets.resolve(3, 2025).id == march.id
    assert budgets.resolve(5, 2025).id == march.id
    assert budgets.resolve(6, 2025).id == june.id
    assert budgets.resolve(1, 2026).id == june.id
    assert budgets.resolve(2, 2025) is None
    assert budgets.resolve(12, 2024) is None


def test_upsert_updates_in_place(session, owner):
    budgets = BudgetService(session, owner.id)
    first = budgets.upsert(_budget(5, 2025, "3000.00"), now=datetime(2025, 5, 1))
    second = budgets.upsert(
        _budget(5, 2025, "3500.00", wants_budget=Decimal("900.00")),
        now=datetime(2025, 5, 9),
    )

    assert second.id == first.id
    assert session.scalar(select(func.count(Budget.id))) == 1
    assert second.total_income == Decimal("3500.00")
    assert second.wants_budget == Decimal("900.00")
    assert second.created_at == datetime(2025, 5, 1)

    # a default for the same month is a separate row
    budgets.upsert(_budget(5, 2025, "3500.00", is_default=True))
    assert session.scalar(select(func.count(Budget.id))) == 2


def test_missing_buckets_follow_fifty_thirty_twenty(session, owner):
    budget = BudgetService(session, owner.id).upsert(
        _budget(7, 2025, "4321.00", savings_budget=Decimal("1000.00"))
    )

    assert budget.necessities_budget == Decimal("2160.50")
    assert budget.wants_budget == Decimal("1296.30")
    assert budget.savings_budget == Decimal("1000.00")


def test_spending_counts_confirmed_expenses_by_bucket(session, owner):
    now = datetime(2025, 8, 20, 12, 0)
    transactions = TransactionService(session, owner.id)

    def spend(category: str, amount: str, **extra):
        values = dict(
            account_id=owner.checking.id,
            category_id=owner.categories[category].id,
            type=TransactionType.expense,
            amount=Decimal(amount),
            description=category,
            date=date(2025, 8, 10),
        )
        values.update(extra)
        return transactions.create(TransactionIn(**values), now=now)

    spend("Food", "120.00")
    spend("Housing", "80.00")
    spend("Shopping", "45.55")
    spend("Savings", "200.00")
    spend("Food", "999.00", status=TransactionStatus.pending)
    spend("Food", "50.00", date=date(2025, 7, 31))
    payment = CardPaymentIn(account_id=owner.checking.id, amount=Decimal("10.00"))
    TransferService(session, owner.id).pay_card(owner.card.id, payment, now=now)

    spent = BudgetService(session, owner.id).spending_for_month(8, 2025)

    assert spent == {
        BudgetBucket.necessities: Decimal("200.00"),
        BudgetBucket.wants: Decimal("45.55"),
        BudgetBucket.savings: Decimal("200.00"),
    }


def test_view_combines_budget_and_spending(session, owner):
    budgets = BudgetService(session, owner.id)
    budgets.upsert(
        _budget(9, 2025, "2000.00", is_default=True), now=datetime(2025, 9, 1)
    )
    TransactionService(session, owner.id).create(
        TransactionIn(
            credit_card_id=owner.card.id,
            category_id=owner.categories["Entertainment"].id,
            type=TransactionType.expense,
            amount=Decimal("60.00"),
            description="Cinema",
            date=date(2025, 10, 3),
        ),
        now=datetime(2025, 10, 3, 21, 0),
    )

    view = budgets.view(10, 2025)

    assert view["is_default"] is True
    assert view["wants_budget"] == Decimal("600.00")
    assert view["wants_spent"] == Decimal("60.00")
    assert view["necessities_spent"] == Decimal("0.00")
    assert budgets.view(8, 2025) is None


def test_listed_budgets_report_spending_of_their_own_month(session, owner):
    budgets = BudgetService(session, owner.id)
    budgets.upsert(_budget(8, 2025, "3000.00"), now=datetime(2025, 8, 1))
    budgets.upsert(_budget(9, 2025, "3000.00"), now=datetime(2025, 9, 1))
    TransactionService(session, owner.id).create(
        TransactionIn(
            account_id=owner.checking.id,
            category_id=owner.categories["Food"].id,
            type=TransactionType.expense,
            amount=Decimal("80.00"),
            description="Market",
            date=date(2025, 8, 14),
        ),
        now=datetime(2025, 8, 14, 9, 0),
    )

    listed = {(b["month"], b["year"]): b for b in budgets.list_views()}

    assert listed[(8, 2025)]["necessities_spent"] == Decimal("80.00")
    assert listed[(9, 2025)]["necessities_spent"] == Decimal("0.00")
