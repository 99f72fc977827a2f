from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from models import (
    CreditCard,
    Frequency,
    Recurrence,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from recurrence import RecurrenceEngine, advance
from schemas import RecurrenceIn, RecurrenceUpdate
from services import ConflictError, NotFoundError, RecurrenceService, TransactionService


NOW = datetime(2025, 1, 12, 10, 0)


def _recurrence_in(owner, **overrides) -> RecurrenceIn:
    values = dict(
        credit_card_id=owner.card.id,
        category_id=owner.categories["Housing"].id,
        type=TransactionType.expense,
        amount=Decimal("100.00"),
        description="Rent",
        frequency=Frequency.monthly,
        start_date=date(2025, 1, 10),
    )
    values.update(overrides)
    return RecurrenceIn(**values)


def _linked(session, recurrence_id, status=None) -> list[Transaction]:
    stmt = select(Transaction).where(Transaction.recurrence_id == recurrence_id)
    if status is not None:
        stmt = stmt.where(Transaction.status == status)
    return list(session.scalars(stmt.order_by(Transaction.occurrence_date)).all())


def test_advance_monthly_clamps_to_month_end():
    assert advance(date(2024, 1, 31), Frequency.monthly) == date(2024, 2, 29)
    assert advance(date(2025, 1, 31), Frequency.monthly) == date(2025, 2, 28)
    # anchor keeps the 31st once a longer month comes around again
    assert advance(date(2025, 2, 28), Frequency.monthly, anchor_day=31) == date(
        2025, 3, 31
    )
    assert advance(date(2025, 1, 31), Frequency.monthly, 3) == date(2025, 4, 30)


def test_advance_other_frequencies():
    assert advance(date(2024, 12, 31), Frequency.daily) == date(2025, 1, 1)
    assert advance(date(2025, 1, 10), Frequency.weekly, 2) == date(2025, 1, 24)
    assert advance(date(2024, 2, 29), Frequency.yearly) == date(2025, 2, 28)
    assert advance(date(2025, 12, 15), Frequency.monthly) == date(2026, 1, 15)
    assert advance(date(2025, 5, 5), Frequency.daily, 0) == date(2025, 5, 5)


def test_advance_rejects_negative_steps():
    with pytest.raises(ValueError):
        advance(date(2025, 1, 1), Frequency.daily, -1)


def test_installments_are_materialized_up_front(session, owner):
    service = RecurrenceService(session, owner.id)
    result = service.create(
        _recurrence_in(
            owner,
            description="Laptop",
            amount=Decimal("250.00"),
            start_date=date(2025, 1, 31),
            installments=4,
        )
    )

    txns = _linked(session, result.recurrence.id)
    assert len(txns) == 4
    assert all(t.status == TransactionStatus.pending for t in txns)
    assert sum(t.amount for t in txns) == Decimal("1000.00")
    assert result.total_value == Decimal("1000.00")
    assert [t.date for t in txns] == [
        date(2025, 1, 31),
        date(2025, 2, 28),
        date(2025, 3, 31),
        date(2025, 4, 30),
    ]
    assert [t.description for t in txns][1] == "Laptop (2/4 parcela)"
    assert [t.current_installment for t in txns] == [1, 2, 3, 4]
    assert result.recurrence.end_date == date(2025, 4, 30)
    assert result.recurrence.is_forever is False


def test_single_installment_is_not_a_recurrence(session, owner):
    with pytest.raises(ValueError):
        RecurrenceService(session, owner.id).create(
            _recurrence_in(owner, installments=1)
        )
    assert session.scalar(select(func.count(Recurrence.id))) == 0


def test_recurrence_needs_exactly_one_target(session, owner):
    service = RecurrenceService(session, owner.id)
    with pytest.raises(ValueError):
        service.create(_recurrence_in(owner, account_id=owner.checking.id))
    with pytest.raises(ValueError):
        service.create(_recurrence_in(owner, credit_card_id=None))


def test_recurrence_target_must_belong_to_caller(session, owner, stranger):
    with pytest.raises(NotFoundError):
        RecurrenceService(session, owner.id).create(
            _recurrence_in(owner, credit_card_id=stranger.card.id)
        )


def test_forever_chain_keeps_one_pending_occurrence(session, owner):
    recurrences = RecurrenceService(session, owner.id)
    transactions = TransactionService(session, owner.id)
    created = recurrences.create(_recurrence_in(owner))
    rec_id = created.recurrence.id

    pending = _linked(session, rec_id, TransactionStatus.pending)
    assert [t.date for t in pending] == [date(2025, 1, 10)]

    confirmed = transactions.confirm(pending[0].id, now=NOW)
    assert confirmed.status == TransactionStatus.confirmed
    assert confirmed.date == date(2025, 1, 12)
    card = session.get(CreditCard, owner.card.id)
    assert card.used_amount == Decimal("100.00")
    assert recurrences.get(rec_id).last_executed_date == date(2025, 1, 12)

    pending = _linked(session, rec_id, TransactionStatus.pending)
    assert [t.date for t in pending] == [date(2025, 2, 10)]

    transactions.delete(pending[0].id)
    pending = _linked(session, rec_id, TransactionStatus.pending)
    assert [t.date for t in pending] == [date(2025, 3, 10)]
    assert len(_linked(session, rec_id)) == 2
    assert recurrences.get(rec_id).next_execution_date == date(2025, 3, 10)


def test_bounded_recurrences_never_regenerate(session, owner):
    recurrences = RecurrenceService(session, owner.id)
    transactions = TransactionService(session, owner.id)
    created = recurrences.create(_recurrence_in(owner, installments=3))
    first, second, _third = created.transactions

    transactions.confirm(first.id, now=NOW)
    transactions.delete(second.id)

    assert len(_linked(session, created.recurrence.id)) == 2
    assert len(_linked(session, created.recurrence.id, TransactionStatus.pending)) == 1


def test_end_date_materializes_every_occurrence(session, owner):
    created = RecurrenceService(session, owner.id).create(
        _recurrence_in(
            owner,
            frequency=Frequency.weekly,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 29),
        )
    )
    assert [t.date for t in created.transactions] == [
        date(2025, 1, 1),
        date(2025, 1, 8),
        date(2025, 1, 15),
        date(2025, 1, 22),
        date(2025, 1, 29),
    ]
    TransactionService(session, owner.id).confirm(created.transactions[0].id, now=NOW)
    assert len(_linked(session, created.recurrence.id)) == 5


def test_skipping_start_date_moves_first_occurrence(session, owner):
    created = RecurrenceService(session, owner.id).create(
        _recurrence_in(owner, include_start=False)
    )
    assert created.recurrence.next_execution_date == date(2025, 2, 10)
    assert [t.date for t in created.transactions] == [date(2025, 2, 10)]


def test_too_many_occurrences_rolls_back(session, owner):
    with pytest.raises(ValueError):
        RecurrenceService(session, owner.id).create(
            _recurrence_in(
                owner,
                frequency=Frequency.daily,
                start_date=date(2025, 1, 1),
                end_date=date(2030, 1, 1),
            )
        )
    assert session.scalar(select(func.count(Recurrence.id))) == 0
    assert session.scalar(select(func.count(Transaction.id))) == 0


def test_update_only_touches_pending_transactions(session, owner):
    service = RecurrenceService(session, owner.id)
    created = service.create(
        _recurrence_in(
            owner, description="Course", amount=Decimal("250.00"), installments=3
        )
    )
    TransactionService(session, owner.id).confirm(created.transactions[0].id, now=NOW)

    result = service.update(
        created.recurrence.id,
        RecurrenceUpdate(amount=Decimal("300.00"), description="Online course"),
    )

    assert len(result.updated_transactions) == 2
    assert result.recurrence.amount == Decimal("300.00")
    pending = _linked(session, created.recurrence.id, TransactionStatus.pending)
    assert [t.amount for t in pending] == [Decimal("300.00"), Decimal("300.00")]
    assert [t.description for t in pending] == [
        "Online course (2/3 parcela)",
        "Online course (3/3 parcela)",
    ]
    confirmed = _linked(session, created.recurrence.id, TransactionStatus.confirmed)
    assert confirmed[0].amount == Decimal("250.00")
    assert confirmed[0].description == "Course (1/3 parcela)"


def test_update_can_move_recurrence_to_an_account(session, owner):
    service = RecurrenceService(session, owner.id)
    created = service.create(_recurrence_in(owner))

    result = service.update(
        created.recurrence.id, RecurrenceUpdate(account_id=owner.checking.id)
    )

    assert result.recurrence.account_id == owner.checking.id
    assert result.recurrence.credit_card_id is None
    assert result.updated_transactions[0].account_id == owner.checking.id
    assert result.updated_transactions[0].credit_card_id is None


def test_update_rejects_category_of_other_type(session, owner):
    service = RecurrenceService(session, owner.id)
    created = service.create(_recurrence_in(owner))
    with pytest.raises(ValueError):
        service.update(
            created.recurrence.id,
            RecurrenceUpdate(category_id=owner.categories["Salary"].id),
        )
    assert service.get(created.recurrence.id).category_id == (
        owner.categories["Housing"].id
    )


def test_deactivated_recurrence_stops_regenerating(session, owner):
    service = RecurrenceService(session, owner.id)
    created = service.create(_recurrence_in(owner))
    service.update(created.recurrence.id, RecurrenceUpdate(is_active=False))

    TransactionService(session, owner.id).confirm(created.transactions[0].id, now=NOW)

    assert _linked(session, created.recurrence.id, TransactionStatus.pending) == []
    assert service.list_active() == []

    service.update(created.recurrence.id, RecurrenceUpdate(is_active=True))
    pending = _linked(session, created.recurrence.id, TransactionStatus.pending)
    assert [t.date for t in pending] == [date(2025, 2, 10)]


def test_delete_recurrence_cascades(session, owner):
    service = RecurrenceService(session, owner.id)
    created = service.create(_recurrence_in(owner, installments=3))
    TransactionService(session, owner.id).confirm(created.transactions[0].id, now=NOW)

    service.delete(created.recurrence.id)

    assert session.scalar(select(func.count(Transaction.id))) == 0
    with pytest.raises(NotFoundError):
        service.get(created.recurrence.id)


def test_details_reports_totals_and_progress(session, owner):
    service = RecurrenceService(session, owner.id)
    created = service.create(_recurrence_in(owner, installments=4))
    TransactionService(session, owner.id).confirm(created.transactions[0].id, now=NOW)

    details = service.details(created.recurrence.id)

    assert len(details.pending_transactions) == 3
    assert len(details.confirmed_transactions) == 1
    assert details.total_pending_amount == Decimal("300.00")
    assert details.total_confirmed_amount == Decimal("100.00")
    assert details.installment_progress == 25.0


def test_confirming_twice_conflicts(session, owner):
    created = RecurrenceService(session, owner.id).create(
        _recurrence_in(owner, installments=2)
    )
    transactions = TransactionService(session, owner.id)
    transactions.confirm(created.transactions[0].id, now=NOW)
    with pytest.raises(ConflictError):
        transactions.confirm(created.transactions[0].id, now=NOW)


def test_materialize_is_idempotent_per_occurrence(session, owner):
    created = RecurrenceService(session, owner.id).create(_recurrence_in(owner))
    engine = RecurrenceEngine(session)
    assert engine.materialize(created.recurrence, date(2025, 1, 10)) is None
    assert len(_linked(session, created.recurrence.id)) == 1
