import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Frequency, Recurrence, Transaction, TransactionStatus


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def advance(
    from_date: date,
    frequency: Frequency,
    steps: int = 1,
    *,
    anchor_day: Optional[int] = None,
) -> date:
    """Move ``from_date`` forward by ``steps`` frequency units.

    Month and year steps land on ``anchor_day`` (default: the day of
    ``from_date``), clamped to the last day of the target month, so Jan 31
    advances to Feb 28/29 and a chain anchored on the 31st returns to Mar 31.
    """
    if steps < 0:
        raise ValueError("steps must be non-negative")
    if frequency == Frequency.daily:
        return from_date + timedelta(days=steps)
    if frequency == Frequency.weekly:
        return from_date + timedelta(weeks=steps)
    day = anchor_day or from_date.day
    if frequency == Frequency.monthly:
        return _add_months(from_date, steps, desired_day=day)
    return _add_months(from_date, 12 * steps, desired_day=day)


def installment_description(description: str, index: int, total: int) -> str:
    return f"{description} ({index}/{total} parcela)"


class RecurrenceEngine:
    """Date stepping and materialization of pending transactions."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.max_occurrences = get_settings().max_occurrences

    @staticmethod
    def first_occurrence(
        start_date: date, frequency: Frequency, *, include_start: bool = True
    ) -> date:
        if include_start:
            return start_date
        return advance(start_date, frequency, anchor_day=start_date.day)

    def installment_dates(
        self, recurrence: Recurrence, count: int, *, include_start: bool = True
    ) -> list[date]:
        if count > self.max_occurrences:
            raise ValueError(
                f"At most {self.max_occurrences} installments can be scheduled"
            )
        offset = 0 if include_start else 1
        return [
            advance(
                recurrence.start_date,
                recurrence.frequency,
                offset + i,
                anchor_day=recurrence.start_date.day,
            )
            for i in range(count)
        ]

    def dates_until(
        self, recurrence: Recurrence, end_date: date, *, include_start: bool = True
    ) -> list[date]:
        offset = 0 if include_start else 1
        dates: list[date] = []
        while True:
            current = advance(
                recurrence.start_date,
                recurrence.frequency,
                offset + len(dates),
                anchor_day=recurrence.start_date.day,
            )
            if current > end_date:
                break
            if len(dates) >= self.max_occurrences:
                raise ValueError(
                    f"End date schedules more than {self.max_occurrences} occurrences"
                )
            dates.append(current)
        if not dates:
            raise ValueError("End date is before the first occurrence")
        return dates

    def materialize(
        self,
        recurrence: Recurrence,
        occurrence_date: date,
        *,
        installment: Optional[int] = None,
        total: Optional[int] = None,
    ) -> Optional[Transaction]:
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.recurrence_id == recurrence.id,
                Transaction.occurrence_date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return None

        description = recurrence.description
        if installment is not None and total is not None:
            description = installment_description(description, installment, total)

        txn = Transaction(
            user_id=recurrence.user_id,
            category_id=recurrence.category_id,
            type=recurrence.type,
            amount=recurrence.amount,
            description=description,
            date=occurrence_date,
            occurred_at=datetime.combine(occurrence_date, time(12, 0)),
            status=TransactionStatus.pending,
            installments=total,
            current_installment=installment,
            recurrence_id=recurrence.id,
            occurrence_date=occurrence_date,
        )
        txn.set_settlement(recurrence.settlement)
        self.session.add(txn)
        self.session.flush()
        return txn

    def create_next_pending(self, recurrence: Recurrence) -> Optional[Transaction]:
        if not recurrence.is_active or recurrence.end_date is not None:
            return None
        if recurrence.installments:
            return None
        next_date = advance(
            recurrence.next_execution_date,
            recurrence.frequency,
            anchor_day=recurrence.start_date.day,
        )
        txn = self.materialize(recurrence, next_date)
        recurrence.next_execution_date = next_date
        self.session.flush()
        logger.info(f"recurrence_advanced: id={recurrence.id} next={next_date}")
        return txn
