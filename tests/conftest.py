from dataclasses import dataclass
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Account, AccountType, Category, CreditCard, User
from services import CategoryService


@dataclass
class Owner:
    user: User
    checking: Account
    broker: Account
    card: CreditCard
    categories: dict[str, Category]

    @property
    def id(self):
        return self.user.id


def _make_owner(session: Session, username: str) -> Owner:
    user = User(
        username=username,
        name=username.title(),
        email=f"{username}@example.com",
        password_hash="not-a-real-hash",
    )
    session.add(user)
    session.flush()
    CategoryService(session, user.id).seed_defaults()
    checking = Account(
        user_id=user.id,
        name="Checking",
        type=AccountType.checking,
        balance=Decimal("1000.00"),
    )
    broker = Account(
        user_id=user.id,
        name="Broker",
        type=AccountType.investment,
        balance=Decimal("0.00"),
    )
    card = CreditCard(
        user_id=user.id,
        name="Visa",
        credit_limit=Decimal("5000.00"),
        used_amount=Decimal("0.00"),
        closing_day=5,
        due_day=12,
    )
    session.add_all([checking, broker, card])
    session.commit()
    categories = {c.name: c for c in CategoryService(session, user.id).list_all()}
    return Owner(user, checking, broker, card, categories)


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def owner(session) -> Owner:
    return _make_owner(session, "ana")


@pytest.fixture
def stranger(session) -> Owner:
    return _make_owner(session, "bruno")
