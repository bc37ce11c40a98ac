import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import Base
from models import Account, User
from services import AccountService


def make_user(session: Session) -> User:
    user = User(email="ana@example.com", name="Ana", password_hash="x")
    session.add(user)
    session.commit()
    return user


def test_ensure_account_creates_default_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = make_user(session)
        first = AccountService(session).ensure_account(user.id)
        session.commit()
        again = AccountService(session).ensure_account(user.id)

        assert first.id == again.id
        assert first.name == "Cash"
        assert first.currency == "USD"
        assert session.scalar(select(func.count(Account.id))) == 1


def test_losing_writer_reuses_the_winners_default_account(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = make_user(session)
        winner = Account(owner_id=user.id, name="Cash", currency="USD", is_default=True)
        session.add(winner)
        session.commit()

        # simulate a writer that looked before the winner committed
        monkeypatch.setattr(AccountService, "first", lambda self, user_id: None)
        account = AccountService(session).ensure_account(user.id)
        session.commit()

        assert account.id == winner.id
        count = session.scalar(
            select(func.count(Account.id)).where(Account.owner_id == user.id)
        )
        assert count == 1


def test_store_rejects_second_default_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = make_user(session)
        session.add(Account(owner_id=user.id, name="Cash", currency="USD", is_default=True))
        session.commit()
        session.add(Account(owner_id=user.id, name="Extra", currency="USD", is_default=False))
        session.commit()

        session.add(Account(owner_id=user.id, name="Cash", currency="USD", is_default=True))
        with pytest.raises(IntegrityError):
            session.commit()
