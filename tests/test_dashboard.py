from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Account, Transaction, User
from services import DASHBOARD_UNAVAILABLE, DashboardService, load_dashboard

REFERENCE = datetime(2024, 3, 15, 12, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_ledger(session, email: str = "ana@example.com") -> tuple[User, Account]:
    user = User(email=email, name=email.split("@")[0], password_hash="x")
    session.add(user)
    session.flush()
    account = Account(owner_id=user.id, name="Cash", currency="USD", is_default=True)
    session.add(account)
    session.commit()
    return user, account


def add(session, account: Account, amount_cents: int, occurred_at: datetime, note=None):
    txn = Transaction(
        owner_id=account.owner_id,
        account_id=account.id,
        amount_cents=amount_cents,
        occurred_at=occurred_at,
        note=note,
    )
    session.add(txn)
    session.commit()
    return txn


def test_total_balance_sums_whole_ledger() -> None:
    session = make_session()
    user, account = make_ledger(session)
    add(session, account, 500, datetime(2023, 1, 1))
    add(session, account, -300, datetime(2024, 3, 2))
    add(session, account, 120, datetime(2024, 5, 1))

    dashboard = DashboardService(session, user.id).compute(REFERENCE)

    assert dashboard.total_balance_cents == 320


def test_month_window_is_inclusive_of_both_ends() -> None:
    session = make_session()
    user, account = make_ledger(session)
    add(session, account, -1000, datetime(2024, 3, 1))  # first instant of month
    add(session, account, -7, datetime(2024, 2, 29, 23, 59, 59, 999999))
    add(session, account, 2500, REFERENCE)
    add(session, account, 40, REFERENCE + timedelta(seconds=1))
    add(session, account, -3, REFERENCE + timedelta(days=1))

    dashboard = DashboardService(session, user.id).compute(REFERENCE)

    assert dashboard.month_spend_cents == 1000
    assert dashboard.month_income_cents == 2500
    assert dashboard.total_balance_cents == -1000 - 7 + 2500 + 40 - 3


def test_aware_reference_is_evaluated_in_utc() -> None:
    session = make_session()
    user, account = make_ledger(session)
    add(session, account, -100, datetime(2024, 3, 31, 23, 30))
    add(session, account, -200, datetime(2024, 4, 1, 0, 30))

    # 01:45 on April 1st in UTC+02:00 is still March 31st in UTC
    reference = datetime(2024, 4, 1, 1, 45, tzinfo=timezone(timedelta(hours=2)))
    dashboard = DashboardService(session, user.id).compute(reference)

    assert dashboard.month_spend_cents == 100


def test_recent_is_capped_and_sorted_descending() -> None:
    session = make_session()
    user, account = make_ledger(session)
    for day in (3, 9, 1, 7, 5, 2, 8):
        add(session, account, -day, datetime(2024, 3, day), note=f"day {day}")

    recent = DashboardService(session, user.id).compute(REFERENCE).recent

    assert len(recent) == 5
    assert [t.occurred_at.day for t in recent] == [9, 8, 7, 5, 3]
    assert recent[0].note == "day 9"


def test_ties_in_occurred_at_are_ordered_by_id() -> None:
    session = make_session()
    user, account = make_ledger(session)
    first = add(session, account, -1, datetime(2024, 3, 5))
    second = add(session, account, -2, datetime(2024, 3, 5))

    recent = DashboardService(session, user.id).recent()

    assert [t.id for t in recent] == [second.id, first.id]


def test_empty_ledger_is_all_zero() -> None:
    session = make_session()
    user, _ = make_ledger(session)

    dashboard = DashboardService(session, user.id).compute(REFERENCE)

    assert dashboard.total_balance_cents == 0
    assert dashboard.month_spend_cents == 0
    assert dashboard.month_income_cents == 0
    assert dashboard.recent == []
    assert dashboard.error is None


def test_other_users_rows_are_ignored() -> None:
    session = make_session()
    ana, ana_account = make_ledger(session)
    _, bo_account = make_ledger(session, email="bo@example.com")
    add(session, ana_account, 100, datetime(2024, 3, 2))
    add(session, bo_account, -999, datetime(2024, 3, 2))

    dashboard = load_dashboard(session, "ANA@example.com", REFERENCE)

    assert dashboard.total_balance_cents == 100
    assert dashboard.month_spend_cents == 0
    assert len(dashboard.recent) == 1


def test_unknown_or_missing_principal_yields_empty_dashboard() -> None:
    session = make_session()

    for email in (None, "", "ghost@example.com"):
        dashboard = load_dashboard(session, email, REFERENCE)
        assert dashboard.total_balance_cents == 0
        assert dashboard.recent == []
        assert dashboard.error is None


def test_storage_failure_degrades_to_empty_dashboard(monkeypatch) -> None:
    session = make_session()
    _, account = make_ledger(session)
    add(session, account, 500, datetime(2024, 3, 2))

    def boom(self, reference):
        raise OperationalError("SELECT sum(...)", {}, Exception("disk I/O error"))

    monkeypatch.setattr(DashboardService, "totals", boom)
    dashboard = load_dashboard(session, "ana@example.com", REFERENCE)

    assert dashboard.total_balance_cents == 0
    assert dashboard.month_spend_cents == 0
    assert dashboard.month_income_cents == 0
    assert dashboard.recent == []
    assert dashboard.error == DASHBOARD_UNAVAILABLE
