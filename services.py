from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import bcrypt
from pydantic import ValidationError
from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import Account, Transaction, User
from parsing import month_start, parse_amount, parse_occurred_at, signed_cents, to_utc_naive
from schemas import RegisterIn, TransactionCreateIn

logger = logging.getLogger(__name__)

DASHBOARD_UNAVAILABLE = "We couldn't load your dashboard right now. Please try again."

# SQLite INTEGER primary keys are signed 64-bit
MAX_ROW_ID = 2**63 - 1


class Unauthenticated(ValueError):
    pass


class InvalidInput(ValueError):
    pass


class InvalidAmount(ValueError):
    pass


class InvalidDate(ValueError):
    pass


class UserNotFound(ValueError):
    pass


class TransactionNotFound(ValueError):
    pass


class EmailAlreadyRegistered(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


class StorageFailure(RuntimeError):
    pass


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    rounds = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class IdentityService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.strip().lower()

    def find_user_id(self, email: str) -> Optional[int]:
        stmt = select(User.id).where(User.email == self.normalize_email(email))
        return self.session.execute(stmt).scalar_one_or_none()

    def resolve_user_id(self, email: Optional[str]) -> int:
        if not email:
            raise Unauthenticated("No session principal")
        user_id = self.find_user_id(email)
        if user_id is None:
            raise UserNotFound("User not found")
        return user_id


class UserService:
    def __init__(self, session: Session, rounds: Optional[int] = None) -> None:
        self.session = session
        self.rounds = rounds

    def register(self, data: RegisterIn) -> User:
        email = IdentityService.normalize_email(data.email)
        existing = IdentityService(self.session).find_user_id(email)
        if existing is not None:
            raise EmailAlreadyRegistered("Email is already registered")
        user = User(
            name=data.name,
            email=email,
            password_hash=hash_password(data.password, self.rounds),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise EmailAlreadyRegistered("Email is already registered") from exc
        self.session.refresh(user)
        logger.info("user_registered: user_id=%s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(User.email == IdentityService.normalize_email(email))
        )
        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid email or password")
        return user


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def first(self, user_id: int) -> Optional[Account]:
        stmt = (
            select(Account)
            .where(Account.owner_id == user_id)
            .order_by(Account.id)
            .limit(1)
        )
        return self.session.scalar(stmt)

    def _default(self, user_id: int) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(
                Account.owner_id == user_id, Account.is_default.is_(True)
            )
        )

    def ensure_account(self, user_id: int) -> Account:
        """Return the user's first account, creating the default one if needed.

        Two first-time writers can both see no account. The unique index on
        the default flag lets only one insert win; the loser reads it back.
        """
        account = self.first(user_id)
        if account is not None:
            return account
        settings = get_settings()
        account = Account(
            owner_id=user_id,
            name=settings.default_account_name,
            currency=settings.default_currency,
            is_default=True,
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
        except IntegrityError:
            logger.info("account_provision_conflict: user_id=%s", user_id)
            account = self._default(user_id)
            if account is None:
                raise
            return account
        logger.info(
            "account_provisioned: user_id=%s account_id=%s", user_id, account.id
        )
        return account


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, email: Optional[str], payload: object) -> Transaction:
        if not email:
            raise Unauthenticated("No session principal")
        try:
            data = TransactionCreateIn.model_validate(payload)
        except ValidationError as exc:
            raise InvalidInput("Invalid form data") from exc
        try:
            amount = parse_amount(data.amount)
            amount_cents = signed_cents(amount, data.kind)
        except ValueError as exc:
            raise InvalidAmount("Amount must be a number") from exc
        try:
            occurred_at = parse_occurred_at(data.occurred_at)
        except ValueError as exc:
            raise InvalidDate("Invalid date") from exc

        user_id = IdentityService(self.session).resolve_user_id(email)
        note = (data.note or "").strip() or None
        try:
            account = AccountService(self.session).ensure_account(user_id)
            if account.owner_id != user_id:
                raise StorageFailure(
                    f"Account {account.id} does not belong to user {user_id}"
                )
            txn = Transaction(
                owner_id=user_id,
                account_id=account.id,
                amount_cents=amount_cents,
                note=note,
                occurred_at=occurred_at,
            )
            self.session.add(txn)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("Failed to add transaction") from exc
        logger.info(
            "transaction_created: user_id=%s transaction_id=%s amount_cents=%s",
            user_id,
            txn.id,
            txn.amount_cents,
        )
        return txn

    def delete(self, email: Optional[str], transaction_id: object) -> None:
        """Delete one of the principal's transactions.

        A missing row and another user's row both raise TransactionNotFound.
        """
        user_id = IdentityService(self.session).resolve_user_id(email)
        try:
            txn_id = int(str(transaction_id))
        except ValueError as exc:
            raise TransactionNotFound("Not found") from exc
        if not 1 <= txn_id <= MAX_ROW_ID:
            raise TransactionNotFound("Not found")

        owner_id = self.session.execute(
            select(Transaction.owner_id).where(Transaction.id == txn_id)
        ).scalar_one_or_none()
        if owner_id is None or owner_id != user_id:
            raise TransactionNotFound("Not found")
        try:
            result = self.session.execute(
                delete(Transaction).where(
                    Transaction.id == txn_id, Transaction.owner_id == user_id
                )
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("Failed to delete") from exc
        if result.rowcount == 0:
            # removed by a concurrent request between lookup and delete
            raise TransactionNotFound("Not found")
        logger.info("transaction_deleted: user_id=%s transaction_id=%s", user_id, txn_id)

    def list(
        self, email: Optional[str], *, limit: int = 50, offset: int = 0
    ) -> list[Transaction]:
        user_id = IdentityService(self.session).resolve_user_id(email)
        stmt = (
            select(Transaction)
            .where(Transaction.owner_id == user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())


@dataclass
class Dashboard:
    total_balance_cents: int = 0
    month_spend_cents: int = 0
    month_income_cents: int = 0
    recent: list[Transaction] = field(default_factory=list)
    error: Optional[str] = None


class DashboardService:
    def __init__(
        self, session: Session, user_id: int, recent_limit: Optional[int] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.recent_limit = recent_limit or get_settings().recent_limit

    def totals(self, reference: datetime) -> tuple[int, int, int]:
        """Total balance, month spend and month income in one statement."""
        start = month_start(reference)
        in_window = Transaction.occurred_at.between(start, reference)
        stmt = select(
            func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            in_window & (Transaction.amount_cents < 0),
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("spend"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            in_window & (Transaction.amount_cents > 0),
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
        ).where(Transaction.owner_id == self.user_id)
        row = self.session.execute(stmt).one()
        return int(row.total), abs(int(row.spend)), int(row.income)

    def recent(self, limit: Optional[int] = None) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.owner_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit or self.recent_limit)
        )
        return list(self.session.scalars(stmt).all())

    def compute(self, reference: Optional[datetime] = None) -> Dashboard:
        if reference is None:
            reference = datetime.now(timezone.utc)
        reference = to_utc_naive(reference)
        total, spend, income = self.totals(reference)
        return Dashboard(
            total_balance_cents=total,
            month_spend_cents=spend,
            month_income_cents=income,
            recent=self.recent(),
        )


def load_dashboard(
    session: Session, email: Optional[str], reference: Optional[datetime] = None
) -> Dashboard:
    """Dashboard for ``email``; a failing store yields zeros and an advisory."""
    if not email:
        return Dashboard()
    try:
        user_id = IdentityService(session).find_user_id(email)
        if user_id is None:
            return Dashboard()
        return DashboardService(session, user_id).compute(reference)
    except Exception:
        logger.exception("dashboard_load_failed")
        session.rollback()
        return Dashboard(error=DASHBOARD_UNAVAILABLE)
