import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_serializer, field_validator
from pydantic_core import PydanticCustomError

from models import TransactionKind

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class TransactionCreateIn(BaseModel):
    """Raw create payload. Amount and date stay strings until the service parses them."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Optional[TransactionKind] = None
    amount: StrictStr
    note: Optional[StrictStr] = None
    occurred_at: StrictStr = Field(..., alias="occurredAt")


class RegisterIn(BaseModel):
    name: StrictStr
    email: StrictStr
    password: StrictStr

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise PydanticCustomError("name_required", "Name is required")
        if len(value) > 100:
            raise PydanticCustomError("name_too_long", "Name is too long")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip()
        if not _EMAIL_RE.match(value):
            raise PydanticCustomError("email_invalid", "Invalid email address")
        return value

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        if len(value) < 8:
            raise PydanticCustomError(
                "password_too_short", "Password must be at least 8 characters"
            )
        # bcrypt only looks at the first 72 bytes
        if len(value.encode("utf-8")) > 72:
            raise PydanticCustomError(
                "password_too_long", "Password must be at most 72 bytes"
            )
        return value


class LoginIn(BaseModel):
    email: StrictStr
    password: StrictStr


class RecentTransactionOut(BaseModel):
    id: int
    note: Optional[str]
    amount_cents: int = Field(..., serialization_alias="amountCents")
    occurred_at: datetime = Field(..., serialization_alias="occurredAt")

    @field_serializer("occurred_at")
    def _serialize_occurred_at(self, value: datetime) -> str:
        return value.isoformat() + "Z"


class DashboardOut(BaseModel):
    total_balance_cents: int = Field(0, serialization_alias="totalBalanceCents")
    month_spend_cents: int = Field(0, serialization_alias="monthSpendCents")
    month_income_cents: int = Field(0, serialization_alias="monthIncomeCents")
    recent: list[RecentTransactionOut] = Field(default_factory=list)
    error: Optional[str] = None


class TransactionOut(RecentTransactionOut):
    account_id: int = Field(..., serialization_alias="accountId")
    kind: TransactionKind
