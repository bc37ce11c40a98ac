import re
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from models import TransactionKind

# largest magnitude a signed 64-bit INTEGER column can hold
MAX_AMOUNT_CENTS = 2**63 - 1

# commas only as thousands separators: 1,250 or 1,250,000.50
_GROUPED_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d*)?$")


def parse_amount(value: str) -> Decimal:
    """Parse a user-entered decimal amount such as ``"19.99"`` or ``"$1,250.00"``."""
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    if "," in clean:
        if not _GROUPED_RE.match(clean):
            raise ValueError("Ambiguous thousands separator")
        clean = clean.replace(",", "")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be finite")
    return amount


def signed_cents(amount: Decimal, kind: Optional[TransactionKind]) -> int:
    """Round ``|amount| * 100`` half away from zero and apply the kind's sign.

    Income is stored positive; anything else, including a missing kind, is an
    outflow and stored negative.
    """
    try:
        absolute = int((abs(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except ArithmeticError as exc:
        raise ValueError("Amount out of range") from exc
    if absolute > MAX_AMOUNT_CENTS:
        raise ValueError("Amount out of range")
    if kind == TransactionKind.income:
        return absolute
    return -absolute


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_occurred_at(value: str) -> datetime:
    """Parse a business date or date-time into a naive UTC datetime.

    ``2024-03-05`` and ``05.03.2024`` mean midnight UTC of that day. ISO
    date-times with an offset are converted to UTC, naive ones are taken as UTC.
    """
    value = value.strip()
    if not value:
        raise ValueError("Empty date")
    for fmt in ("%Y-%m-%d", "%d.%m.%Y"):
        try:
            day = datetime.strptime(value, fmt).date()
        except ValueError:
            continue
        return datetime.combine(day, time.min)
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError("Invalid date") from exc
    return to_utc_naive(parsed)


def month_start(reference: datetime) -> datetime:
    return datetime.combine(date(reference.year, reference.month, 1), time.min)