"""Input checks and the reduction sufficiency gate."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation

from .errors import InsufficientQuantity, InvalidInput
from .models import (
    AMOUNT_PRECISION,
    AMOUNT_SCALE,
    PRICED_KINDS,
    REDUCING_KINDS,
    Amount,
    TransactionKind,
)

LOGGER = logging.getLogger(__name__)

ZERO = Decimal("0")
AMOUNT_STEP = Decimal(1).scaleb(-AMOUNT_SCALE)
MAX_INTEGER_DIGITS = AMOUNT_PRECISION - AMOUNT_SCALE


def _check_magnitude(amount: Decimal, field_name: str) -> None:
    if amount and amount.adjusted() >= MAX_INTEGER_DIGITS:
        raise InvalidInput(
            f"{field_name} must have at most {MAX_INTEGER_DIGITS} integer digits, got {amount}"
        )


def to_decimal(value: Amount, field_name: str) -> Decimal:
    """Coerce a caller supplied amount into a finite :class:`Decimal`.

    Amounts must fit the stored column exactly: at most ten decimal places and
    eighteen integer digits. Nothing is rounded on the way in.
    """

    if isinstance(value, bool):
        raise InvalidInput(f"{field_name} must be a number")
    try:
        # floats go through str() so 0.1 stays 0.1
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f"{field_name} must be a number, got {value!r}") from exc
    if not amount.is_finite():
        raise InvalidInput(f"{field_name} must be finite, got {value!r}")
    _check_magnitude(amount, field_name)
    if amount.quantize(AMOUNT_STEP) != amount:
        raise InvalidInput(
            f"{field_name} must have at most {AMOUNT_SCALE} decimal places, got {value!r}"
        )
    return amount


def fit_total_value(total_value: Decimal) -> Decimal:
    """Round a computed total to the stored scale, rejecting totals too large to store."""

    _check_magnitude(total_value, "total_value")
    return total_value.quantize(AMOUNT_STEP)


def parse_kind(value: TransactionKind | str) -> TransactionKind:
    if isinstance(value, TransactionKind):
        return value
    try:
        return TransactionKind(str(value).strip().upper())
    except ValueError as exc:
        allowed = ", ".join(kind.value for kind in TransactionKind)
        raise InvalidInput(f"Unsupported transaction kind {value!r}; expected one of {allowed}") from exc


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_occurred_at(value: datetime | date | str) -> datetime:
    """Accept ``YYYY-MM-DD`` or ISO 8601 datetimes, stored as naive UTC."""

    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _naive_utc(datetime.fromisoformat(text))
        except ValueError as exc:
            raise InvalidInput(f"Malformed transaction date {value!r}") from exc
    raise InvalidInput(f"Malformed transaction date {value!r}")


def validate_amounts(
    kind: TransactionKind, quantity: Decimal, unit_price: Decimal, fees: Decimal
) -> None:
    """Reject amounts that can never form a valid ledger entry."""

    if quantity <= ZERO:
        raise InvalidInput("quantity must be greater than 0")
    if kind in PRICED_KINDS:
        if unit_price <= ZERO:
            raise InvalidInput(f"unit_price must be greater than 0 for {kind.value}")
    elif unit_price < ZERO:
        raise InvalidInput("unit_price must not be negative")
    if fees < ZERO:
        raise InvalidInput("fees must not be negative")


def check_reduction(
    owner_id: str,
    instrument_id: str,
    kind: TransactionKind,
    quantity: Decimal,
    held_quantity: Decimal | None,
) -> None:
    """Raise :class:`InsufficientQuantity` when a reducing kind exceeds the holding.

    ``held_quantity`` of ``None`` means no position exists and counts as zero.
    Non-reducing kinds always pass.
    """

    if kind not in REDUCING_KINDS:
        return
    available = held_quantity if held_quantity is not None else ZERO
    if quantity > available:
        LOGGER.info(
            "Rejected %s of %s for owner=%s instrument=%s (held %s)",
            kind.value,
            quantity,
            owner_id,
            instrument_id,
            available,
        )
        raise InsufficientQuantity(available=available, requested=quantity)


__all__ = [
    "to_decimal",
    "fit_total_value",
    "parse_kind",
    "parse_occurred_at",
    "validate_amounts",
    "check_reduction",
]
