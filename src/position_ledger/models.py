"""Domain models for the transaction ledger and derived positions."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

Amount = Union[Decimal, int, float, str]

# Stored amounts are NUMERIC(28, 10).
AMOUNT_PRECISION = 28
AMOUNT_SCALE = 10


class TransactionKind(str, Enum):
    """Ledger event kinds."""

    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    YIELD = "YIELD"
    BONUS_SHARES = "BONUS_SHARES"
    SPLIT = "SPLIT"
    REVERSE_SPLIT = "REVERSE_SPLIT"


class InstrumentType(str, Enum):
    """Instrument classes used to group positions in summaries."""

    STOCK = "STOCK"
    REIT = "REIT"
    FIXED_INCOME = "FIXED_INCOME"
    CRYPTO = "CRYPTO"
    ETF = "ETF"
    OTHER = "OTHER"


# Kinds that lower the held quantity and must pass the sufficiency check.
REDUCING_KINDS = frozenset({TransactionKind.SELL})
PRICED_KINDS = frozenset({TransactionKind.BUY, TransactionKind.SELL})


@dataclass(slots=True)
class Instrument:
    """An instrument registered by an owner."""

    id: str
    owner_id: str
    ticker: str
    name: str
    instrument_type: InstrumentType
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Transaction:
    """A committed ledger entry."""

    id: str
    owner_id: str
    instrument_id: str
    kind: TransactionKind
    quantity: Decimal
    unit_price: Decimal
    fees: Decimal
    total_value: Decimal
    occurred_at: datetime
    created_at: datetime
    notes: Optional[str] = None
    deleted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    instrument: Optional[Instrument] = None


@dataclass(slots=True)
class TransactionData:
    """Caller supplied values for a new transaction."""

    instrument_id: str
    kind: Union[TransactionKind, str]
    quantity: Amount
    unit_price: Amount
    occurred_at: Union[datetime, date, str]
    fees: Amount = Decimal("0")
    notes: Optional[str] = None


@dataclass(slots=True)
class TransactionPatch:
    """Partial update; ``None`` leaves the stored value untouched."""

    kind: Union[TransactionKind, str, None] = None
    quantity: Optional[Amount] = None
    unit_price: Optional[Amount] = None
    fees: Optional[Amount] = None
    occurred_at: Union[datetime, date, str, None] = None
    notes: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PositionState:
    """Aggregated holding produced by folding a transaction history."""

    quantity: Decimal
    average_cost: Decimal
    total_invested: Decimal


@dataclass(slots=True)
class Position:
    """Stored position snapshot for an (owner, instrument) key."""

    id: str
    owner_id: str
    instrument_id: str
    quantity: Decimal
    average_cost: Decimal
    total_invested: Decimal
    updated_at: Optional[datetime] = None
    instrument: Optional[Instrument] = None


@dataclass(slots=True)
class DistributionEntry:
    """Invested capital held in one instrument type."""

    instrument_type: InstrumentType
    count: int
    invested: Decimal
    percentage: Decimal


@dataclass(slots=True)
class PortfolioSummary:
    """Totals across every position of an owner."""

    total_invested: Decimal
    total_positions: int
    distribution: list[DistributionEntry] = field(default_factory=list)


__all__ = [
    "Amount",
    "AMOUNT_PRECISION",
    "AMOUNT_SCALE",
    "TransactionKind",
    "InstrumentType",
    "REDUCING_KINDS",
    "PRICED_KINDS",
    "Instrument",
    "Transaction",
    "TransactionData",
    "TransactionPatch",
    "PositionState",
    "Position",
    "DistributionEntry",
    "PortfolioSummary",
]
