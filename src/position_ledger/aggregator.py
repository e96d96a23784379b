"""Weighted-average-cost aggregation of a transaction history.

Everything in this module is pure: the same active history always folds into
the same :class:`~position_ledger.models.PositionState`, which is what lets the
service rebuild a snapshot from scratch after any edit or deletion.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Sequence

from .models import PositionState, Transaction, TransactionKind

ZERO = Decimal("0")


def compute_total_value(
    kind: TransactionKind, quantity: Decimal, unit_price: Decimal, fees: Decimal
) -> Decimal:
    """Return the value recorded on a ledger entry.

    BUY adds fees to the gross amount, SELL nets them out, every other kind is
    the plain ``quantity * unit_price``.
    """

    gross = quantity * unit_price
    if kind is TransactionKind.BUY:
        return gross + fees
    if kind is TransactionKind.SELL:
        return gross - fees
    return gross


def ledger_order(transaction: Transaction) -> tuple:
    """Total order used for folding: occurrence, then commit time, then id."""

    return (transaction.occurred_at, transaction.created_at, transaction.id)


def sort_history(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=ledger_order)


def fold(transactions: Sequence[Transaction]) -> tuple[Decimal, Decimal]:
    """Fold an already ordered history into ``(quantity, invested)``.

    Soft-deleted entries are skipped.
    """

    quantity = ZERO
    invested = ZERO
    for tx in transactions:
        if tx.deleted_at is not None:
            continue
        if tx.kind is TransactionKind.BUY:
            quantity += tx.quantity
            invested += tx.quantity * tx.unit_price + tx.fees
        elif tx.kind is TransactionKind.SELL:
            if quantity > ZERO:
                average_cost_before = invested / quantity
                invested -= tx.quantity * average_cost_before
            quantity -= tx.quantity
        # DIVIDEND, INTEREST and YIELD are cash distributions. BONUS_SHARES,
        # SPLIT and REVERSE_SPLIT are left without a quantity effect for now.
    return quantity, invested


def aggregate(transactions: Iterable[Transaction]) -> Optional[PositionState]:
    """Aggregate the active history of one key.

    Returns ``None`` when the folded quantity is zero or negative, meaning the
    key must not have a stored position.
    """

    quantity, invested = fold(sort_history(transactions))
    if quantity <= ZERO:
        return None
    return PositionState(
        quantity=quantity,
        average_cost=invested / quantity,
        total_invested=invested,
    )


def held_quantity(transactions: Iterable[Transaction]) -> Decimal:
    """Quantity held after folding ``transactions``, floored at zero."""

    quantity, _ = fold(sort_history(transactions))
    return quantity if quantity > ZERO else ZERO


def first_shortfall(
    transactions: Iterable[Transaction],
) -> Optional[tuple[Transaction, Decimal]]:
    """Find the first SELL that sells more than is held at its point in the history.

    Returns the offending entry with the quantity held just before it, or
    ``None`` when every sale is covered.
    """

    quantity = ZERO
    for tx in sort_history(transactions):
        if tx.deleted_at is not None:
            continue
        if tx.kind is TransactionKind.BUY:
            quantity += tx.quantity
        elif tx.kind is TransactionKind.SELL:
            if tx.quantity > quantity:
                return tx, quantity
            quantity -= tx.quantity
    return None


__all__ = [
    "compute_total_value",
    "ledger_order",
    "sort_history",
    "fold",
    "aggregate",
    "held_quantity",
    "first_shortfall",
]
