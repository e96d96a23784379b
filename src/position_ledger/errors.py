"""Typed failures surfaced by the ledger engine."""
from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    """Base class for every failure raised to callers."""


class NotFound(LedgerError):
    """The transaction, position or instrument is absent or not owned by the caller."""


class InvalidInput(LedgerError):
    """The request carries values that can never be committed."""


class Conflict(LedgerError):
    """The request collides with an existing record."""


class InsufficientQuantity(LedgerError):
    """A reducing transaction asks for more units than are held."""

    def __init__(self, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Insufficient quantity held: available {available}, requested {requested}"
        )
        self.available = available
        self.requested = requested


class Unavailable(LedgerError):
    """Persistence kept failing after the permitted retry."""


__all__ = [
    "LedgerError",
    "NotFound",
    "InvalidInput",
    "Conflict",
    "InsufficientQuantity",
    "Unavailable",
]
