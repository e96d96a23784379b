"""Transaction ledger orchestration.

Every mutation runs inside one database transaction while holding the lock for
its ``(owner_id, instrument_id)`` key:

1. validate the request (and the reduction gate for reducing kinds),
2. write the ledger entry,
3. re-aggregate the key's full active history,
4. upsert or delete the position snapshot.

A failure at any step rolls the whole sequence back, so the ledger and the
snapshot never disagree. Transient database errors are retried once.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Optional, TypeVar

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, OperationalError

from .aggregator import aggregate, compute_total_value, first_shortfall, held_quantity
from .db import (
    delete_position,
    fetch_active_history,
    fetch_ledger_keys,
    fetch_position,
    fetch_transaction,
    fetch_transactions,
    insert_transaction,
    new_id,
    session,
    soft_delete_transaction,
    update_transaction,
    upsert_position,
    utcnow,
)
from .errors import InsufficientQuantity, NotFound, Unavailable
from .instruments import InstrumentLookup
from .locking import KeyedLock, acquire_advisory_lock
from .models import PositionState, Transaction, TransactionData, TransactionPatch
from .validation import (
    check_reduction,
    fit_total_value,
    parse_kind,
    parse_occurred_at,
    to_decimal,
    validate_amounts,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


class LedgerService:
    """Create, edit and soft-delete ledger entries while keeping positions in sync."""

    def __init__(
        self,
        engine: Engine,
        instruments: InstrumentLookup,
        locks: Optional[KeyedLock] = None,
        transient_retries: int = 1,
    ) -> None:
        self.engine = engine
        self.instruments = instruments
        self.locks = locks or KeyedLock()
        self.transient_retries = transient_retries

    # -- plumbing -----------------------------------------------------------

    def _run_locked(
        self, owner_id: str, instrument_id: str, operation: Callable[[Connection], T]
    ) -> T:
        attempts = self.transient_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self.locks.hold((owner_id, instrument_id)):
                    with session(self.engine) as conn:
                        acquire_advisory_lock(conn, owner_id, instrument_id)
                        return operation(conn)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                if attempt == attempts:
                    LOGGER.error(
                        "Giving up on owner=%s instrument=%s after %d attempts",
                        owner_id,
                        instrument_id,
                        attempts,
                    )
                    raise Unavailable("The ledger is temporarily unavailable") from exc
                LOGGER.warning(
                    "Transient database error for owner=%s instrument=%s, retrying: %s",
                    owner_id,
                    instrument_id,
                    exc,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    def _recompute(
        self, conn: Connection, owner_id: str, instrument_id: str
    ) -> Optional[PositionState]:
        state = aggregate(fetch_active_history(conn, owner_id, instrument_id))
        if state is None:
            if delete_position(conn, owner_id, instrument_id):
                LOGGER.info("Closed position owner=%s instrument=%s", owner_id, instrument_id)
            return None
        upsert_position(conn, owner_id, instrument_id, state)
        LOGGER.debug(
            "Position owner=%s instrument=%s quantity=%s average_cost=%s",
            owner_id,
            instrument_id,
            state.quantity,
            state.average_cost,
        )
        return state

    def _check_history(
        self,
        owner_id: str,
        instrument_id: str,
        before: list[Transaction],
        after: list[Transaction],
    ) -> None:
        """Reject an edit that leaves an earlier or later sale uncovered."""

        if first_shortfall(before) is not None:
            # Already oversold somewhere, typically a back-dated sale.
            return
        shortfall = first_shortfall(after)
        if shortfall is None:
            return
        sale, available = shortfall
        LOGGER.info(
            "Rejected edit for owner=%s instrument=%s: sale %s of %s exceeds %s held",
            owner_id,
            instrument_id,
            sale.id,
            sale.quantity,
            available,
        )
        raise InsufficientQuantity(available=available, requested=sale.quantity)

    # -- mutations ----------------------------------------------------------

    def create(self, data: TransactionData, owner_id: str) -> Transaction:
        instrument = self.instruments.verify_owned(data.instrument_id, owner_id)

        kind = parse_kind(data.kind)
        quantity = to_decimal(data.quantity, "quantity")
        unit_price = to_decimal(data.unit_price, "unit_price")
        fees = to_decimal(data.fees if data.fees is not None else 0, "fees")
        occurred_at = parse_occurred_at(data.occurred_at)
        validate_amounts(kind, quantity, unit_price, fees)
        total_value = fit_total_value(compute_total_value(kind, quantity, unit_price, fees))

        def operation(conn: Connection) -> Transaction:
            snapshot = fetch_position(conn, owner_id, instrument.id)
            check_reduction(
                owner_id,
                instrument.id,
                kind,
                quantity,
                snapshot.quantity if snapshot is not None else None,
            )
            now = utcnow()
            tx = Transaction(
                id=new_id(),
                owner_id=owner_id,
                instrument_id=instrument.id,
                kind=kind,
                quantity=quantity,
                unit_price=unit_price,
                fees=fees,
                total_value=total_value,
                occurred_at=occurred_at,
                created_at=now,
                updated_at=now,
                notes=data.notes,
            )
            insert_transaction(conn, tx)
            self._recompute(conn, owner_id, instrument.id)
            return tx

        tx = self._run_locked(owner_id, instrument.id, operation)
        LOGGER.info(
            "Recorded %s %s x %s on %s for owner=%s (%s)",
            kind.value,
            quantity,
            unit_price,
            instrument.ticker,
            owner_id,
            tx.id,
        )
        return replace(tx, instrument=instrument)

    def update(self, transaction_id: str, owner_id: str, patch: TransactionPatch) -> Transaction:
        existing = self.find_one(transaction_id, owner_id)

        changes: dict = {}
        if patch.kind is not None:
            changes["kind"] = parse_kind(patch.kind)
        if patch.quantity is not None:
            changes["quantity"] = to_decimal(patch.quantity, "quantity")
        if patch.unit_price is not None:
            changes["unit_price"] = to_decimal(patch.unit_price, "unit_price")
        if patch.fees is not None:
            changes["fees"] = to_decimal(patch.fees, "fees")
        if patch.occurred_at is not None:
            changes["occurred_at"] = parse_occurred_at(patch.occurred_at)
        if patch.notes is not None:
            changes["notes"] = patch.notes

        def operation(conn: Connection) -> Transaction:
            current = fetch_transaction(conn, transaction_id, owner_id)
            if current is None:
                raise NotFound(f"Transaction {transaction_id} not found")
            merged = replace(current, **changes)
            validate_amounts(merged.kind, merged.quantity, merged.unit_price, merged.fees)
            merged = replace(
                merged,
                total_value=fit_total_value(
                    compute_total_value(merged.kind, merged.quantity, merged.unit_price, merged.fees)
                ),
                updated_at=utcnow(),
            )
            history = fetch_active_history(conn, owner_id, current.instrument_id)
            # Validate against the history as it would be without this entry.
            others = [tx for tx in history if tx.id != current.id]
            check_reduction(
                owner_id,
                current.instrument_id,
                merged.kind,
                merged.quantity,
                held_quantity(others),
            )
            self._check_history(owner_id, current.instrument_id, history, others + [merged])
            update_transaction(conn, merged)
            self._recompute(conn, owner_id, current.instrument_id)
            return merged

        updated = self._run_locked(owner_id, existing.instrument_id, operation)
        LOGGER.info("Updated transaction %s for owner=%s", transaction_id, owner_id)
        return updated

    def remove(self, transaction_id: str, owner_id: str) -> Transaction:
        existing = self.find_one(transaction_id, owner_id)

        def operation(conn: Connection) -> Transaction:
            current = fetch_transaction(conn, transaction_id, owner_id)
            if current is None:
                raise NotFound(f"Transaction {transaction_id} not found")
            deleted_at = utcnow()
            soft_delete_transaction(conn, transaction_id, deleted_at)
            self._recompute(conn, owner_id, current.instrument_id)
            return replace(current, deleted_at=deleted_at, updated_at=deleted_at)

        removed = self._run_locked(owner_id, existing.instrument_id, operation)
        LOGGER.info("Soft-deleted transaction %s for owner=%s", transaction_id, owner_id)
        return removed

    def rebuild_positions(self, owner_id: Optional[str] = None) -> int:
        """Re-aggregate every known key, returning how many were processed."""

        with self.engine.connect() as conn:
            keys = sorted(fetch_ledger_keys(conn, owner_id))
        for key_owner, instrument_id in keys:
            self._run_locked(
                key_owner,
                instrument_id,
                lambda conn, o=key_owner, i=instrument_id: self._recompute(conn, o, i),
            )
        LOGGER.info("Rebuilt %d position(s)", len(keys))
        return len(keys)

    # -- reads --------------------------------------------------------------

    def find_all(self, owner_id: str) -> list[Transaction]:
        LOGGER.debug("Listing transactions for owner=%s", owner_id)
        with self.engine.connect() as conn:
            return fetch_transactions(conn, owner_id)

    def find_one(self, transaction_id: str, owner_id: str) -> Transaction:
        with self.engine.connect() as conn:
            tx = fetch_transaction(conn, transaction_id, owner_id)
        if tx is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        return tx


__all__ = ["LedgerService"]
