"""Database integration: ledger, position snapshot and instrument tables."""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine, Row

from .models import (
    AMOUNT_PRECISION,
    AMOUNT_SCALE,
    Instrument,
    InstrumentType,
    Position,
    PositionState,
    Transaction,
    TransactionKind,
)


metadata = MetaData()

LOGGER = logging.getLogger(__name__)

AMOUNT = Numeric(AMOUNT_PRECISION, AMOUNT_SCALE)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


instruments = Table(
    "instruments",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("owner_id", String(64), nullable=False, index=True),
    Column("ticker", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("instrument_type", String(32), nullable=False),
    Column("description", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    Column("deleted_at", DateTime, nullable=True),
)

Index(
    "uq_instruments_owner_ticker_active",
    instruments.c.owner_id,
    instruments.c.ticker,
    unique=True,
    postgresql_where=instruments.c.deleted_at.is_(None),
    sqlite_where=instruments.c.deleted_at.is_(None),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("owner_id", String(64), nullable=False),
    Column("instrument_id", ForeignKey("instruments.id", ondelete="CASCADE"), nullable=False),
    Column("kind", String(32), nullable=False),
    Column("quantity", AMOUNT, nullable=False),
    Column("unit_price", AMOUNT, nullable=False),
    Column("fees", AMOUNT, nullable=False, default=0),
    Column("total_value", AMOUNT, nullable=False),
    Column("occurred_at", DateTime, nullable=False),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    Column("deleted_at", DateTime, nullable=True),
    Index("ix_transactions_key_order", "owner_id", "instrument_id", "occurred_at", "created_at"),
)

positions = Table(
    "positions",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("owner_id", String(64), nullable=False),
    Column("instrument_id", ForeignKey("instruments.id", ondelete="CASCADE"), nullable=False),
    Column("quantity", AMOUNT, nullable=False),
    Column("average_cost", AMOUNT, nullable=False),
    Column("total_invested", AMOUNT, nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    UniqueConstraint("owner_id", "instrument_id", name="uq_positions_owner_instrument"),
)


_INSTRUMENT_COLUMNS = (
    instruments.c.ticker.label("instrument_ticker"),
    instruments.c.name.label("instrument_name"),
    instruments.c.instrument_type.label("instrument_type"),
    instruments.c.description.label("instrument_description"),
    instruments.c.created_at.label("instrument_created_at"),
)


def create_db_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine."""

    LOGGER.debug("Creating database engine")
    return create_engine(database_url, future=True, pool_pre_ping=True)


@contextmanager
def session(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional scope around a series of operations."""

    with engine.begin() as conn:
        yield conn


def ensure_schema(engine: Engine) -> None:
    """Create tables if they do not exist."""

    LOGGER.debug("Ensuring database schema is present")
    metadata.create_all(engine)


def active(table: Table):
    """Soft-delete filter applied to every ledger and instrument read."""

    return table.c.deleted_at.is_(None)


def _dialect_insert(conn: Connection, table: Table):
    name = conn.dialect.name
    if name == "postgresql":
        return pg_insert(table)
    if name == "sqlite":
        return sqlite_insert(table)
    raise RuntimeError(f"Upserts are not supported on the {name} dialect")


# --- instruments -----------------------------------------------------------


def _row_to_instrument(row: Row) -> Instrument:
    data = row._mapping
    return Instrument(
        id=data["id"],
        owner_id=data["owner_id"],
        ticker=data["ticker"],
        name=data["name"],
        instrument_type=InstrumentType(data["instrument_type"]),
        description=data["description"],
        created_at=data["created_at"],
    )


def _joined_instrument(data, instrument_id: str, owner_id: str) -> Instrument:
    return Instrument(
        id=instrument_id,
        owner_id=owner_id,
        ticker=data["instrument_ticker"],
        name=data["instrument_name"],
        instrument_type=InstrumentType(data["instrument_type"]),
        description=data["instrument_description"],
        created_at=data["instrument_created_at"],
    )


def insert_instrument(conn: Connection, instrument: Instrument) -> None:
    conn.execute(
        insert(instruments).values(
            id=instrument.id,
            owner_id=instrument.owner_id,
            ticker=instrument.ticker,
            name=instrument.name,
            instrument_type=instrument.instrument_type.value,
            description=instrument.description,
            created_at=instrument.created_at or utcnow(),
        )
    )


def fetch_instrument(conn: Connection, instrument_id: str, owner_id: str) -> Optional[Instrument]:
    stmt = select(instruments).where(
        instruments.c.id == instrument_id,
        instruments.c.owner_id == owner_id,
        active(instruments),
    )
    row = conn.execute(stmt).first()
    return _row_to_instrument(row) if row is not None else None


def fetch_instrument_by_ticker(conn: Connection, owner_id: str, ticker: str) -> Optional[Instrument]:
    stmt = select(instruments).where(
        instruments.c.owner_id == owner_id,
        instruments.c.ticker == ticker,
        active(instruments),
    )
    row = conn.execute(stmt).first()
    return _row_to_instrument(row) if row is not None else None


def fetch_instruments(conn: Connection, owner_id: str) -> list[Instrument]:
    stmt = (
        select(instruments)
        .where(instruments.c.owner_id == owner_id, active(instruments))
        .order_by(instruments.c.ticker)
    )
    return [_row_to_instrument(row) for row in conn.execute(stmt).all()]


# --- ledger ----------------------------------------------------------------


def _row_to_transaction(row: Row, with_instrument: bool = False) -> Transaction:
    data = row._mapping
    instrument = None
    if with_instrument:
        instrument = _joined_instrument(data, data["instrument_id"], data["owner_id"])
    return Transaction(
        id=data["id"],
        owner_id=data["owner_id"],
        instrument_id=data["instrument_id"],
        kind=TransactionKind(data["kind"]),
        quantity=data["quantity"],
        unit_price=data["unit_price"],
        fees=data["fees"],
        total_value=data["total_value"],
        occurred_at=data["occurred_at"],
        created_at=data["created_at"],
        notes=data["notes"],
        deleted_at=data["deleted_at"],
        updated_at=data["updated_at"],
        instrument=instrument,
    )


def _transactions_with_instrument():
    return select(transactions, *_INSTRUMENT_COLUMNS).select_from(
        transactions.join(instruments, transactions.c.instrument_id == instruments.c.id)
    )


def insert_transaction(conn: Connection, tx: Transaction) -> None:
    conn.execute(
        insert(transactions).values(
            id=tx.id,
            owner_id=tx.owner_id,
            instrument_id=tx.instrument_id,
            kind=tx.kind.value,
            quantity=tx.quantity,
            unit_price=tx.unit_price,
            fees=tx.fees,
            total_value=tx.total_value,
            occurred_at=tx.occurred_at,
            notes=tx.notes,
            created_at=tx.created_at,
            updated_at=tx.updated_at or tx.created_at,
        )
    )


def update_transaction(conn: Connection, tx: Transaction) -> None:
    """Overwrite the editable fields of an active ledger entry."""

    stmt = (
        update(transactions)
        .where(transactions.c.id == tx.id, active(transactions))
        .values(
            kind=tx.kind.value,
            quantity=tx.quantity,
            unit_price=tx.unit_price,
            fees=tx.fees,
            total_value=tx.total_value,
            occurred_at=tx.occurred_at,
            notes=tx.notes,
            updated_at=tx.updated_at or utcnow(),
        )
    )
    conn.execute(stmt)


def soft_delete_transaction(conn: Connection, transaction_id: str, deleted_at: datetime) -> None:
    stmt = (
        update(transactions)
        .where(transactions.c.id == transaction_id, active(transactions))
        .values(deleted_at=deleted_at, updated_at=deleted_at)
    )
    conn.execute(stmt)


def fetch_transaction(conn: Connection, transaction_id: str, owner_id: str) -> Optional[Transaction]:
    stmt = _transactions_with_instrument().where(
        transactions.c.id == transaction_id,
        transactions.c.owner_id == owner_id,
        active(transactions),
    )
    row = conn.execute(stmt).first()
    return _row_to_transaction(row, with_instrument=True) if row is not None else None


def fetch_transactions(conn: Connection, owner_id: str) -> list[Transaction]:
    """Active ledger entries of an owner, most recent first."""

    stmt = (
        _transactions_with_instrument()
        .where(transactions.c.owner_id == owner_id, active(transactions))
        .order_by(transactions.c.occurred_at.desc(), transactions.c.created_at.desc())
    )
    return [_row_to_transaction(row, with_instrument=True) for row in conn.execute(stmt).all()]


def fetch_active_history(conn: Connection, owner_id: str, instrument_id: str) -> list[Transaction]:
    """Active ledger entries of one key in fold order."""

    stmt = (
        select(transactions)
        .where(
            transactions.c.owner_id == owner_id,
            transactions.c.instrument_id == instrument_id,
            active(transactions),
        )
        .order_by(
            transactions.c.occurred_at,
            transactions.c.created_at,
            transactions.c.id,
        )
    )
    return [_row_to_transaction(row) for row in conn.execute(stmt).all()]


def fetch_ledger_keys(conn: Connection, owner_id: Optional[str] = None) -> set[tuple[str, str]]:
    """Every key that has ledger rows (active or not) or a stored position."""

    tx_stmt = select(transactions.c.owner_id, transactions.c.instrument_id).distinct()
    pos_stmt = select(positions.c.owner_id, positions.c.instrument_id)
    if owner_id is not None:
        tx_stmt = tx_stmt.where(transactions.c.owner_id == owner_id)
        pos_stmt = pos_stmt.where(positions.c.owner_id == owner_id)
    keys = {(row.owner_id, row.instrument_id) for row in conn.execute(tx_stmt).all()}
    keys.update((row.owner_id, row.instrument_id) for row in conn.execute(pos_stmt).all())
    return keys


# --- position snapshots ----------------------------------------------------


def _row_to_position(row: Row, with_instrument: bool = False) -> Position:
    data = row._mapping
    instrument = None
    if with_instrument:
        instrument = _joined_instrument(data, data["instrument_id"], data["owner_id"])
    return Position(
        id=data["id"],
        owner_id=data["owner_id"],
        instrument_id=data["instrument_id"],
        quantity=data["quantity"],
        average_cost=data["average_cost"],
        total_invested=data["total_invested"],
        updated_at=data["updated_at"],
        instrument=instrument,
    )


def _positions_with_instrument():
    return select(positions, *_INSTRUMENT_COLUMNS).select_from(
        positions.join(instruments, positions.c.instrument_id == instruments.c.id)
    )


def upsert_position(
    conn: Connection, owner_id: str, instrument_id: str, state: PositionState
) -> None:
    now = utcnow()
    stmt = _dialect_insert(conn, positions).values(
        id=new_id(),
        owner_id=owner_id,
        instrument_id=instrument_id,
        quantity=state.quantity,
        average_cost=state.average_cost,
        total_invested=state.total_invested,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[positions.c.owner_id, positions.c.instrument_id],
        set_={
            "quantity": stmt.excluded.quantity,
            "average_cost": stmt.excluded.average_cost,
            "total_invested": stmt.excluded.total_invested,
            "updated_at": now,
        },
    )
    conn.execute(stmt)


def delete_position(conn: Connection, owner_id: str, instrument_id: str) -> int:
    result = conn.execute(
        delete(positions).where(
            positions.c.owner_id == owner_id,
            positions.c.instrument_id == instrument_id,
        )
    )
    return result.rowcount


def fetch_position(conn: Connection, owner_id: str, instrument_id: str) -> Optional[Position]:
    stmt = select(positions).where(
        positions.c.owner_id == owner_id,
        positions.c.instrument_id == instrument_id,
    )
    row = conn.execute(stmt).first()
    return _row_to_position(row) if row is not None else None


def fetch_position_by_id(conn: Connection, position_id: str, owner_id: str) -> Optional[Position]:
    stmt = _positions_with_instrument().where(
        positions.c.id == position_id,
        positions.c.owner_id == owner_id,
    )
    row = conn.execute(stmt).first()
    return _row_to_position(row, with_instrument=True) if row is not None else None


def fetch_positions(
    conn: Connection, owner_id: str, instrument_type: Optional[InstrumentType] = None
) -> list[Position]:
    """Positions of an owner joined with instrument metadata, largest first."""

    stmt = _positions_with_instrument().where(positions.c.owner_id == owner_id)
    if instrument_type is not None:
        stmt = stmt.where(instruments.c.instrument_type == instrument_type.value)
    stmt = stmt.order_by(positions.c.total_invested.desc(), instruments.c.ticker)
    return [_row_to_position(row, with_instrument=True) for row in conn.execute(stmt).all()]


__all__ = [
    "metadata",
    "instruments",
    "transactions",
    "positions",
    "utcnow",
    "new_id",
    "create_db_engine",
    "session",
    "ensure_schema",
    "active",
    "insert_instrument",
    "fetch_instrument",
    "fetch_instrument_by_ticker",
    "fetch_instruments",
    "insert_transaction",
    "update_transaction",
    "soft_delete_transaction",
    "fetch_transaction",
    "fetch_transactions",
    "fetch_active_history",
    "fetch_ledger_keys",
    "upsert_position",
    "delete_position",
    "fetch_position",
    "fetch_position_by_id",
    "fetch_positions",
]
