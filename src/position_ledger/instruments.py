"""Instrument ownership and lookup."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.engine import Engine

from .db import (
    fetch_instrument,
    fetch_instrument_by_ticker,
    fetch_instruments,
    insert_instrument,
    new_id,
    session,
    utcnow,
)
from .errors import Conflict, InvalidInput, NotFound
from .models import Instrument, InstrumentType

LOGGER = logging.getLogger(__name__)


class InstrumentLookup(Protocol):
    """What the ledger needs from an instrument provider."""

    def verify_owned(self, instrument_id: str, owner_id: str) -> Instrument:
        """Return the instrument or raise :class:`NotFound`."""


def parse_instrument_type(value: InstrumentType | str) -> InstrumentType:
    if isinstance(value, InstrumentType):
        return value
    try:
        return InstrumentType(str(value).strip().upper())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in InstrumentType)
        raise InvalidInput(f"Unsupported instrument type {value!r}; expected one of {allowed}") from exc


class InstrumentDirectory:
    """Instruments stored in the ``instruments`` table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def verify_owned(self, instrument_id: str, owner_id: str) -> Instrument:
        with self.engine.connect() as conn:
            instrument = fetch_instrument(conn, instrument_id, owner_id)
        if instrument is None:
            raise NotFound(f"Instrument {instrument_id} not found")
        return instrument

    def register(
        self,
        owner_id: str,
        ticker: str,
        name: str,
        instrument_type: InstrumentType | str,
        description: Optional[str] = None,
    ) -> Instrument:
        symbol = (ticker or "").strip().upper()
        if not symbol or len(symbol) > 20:
            raise InvalidInput("ticker must be 1-20 characters")
        if not (name or "").strip():
            raise InvalidInput("name must not be empty")
        instrument = Instrument(
            id=new_id(),
            owner_id=owner_id,
            ticker=symbol,
            name=name.strip(),
            instrument_type=parse_instrument_type(instrument_type),
            description=description,
            created_at=utcnow(),
        )
        with session(self.engine) as conn:
            if fetch_instrument_by_ticker(conn, owner_id, symbol) is not None:
                raise Conflict(f"Instrument {symbol} is already registered")
            insert_instrument(conn, instrument)
        LOGGER.info("Registered instrument %s (%s) for owner=%s", symbol, instrument.id, owner_id)
        return instrument

    def list_instruments(self, owner_id: str) -> list[Instrument]:
        with self.engine.connect() as conn:
            return fetch_instruments(conn, owner_id)


__all__ = ["InstrumentLookup", "InstrumentDirectory", "parse_instrument_type"]
