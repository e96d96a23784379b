"""Read-only views over the position snapshots."""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.engine import Engine

from .db import fetch_position_by_id, fetch_positions
from .errors import NotFound
from .instruments import parse_instrument_type
from .models import DistributionEntry, InstrumentType, PortfolioSummary, Position

LOGGER = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def summarize_positions(positions: list[Position]) -> PortfolioSummary:
    """Total invested capital and its split by instrument type."""

    total_invested = ZERO
    grouped: dict[InstrumentType, DistributionEntry] = {}
    for position in positions:
        total_invested += position.total_invested
        instrument_type = (
            position.instrument.instrument_type if position.instrument else InstrumentType.OTHER
        )
        entry = grouped.setdefault(
            instrument_type,
            DistributionEntry(instrument_type=instrument_type, count=0, invested=ZERO, percentage=ZERO),
        )
        entry.count += 1
        entry.invested += position.total_invested

    for entry in grouped.values():
        entry.percentage = entry.invested / total_invested * HUNDRED if total_invested > ZERO else ZERO

    return PortfolioSummary(
        total_invested=total_invested,
        total_positions=len(positions),
        distribution=list(grouped.values()),
    )


class PortfolioQueries:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_position(self, position_id: str, owner_id: str) -> Position:
        with self.engine.connect() as conn:
            position = fetch_position_by_id(conn, position_id, owner_id)
        if position is None:
            raise NotFound(f"Position {position_id} not found")
        return position

    def list_positions(self, owner_id: str) -> list[Position]:
        LOGGER.debug("Loading positions for owner=%s", owner_id)
        with self.engine.connect() as conn:
            return fetch_positions(conn, owner_id)

    def list_positions_by_type(self, owner_id: str, instrument_type: InstrumentType | str) -> list[Position]:
        resolved = parse_instrument_type(instrument_type)
        LOGGER.debug("Loading %s positions for owner=%s", resolved.value, owner_id)
        with self.engine.connect() as conn:
            return fetch_positions(conn, owner_id, resolved)

    def summarize(self, owner_id: str) -> PortfolioSummary:
        return summarize_positions(self.list_positions(owner_id))


__all__ = ["PortfolioQueries", "summarize_positions"]
