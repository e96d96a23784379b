"""Shared fixtures: a throwaway SQLite ledger per test."""
from __future__ import annotations

from decimal import Decimal

import pytest

from position_ledger.db import create_db_engine, ensure_schema
from position_ledger.instruments import InstrumentDirectory
from position_ledger.models import InstrumentType, TransactionData
from position_ledger.portfolio import PortfolioQueries
from position_ledger.service import LedgerService

OWNER = "owner-1"
OTHER_OWNER = "owner-2"


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def directory(engine):
    return InstrumentDirectory(engine)


@pytest.fixture
def ledger(engine, directory):
    return LedgerService(engine, directory)


@pytest.fixture
def queries(engine):
    return PortfolioQueries(engine)


@pytest.fixture
def stock(directory):
    return directory.register(OWNER, "petr4", "Petrobras PN", InstrumentType.STOCK)


@pytest.fixture
def etf(directory):
    return directory.register(OWNER, "BOVA11", "iShares Ibovespa", InstrumentType.ETF)


@pytest.fixture
def record(ledger):
    """Create a transaction for ``OWNER`` with compact arguments."""

    def _record(instrument, kind, quantity, price, fees=0, day="2024-01-10", owner=OWNER):
        return ledger.create(
            TransactionData(
                instrument_id=instrument.id,
                kind=kind,
                quantity=Decimal(str(quantity)),
                unit_price=Decimal(str(price)),
                fees=Decimal(str(fees)),
                occurred_at=day,
            ),
            owner,
        )

    return _record
