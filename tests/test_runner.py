"""Command line rebuild of position snapshots."""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update

from position_ledger.config import Settings
from position_ledger.db import create_db_engine, ensure_schema, fetch_position, positions
from position_ledger.instruments import InstrumentDirectory
from position_ledger.models import TransactionData
from position_ledger.runner import main, parse_args, run_rebuild
from position_ledger.service import LedgerService


def seed(database_url):
    engine = create_db_engine(database_url)
    ensure_schema(engine)
    directory = InstrumentDirectory(engine)
    instrument = directory.register("alice", "KNRI11", "Kinea Renda", "REIT")
    LedgerService(engine, directory).create(
        TransactionData(
            instrument_id=instrument.id,
            kind="BUY",
            quantity="8",
            unit_price="125",
            occurred_at="2024-05-02",
        ),
        "alice",
    )
    with engine.begin() as conn:
        conn.execute(update(positions).values(quantity=1))
    return engine, instrument


def test_parse_args():
    options = parse_args(["--owner", "alice", "--verbose"])
    assert options.owner == "alice"
    assert options.verbose is True


def test_run_rebuild(tmp_path):
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    engine, instrument = seed(url)

    assert run_rebuild(Settings(database_url=url), owner_id="alice") == 1

    with engine.connect() as conn:
        assert fetch_position(conn, "alice", instrument.id).quantity == Decimal("8")
    engine.dispose()


def test_main_reads_settings_from_environment(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    engine, instrument = seed(url)
    monkeypatch.setenv("POSITION_LEDGER_DATABASE_URL", url)
    monkeypatch.setenv("POSITION_LEDGER_ENV", "does-not-exist")

    main([])

    with engine.connect() as conn:
        assert fetch_position(conn, "alice", instrument.id).quantity == Decimal("8")
    engine.dispose()
