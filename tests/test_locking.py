"""Per-key lock registry."""
from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest
from sqlalchemy.dialects import postgresql

from position_ledger.locking import KeyedLock, acquire_advisory_lock, advisory_key


def test_registry_forgets_idle_keys():
    locks = KeyedLock()
    with locks.hold(("a", "x")):
        assert len(locks) == 1
    assert len(locks) == 0


def test_distinct_keys_do_not_contend():
    locks = KeyedLock()
    entered = threading.Event()

    def other_key():
        with locks.hold(("b", "y")):
            entered.set()

    with locks.hold(("a", "x")):
        thread = threading.Thread(target=other_key)
        thread.start()
        assert entered.wait(timeout=2)
        thread.join()


def test_same_key_is_exclusive():
    locks = KeyedLock()
    entered = threading.Event()

    def same_key():
        with locks.hold(("a", "x")):
            entered.set()

    with locks.hold(("a", "x")):
        thread = threading.Thread(target=same_key)
        thread.start()
        assert not entered.wait(timeout=0.2)
    thread.join(timeout=2)
    assert entered.is_set()
    assert len(locks) == 0


def test_lock_released_when_body_raises():
    locks = KeyedLock()
    with pytest.raises(ValueError):
        with locks.hold(("a", "x")):
            raise ValueError("boom")
    assert len(locks) == 0
    with locks.hold(("a", "x")):
        pass


def test_advisory_key_is_stable_signed_64_bit():
    key = advisory_key("owner", "instrument")
    assert key == advisory_key("owner", "instrument")
    assert key != advisory_key("owner", "other")
    assert advisory_key("ab", "c") != advisory_key("a", "bc")
    assert -(2**63) <= key < 2**63


class RecordingConnection:
    def __init__(self, dialect_name):
        self.dialect = SimpleNamespace(name=dialect_name)
        self.statements = []

    def execute(self, statement):
        self.statements.append(statement)


def test_advisory_lock_on_postgresql():
    conn = RecordingConnection("postgresql")

    acquire_advisory_lock(conn, "owner", "instrument")

    [statement] = conn.statements
    compiled = statement.compile(dialect=postgresql.dialect())
    assert "pg_advisory_xact_lock(" in str(compiled)
    assert list(compiled.params.values()) == [advisory_key("owner", "instrument")]


def test_advisory_lock_skipped_on_other_dialects():
    conn = RecordingConnection("sqlite")
    acquire_advisory_lock(conn, "owner", "instrument")
    assert conn.statements == []
