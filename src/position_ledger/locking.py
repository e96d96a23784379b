"""Per-key mutual exclusion for the ledger read-modify-write cycle."""
from __future__ import annotations

import hashlib
import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

LOGGER = logging.getLogger(__name__)

Key = tuple[str, str]


class KeyedLock:
    """Hands out one lock per ``(owner_id, instrument_id)`` key.

    Locks live only while someone holds or waits on them, so the registry does
    not grow with the number of keys ever touched. Distinct keys never share a
    lock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Key, threading.Lock] = {}
        self._waiters: dict[Key, int] = {}

    @contextmanager
    def hold(self, key: Key) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if not self._waiters[key]:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def advisory_key(owner_id: str, instrument_id: str) -> int:
    """Stable signed 64-bit integer for ``pg_advisory_xact_lock``."""

    digest = hashlib.blake2b(
        f"{owner_id}\x00{instrument_id}".encode("utf-8"), digest_size=8
    ).digest()
    return int.from_bytes(digest, "big", signed=True)


def acquire_advisory_lock(conn: Connection, owner_id: str, instrument_id: str) -> None:
    """Take a transaction-scoped advisory lock on PostgreSQL.

    The lock is released when the surrounding transaction commits or rolls
    back. Other dialects rely on the in-process :class:`KeyedLock` alone.
    """

    if conn.dialect.name != "postgresql":
        return
    LOGGER.debug("Acquiring advisory lock for owner=%s instrument=%s", owner_id, instrument_id)
    conn.execute(select(func.pg_advisory_xact_lock(advisory_key(owner_id, instrument_id))))


__all__ = ["KeyedLock", "advisory_key", "acquire_advisory_lock"]
