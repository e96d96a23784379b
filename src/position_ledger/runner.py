"""Rebuild position snapshots from the transaction ledger."""
from __future__ import annotations

import argparse
import logging
from typing import Iterable, Optional

from .config import Settings
from .db import create_db_engine, ensure_schema
from .instruments import InstrumentDirectory
from .logging_utils import configure_logging
from .service import LedgerService

LOGGER = logging.getLogger(__name__)


def run_rebuild(settings: Settings, owner_id: Optional[str] = None) -> int:
    """Recompute every position (optionally for one owner) and return the key count."""

    engine = create_db_engine(settings.database_url)
    ensure_schema(engine)

    service = LedgerService(
        engine,
        InstrumentDirectory(engine),
        transient_retries=settings.transient_retries,
    )
    try:
        return service.rebuild_positions(owner_id)
    finally:
        engine.dispose()


def parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--owner",
        default=None,
        help="Only rebuild positions belonging to this owner id",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging output",
    )
    return parser.parse_args(args=args)


def main(argv: Iterable[str] | None = None) -> None:
    options = parse_args(argv)
    configure_logging(logging.DEBUG if options.verbose else None)
    settings = Settings.load()
    rebuilt = run_rebuild(settings, options.owner)
    LOGGER.info("Position rebuild finished: %d key(s)", rebuilt)


if __name__ == "__main__":  # pragma: no cover
    main()
