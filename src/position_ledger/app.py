"""FastAPI application exposing the ledger and position views.

Run with ``uvicorn position_ledger.app:create_app --factory``. Authentication is
handled upstream; the caller's owner id arrives in the ``X-Owner-Id`` header.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from .config import Settings
from .db import create_db_engine, ensure_schema
from .errors import (
    Conflict,
    InsufficientQuantity,
    InvalidInput,
    LedgerError,
    NotFound,
    Unavailable,
)
from .instruments import InstrumentDirectory
from .logging_utils import configure_logging
from .models import TransactionData, TransactionPatch
from .portfolio import PortfolioQueries
from .service import LedgerService

LOGGER = logging.getLogger(__name__)

ERROR_STATUS: dict[type[LedgerError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidInput: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InsufficientQuantity: status.HTTP_409_CONFLICT,
    Conflict: status.HTTP_409_CONFLICT,
    Unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class TransactionIn(BaseModel):
    instrument_id: str = Field(..., min_length=1)
    kind: str
    quantity: Decimal
    unit_price: Decimal
    fees: Decimal = Decimal("0")
    occurred_at: str
    notes: Optional[str] = None


class TransactionPatchIn(BaseModel):
    kind: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    fees: Optional[Decimal] = None
    occurred_at: Optional[str] = None
    notes: Optional[str] = None


class InstrumentIn(BaseModel):
    ticker: str
    name: str
    instrument_type: str
    description: Optional[str] = None


def current_owner(x_owner_id: Optional[str] = Header(default=None)) -> str:
    if not x_owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Owner-Id header")
    return x_owner_id


def create_app(engine: Engine | None = None) -> FastAPI:
    """Build the application, loading :class:`Settings` when no engine is given."""

    configure_logging()
    transient_retries = 1
    if engine is None:
        settings = Settings.load()
        engine = create_db_engine(settings.database_url)
        transient_retries = settings.transient_retries

    directory = InstrumentDirectory(engine)
    ledger = LedgerService(engine, directory, transient_retries=transient_retries)
    queries = PortfolioQueries(engine)

    app = FastAPI(title="Position Ledger")

    @app.on_event("startup")
    async def startup_event() -> None:
        LOGGER.info("Starting position ledger API")
        ensure_schema(engine)

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        body: dict[str, object] = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, InsufficientQuantity):
            body["available"] = str(exc.available)
            body["requested"] = str(exc.requested)
        LOGGER.debug("%s %s -> %d %s", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content=body)

    @app.post("/instruments", status_code=status.HTTP_201_CREATED)
    def register_instrument(payload: InstrumentIn, owner_id: str = Depends(current_owner)):
        return directory.register(
            owner_id,
            payload.ticker,
            payload.name,
            payload.instrument_type,
            payload.description,
        )

    @app.get("/instruments")
    def list_instruments(owner_id: str = Depends(current_owner)):
        return directory.list_instruments(owner_id)

    @app.post("/transactions", status_code=status.HTTP_201_CREATED)
    def create_transaction(payload: TransactionIn, owner_id: str = Depends(current_owner)):
        return ledger.create(TransactionData(**payload.model_dump()), owner_id)

    @app.get("/transactions")
    def list_transactions(owner_id: str = Depends(current_owner)):
        return ledger.find_all(owner_id)

    @app.get("/transactions/{transaction_id}")
    def get_transaction(transaction_id: str, owner_id: str = Depends(current_owner)):
        return ledger.find_one(transaction_id, owner_id)

    @app.patch("/transactions/{transaction_id}")
    def update_transaction(
        transaction_id: str, payload: TransactionPatchIn, owner_id: str = Depends(current_owner)
    ):
        patch = TransactionPatch(**payload.model_dump(exclude_unset=True))
        return ledger.update(transaction_id, owner_id, patch)

    @app.delete("/transactions/{transaction_id}")
    def delete_transaction(transaction_id: str, owner_id: str = Depends(current_owner)):
        return ledger.remove(transaction_id, owner_id)

    @app.get("/positions")
    def list_positions(owner_id: str = Depends(current_owner)):
        return queries.list_positions(owner_id)

    @app.get("/positions/summary")
    def summarize_positions(owner_id: str = Depends(current_owner)):
        return queries.summarize(owner_id)

    @app.get("/positions/by-type")
    def positions_by_type(
        instrument_type: str = Query(..., alias="type"), owner_id: str = Depends(current_owner)
    ):
        return queries.list_positions_by_type(owner_id, instrument_type)

    @app.get("/positions/{position_id}")
    def get_position(position_id: str, owner_id: str = Depends(current_owner)):
        return queries.get_position(position_id, owner_id)

    return app


__all__ = ["create_app", "current_owner"]
