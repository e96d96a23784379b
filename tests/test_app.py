"""HTTP surface: routing, owner scoping and error mapping."""
from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from position_ledger.app import create_app

from conftest import OTHER_OWNER, OWNER

HEADERS = {"X-Owner-Id": OWNER}


def amount(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


@pytest.fixture
def instrument_id(client):
    response = client.post(
        "/instruments",
        json={"ticker": "wege3", "name": "WEG ON", "instrument_type": "stock"},
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()["id"]


def post_tx(client, instrument_id, kind, quantity, price, day, fees=0, headers=HEADERS):
    return client.post(
        "/transactions",
        json={
            "instrument_id": instrument_id,
            "kind": kind,
            "quantity": quantity,
            "unit_price": price,
            "fees": fees,
            "occurred_at": day,
        },
        headers=headers,
    )


def test_owner_header_is_required(client):
    assert client.get("/positions").status_code == 401


def test_duplicate_instrument_conflicts(client, instrument_id):
    response = client.post(
        "/instruments",
        json={"ticker": "WEGE3", "name": "WEG", "instrument_type": "STOCK"},
        headers=HEADERS,
    )
    assert response.status_code == 409
    assert [item["ticker"] for item in client.get("/instruments", headers=HEADERS).json()] == ["WEGE3"]


def test_full_lifecycle(client, instrument_id):
    first = post_tx(client, instrument_id, "BUY", 10, 10, "2024-01-01")
    assert first.status_code == 201
    body = first.json()
    assert body["instrument"]["ticker"] == "WEGE3"
    assert amount(body["total_value"]) == Decimal("100")

    post_tx(client, instrument_id, "BUY", 10, 20, "2024-01-02")
    sell = post_tx(client, instrument_id, "SELL", 5, 30, "2024-01-03")
    assert sell.status_code == 201

    positions = client.get("/positions", headers=HEADERS).json()
    assert len(positions) == 1
    position = positions[0]
    assert amount(position["quantity"]) == Decimal("15")
    assert amount(position["average_cost"]) == Decimal("15")
    assert amount(position["total_invested"]) == Decimal("225")

    single = client.get(f"/positions/{position['id']}", headers=HEADERS)
    assert single.status_code == 200
    assert client.get(f"/positions/{position['id']}", headers={"X-Owner-Id": OTHER_OWNER}).status_code == 404

    summary = client.get("/positions/summary", headers=HEADERS).json()
    assert summary["total_positions"] == 1
    assert amount(summary["distribution"][0]["percentage"]) == Decimal("100")

    by_type = client.get("/positions/by-type", params={"type": "stock"}, headers=HEADERS)
    assert [item["id"] for item in by_type.json()] == [position["id"]]

    patched = client.patch(
        f"/transactions/{sell.json()['id']}", json={"quantity": 20}, headers=HEADERS
    )
    assert patched.status_code == 200
    assert client.get("/positions", headers=HEADERS).json() == []

    deleted = client.delete(f"/transactions/{sell.json()['id']}", headers=HEADERS)
    assert deleted.status_code == 200
    assert deleted.json()["deleted_at"] is not None
    listed = client.get("/transactions", headers=HEADERS).json()
    assert len(listed) == 2
    assert amount(client.get("/positions", headers=HEADERS).json()[0]["quantity"]) == Decimal("20")


def test_oversell_maps_to_conflict(client, instrument_id):
    post_tx(client, instrument_id, "BUY", 15, 10, "2024-01-01")

    response = post_tx(client, instrument_id, "SELL", 100, 10, "2024-01-02")

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InsufficientQuantity"
    assert amount(body["available"]) == Decimal("15")
    assert len(client.get("/transactions", headers=HEADERS).json()) == 1


@pytest.mark.parametrize(
    "kind, quantity, price, day",
    [
        ("BUY", 0, 10, "2024-01-01"),
        ("GIFT", 1, 10, "2024-01-01"),
        ("BUY", 1, 10, "01/01/2024"),
        ("BUY", "0.00000000001", 10, "2024-01-01"),
    ],
)
def test_invalid_input_maps_to_422(client, instrument_id, kind, quantity, price, day):
    response = post_tx(client, instrument_id, kind, quantity, price, day)
    assert response.status_code == 422


def test_unknown_ids_map_to_404(client, instrument_id):
    assert post_tx(client, "missing", "BUY", 1, 1, "2024-01-01").status_code == 404
    assert client.get("/transactions/missing", headers=HEADERS).status_code == 404
    assert client.delete("/transactions/missing", headers=HEADERS).status_code == 404
    other = post_tx(
        client, instrument_id, "BUY", 1, 1, "2024-01-01", headers={"X-Owner-Id": OTHER_OWNER}
    )
    assert other.status_code == 404


def test_unknown_type_filter(client):
    response = client.get("/positions/by-type", params={"type": "COMMODITY"}, headers=HEADERS)
    assert response.status_code == 422
