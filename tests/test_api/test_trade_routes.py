"""HTTP tests for the trade routes.

The full application runs through its lifespan against a throwaway SQLite
file and the simulated ledger. Redis points at a closed port, so the
idempotency cache starts disabled; tests that need it install an AsyncMock.

Identities:
    no X-Api-Key     -> the seller (the service's default signer)
    buyer-key        -> the buyer
    arbiter-key      -> the arbiter
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from conftest import ARBITER, BUYER, SELLER
from fastapi.testclient import TestClient

from secure_swap.config import get_settings
from secure_swap.domain.identifiers import TradeId
from secure_swap.infrastructure.redis_client import set_redis
from secure_swap.main import create_app

AS_BUYER = {"X-Api-Key": "buyer-key"}
AS_ARBITER = {"X-Api-Key": "arbiter-key"}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    monkeypatch.setenv("SETTLEMENT_BACKEND", "simulated")
    monkeypatch.setenv("SETTLEMENT_TIMEOUT_SECONDS", "0.2")
    monkeypatch.setenv("SETTLEMENT_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("SIGNER_ADDRESS", SELLER)
    monkeypatch.setenv("ARBITER_ADDRESS", ARBITER)
    monkeypatch.setenv(
        "API_CREDENTIALS", json.dumps({"buyer-key": BUYER, "arbiter-key": ARBITER})
    )
    get_settings.cache_clear()
    with TestClient(create_app()) as test_client:
        yield test_client
    set_redis(None)
    get_settings.cache_clear()


@pytest.fixture
def ledger(client):
    return client.app.state.executor


def _create(client: TestClient, trade_id: str = "order-42", price="1.5") -> dict:
    response = client.post(
        "/createTrade",
        json={"tradeId": trade_id, "buyer": BUYER, "priceETH": price, "fileHash": "QmFile"},
    )
    assert response.status_code == 200, response.text
    return response.json()


def _fund(client: TestClient, trade_id: str = "order-42", price="1.5") -> dict:
    response = client.post("/deposit", json={"tradeId": trade_id, "priceETH": price}, headers=AS_BUYER)
    assert response.status_code == 200, response.text
    return response.json()


class TestHappyPath:
    def test_full_lifecycle(self, client: TestClient) -> None:
        created = _create(client)
        assert created["ok"] is True
        assert created["tradeId"] == TradeId.parse("order-42").hex

        funded = _fund(client)
        assert funded["txHash"].startswith("0x")

        shipped = client.post("/markShipped", json={"tradeId": "order-42"})
        assert shipped.status_code == 200

        confirmed = client.post("/confirm", json={"tradeId": "order-42"}, headers=AS_BUYER)
        assert confirmed.status_code == 200

        trade = client.get("/getTrade/order-42").json()
        assert trade["status"] == 3
        assert trade["statusName"] == "Completed"
        assert trade["seller"] == SELLER
        assert trade["buyer"] == BUYER
        assert trade["amountETH"] == "1.5"
        assert trade["escrowETH"] == "0.0"
        assert trade["fileHash"] == "QmFile"
        assert trade["createdAt"].isdigit()

    def test_get_trade_by_canonical_id(self, client: TestClient) -> None:
        created = _create(client)
        trade = client.get(f"/getTrade/{created['tradeId']}").json()
        assert trade["label"] == "order-42"

    def test_numeric_price(self, client: TestClient) -> None:
        _create(client, price=2)
        assert client.get("/getTrade/order-42").json()["amountETH"] == "2.0"

    def test_events_and_allowed(self, client: TestClient) -> None:
        _create(client)
        _fund(client)

        events = client.get("/getTrade/order-42/events").json()["events"]
        assert [e["type"] for e in events] == ["TRADE_CREATED", "TRADE_FUNDED"]

        allowed = client.get("/getTrade/order-42/allowed", headers=AS_BUYER).json()
        assert allowed["allowed"] == ["confirm_received", "raise_dispute"]

    def test_list_trades(self, client: TestClient) -> None:
        _create(client, "a")
        _create(client, "b")
        _fund(client, "b")

        response = client.get("/trades", params={"party": BUYER, "status": "Funded"})
        assert response.status_code == 200
        assert [t["label"] for t in response.json()["trades"]] == ["b"]

    def test_dispute_split(self, client: TestClient, ledger) -> None:
        _create(client, price="1.0")
        _fund(client, price="1.0")
        assert client.post("/dispute", json={"tradeId": "order-42"}, headers=AS_BUYER).status_code == 200

        response = client.post(
            "/resolveDispute",
            json={"tradeId": "order-42", "resolution": 2, "recipient": BUYER, "amountETH": "0.3"},
            headers=AS_ARBITER,
        )

        assert response.status_code == 200
        assert client.get("/getTrade/order-42").json()["statusName"] == "Resolved"
        assert ledger.balance_of(BUYER) == 3 * 10**17

    def test_legacy_refund_resolution(self, client: TestClient) -> None:
        _create(client)
        _fund(client)
        client.post("/dispute", json={"tradeId": "order-42"})

        response = client.post(
            "/resolveDispute", json={"tradeId": "order-42", "resolution": 1}, headers=AS_ARBITER
        )
        assert response.status_code == 200
        assert client.get("/getTrade/order-42").json()["status"] == 6


class TestErrors:
    def test_missing_field(self, client: TestClient) -> None:
        response = client.post("/createTrade", json={"tradeId": "order-42", "priceETH": "1"})
        assert response.status_code == 400
        body = response.json()
        assert body["ok"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert "buyer" in body["error"]

    def test_boolean_price(self, client: TestClient) -> None:
        response = client.post(
            "/createTrade", json={"tradeId": "order-42", "buyer": BUYER, "priceETH": True}
        )
        assert response.status_code == 400

    def test_malformed_price(self, client: TestClient) -> None:
        response = client.post(
            "/createTrade", json={"tradeId": "order-42", "buyer": BUYER, "priceETH": "1.2.3"}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_bad_buyer_address(self, client: TestClient) -> None:
        response = client.post(
            "/createTrade", json={"tradeId": "order-42", "buyer": "bob", "priceETH": "1"}
        )
        assert response.status_code == 400

    def test_unknown_api_key(self, client: TestClient) -> None:
        response = client.get("/getTrade/order-42", headers={"X-Api-Key": "stolen"})
        assert response.status_code == 403
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_wrong_role(self, client: TestClient) -> None:
        _create(client)
        _fund(client)
        response = client.post("/confirm", json={"tradeId": "order-42"})
        assert response.status_code == 403

    def test_unknown_trade(self, client: TestClient) -> None:
        response = client.get("/getTrade/nope")
        assert response.status_code == 404
        assert response.json() == {
            "ok": False,
            "error": f"Trade not found: {TradeId.parse('nope').hex}",
            "code": "TRADE_NOT_FOUND",
        }

    def test_duplicate_trade(self, client: TestClient) -> None:
        _create(client)
        response = client.post(
            "/createTrade", json={"tradeId": "order-42", "buyer": BUYER, "priceETH": "1.5"}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "TRADE_CONFLICT"

    def test_wrong_deposit(self, client: TestClient) -> None:
        _create(client)
        response = client.post(
            "/deposit", json={"tradeId": "order-42", "priceETH": "1.4"}, headers=AS_BUYER
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    def test_settlement_rejected(self, client: TestClient, ledger) -> None:
        _create(client)
        ledger.fail_next()
        response = client.post(
            "/deposit", json={"tradeId": "order-42", "priceETH": "1.5"}, headers=AS_BUYER
        )
        assert response.status_code == 502
        assert response.json()["code"] == "SETTLEMENT_FAILURE"

    def test_backend_unavailable(self, client: TestClient, ledger) -> None:
        _create(client)
        ledger.available = False
        response = client.post(
            "/deposit", json={"tradeId": "order-42", "priceETH": "1.5"}, headers=AS_BUYER
        )
        assert response.status_code == 503
        assert response.json()["code"] == "BACKEND_UNAVAILABLE"


class TestPendingSettlement:
    def test_pending_then_reconcile(self, client: TestClient, ledger) -> None:
        _create(client)
        ledger.auto_confirm = False

        response = client.post(
            "/deposit", json={"tradeId": "order-42", "priceETH": "1.5"}, headers=AS_BUYER
        )
        assert response.status_code == 202
        body = response.json()
        assert body["pending"] is True
        assert body["code"] == "SETTLEMENT_PENDING"
        assert client.get("/getTrade/order-42").json()["pending"] is True

        blocked = client.post("/deposit", json={"tradeId": "order-42", "priceETH": "1.5"}, headers=AS_BUYER)
        assert blocked.status_code == 409

        ledger.confirm_all()
        reconciled = client.post("/reconcile", json={"tradeId": "order-42"})
        assert reconciled.status_code == 200
        assert reconciled.json()["txHash"] == body["txHash"]
        assert client.get("/getTrade/order-42").json()["statusName"] == "Funded"


class TestIdempotency:
    @pytest.fixture
    def fake_redis(self, client):
        stored: dict[str, str] = {}
        fake = AsyncMock()
        fake.get.side_effect = lambda key: stored.get(key)
        fake.set.side_effect = lambda key, value, ex=None, nx=False: stored.setdefault(key, value)
        set_redis(fake)
        return stored

    def test_repeat_is_replayed(self, client: TestClient, fake_redis) -> None:
        body = {"tradeId": "order-42", "buyer": BUYER, "priceETH": "1.5"}
        headers = {"Idempotency-Key": "create-1"}

        first = client.post("/createTrade", json=body, headers=headers)
        second = client.post("/createTrade", json=body, headers=headers)

        assert first.status_code == second.status_code == 200
        assert second.json() == first.json()
        assert second.headers["Idempotent-Replayed"] == "true"
        assert "Idempotent-Replayed" not in first.headers

    def test_keys_are_scoped_to_the_caller(self, client: TestClient, fake_redis) -> None:
        _create(client)
        headers = {"Idempotency-Key": "same"}

        client.post("/dispute", json={"tradeId": "order-42"}, headers=headers)
        assert len(fake_redis) == 0  # 409: failures are not cached

        _fund(client)
        seller = client.post("/dispute", json={"tradeId": "order-42"}, headers=headers)
        buyer = client.post("/dispute", json={"tradeId": "order-42"}, headers={**headers, **AS_BUYER})
        assert seller.status_code == 200
        assert buyer.status_code == 409


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["redis"] == "disabled"
        assert body["settlement"] == "healthy"
        assert "X-Request-ID" in response.headers
