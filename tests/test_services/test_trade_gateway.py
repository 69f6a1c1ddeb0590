"""Tests for the TradeGateway: input parsing, authority, and result shapes."""

from __future__ import annotations

import pytest
from conftest import ARBITER, BUYER, ONE_ETH, SELLER

from secure_swap.domain.authority import Authority
from secure_swap.domain.exceptions import (
    InvalidTransitionError,
    TradeNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from secure_swap.domain.identifiers import TradeId
from secure_swap.services.trade_gateway import TradeGateway
from secure_swap.services.trade_lifecycle import TradeLifecycle


async def _open(gateways, label: str = "order-7", price: str = "1.0") -> str:
    result = await gateways["seller"].create_trade(label, BUYER, price, "QmFile")
    assert result["ok"] is True
    return label


class TestMutations:
    @pytest.mark.asyncio
    async def test_create_trade(self, gateways) -> None:
        result = await gateways["seller"].create_trade("order-7", BUYER.upper().replace("0X", "0x"), "1.5")

        assert result["ok"] is True
        assert result["tradeId"] == TradeId.parse("order-7").hex
        assert result["txHash"].startswith("evt-")

        trade = await gateways["buyer"].get_trade("order-7")
        assert trade["seller"] == SELLER
        assert trade["buyer"] == BUYER
        assert trade["amountETH"] == "1.5"
        assert trade["fileHash"] == "N/A"

    @pytest.mark.asyncio
    async def test_label_and_hex_address_the_same_trade(self, gateways) -> None:
        await _open(gateways)
        canonical = TradeId.parse("order-7").hex

        result = await gateways["buyer"].deposit(canonical, "1")
        assert result["ok"] is True
        assert result["txHash"].startswith("0x")
        assert (await gateways["buyer"].get_trade("order-7"))["status"] == 1

    @pytest.mark.asyncio
    async def test_price_with_too_many_decimals(self, gateways) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await gateways["seller"].create_trade("order-7", BUYER, "0.0000000000000000001")
        assert exc_info.value.field == "priceETH"

    @pytest.mark.asyncio
    async def test_zero_price(self, gateways) -> None:
        with pytest.raises(ValidationError):
            await gateways["seller"].create_trade("order-7", BUYER, "0")

    @pytest.mark.asyncio
    async def test_label_too_long(self, gateways) -> None:
        with pytest.raises(ValidationError):
            await gateways["seller"].create_trade("x" * 32, BUYER, "1")

    @pytest.mark.asyncio
    async def test_deposit_mismatch(self, gateways) -> None:
        await _open(gateways)
        with pytest.raises(InvalidTransitionError):
            await gateways["buyer"].deposit("order-7", "0.9")

    @pytest.mark.asyncio
    async def test_authority_decides_the_actor(self, gateways) -> None:
        await _open(gateways)
        await gateways["buyer"].deposit("order-7", "1.0")

        with pytest.raises(UnauthorizedError):
            await gateways["seller"].confirm("order-7")
        with pytest.raises(UnauthorizedError):
            await gateways["stranger"].dispute("order-7")

        assert (await gateways["seller"].mark_shipped("order-7"))["ok"] is True
        assert (await gateways["buyer"].confirm("order-7"))["ok"] is True

    @pytest.mark.asyncio
    async def test_unknown_trade(self, gateways) -> None:
        with pytest.raises(TradeNotFoundError):
            await gateways["buyer"].confirm("nope")


class TestDisputeResolution:
    @pytest.fixture
    async def disputed(self, gateways) -> str:
        await _open(gateways)
        await gateways["buyer"].deposit("order-7", "1.0")
        await gateways["buyer"].dispute("order-7")
        return "order-7"

    @pytest.mark.asyncio
    async def test_legacy_refund_code(self, gateways, ledger, disputed) -> None:
        result = await gateways["arbiter"].resolve_dispute(disputed, 1)

        assert result["ok"] is True
        trade = await gateways["arbiter"].get_trade(disputed)
        assert trade["statusName"] == "Refunded"
        assert ledger.balance_of(BUYER) == ONE_ETH

    @pytest.mark.asyncio
    async def test_default_split_pays_seller(self, gateways, ledger, disputed) -> None:
        await gateways["arbiter"].resolve_dispute(disputed, 0)

        trade = await gateways["arbiter"].get_trade(disputed)
        assert trade["statusName"] == "Resolved"
        assert trade["paidOutETH"] == "1.0"
        assert ledger.balance_of(SELLER) == ONE_ETH

    @pytest.mark.asyncio
    async def test_explicit_split(self, gateways, ledger, disputed) -> None:
        await gateways["arbiter"].resolve_dispute(disputed, "2", recipient=BUYER, amount="0.3")

        assert ledger.balance_of(BUYER) == 3 * ONE_ETH // 10
        assert ledger.balance_of(SELLER) == 7 * ONE_ETH // 10

    @pytest.mark.parametrize("code", ["abc", True])
    @pytest.mark.asyncio
    async def test_malformed_code(self, gateways, disputed, code) -> None:
        with pytest.raises(ValidationError):
            await gateways["arbiter"].resolve_dispute(disputed, code)

    @pytest.mark.asyncio
    async def test_refund_twice(self, gateways, disputed) -> None:
        await gateways["arbiter"].refund(disputed)
        with pytest.raises(InvalidTransitionError):
            await gateways["arbiter"].refund(disputed)


class TestPendingResult:
    @pytest.mark.asyncio
    async def test_pending_is_reported_not_raised(self, store, ledger) -> None:
        lifecycle = TradeLifecycle(
            store, ledger, arbiter=ARBITER, settlement_timeout=0.05, poll_interval=0.01
        )
        seller = TradeGateway(lifecycle, Authority(SELLER))
        buyer = TradeGateway(lifecycle, Authority(BUYER))
        await seller.create_trade("order-7", BUYER, "1")
        ledger.auto_confirm = False

        result = await buyer.deposit("order-7", "1")

        assert result["ok"] is False
        assert result["pending"] is True
        assert result["code"] == "SETTLEMENT_PENDING"
        assert result["txHash"] == ledger.pending_references()[0]
        assert (await buyer.get_trade("order-7"))["pending"] is True

        ledger.confirm_all()
        reconciled = await buyer.reconcile("order-7")
        assert reconciled == {
            "ok": True,
            "tradeId": TradeId.parse("order-7").hex,
            "txHash": result["txHash"],
        }


class TestQueries:
    @pytest.mark.asyncio
    async def test_serialized_trade(self, gateways) -> None:
        await _open(gateways, price="2.25")
        trade = await gateways["buyer"].get_trade("order-7")

        assert trade["ok"] is True
        assert trade["label"] == "order-7"
        assert trade["status"] == 0
        assert trade["statusName"] == "Created"
        assert trade["amountETH"] == "2.25"
        assert trade["escrowETH"] == "0.0"
        assert trade["fileHash"] == "QmFile"
        assert trade["createdAt"].isdigit()
        assert trade["pending"] is False

    @pytest.mark.asyncio
    async def test_events(self, gateways) -> None:
        await _open(gateways)
        await gateways["buyer"].deposit("order-7", "1")

        result = await gateways["buyer"].get_events("order-7")
        assert [e["type"] for e in result["events"]] == ["TRADE_CREATED", "TRADE_FUNDED"]
        funded = result["events"][1]
        assert funded["oldStatus"] == 0
        assert funded["newStatus"] == 1
        assert funded["amountETH"] == "1.0"
        assert funded["actor"] == BUYER
        assert len(funded["settlementRefs"]) == 1

    @pytest.mark.asyncio
    async def test_list_trades_by_status_name(self, gateways) -> None:
        await _open(gateways, "a")
        await _open(gateways, "b")
        await gateways["buyer"].deposit("b", "1")

        funded = await gateways["buyer"].list_trades(party=BUYER, status="funded")
        assert [t["label"] for t in funded["trades"]] == ["b"]
        by_ordinal = await gateways["buyer"].list_trades(status="0")
        assert [t["label"] for t in by_ordinal["trades"]] == ["a"]

    @pytest.mark.asyncio
    async def test_list_trades_unknown_status(self, gateways) -> None:
        with pytest.raises(ValidationError):
            await gateways["buyer"].list_trades(status="lost")

    @pytest.mark.asyncio
    async def test_allowed_transitions(self, gateways) -> None:
        await _open(gateways)
        assert (await gateways["buyer"].allowed_transitions("order-7"))["allowed"] == ["deposit"]
        assert (await gateways["seller"].allowed_transitions("order-7"))["allowed"] == []
