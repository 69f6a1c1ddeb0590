"""Tests for the MCP tool functions.

The tools are called directly, bound to a lifecycle on the test database.
"""

from __future__ import annotations

import pytest
from conftest import ARBITER, BUYER, SELLER

from secure_swap.domain.authority import Authority, AuthorityKeyring
from secure_swap.mcp_server import tools


@pytest.fixture
def configured(lifecycle):
    keyring = AuthorityKeyring(
        Authority(SELLER, label="signer"),
        {"buyer-key": BUYER, "arbiter-key": ARBITER},
    )
    tools.configure_tools(lifecycle, keyring)
    yield lifecycle
    tools._runtime.clear()


@pytest.mark.asyncio
async def test_tools_drive_a_trade(configured, ledger) -> None:
    created = await tools.create_trade("mcp-1", BUYER, "0.5", "QmAgentFile")
    assert created["ok"] is True

    funded = await tools.deposit("mcp-1", "0.5", api_key="buyer-key")
    assert funded["ok"] is True

    trade = await tools.get_trade("mcp-1", api_key="buyer-key")
    assert trade["statusName"] == "Funded"
    assert trade["allowed"] == ["confirm_received", "raise_dispute"]

    assert (await tools.mark_shipped("mcp-1"))["ok"] is True
    assert (await tools.confirm_received("mcp-1", api_key="buyer-key"))["ok"] is True
    assert ledger.balance_of(SELLER) == 5 * 10**17


@pytest.mark.asyncio
async def test_dispute_tools(configured, ledger) -> None:
    await tools.create_trade("mcp-2", BUYER, "1")
    await tools.deposit("mcp-2", "1", api_key="buyer-key")
    assert (await tools.raise_dispute("mcp-2", api_key="buyer-key"))["ok"] is True

    resolved = await tools.resolve_dispute(
        "mcp-2", recipient=BUYER, amount_eth="0.4", api_key="arbiter-key"
    )

    assert resolved["ok"] is True
    assert ledger.balance_of(BUYER) == 4 * 10**17
    assert ledger.balance_of(SELLER) == 6 * 10**17


@pytest.mark.asyncio
async def test_refund_tools(configured, ledger) -> None:
    await tools.create_trade("mcp-3", BUYER, "1")
    await tools.deposit("mcp-3", "1", api_key="buyer-key")
    await tools.raise_dispute("mcp-3")

    assert (await tools.resolve_dispute("mcp-3", refund_buyer=True, api_key="arbiter-key"))["ok"]
    again = await tools.refund_all("mcp-3", api_key="arbiter-key")
    assert again["ok"] is False
    assert again["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_errors_are_returned_not_raised(configured) -> None:
    missing = await tools.get_trade("ghost")
    assert missing["ok"] is False
    assert missing["code"] == "TRADE_NOT_FOUND"

    bad_key = await tools.confirm_received("ghost", api_key="stolen")
    assert bad_key["code"] == "UNAUTHORIZED"

    nothing_pending = await tools.reconcile("ghost")
    assert nothing_pending["code"] == "TRADE_NOT_FOUND"


@pytest.mark.asyncio
async def test_unconfigured_tools() -> None:
    tools._runtime.clear()
    result = await tools.get_trade("order-1")
    assert result["ok"] is False
    assert result["code"] == "INTERNAL_ERROR"
