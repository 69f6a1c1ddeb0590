"""MCP Tool definitions for the SecureSwap escrow service.

These tools expose the trade lifecycle via the Model Context Protocol,
allowing agent clients to discover and call them programmatically.

Tools:
    - create_trade: Open a trade as the seller
    - deposit: Fund a trade's escrow as the buyer
    - mark_shipped: Mark goods shipped as the seller
    - confirm_received: Confirm receipt as the buyer; pays the seller
    - raise_dispute: Freeze a trade pending arbitration
    - resolve_dispute: Settle a dispute as the arbiter
    - refund_all: Refund the buyer in full as the arbiter
    - reconcile: Drive a pending settlement to completion
    - get_trade: Read a trade and the transitions the caller may fire

The MCP server is mounted into FastAPI at /mcp via app.mount(). Tools have
no FastAPI Depends, so the app lifespan hands them the lifecycle and keyring
through configure_tools(). Every tool accepts an optional api_key that picks
the signing identity, exactly like the X-Api-Key header.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from secure_swap.domain.exceptions import EscrowError
from secure_swap.domain.units import ETHER_DECIMALS
from secure_swap.logging_config import get_logger
from secure_swap.services.trade_gateway import TradeGateway

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from secure_swap.domain.authority import AuthorityKeyring
    from secure_swap.services.trade_lifecycle import TradeLifecycle

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "SecureSwap Escrow",
    json_response=True,
)

_runtime: dict[str, Any] = {}


def configure_tools(
    lifecycle: TradeLifecycle,
    keyring: AuthorityKeyring,
    decimals: int = ETHER_DECIMALS,
) -> None:
    """Bind the tools to the running application's lifecycle."""
    _runtime.update(lifecycle=lifecycle, keyring=keyring, decimals=decimals)


def _gateway(api_key: str) -> TradeGateway:
    if "lifecycle" not in _runtime:
        raise RuntimeError("MCP tools are not configured. Call configure_tools() first.")
    authority = _runtime["keyring"].resolve(api_key or None)
    return TradeGateway(_runtime["lifecycle"], authority, decimals=_runtime["decimals"])


async def _call(
    tool: str, api_key: str, operation: Callable[[TradeGateway], Awaitable[dict]]
) -> dict:
    try:
        return await operation(_gateway(api_key))
    except EscrowError as exc:
        logger.warning(f"mcp.{tool}.rejected", error=exc.message, code=exc.code)
        return {"ok": False, "error": exc.message, "code": exc.code}
    except Exception as exc:
        logger.exception(f"mcp.{tool}.error")
        return {"ok": False, "error": str(exc), "code": "INTERNAL_ERROR"}


@mcp.tool()
async def create_trade(
    trade_id: str,
    buyer: str,
    price_eth: str,
    file_hash: str = "",
    api_key: str = "",
) -> dict:
    """Open a new escrow trade with yourself as the seller.

    Args:
        trade_id: A label of at most 31 bytes (e.g. "order-42") or a 0x-prefixed 32-byte hex id.
        buyer: The buyer's address (0x-prefixed, 42 chars).
        price_eth: Price in ETH as a decimal string, e.g. "0.5".
        file_hash: Optional reference to the traded content.
        api_key: Credential selecting your signing identity.

    Returns:
        {"ok": true, "txHash": ...}. Next step: the buyer deposits the price.
    """
    return await _call(
        "create_trade",
        api_key,
        lambda gw: gw.create_trade(trade_id, buyer, price_eth, file_hash or None),
    )


@mcp.tool()
async def deposit(trade_id: str, price_eth: str, api_key: str = "") -> dict:
    """Fund a trade's escrow as its buyer. The deposit must equal the price exactly.

    Args:
        trade_id: The trade to fund.
        price_eth: Amount in ETH as a decimal string.
        api_key: Credential selecting your signing identity.
    """
    return await _call("deposit", api_key, lambda gw: gw.deposit(trade_id, price_eth))


@mcp.tool()
async def mark_shipped(trade_id: str, api_key: str = "") -> dict:
    """Mark a funded trade as shipped (seller only)."""
    return await _call("mark_shipped", api_key, lambda gw: gw.mark_shipped(trade_id))


@mcp.tool()
async def confirm_received(trade_id: str, api_key: str = "") -> dict:
    """Confirm receipt as the buyer; the escrow is released to the seller."""
    return await _call("confirm_received", api_key, lambda gw: gw.confirm(trade_id))


@mcp.tool()
async def raise_dispute(trade_id: str, api_key: str = "") -> dict:
    """Freeze a funded or shipped trade until the arbiter resolves it (buyer or seller)."""
    return await _call("raise_dispute", api_key, lambda gw: gw.dispute(trade_id))


@mcp.tool()
async def resolve_dispute(
    trade_id: str,
    refund_buyer: bool = False,
    recipient: str = "",
    amount_eth: str = "",
    api_key: str = "",
) -> dict:
    """Settle a disputed trade (arbiter only).

    Args:
        trade_id: The disputed trade.
        refund_buyer: Return the whole escrow to the buyer.
        recipient: Buyer or seller to pay; defaults to the seller.
        amount_eth: Amount for the recipient; defaults to the whole escrow.
            Any remainder goes per the configured remainder policy.
        api_key: Credential selecting your signing identity.
    """
    return await _call(
        "resolve_dispute",
        api_key,
        lambda gw: gw.resolve_dispute(
            trade_id,
            1 if refund_buyer else None,
            recipient or None,
            amount_eth or None,
        ),
    )


@mcp.tool()
async def refund_all(trade_id: str, api_key: str = "") -> dict:
    """Refund the buyer in full from a disputed trade (arbiter only)."""
    return await _call("refund_all", api_key, lambda gw: gw.refund(trade_id))


@mcp.tool()
async def reconcile(trade_id: str, api_key: str = "") -> dict:
    """Drive a trade whose settlement is pending to completion or abort."""
    return await _call("reconcile", api_key, lambda gw: gw.reconcile(trade_id))


@mcp.tool()
async def get_trade(trade_id: str, api_key: str = "") -> dict:
    """Read a trade, plus the transitions you may fire on it now.

    Returns:
        Trade fields (amounts in ETH, status ordinal and name) and "allowed".
    """

    async def _read(gw: TradeGateway) -> dict:
        trade = await gw.get_trade(trade_id)
        allowed = await gw.allowed_transitions(trade_id)
        return {**trade, "allowed": allowed["allowed"]}

    return await _call("get_trade", api_key, _read)
