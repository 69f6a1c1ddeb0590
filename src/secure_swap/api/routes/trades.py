"""Trade REST API routes.

These endpoints keep the flat, verb-named paths existing clients already
call. The MCP tools in mcp_server/tools.py go through the same TradeGateway,
ensuring consistency.

Routes:
    POST   /createTrade                  — Open a trade (caller is the seller)
    POST   /deposit                      — Buyer funds the escrow
    POST   /markShipped                  — Seller marks the goods shipped
    POST   /confirm                      — Buyer confirms receipt, seller is paid
    POST   /dispute                      — Either party freezes the trade
    POST   /resolveDispute               — Arbiter settles a dispute
    POST   /refund                       — Arbiter refunds the buyer in full
    POST   /reconcile                    — Drive a pending settlement
    GET    /getTrade/{id}                — Trade details
    GET    /getTrade/{id}/events         — Audit trail
    GET    /getTrade/{id}/allowed        — Transitions the caller may fire now
    GET    /trades                       — List trades by party and status

Mutating routes honour an optional Idempotency-Key header: the first
committed response is stored in Redis and replayed for repeats.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from secure_swap.api.deps import get_gateway
from secure_swap.infrastructure.redis_client import cache_response, get_cached_response
from secure_swap.logging_config import get_logger
from secure_swap.schemas.trade import (
    AllowedTransitionsResponse,
    CreateTradeRequest,
    DepositRequest,
    ErrorResponse,
    ResolveDisputeRequest,
    TradeEventsResponse,
    TradeListResponse,
    TradeRequest,
    TradeResponse,
    TxResponse,
)
from secure_swap.services.trade_gateway import TradeGateway

router = APIRouter(tags=["Trades"])
logger = get_logger(__name__)

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}
_MUTATION_RESPONSES = {
    **_ERRORS,
    202: {"model": TxResponse, "description": "Settlement pending; poll /reconcile"},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


async def _mutate(
    request: Request,
    gateway: TradeGateway,
    idempotency_key: str | None,
    operation: Callable[[], Awaitable[dict[str, Any]]],
) -> JSONResponse:
    scope = f"{gateway.authority.principal}:{request.url.path}"
    if idempotency_key:
        cached = await get_cached_response(scope, idempotency_key)
        if cached is not None:
            logger.info("idempotency.replayed", path=request.url.path, key=idempotency_key)
            return JSONResponse(
                status_code=cached["status_code"],
                content=cached["body"],
                headers={"Idempotent-Replayed": "true"},
            )

    result = await operation()
    status_code = 202 if result.get("pending") else 200
    if idempotency_key and status_code == 200:
        await cache_response(scope, idempotency_key, status_code, result)
    return JSONResponse(status_code=status_code, content=result)


# ---------------------------------------------------------------------------
# Create & fund
# ---------------------------------------------------------------------------


@router.post(
    "/createTrade",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Open a new trade",
)
async def create_trade(
    request: Request,
    body: CreateTradeRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """Create a trade in Created with an empty escrow."""
    return await _mutate(
        request,
        gateway,
        idempotency_key,
        lambda: gateway.create_trade(body.tradeId, body.buyer, body.priceETH, body.fileHash),
    )


@router.post(
    "/deposit",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Fund the escrow",
)
async def deposit(
    request: Request,
    body: DepositRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """Buyer deposits exactly the trade price. Transitions Created -> Funded."""
    return await _mutate(
        request, gateway, idempotency_key, lambda: gateway.deposit(body.tradeId, body.priceETH)
    )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


@router.post(
    "/markShipped",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Mark the goods shipped",
)
async def mark_shipped(
    request: Request,
    body: TradeRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """Seller marks shipment. Transitions Funded -> Shipped."""
    return await _mutate(
        request, gateway, idempotency_key, lambda: gateway.mark_shipped(body.tradeId)
    )


@router.post(
    "/confirm",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Confirm receipt",
)
async def confirm(
    request: Request,
    body: TradeRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """Buyer confirms receipt; the escrow is released to the seller."""
    return await _mutate(request, gateway, idempotency_key, lambda: gateway.confirm(body.tradeId))


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post(
    "/dispute",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Raise a dispute",
)
async def dispute(
    request: Request,
    body: TradeRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    return await _mutate(request, gateway, idempotency_key, lambda: gateway.dispute(body.tradeId))


@router.post(
    "/resolveDispute",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Settle a dispute",
)
async def resolve_dispute(
    request: Request,
    body: ResolveDisputeRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """Arbiter only. resolution=1 refunds the buyer; otherwise a split is paid."""
    return await _mutate(
        request,
        gateway,
        idempotency_key,
        lambda: gateway.resolve_dispute(
            body.tradeId, body.resolution, body.recipient, body.amountETH
        ),
    )


@router.post(
    "/refund",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Refund the buyer in full",
)
async def refund(
    request: Request,
    body: TradeRequest,
    gateway: TradeGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    return await _mutate(request, gateway, idempotency_key, lambda: gateway.refund(body.tradeId))


@router.post(
    "/reconcile",
    response_model=TxResponse,
    responses=_MUTATION_RESPONSES,
    summary="Drive a pending settlement",
)
async def reconcile(
    request: Request,
    body: TradeRequest,
    gateway: TradeGateway = Depends(get_gateway),
) -> JSONResponse:
    return await _mutate(request, gateway, None, lambda: gateway.reconcile(body.tradeId))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get(
    "/getTrade/{trade_id}",
    response_model=TradeResponse,
    responses=_ERRORS,
    summary="Get trade details",
)
async def get_trade(
    trade_id: str,
    gateway: TradeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    return await gateway.get_trade(trade_id)


@router.get(
    "/getTrade/{trade_id}/events",
    response_model=TradeEventsResponse,
    responses=_ERRORS,
    summary="Get the trade's audit trail",
)
async def get_trade_events(
    trade_id: str,
    gateway: TradeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    return await gateway.get_events(trade_id)


@router.get(
    "/getTrade/{trade_id}/allowed",
    response_model=AllowedTransitionsResponse,
    responses=_ERRORS,
    summary="Transitions the caller may fire now",
)
async def get_allowed_transitions(
    trade_id: str,
    gateway: TradeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    return await gateway.allowed_transitions(trade_id)


@router.get(
    "/trades",
    response_model=TradeListResponse,
    responses=_ERRORS,
    summary="List trades",
)
async def list_trades(
    party: str | None = Query(default=None, description="Seller or buyer address"),
    status: str | None = Query(default=None, description="Status ordinal or name"),
    gateway: TradeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    return await gateway.list_trades(party=party, status=status)
