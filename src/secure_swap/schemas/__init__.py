"""Pydantic API schemas."""

from secure_swap.schemas.trade import (
    AllowedTransitionsResponse,
    CreateTradeRequest,
    DepositRequest,
    ErrorResponse,
    HealthResponse,
    ResolveDisputeRequest,
    TradeEventResponse,
    TradeEventsResponse,
    TradeListResponse,
    TradeRequest,
    TradeResponse,
    TxResponse,
)

__all__ = [
    "AllowedTransitionsResponse",
    "CreateTradeRequest",
    "DepositRequest",
    "ErrorResponse",
    "HealthResponse",
    "ResolveDisputeRequest",
    "TradeEventResponse",
    "TradeEventsResponse",
    "TradeListResponse",
    "TradeRequest",
    "TradeResponse",
    "TxResponse",
]
