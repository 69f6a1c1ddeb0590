"""Pydantic schemas for the trade API.

Field names follow the wire format (camelCase) that existing clients send
and read. Amounts are display-unit ETH, given as a decimal string or a JSON
number; bare booleans are rejected rather than read as 0 or 1.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr

DisplayAmount = StrictStr | StrictInt | StrictFloat

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class TradeRequest(BaseModel):
    """Request body for transitions that only name the trade."""

    tradeId: str = Field(
        ...,
        min_length=1,
        description="Canonical 0x-prefixed 32-byte hex id, or a label of at most 31 bytes",
        examples=["order-42"],
    )


class CreateTradeRequest(TradeRequest):
    """Request body for opening a trade. The signing identity is the seller."""

    buyer: str = Field(
        ...,
        description="Buyer address (0x-prefixed, 42 chars)",
        examples=["0x742d35cc6634c0532925a3b844bc9e7595f2bd18"],
    )
    priceETH: DisplayAmount = Field(..., description="Trade price in ETH", examples=["0.5"])
    fileHash: str | None = Field(
        default=None,
        max_length=1024,
        description="Opaque reference to the traded content",
    )


class DepositRequest(TradeRequest):
    """Request body for funding the escrow; must equal the trade price."""

    priceETH: DisplayAmount = Field(..., description="Deposit in ETH", examples=["0.5"])


class ResolveDisputeRequest(TradeRequest):
    """Request body for settling a dispute.

    resolution == 1 refunds the buyer in full. Otherwise amountETH (default:
    the whole escrow) goes to recipient (default: the seller).
    """

    resolution: StrictInt | StrictStr | None = Field(default=None, examples=[1, 2])
    recipient: str | None = Field(default=None, description="Buyer or seller address")
    amountETH: DisplayAmount | None = Field(default=None, description="Split amount in ETH")


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TxResponse(BaseModel):
    """Outcome of a state-changing call."""

    ok: bool
    tradeId: str
    txHash: str | None = None
    pending: bool = False
    references: list[str] = Field(default_factory=list)
    code: str | None = None


class TradeResponse(BaseModel):
    """Current state of one trade."""

    ok: bool = True
    tradeId: str
    label: str | None = None
    seller: str
    buyer: str
    amountETH: str
    fileHash: str
    status: int
    statusName: str
    escrowETH: str
    paidOutETH: str
    createdAt: str
    pending: bool


class TradeEventResponse(BaseModel):
    """One audit trail entry."""

    sequence: int
    reference: str
    type: str
    oldStatus: int | None
    newStatus: int
    actor: str
    amountETH: str | None
    settlementRefs: list[str]
    metadata: dict
    createdAt: str


class TradeEventsResponse(BaseModel):
    ok: bool = True
    tradeId: str
    events: list[TradeEventResponse]


class TradeListResponse(BaseModel):
    ok: bool = True
    trades: list[TradeResponse]


class AllowedTransitionsResponse(BaseModel):
    ok: bool = True
    tradeId: str
    allowed: list[str]


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    code: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    settlement: str = "unknown"
