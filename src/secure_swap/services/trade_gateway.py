"""TradeGateway — the external operation surface.

Turns loosely typed outside input (short trade labels, display-unit
amounts, the legacy numeric dispute resolution) into domain values, acts as
the injected Authority, and shapes lifecycle results into the response
dictionaries both the REST routes and the MCP tools return.

Results:
    {"ok": True, "txHash": ...}                                  committed
    {"ok": False, "pending": True, "txHash": ..., "code": ...}   awaiting finality

Every other failure propagates as an EscrowError.
"""

from __future__ import annotations

from datetime import UTC
from typing import TYPE_CHECKING, Any

from secure_swap.domain.enums import TradeStatus
from secure_swap.domain.exceptions import SettlementPendingError, ValidationError
from secure_swap.domain.identifiers import TradeId, normalize_address
from secure_swap.domain.resolution import FullRefund, Resolution, SplitTo
from secure_swap.domain.units import ETHER_DECIMALS, from_base_units, to_base_units
from secure_swap.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from secure_swap.domain.authority import Authority
    from secure_swap.infrastructure.database.orm_models import Trade, TradeEvent
    from secure_swap.services.trade_lifecycle import TradeLifecycle, TransitionOutcome

logger = get_logger(__name__)

# resolveDispute's numeric code for "refund the buyer in full"
LEGACY_REFUND_CODE = 1


class TradeGateway:
    """Operations of one signing identity against the trade lifecycle."""

    def __init__(
        self,
        lifecycle: TradeLifecycle,
        authority: Authority,
        decimals: int = ETHER_DECIMALS,
    ) -> None:
        self._lifecycle = lifecycle
        self._authority = authority
        self._decimals = decimals

    @property
    def authority(self) -> Authority:
        return self._authority

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_trade(
        self,
        trade_id: str,
        buyer: str,
        price: str | int | float,
        file_hash: str | None = None,
    ) -> dict[str, Any]:
        """Open a trade with the authority as seller."""
        tid = TradeId.parse(trade_id)
        buyer = normalize_address(buyer, "buyer")
        amount = to_base_units(price, self._decimals, field="priceETH")
        return await self._run(
            self._lifecycle.create_trade(
                tid, self._authority.principal, buyer, amount, content_ref=file_hash
            ),
            tid,
        )

    async def deposit(self, trade_id: str, price: str | int | float) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        value = to_base_units(price, self._decimals, field="priceETH")
        return await self._run(self._lifecycle.deposit(tid, self._authority.principal, value), tid)

    async def mark_shipped(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        return await self._run(self._lifecycle.mark_shipped(tid, self._authority.principal), tid)

    async def confirm(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        return await self._run(
            self._lifecycle.confirm_received(tid, self._authority.principal), tid
        )

    async def dispute(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        return await self._run(self._lifecycle.raise_dispute(tid, self._authority.principal), tid)

    async def resolve_dispute(
        self,
        trade_id: str,
        resolution: int | str | None = None,
        recipient: str | None = None,
        amount: str | int | float | None = None,
    ) -> dict[str, Any]:
        """Settle a dispute.

        resolution == 1 refunds the buyer in full. Anything else pays
        `amount` (default: the whole escrow) to `recipient` (default: the
        seller), with any remainder going per the configured policy.
        """
        tid = TradeId.parse(trade_id)
        decision = await self._parse_resolution(tid, resolution, recipient, amount)
        return await self._run(
            self._lifecycle.resolve_dispute(tid, self._authority.principal, decision), tid
        )

    async def refund(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        return await self._run(self._lifecycle.refund_all(tid, self._authority.principal), tid)

    async def reconcile(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        return await self._run(self._lifecycle.reconcile(tid), tid)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_trade(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        trade = await self._lifecycle.get_trade(tid)
        return {"ok": True, **self.serialize_trade(trade)}

    async def get_events(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        events = await self._lifecycle.list_events(tid)
        return {"ok": True, "tradeId": tid.hex, "events": [self.serialize_event(e) for e in events]}

    async def list_trades(
        self, party: str | None = None, status: int | str | None = None
    ) -> dict[str, Any]:
        trades = await self._lifecycle.list_trades(
            party=party or None, status=_parse_status(status)
        )
        return {"ok": True, "trades": [self.serialize_trade(t) for t in trades]}

    async def allowed_transitions(self, trade_id: str) -> dict[str, Any]:
        tid = TradeId.parse(trade_id)
        names = await self._lifecycle.allowed_transitions(tid, self._authority.principal)
        return {"ok": True, "tradeId": tid.hex, "allowed": names}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize_trade(self, trade: Trade) -> dict[str, Any]:
        status = trade.trade_status
        created_at = trade.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        label = TradeId.parse(trade.id).label
        return {
            "tradeId": trade.id,
            "label": label,
            "seller": trade.seller,
            "buyer": trade.buyer,
            "amountETH": from_base_units(trade.amount, self._decimals),
            "fileHash": trade.content_ref,
            "status": status.value,
            "statusName": status.name.title(),
            "escrowETH": from_base_units(trade.escrow_balance, self._decimals),
            "paidOutETH": from_base_units(trade.total_paid_out, self._decimals),
            "createdAt": str(int(created_at.timestamp())),
            "pending": bool(trade.pending_settlement),
        }

    def serialize_event(self, event: TradeEvent) -> dict[str, Any]:
        return {
            "sequence": event.sequence,
            "reference": event.reference,
            "type": event.event_type,
            "oldStatus": event.old_status,
            "newStatus": event.new_status,
            "actor": event.actor,
            "amountETH": (
                from_base_units(event.amount, self._decimals) if event.amount is not None else None
            ),
            "settlementRefs": event.settlement_refs or [],
            "metadata": event.metadata_json or {},
            "createdAt": event.created_at.isoformat(),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run(
        self, operation: Awaitable[TransitionOutcome], tid: TradeId
    ) -> dict[str, Any]:
        try:
            outcome = await operation
        except SettlementPendingError as exc:
            logger.info("gateway.pending", trade_id=tid.hex, references=exc.references)
            return {
                "ok": False,
                "pending": True,
                "tradeId": tid.hex,
                "txHash": exc.references[-1] if exc.references else None,
                "references": exc.references,
                "code": exc.code,
            }
        return {"ok": True, "tradeId": tid.hex, "txHash": outcome.reference}

    async def _parse_resolution(
        self,
        tid: TradeId,
        resolution: int | str | None,
        recipient: str | None,
        amount: str | int | float | None,
    ) -> Resolution:
        if isinstance(resolution, bool):
            raise ValidationError("resolution must be an integer code", field="resolution")
        if resolution is not None:
            try:
                code = int(resolution)
            except (TypeError, ValueError) as err:
                raise ValidationError(
                    "resolution must be an integer code", field="resolution"
                ) from err
            if code == LEGACY_REFUND_CODE:
                return FullRefund()

        trade = await self._lifecycle.get_trade(tid)
        to = normalize_address(recipient, "recipient") if recipient else trade.seller
        value = (
            to_base_units(amount, self._decimals, field="amountETH")
            if amount is not None and amount != ""
            else trade.escrow_balance
        )
        return SplitTo(recipient=to, amount=value)


def _parse_status(status: int | str | None) -> TradeStatus | None:
    """Accept an ordinal or a status name ("Funded", "FUNDED")."""
    if status is None or status == "":
        return None
    if isinstance(status, int) or (isinstance(status, str) and status.isdigit()):
        try:
            return TradeStatus(int(status))
        except ValueError as err:
            raise ValidationError(f"unknown status {status!r}", field="status") from err
    try:
        return TradeStatus[str(status).upper()]
    except KeyError as err:
        raise ValidationError(f"unknown status {status!r}", field="status") from err
