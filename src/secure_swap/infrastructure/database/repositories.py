"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from secure_swap.infrastructure.database.orm_models import Trade, TradeEvent

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from secure_swap.domain.enums import EventType, TradeStatus


class TradeRepository:
    """Data access for trades."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, trade: Trade) -> Trade:
        """Insert a new trade. Uniqueness is enforced by the primary key."""
        self._session.add(trade)
        await self._session.flush()
        return trade

    async def get_by_id(self, trade_id: str) -> Trade | None:
        """Fetch a trade by its canonical id."""
        result = await self._session.execute(select(Trade).where(Trade.id == trade_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, trade_id: str) -> Trade | None:
        """Fetch a trade and lock its row until the transaction ends.

        SQLite ignores FOR UPDATE; there the version column still catches
        concurrent writers at flush time.
        """
        result = await self._session.execute(
            select(Trade).where(Trade.id == trade_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def exists(self, trade_id: str) -> bool:
        result = await self._session.execute(select(Trade.id).where(Trade.id == trade_id))
        return result.scalar_one_or_none() is not None

    async def list_trades(
        self,
        party: str | None = None,
        status: TradeStatus | None = None,
        limit: int = 100,
    ) -> list[Trade]:
        """Trades where `party` is seller or buyer, optionally in one status, newest first."""
        query = select(Trade)
        if party is not None:
            query = query.where(or_(Trade.seller == party, Trade.buyer == party))
        if status is not None:
            query = query.where(Trade.status == status.value)
        query = query.order_by(Trade.created_at.desc()).limit(limit)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_pending(self) -> list[Trade]:
        """Trades with an unfinished settlement plan."""
        result = await self._session.execute(
            select(Trade).where(Trade.pending_settlement.is_not(None))
        )
        return [t for t in result.scalars().all() if t.pending_settlement]


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        trade_id: str,
        event_type: EventType,
        old_status: TradeStatus | None,
        new_status: TradeStatus,
        actor: str = "SYSTEM",
        amount: int | None = None,
        settlement_refs: list[str] | None = None,
        metadata: dict | None = None,
    ) -> TradeEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        result = await self._session.execute(
            select(func.coalesce(func.max(TradeEvent.sequence), 0)).where(
                TradeEvent.trade_id == trade_id
            )
        )
        sequence = int(result.scalar_one()) + 1
        evt = TradeEvent(
            trade_id=trade_id,
            sequence=sequence,
            event_type=event_type.value,
            old_status=old_status.value if old_status is not None else None,
            new_status=new_status.value,
            actor=actor,
            amount=amount,
            settlement_refs=settlement_refs,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_trade(self, trade_id: str) -> list[TradeEvent]:
        """Fetch all events for a trade in order."""
        result = await self._session.execute(
            select(TradeEvent)
            .where(TradeEvent.trade_id == trade_id)
            .order_by(TradeEvent.sequence.asc())
        )
        return list(result.scalars().all())
