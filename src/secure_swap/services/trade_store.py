"""TradeStore — durable, atomically updatable trade records.

Every write runs in its own short transaction:

    create(trade)          insert; an existing id raises TradeConflictError
    get(trade_id)          read; an unknown id raises TradeNotFoundError
    update(id, mutator)    lock the row, run the mutator, commit

Writers to one id are serialized three ways: the in-process KeyedLock,
SELECT ... FOR UPDATE on databases that support it, and the version column,
which makes a lost race between processes fail at flush time instead of
silently overwriting. A lost race surfaces as InvalidTransitionError.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from secure_swap.domain.exceptions import (
    InvalidTransitionError,
    TradeConflictError,
    TradeNotFoundError,
)
from secure_swap.infrastructure.database.repositories import EventRepository, TradeRepository
from secure_swap.infrastructure.locks import KeyedLock
from secure_swap.logging_config import get_logger

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secure_swap.domain.enums import TradeStatus
    from secure_swap.domain.identifiers import TradeId
    from secure_swap.infrastructure.database.orm_models import Trade, TradeEvent

logger = get_logger(__name__)

T = TypeVar("T")
Mutator = Callable[["Trade", EventRepository], Awaitable[T]]


class TradeStore:
    """Persistence boundary for trades and their audit events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._locks = locks or KeyedLock()

    def lock(self, trade_id: TradeId) -> AbstractAsyncContextManager[None]:
        """Hold the in-process lock for one trade id."""
        return self._locks.hold(trade_id.hex)

    async def create(
        self,
        trade: Trade,
        on_insert: Mutator[None] | None = None,
    ) -> Trade:
        """Insert a new trade, then run `on_insert` in the same transaction."""
        async with self._locks.hold(trade.id):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        repo = TradeRepository(session)
                        if await repo.exists(trade.id):
                            raise TradeConflictError(trade.id)
                        await repo.add(trade)
                        if on_insert is not None:
                            await on_insert(trade, EventRepository(session))
                except IntegrityError as exc:
                    raise TradeConflictError(trade.id) from exc
        logger.debug("store.created", trade_id=trade.id)
        return trade

    async def get(self, trade_id: TradeId) -> Trade:
        async with self._session_factory() as session:
            trade = await TradeRepository(session).get_by_id(trade_id.hex)
        if trade is None:
            raise TradeNotFoundError(trade_id.hex)
        return trade

    async def update(self, trade_id: TradeId, mutator: Mutator[T]) -> T:
        """Atomic read-modify-write of one trade.

        The mutator receives the row-locked trade and an event repository
        bound to the same transaction. Anything it raises rolls the whole
        transaction back.
        """
        key = trade_id.hex
        observed = "UNKNOWN"
        async with self._locks.hold(key):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        trade = await TradeRepository(session).get_for_update(key)
                        if trade is None:
                            raise TradeNotFoundError(key)
                        observed = trade.trade_status.name
                        result = await mutator(trade, EventRepository(session))
                except StaleDataError as exc:
                    logger.warning("store.concurrent_update", trade_id=key)
                    raise InvalidTransitionError(
                        observed, "update", reason="trade was modified concurrently"
                    ) from exc
        return result

    async def events(self, trade_id: TradeId) -> list[TradeEvent]:
        async with self._session_factory() as session:
            if not await TradeRepository(session).exists(trade_id.hex):
                raise TradeNotFoundError(trade_id.hex)
            return await EventRepository(session).get_by_trade(trade_id.hex)

    async def list(
        self,
        party: str | None = None,
        status: TradeStatus | None = None,
        limit: int = 100,
    ) -> list[Trade]:
        async with self._session_factory() as session:
            return await TradeRepository(session).list_trades(
                party=party, status=status, limit=limit
            )

    async def list_pending(self) -> list[Trade]:
        async with self._session_factory() as session:
            return await TradeRepository(session).list_pending()
