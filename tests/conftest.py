"""Shared test fixtures for the SecureSwap test suite.

Provides:
    - A throwaway SQLite database per test (aiosqlite, file-backed so
      concurrent sessions see each other's commits)
    - A SimulatedLedger as the settlement fake
    - TradeStore / TradeLifecycle / TradeGateway wired together
    - Factory fixtures that bring a trade to a given status
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from secure_swap.domain.authority import Authority
from secure_swap.domain.enums import TradeStatus
from secure_swap.domain.identifiers import TradeId
from secure_swap.infrastructure.database.engine import build_session_factory, create_tables
from secure_swap.services.trade_gateway import TradeGateway
from secure_swap.services.trade_lifecycle import TradeLifecycle
from secure_swap.services.trade_store import TradeStore
from secure_swap.settlement.simulated import SimulatedLedger

SELLER = "0x" + "5" * 40
BUYER = "0x" + "b" * 40
ARBITER = "0x" + "a" * 40
STRANGER = "0x" + "c" * 40
ONE_ETH = 10**18


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'trades.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def ledger() -> SimulatedLedger:
    return SimulatedLedger()


@pytest.fixture
def store(session_factory) -> TradeStore:
    return TradeStore(session_factory)


@pytest.fixture
def lifecycle(store, ledger) -> TradeLifecycle:
    return TradeLifecycle(
        store,
        ledger,
        arbiter=ARBITER,
        settlement_timeout=2.0,
        poll_interval=0.01,
    )


@pytest.fixture
def gateways(lifecycle) -> dict[str, TradeGateway]:
    """One gateway per signing identity."""
    return {
        "seller": TradeGateway(lifecycle, Authority(SELLER, label="seller")),
        "buyer": TradeGateway(lifecycle, Authority(BUYER, label="buyer")),
        "arbiter": TradeGateway(lifecycle, Authority(ARBITER, label="arbiter")),
        "stranger": TradeGateway(lifecycle, Authority(STRANGER, label="stranger")),
    }


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_trade(lifecycle):
    """Create a trade and walk it to `status` through real transitions."""

    async def _make(
        label: str = "order-1",
        amount: int = ONE_ETH,
        status: TradeStatus = TradeStatus.CREATED,
    ) -> TradeId:
        tid = TradeId.parse(label)
        await lifecycle.create_trade(tid, SELLER, BUYER, amount, "QmTestFile")
        if status is TradeStatus.CREATED:
            return tid
        await lifecycle.deposit(tid, BUYER, amount)
        if status is TradeStatus.SHIPPED:
            await lifecycle.mark_shipped(tid, SELLER)
        elif status is TradeStatus.DISPUTED:
            await lifecycle.raise_dispute(tid, BUYER)
        elif status is TradeStatus.COMPLETED:
            await lifecycle.confirm_received(tid, BUYER)
        elif status is not TradeStatus.FUNDED:
            raise ValueError(f"make_trade cannot reach {status.name}")
        return tid

    return _make


@pytest.fixture
def sample_trade_data() -> dict:
    """Return a valid createTrade request body."""
    return {
        "tradeId": "order-42",
        "buyer": BUYER,
        "priceETH": "1.5",
        "fileHash": "QmSampleFileHash",
    }
