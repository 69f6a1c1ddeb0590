#!/usr/bin/env python3
"""SecureSwap Escrow — End-to-End Simulation.

Runs four scenarios with SellerBot, BuyerBot and ArbiterBot against the real
trade lifecycle, an in-memory settlement ledger, and a throwaway SQLite file:

    Scenario 1: Happy Path
        - Seller opens a trade, buyer deposits, seller ships
        - Buyer confirms -> COMPLETED, seller paid

    Scenario 2: Dispute Split
        - Buyer disputes after shipment
        - Arbiter pays 0.3 ETH to the buyer, the remainder goes per policy -> RESOLVED

    Scenario 3: Refund
        - Seller disputes, arbiter refunds the buyer in full -> REFUNDED
        - A second refund is rejected

    Scenario 4: Concurrent Confirmation
        - Two confirmations race; exactly one pays out, the other is rejected

Usage:
    python simulation.py
    python simulation.py --scenario 2
    python simulation.py --database-url sqlite+aiosqlite:///./sim.db
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from secure_swap.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from secure_swap.domain.authority import Authority  # noqa: E402
from secure_swap.domain.enums import LegKind, ReceiptStatus, RemainderPolicy  # noqa: E402
from secure_swap.domain.exceptions import EscrowError  # noqa: E402
from secure_swap.domain.identifiers import TradeId  # noqa: E402
from secure_swap.infrastructure.database.engine import (  # noqa: E402
    build_session_factory,
    create_tables,
)
from secure_swap.services.trade_gateway import TradeGateway  # noqa: E402
from secure_swap.services.trade_lifecycle import TradeLifecycle  # noqa: E402
from secure_swap.services.trade_store import TradeStore  # noqa: E402
from secure_swap.settlement.simulated import SimulatedLedger  # noqa: E402

SELLER = "0x" + "5" * 40
BUYER = "0x" + "b" * 40
ARBITER = "0x" + "a" * 40


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
@dataclass
class Simulation:
    """Everything one simulation run shares."""

    lifecycle: TradeLifecycle
    ledger: SimulatedLedger
    engine: Any

    def gateway(self, principal: str, label: str) -> TradeGateway:
        return TradeGateway(self.lifecycle, Authority(principal, label=label))


async def start_simulation(database_url: str) -> Simulation:
    """Create tables and wire the lifecycle to a fresh in-memory ledger."""
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(database_url, echo=False)
    await create_tables(engine)
    ledger = SimulatedLedger()
    lifecycle = TradeLifecycle(
        TradeStore(build_session_factory(engine)),
        ledger,
        arbiter=ARBITER,
        remainder_policy=RemainderPolicy.SELLER,
        settlement_timeout=5.0,
        poll_interval=0.01,
    )
    logger.info("simulation.started", database=database_url)
    return Simulation(lifecycle=lifecycle, ledger=ledger, engine=engine)


async def stop_simulation(sim: Simulation) -> None:
    await sim.engine.dispose()


def new_trade_label(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SellerBot:
    """Opens trades and ships goods."""

    gateway: TradeGateway

    async def open_trade(self, label: str, price: str, file_hash: str) -> dict:
        result = await self.gateway.create_trade(label, BUYER, price, file_hash)
        logger.info("🟢 SELLER: Trade opened", trade=label, price=price)
        return result

    async def ship(self, label: str) -> dict:
        result = await self.gateway.mark_shipped(label)
        logger.info("🟢 SELLER: Goods shipped", trade=label)
        return result

    async def dispute(self, label: str) -> dict:
        result = await self.gateway.dispute(label)
        logger.info("🟢 SELLER: Dispute raised", trade=label)
        return result


@dataclass
class BuyerBot:
    """Funds trades and confirms or disputes delivery."""

    gateway: TradeGateway

    async def fund(self, label: str, price: str) -> dict:
        result = await self.gateway.deposit(label, price)
        logger.info("🔵 BUYER: Escrow funded", trade=label, tx=result.get("txHash"))
        return result

    async def confirm(self, label: str) -> dict:
        result = await self.gateway.confirm(label)
        logger.info("🔵 BUYER: Receipt confirmed", trade=label, tx=result.get("txHash"))
        return result

    async def dispute(self, label: str) -> dict:
        result = await self.gateway.dispute(label)
        logger.info("🔵 BUYER: Dispute raised", trade=label)
        return result


@dataclass
class ArbiterBot:
    """Settles disputes."""

    gateway: TradeGateway

    async def split(self, label: str, recipient: str, amount: str) -> dict:
        result = await self.gateway.resolve_dispute(label, 2, recipient, amount)
        logger.info("⚖️  ARBITER: Dispute split", trade=label, recipient=recipient, amount=amount)
        return result

    async def refund(self, label: str) -> dict:
        result = await self.gateway.resolve_dispute(label, 1)
        logger.info("⚖️  ARBITER: Buyer refunded", trade=label)
        return result


def bots(sim: Simulation) -> tuple[SellerBot, BuyerBot, ArbiterBot]:
    return (
        SellerBot(sim.gateway(SELLER, "seller")),
        BuyerBot(sim.gateway(BUYER, "buyer")),
        ArbiterBot(sim.gateway(ARBITER, "arbiter")),
    )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_trade(trade: dict) -> None:
    print(f"  Status: {trade['statusName']} ({trade['status']})")
    print(f"  Price: {trade['amountETH']} ETH   Escrow: {trade['escrowETH']} ETH")
    print(f"  Paid out: {trade['paidOutETH']} ETH")


async def print_audit_trail(gateway: TradeGateway, label: str) -> None:
    """Print the full audit trail for a trade."""
    trail = await gateway.get_events(label)
    print("\n  📜 Audit Trail:")
    for evt in trail["events"]:
        old = "—" if evt["oldStatus"] is None else evt["oldStatus"]
        print(f"    {evt['sequence']}. [{evt['type']}] {old} → {evt['newStatus']} (by {evt['actor']})")
    print()


def released_to(sim: Simulation, tid: TradeId, principal: str) -> int:
    """Value confirmed out of a trade's escrow to one principal."""
    return sum(
        r.amount
        for r in sim.ledger.receipts_for(tid)
        if r.kind is LegKind.RELEASE
        and r.status is ReceiptStatus.CONFIRMED
        and r.counterparty == principal
    )


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path(sim: Simulation) -> dict:
    """Trade runs Created -> Funded -> Shipped -> Completed."""
    banner("SCENARIO 1: Happy Path")
    seller, buyer, _ = bots(sim)
    label = new_trade_label("happy")

    section("Step 1: Seller opens the trade")
    await seller.open_trade(label, "1.5", "QmHappyPathFile")

    section("Step 2: Buyer funds the escrow")
    await buyer.fund(label, "1.5")

    section("Step 3: Seller ships")
    await seller.ship(label)

    section("Step 4: Buyer confirms receipt")
    await buyer.confirm(label)

    trade = await seller.gateway.get_trade(label)
    print_trade(trade)
    await print_audit_trail(seller.gateway, label)
    return {"trade": trade, "escrow": sim.ledger.escrow_of(TradeId.parse(label))}


# ===========================================================================
# Scenario 2: Dispute Split
# ===========================================================================
async def scenario_2_dispute_split(sim: Simulation) -> dict:
    """Buyer disputes; the arbiter pays part to the buyer and the rest to the seller."""
    banner("SCENARIO 2: Dispute Split")
    seller, buyer, arbiter = bots(sim)
    label = new_trade_label("split")

    section("Step 1: Open, fund, ship")
    await seller.open_trade(label, "1.0", "QmDisputedFile")
    await buyer.fund(label, "1.0")
    await seller.ship(label)

    section("Step 2: Buyer disputes")
    await buyer.dispute(label)

    section("Step 3: Arbiter splits 0.3 ETH to the buyer")
    await arbiter.split(label, BUYER, "0.3")

    trade = await arbiter.gateway.get_trade(label)
    print_trade(trade)
    await print_audit_trail(arbiter.gateway, label)
    tid = TradeId.parse(label)
    return {
        "trade": trade,
        "seller_received": released_to(sim, tid, SELLER),
        "buyer_received": released_to(sim, tid, BUYER),
    }


# ===========================================================================
# Scenario 3: Refund
# ===========================================================================
async def scenario_3_refund(sim: Simulation) -> dict:
    """Seller disputes before shipping; the arbiter refunds the buyer."""
    banner("SCENARIO 3: Refund")
    seller, buyer, arbiter = bots(sim)
    label = new_trade_label("refund")

    section("Step 1: Open and fund")
    await seller.open_trade(label, "0.25", "QmRefundFile")
    await buyer.fund(label, "0.25")

    section("Step 2: Seller disputes")
    await seller.dispute(label)

    section("Step 3: Arbiter refunds the buyer")
    await arbiter.refund(label)

    section("Step 4: A second refund is rejected")
    second_error: str | None = None
    try:
        await arbiter.refund(label)
    except EscrowError as exc:
        second_error = exc.code
        print(f"  🛡️  Rejected: {exc.message}")

    trade = await arbiter.gateway.get_trade(label)
    print_trade(trade)
    await print_audit_trail(arbiter.gateway, label)
    return {"trade": trade, "second_refund_error": second_error}


# ===========================================================================
# Scenario 4: Concurrent Confirmation
# ===========================================================================
async def scenario_4_concurrent_confirm(sim: Simulation) -> dict:
    """Two confirmations race; only one releases the escrow."""
    banner("SCENARIO 4: Concurrent Confirmation")
    seller, buyer, _ = bots(sim)
    label = new_trade_label("race")

    section("Step 1: Open and fund")
    await seller.open_trade(label, "2.0", "QmRaceFile")
    await buyer.fund(label, "2.0")

    section("Step 2: Two confirmations at once")
    results = await asyncio.gather(
        buyer.confirm(label),
        buyer.confirm(label),
        return_exceptions=True,
    )
    successes = [r for r in results if isinstance(r, dict) and r.get("ok")]
    failures = [r for r in results if isinstance(r, EscrowError)]
    for failure in failures:
        print(f"  🛡️  Loser rejected: {failure.message}")

    tid = TradeId.parse(label)
    trade = await seller.gateway.get_trade(label)
    print_trade(trade)
    return {
        "trade": trade,
        "successes": len(successes),
        "failure_codes": [f.code for f in failures],
        "released": sim.ledger.released_for(tid),
    }


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute_split,
    3: scenario_3_refund,
    4: scenario_4_concurrent_confirm,
}


# ===========================================================================
# Main
# ===========================================================================
async def run_all(database_url: str | None = None) -> dict[int, dict]:
    """Run all scenarios sequentially against one database."""
    return await run_scenarios(list(SCENARIOS), database_url)


async def run_scenarios(numbers: list[int], database_url: str | None = None) -> dict[int, dict]:
    unknown = [n for n in numbers if n not in SCENARIOS]
    if unknown:
        raise ValueError(f"Unknown scenario(s) {unknown}. Available: {sorted(SCENARIOS)}")

    with tempfile.TemporaryDirectory() as tmp:
        url = database_url or f"sqlite+aiosqlite:///{Path(tmp) / 'simulation.db'}"
        sim = await start_simulation(url)
        try:
            print("\n" + "🚀" * 35)
            print("  SECURESWAP ESCROW — SIMULATION")
            print(f"  Database: {url}")
            print("🚀" * 35 + "\n")

            results = {n: await SCENARIOS[n](sim) for n in numbers}

            print("\n" + "=" * 70)
            print("  ✅ ALL SCENARIOS COMPLETED")
            print("=" * 70 + "\n")
            return results
        finally:
            await stop_simulation(sim)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="SecureSwap Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Async SQLAlchemy URL. Default: a temporary SQLite file.",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(args.database_url))
    else:
        asyncio.run(run_scenarios([args.scenario], args.database_url))
