"""SimulatedLedger — an in-memory settlement backend.

Used in development (SETTLEMENT_BACKEND=simulated), by the simulation
script, and as the fake ledger in tests. It keeps real books: principal
balances, one escrow pool per trade, and every receipt ever issued, so
conservation of value can be asserted against it.

Behavior knobs:
    - unlimited: payers are topped up on demand instead of being rejected.
    - auto_confirm: receipts are final on submission. With auto_confirm=False
      they stay PENDING until confirm()/fail() is called, which is how tests
      drive the pending-settlement path.
    - fail_next(): reject the next submission (optionally of one kind).
    - available: when False every call raises BackendUnavailableError.

References are deterministic: sha256 of the leg kind and idempotency key.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import defaultdict
from dataclasses import replace
from typing import TYPE_CHECKING

from secure_swap.domain.enums import LegKind, ReceiptStatus
from secure_swap.domain.exceptions import BackendUnavailableError, SettlementFailureError
from secure_swap.domain.settlement_protocol import SettlementReceipt
from secure_swap.logging_config import get_logger

if TYPE_CHECKING:
    from secure_swap.domain.identifiers import TradeId

logger = get_logger(__name__)


class SimulatedLedger:
    """In-memory ledger implementing the SettlementExecutor protocol."""

    def __init__(
        self,
        initial_balances: dict[str, int] | None = None,
        *,
        unlimited: bool = True,
        auto_confirm: bool = True,
    ) -> None:
        self.unlimited = unlimited
        self.auto_confirm = auto_confirm
        self.available = True
        self._balances: defaultdict[str, int] = defaultdict(int)
        for principal, amount in (initial_balances or {}).items():
            self._balances[principal.lower()] = amount
        self._escrow: defaultdict[str, int] = defaultdict(int)
        self._reserved: defaultdict[str, int] = defaultdict(int)
        self._by_key: dict[str, SettlementReceipt] = {}
        self._by_ref: dict[str, SettlementReceipt] = {}
        self._trade_of: dict[str, str] = {}
        self._fail_next: list[tuple[LegKind | None, str]] = []
        self.submissions = 0

    # ------------------------------------------------------------------
    # SettlementExecutor protocol
    # ------------------------------------------------------------------

    async def hold(
        self, trade_id: TradeId, payer: str, amount: int, *, idempotency_key: str
    ) -> SettlementReceipt:
        return await self._submit(LegKind.HOLD, trade_id, payer.lower(), amount, idempotency_key)

    async def release(
        self, trade_id: TradeId, recipient: str, amount: int, *, idempotency_key: str
    ) -> SettlementReceipt:
        return await self._submit(
            LegKind.RELEASE, trade_id, recipient.lower(), amount, idempotency_key
        )

    async def get_receipt(self, reference: str) -> SettlementReceipt:
        await asyncio.sleep(0)
        self._check_available()
        receipt = self._by_ref.get(reference)
        if receipt is None:
            raise SettlementFailureError(f"Unknown settlement reference {reference}", reference)
        return receipt

    async def get_balance(self, principal: str) -> int:
        self._check_available()
        return self._balances[principal.lower()]

    async def ping(self) -> bool:
        return self.available

    # ------------------------------------------------------------------
    # Test and simulation controls
    # ------------------------------------------------------------------

    def fail_next(self, kind: LegKind | None = None, reason: str = "rejected by ledger") -> None:
        """Reject the next submission (of `kind`, or of any kind)."""
        self._fail_next.append((kind, reason))

    def confirm(self, reference: str) -> SettlementReceipt:
        """Finalize a pending receipt successfully."""
        receipt = self._by_ref[reference]
        if receipt.status is not ReceiptStatus.PENDING:
            return receipt
        self._apply(receipt)
        return self._store(replace(receipt, status=ReceiptStatus.CONFIRMED))

    def fail(self, reference: str, reason: str = "reverted") -> SettlementReceipt:
        """Finalize a pending receipt as failed; no value moves."""
        receipt = self._by_ref[reference]
        if receipt.status is not ReceiptStatus.PENDING:
            return receipt
        self._unreserve(receipt)
        return self._store(replace(receipt, status=ReceiptStatus.FAILED, error=reason))

    def confirm_all(self) -> list[SettlementReceipt]:
        pending = [r for r in self._by_ref.values() if r.status is ReceiptStatus.PENDING]
        return [self.confirm(r.reference) for r in pending]

    def pending_references(self) -> list[str]:
        return [r.reference for r in self._by_ref.values() if r.status is ReceiptStatus.PENDING]

    def escrow_of(self, trade_id: TradeId) -> int:
        return self._escrow[trade_id.hex]

    def balance_of(self, principal: str) -> int:
        return self._balances[principal.lower()]

    def receipts_for(self, trade_id: TradeId) -> list[SettlementReceipt]:
        return [r for ref, r in self._by_ref.items() if self._trade_of[ref] == trade_id.hex]

    def released_for(self, trade_id: TradeId) -> int:
        """Total value confirmed out of a trade's escrow."""
        return sum(
            r.amount
            for r in self.receipts_for(trade_id)
            if r.kind is LegKind.RELEASE and r.status is ReceiptStatus.CONFIRMED
        )

    def held_for(self, trade_id: TradeId) -> int:
        """Total value confirmed into a trade's escrow."""
        return sum(
            r.amount
            for r in self.receipts_for(trade_id)
            if r.kind is LegKind.HOLD and r.status is ReceiptStatus.CONFIRMED
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_available(self) -> None:
        if not self.available:
            raise BackendUnavailableError("simulated ledger is offline")

    def _take_injected_failure(self, kind: LegKind) -> str | None:
        for i, (wanted, reason) in enumerate(self._fail_next):
            if wanted is None or wanted is kind:
                del self._fail_next[i]
                return reason
        return None

    async def _submit(
        self,
        kind: LegKind,
        trade_id: TradeId,
        counterparty: str,
        amount: int,
        idempotency_key: str,
    ) -> SettlementReceipt:
        await asyncio.sleep(0)
        self._check_available()

        existing = self._by_key.get(idempotency_key)
        if existing is not None:
            logger.debug("ledger.duplicate_submission", key=idempotency_key)
            return existing

        if amount <= 0:
            raise SettlementFailureError(f"{kind.value} amount must be positive")

        reason = self._take_injected_failure(kind)
        if reason is not None:
            raise SettlementFailureError(f"{kind.value} rejected: {reason}")

        trade_key = trade_id.hex
        if kind is LegKind.HOLD:
            available = self._balances[counterparty] - self._reserved[counterparty]
            if available < amount:
                if not self.unlimited:
                    raise SettlementFailureError(
                        f"insufficient funds: {counterparty} has {available}, needs {amount}"
                    )
                self._balances[counterparty] += amount - available
            self._reserved[counterparty] += amount
        else:
            free = self._escrow[trade_key] - self._reserved[trade_key]
            if free < amount:
                raise SettlementFailureError(
                    f"escrow for {trade_key} holds {free}, cannot release {amount}"
                )
            self._reserved[trade_key] += amount

        self.submissions += 1
        digest = hashlib.sha256(f"{kind.value}:{idempotency_key}".encode()).hexdigest()
        receipt = SettlementReceipt(
            reference="0x" + digest,
            status=ReceiptStatus.PENDING,
            kind=kind,
            counterparty=counterparty,
            amount=amount,
            idempotency_key=idempotency_key,
        )
        self._trade_of[receipt.reference] = trade_key
        self._store(receipt)
        logger.info(
            "ledger.submitted",
            kind=kind.value,
            trade_id=trade_key,
            counterparty=counterparty,
            amount=amount,
            reference=receipt.reference,
        )
        if self.auto_confirm:
            return self.confirm(receipt.reference)
        return receipt

    def _store(self, receipt: SettlementReceipt) -> SettlementReceipt:
        self._by_key[receipt.idempotency_key] = receipt
        self._by_ref[receipt.reference] = receipt
        return receipt

    def _unreserve(self, receipt: SettlementReceipt) -> None:
        trade_key = self._trade_of[receipt.reference]
        if receipt.kind is LegKind.HOLD:
            self._reserved[receipt.counterparty] -= receipt.amount
        else:
            self._reserved[trade_key] -= receipt.amount

    def _apply(self, receipt: SettlementReceipt) -> None:
        trade_key = self._trade_of[receipt.reference]
        self._unreserve(receipt)
        if receipt.kind is LegKind.HOLD:
            self._balances[receipt.counterparty] -= receipt.amount
            self._escrow[trade_key] += receipt.amount
        else:
            self._escrow[trade_key] -= receipt.amount
            self._balances[receipt.counterparty] += receipt.amount
