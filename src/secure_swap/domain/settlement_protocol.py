"""Settlement Executor Protocol.

Defines the interface every ledger backend must implement. This is a
Protocol (structural subtyping) so concrete executors don't need to inherit
from a base class — they just need to match the shape.

The domain layer has ZERO imports from httpx or any ledger client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from secure_swap.domain.enums import LegKind, ReceiptStatus

if TYPE_CHECKING:
    from secure_swap.domain.identifiers import TradeId


@dataclass(frozen=True)
class SettlementReceipt:
    """Durable proof that the ledger accepted a value movement.

    Attributes:
        reference: Ledger transaction reference (the `txHash` callers see).
        status: PENDING until the ledger finalizes it.
        kind: HOLD (payer -> escrow) or RELEASE (escrow -> recipient).
        counterparty: The payer of a hold or the recipient of a release.
        amount: Base units moved.
        idempotency_key: The key the movement was submitted under.
        error: Ledger's reason when status is FAILED.
    """

    reference: str
    status: ReceiptStatus
    kind: LegKind
    counterparty: str
    amount: int
    idempotency_key: str
    error: str | None = None

    @property
    def is_final(self) -> bool:
        return self.status is not ReceiptStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "status": self.status.value,
            "kind": self.kind.value,
            "counterparty": self.counterparty,
            "amount": str(self.amount),
            "idempotency_key": self.idempotency_key,
            "error": self.error,
        }


@runtime_checkable
class SettlementExecutor(Protocol):
    """Protocol that all settlement backends must satisfy.

    Concrete implementations:
        - settlement/simulated.py   (in-memory ledger)
        - settlement/http_ledger.py (network settlement service)

    Submissions are idempotent per key: resubmitting a key returns the
    receipt of the first submission and never moves value twice.
    """

    async def hold(
        self, trade_id: TradeId, payer: str, amount: int, *, idempotency_key: str
    ) -> SettlementReceipt:
        """Move `amount` from `payer` into the trade's escrow.

        Raises:
            SettlementFailureError: The ledger rejected the movement.
            BackendUnavailableError: The ledger could not be reached.
        """
        ...

    async def release(
        self, trade_id: TradeId, recipient: str, amount: int, *, idempotency_key: str
    ) -> SettlementReceipt:
        """Move `amount` out of the trade's escrow to `recipient`."""
        ...

    async def get_receipt(self, reference: str) -> SettlementReceipt:
        """Read the current finality of a submitted movement."""
        ...

    async def get_balance(self, principal: str) -> int:
        """Spendable balance of a principal, in base units."""
        ...

    async def ping(self) -> bool:
        """Whether the backend (and the escrow it manages) is live."""
        ...
