"""Settlement executor implementations and factory.

Two backends:
    - SimulatedLedger:     In-memory books, instant or manually finalized receipts
    - HttpLedgerExecutor:  Remote ledger service over signed HTTP

The SettlementExecutorFactory creates the correct executor based on the
settlement_backend setting.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from secure_swap.domain.settlement_protocol import SettlementExecutor, SettlementReceipt
from secure_swap.settlement.http_ledger import HttpLedgerExecutor
from secure_swap.settlement.simulated import SimulatedLedger

if TYPE_CHECKING:
    from secure_swap.config import Settings


class SettlementExecutorFactory:
    """Factory that builds the configured settlement backend.

    Usage:
        executor = SettlementExecutorFactory.create(get_settings())
        receipt = await executor.hold(trade_id, buyer, amount, idempotency_key="...")
    """

    _registry: dict[str, type] = {
        "simulated": SimulatedLedger,
        "http": HttpLedgerExecutor,
    }

    @classmethod
    def create(cls, settings: Settings) -> SettlementExecutor:
        """Create an executor for settings.settlement_backend.

        Raises:
            ValueError: If the backend is unknown, or the http backend is
                selected without a signing key.
        """
        backend = settings.settlement_backend
        if backend not in cls._registry:
            raise ValueError(
                f"Unknown settlement backend: '{backend}'. "
                f"Valid backends: {list(cls._registry.keys())}"
            )

        if backend == "http":
            if not settings.signer_private_key:
                raise ValueError("SIGNER_PRIVATE_KEY is required for the http settlement backend")
            return HttpLedgerExecutor(
                base_url=settings.settlement_url,
                signer_address=settings.signer_address,
                signing_key=settings.signer_private_key,
                escrow_address=settings.escrow_contract_address,
                timeout=settings.settlement_request_timeout_seconds,
            )
        return SimulatedLedger()

    @classmethod
    def get_supported_backends(cls) -> list[str]:
        """Return the list of supported backend names."""
        return list(cls._registry.keys())


__all__ = [
    "HttpLedgerExecutor",
    "SettlementExecutor",
    "SettlementExecutorFactory",
    "SettlementReceipt",
    "SimulatedLedger",
]
