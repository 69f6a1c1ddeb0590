"""Application services — use case orchestration."""

from secure_swap.services.trade_gateway import TradeGateway
from secure_swap.services.trade_lifecycle import TradeLifecycle, TransitionOutcome
from secure_swap.services.trade_store import TradeStore

__all__ = ["TradeGateway", "TradeLifecycle", "TradeStore", "TransitionOutcome"]
