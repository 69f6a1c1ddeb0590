"""Domain layer — pure business logic with zero framework dependencies."""

from secure_swap.domain.authority import Authority, AuthorityKeyring
from secure_swap.domain.enums import (
    EventType,
    RemainderPolicy,
    Role,
    TradeStatus,
    Transition,
)
from secure_swap.domain.exceptions import (
    BackendUnavailableError,
    EscrowError,
    InvalidTransitionError,
    SettlementFailureError,
    SettlementPendingError,
    TradeConflictError,
    TradeNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from secure_swap.domain.identifiers import TradeId, canonical_trade_id, normalize_address
from secure_swap.domain.resolution import FullRefund, Resolution, SplitTo
from secure_swap.domain.settlement_protocol import SettlementExecutor, SettlementReceipt
from secure_swap.domain.state_machine import TradeStateMachine, validate_transition

__all__ = [
    "Authority",
    "AuthorityKeyring",
    "EventType",
    "RemainderPolicy",
    "Role",
    "TradeStatus",
    "Transition",
    "BackendUnavailableError",
    "EscrowError",
    "InvalidTransitionError",
    "SettlementFailureError",
    "SettlementPendingError",
    "TradeConflictError",
    "TradeNotFoundError",
    "UnauthorizedError",
    "ValidationError",
    "TradeId",
    "canonical_trade_id",
    "normalize_address",
    "FullRefund",
    "Resolution",
    "SplitTo",
    "SettlementExecutor",
    "SettlementReceipt",
    "TradeStateMachine",
    "validate_transition",
]
