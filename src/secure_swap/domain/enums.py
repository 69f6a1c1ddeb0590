"""Domain enumerations for the SecureSwap escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TradeStatus(enum.IntEnum):
    """Lifecycle states of an escrow trade.

    The integer values are part of the external interface: `GET /getTrade`
    reports `status` as this ordinal. Transitions are enforced by the
    TradeStateMachine guard; see domain/state_machine.py.
    """

    CREATED = 0
    FUNDED = 1
    SHIPPED = 2
    COMPLETED = 3
    DISPUTED = 4
    RESOLVED = 5
    REFUNDED = 6

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def holds_funds(self) -> bool:
        """Whether a trade in this state must carry escrow_balance == amount."""
        return self in FUNDED_STATUSES


TERMINAL_STATUSES = frozenset({TradeStatus.COMPLETED, TradeStatus.RESOLVED, TradeStatus.REFUNDED})
FUNDED_STATUSES = frozenset({TradeStatus.FUNDED, TradeStatus.SHIPPED, TradeStatus.DISPUTED})


class Transition(enum.StrEnum):
    """Named transitions of the trade state machine.

    Values are the python-statemachine event names.
    """

    DEPOSIT = "deposit"
    MARK_SHIPPED = "mark_shipped"
    CONFIRM_RECEIVED = "confirm_received"
    RAISE_DISPUTE = "raise_dispute"
    RESOLVE_DISPUTE = "resolve_dispute"
    REFUND_ALL = "refund_all"


class Role(enum.StrEnum):
    """Who may trigger a transition."""

    SELLER = "seller"
    BUYER = "buyer"
    ARBITER = "arbiter"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the trade_events table.

    Every committed transition produces exactly one lifecycle event.
    Settlement events record the two-phase bookkeeping around value movement.
    """

    # Lifecycle events
    TRADE_CREATED = "TRADE_CREATED"
    TRADE_FUNDED = "TRADE_FUNDED"
    TRADE_SHIPPED = "TRADE_SHIPPED"
    TRADE_COMPLETED = "TRADE_COMPLETED"

    # Dispute events
    DISPUTE_RAISED = "DISPUTE_RAISED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    TRADE_REFUNDED = "TRADE_REFUNDED"

    # Settlement events
    SETTLEMENT_PENDING = "SETTLEMENT_PENDING"
    SETTLEMENT_ABORTED = "SETTLEMENT_ABORTED"


class LegKind(enum.StrEnum):
    """Direction of a single value movement."""

    HOLD = "hold"
    RELEASE = "release"


class LegState(enum.StrEnum):
    """Progress of one settlement leg inside a pending plan."""

    NEW = "new"  # not submitted, or submission outcome unknown
    SUBMITTED = "submitted"  # ledger returned a reference, not yet final
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ReceiptStatus(enum.StrEnum):
    """Finality of a ledger receipt."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RemainderPolicy(enum.StrEnum):
    """Who receives the unallocated part of a partial dispute split."""

    SELLER = "seller"
    BUYER = "buyer"
    COUNTERPARTY = "counterparty"
