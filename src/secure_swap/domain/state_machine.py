"""Trade State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain
level. An illegal transition (e.g., CREATED -> COMPLETED) raises
TransitionNotAllowed no matter which route or tool asked for it.

The state machine is instantiated per-trade from its stored status and fired
before the record is mutated. Who may fire each event, and the balance
guard that must hold, live next to it in TRANSITION_RULES so the whole
contract of a transition is in one table.

Transition table:
    CREATED   -> FUNDED      (deposit)           buyer
    FUNDED    -> SHIPPED     (mark_shipped)      seller
    FUNDED    -> COMPLETED   (confirm_received)  buyer
    SHIPPED   -> COMPLETED   (confirm_received)  buyer
    FUNDED    -> DISPUTED    (raise_dispute)     buyer or seller
    SHIPPED   -> DISPUTED    (raise_dispute)     buyer or seller
    DISPUTED  -> RESOLVED    (resolve_dispute)   arbiter
    DISPUTED  -> REFUNDED    (refund_all)        arbiter
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from secure_swap.domain.enums import EventType, Role, TradeStatus, Transition


class TradeStateMachine(StateMachine):
    """State machine that guards escrow trade lifecycle transitions.

    Usage:
        sm = TradeStateMachine(current_status=TradeStatus.FUNDED)
        sm.mark_shipped()   # transitions to SHIPPED
        sm.status           # TradeStatus.SHIPPED
    """

    # --- States ---
    CREATED = State("Created", value=TradeStatus.CREATED.value, initial=True)
    FUNDED = State("Funded", value=TradeStatus.FUNDED.value)
    SHIPPED = State("Shipped", value=TradeStatus.SHIPPED.value)
    COMPLETED = State("Completed", value=TradeStatus.COMPLETED.value, final=True)
    DISPUTED = State("Disputed", value=TradeStatus.DISPUTED.value)
    RESOLVED = State("Resolved", value=TradeStatus.RESOLVED.value, final=True)
    REFUNDED = State("Refunded", value=TradeStatus.REFUNDED.value, final=True)

    # --- Events / Transitions ---

    # Funding
    deposit = CREATED.to(FUNDED)

    # Delivery
    mark_shipped = FUNDED.to(SHIPPED)
    confirm_received = FUNDED.to(COMPLETED) | SHIPPED.to(COMPLETED)

    # Disputes
    raise_dispute = FUNDED.to(DISPUTED) | SHIPPED.to(DISPUTED)
    resolve_dispute = DISPUTED.to(RESOLVED)
    refund_all = DISPUTED.to(REFUNDED)

    def __init__(self, current_status: int | TradeStatus = TradeStatus.CREATED) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The stored TradeStatus (or its integer ordinal).
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(str(v) for v in sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=int(current_status))

    @property
    def status(self) -> TradeStatus:
        """Return the current state as a TradeStatus."""
        return TradeStatus(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the transition names that can fire from the current state."""
        allowed = []
        for transition in Transition:
            probe = TradeStateMachine(current_status=self.status)
            try:
                getattr(probe, transition.value)()
            except TransitionNotAllowed:
                continue
            allowed.append(transition.value)
        return allowed


def validate_transition(current_status: int | TradeStatus, event_name: str) -> TradeStatus:
    """Validate a state transition and return the new status.

    Creates a throwaway state machine, fires the named event, and returns
    the resulting status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = TradeStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_name not in {t.value for t in Transition} or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {TradeStatus(current_status).name}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


# ---------------------------------------------------------------------------
# Actor rules and balance guards
# ---------------------------------------------------------------------------

BalanceGuard = Callable[[int, int], str | None]


def _escrow_full(amount: int, escrow_balance: int) -> str | None:
    if escrow_balance != amount:
        return f"escrow balance {escrow_balance} does not equal amount {amount}"
    return None


def _escrow_non_empty(amount: int, escrow_balance: int) -> str | None:
    if escrow_balance <= 0:
        return "nothing held in escrow"
    return None


def _escrow_empty(amount: int, escrow_balance: int) -> str | None:
    if escrow_balance != 0:
        return f"trade already holds {escrow_balance}"
    return None


@dataclass(frozen=True)
class TransitionRule:
    """Who may fire a transition and what must hold before it fires."""

    roles: frozenset[Role]
    event_type: EventType
    guard: BalanceGuard | None = None
    moves_value: bool = False

    def allows(self, role: Role | None) -> bool:
        return role is not None and role in self.roles

    def describe_roles(self) -> str:
        return " or ".join(sorted(r.value for r in self.roles))


TRANSITION_RULES: dict[Transition, TransitionRule] = {
    Transition.DEPOSIT: TransitionRule(
        roles=frozenset({Role.BUYER}),
        event_type=EventType.TRADE_FUNDED,
        guard=_escrow_empty,
        moves_value=True,
    ),
    Transition.MARK_SHIPPED: TransitionRule(
        roles=frozenset({Role.SELLER}),
        event_type=EventType.TRADE_SHIPPED,
    ),
    Transition.CONFIRM_RECEIVED: TransitionRule(
        roles=frozenset({Role.BUYER}),
        event_type=EventType.TRADE_COMPLETED,
        guard=_escrow_full,
        moves_value=True,
    ),
    Transition.RAISE_DISPUTE: TransitionRule(
        roles=frozenset({Role.BUYER, Role.SELLER}),
        event_type=EventType.DISPUTE_RAISED,
        guard=_escrow_full,
    ),
    Transition.RESOLVE_DISPUTE: TransitionRule(
        roles=frozenset({Role.ARBITER}),
        event_type=EventType.DISPUTE_RESOLVED,
        guard=_escrow_full,
        moves_value=True,
    ),
    Transition.REFUND_ALL: TransitionRule(
        roles=frozenset({Role.ARBITER}),
        event_type=EventType.TRADE_REFUNDED,
        guard=_escrow_non_empty,
        moves_value=True,
    ),
}
