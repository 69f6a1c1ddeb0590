"""Trade Lifecycle — the guarded state machine over stored trades.

This is the application layer that coordinates between:
    - Domain state machine and actor rules (transition guard)
    - TradeStore (atomic, serialized persistence)
    - SettlementExecutor (value movement)
    - Event log (audit trail)

Both REST routes and MCP tools reach it through the TradeGateway, ensuring a
single source of truth for all business rules.

Transitions that move value are settled in two phases:

    1. reserve   Under the trade's lock and in one transaction: check the
                 pending marker, the actor, the state machine and the
                 balance guard, then persist a settlement plan whose legs
                 carry idempotency keys.
    2. settle    Submit each leg and wait for ledger finality, bounded by
                 settlement_timeout.
    3. finish    One more transaction: commit the transition (status,
                 balances, audit event) when every leg confirmed, abort it
                 when nothing confirmed and nothing is in flight, otherwise
                 keep the plan and report the trade as pending.

A pending plan blocks every other transition until reconcile() drives it to
completion. The lifecycle never retries by itself.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from secure_swap.domain.enums import (
    EventType,
    LegKind,
    LegState,
    ReceiptStatus,
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
    UnauthorizedError,
    ValidationError,
)
from secure_swap.domain.identifiers import normalize_address
from secure_swap.domain.resolution import FullRefund, Resolution, SplitTo, plan_split
from secure_swap.domain.state_machine import TRANSITION_RULES, TradeStateMachine
from secure_swap.infrastructure.database.orm_models import Trade
from secure_swap.logging_config import get_logger

if TYPE_CHECKING:
    from secure_swap.config import Settings
    from secure_swap.domain.identifiers import TradeId
    from secure_swap.domain.settlement_protocol import SettlementExecutor, SettlementReceipt
    from secure_swap.infrastructure.database.orm_models import TradeEvent
    from secure_swap.infrastructure.database.repositories import EventRepository
    from secure_swap.services.trade_store import TradeStore

logger = get_logger(__name__)

_COMMIT = "commit"
_ABORT = "abort"
_PENDING = "pending"


@dataclass
class TransitionOutcome:
    """Result of a committed transition.

    `reference` is the ledger reference of the last value movement, or the
    audit event reference when the transition moved no value.
    """

    trade: Trade
    transition: str
    reference: str
    references: list[str] = field(default_factory=list)


class TradeLifecycle:
    """Applies escrow transitions to stored trades."""

    def __init__(
        self,
        store: TradeStore,
        executor: SettlementExecutor,
        *,
        arbiter: str,
        remainder_policy: RemainderPolicy = RemainderPolicy.SELLER,
        settlement_timeout: float = 30.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._store = store
        self._executor = executor
        self._arbiter = normalize_address(arbiter, "arbiter")
        self._remainder_policy = RemainderPolicy(remainder_policy)
        self._settlement_timeout = settlement_timeout
        self._poll_interval = poll_interval

    @classmethod
    def from_settings(
        cls, store: TradeStore, executor: SettlementExecutor, settings: Settings
    ) -> TradeLifecycle:
        return cls(
            store,
            executor,
            arbiter=settings.arbiter_address,
            remainder_policy=settings.dispute_remainder_policy,
            settlement_timeout=settings.settlement_timeout_seconds,
            poll_interval=settings.settlement_poll_interval_seconds,
        )

    @property
    def arbiter(self) -> str:
        return self._arbiter

    @property
    def executor(self) -> SettlementExecutor:
        return self._executor

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_trade(
        self,
        trade_id: TradeId,
        seller: str,
        buyer: str,
        amount: int,
        content_ref: str | None = None,
    ) -> TransitionOutcome:
        """Create a trade in CREATED with an empty escrow. The caller is the seller."""
        seller = normalize_address(seller, "seller")
        buyer = normalize_address(buyer, "buyer")
        if buyer == seller:
            raise ValidationError("buyer and seller must be different principals", field="buyer")
        if self._arbiter in (seller, buyer):
            raise ValidationError("the arbiter cannot be a party to a trade", field="buyer")
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount")

        trade = Trade(
            id=trade_id.hex,
            seller=seller,
            buyer=buyer,
            amount=amount,
            content_ref=content_ref or "N/A",
            status=TradeStatus.CREATED.value,
            escrow_balance=0,
            total_paid_out=0,
            pending_settlement=None,
        )
        recorded: list[TradeEvent] = []

        async def _record_creation(created: Trade, events: EventRepository) -> None:
            recorded.append(
                await events.record(
                    trade_id=created.id,
                    event_type=EventType.TRADE_CREATED,
                    old_status=None,
                    new_status=TradeStatus.CREATED,
                    actor=seller,
                    amount=amount,
                    metadata={"content_ref": created.content_ref},
                )
            )

        await self._store.create(trade, on_insert=_record_creation)
        logger.info("trade.created", trade_id=trade.id, seller=seller, buyer=buyer, amount=amount)
        return TransitionOutcome(
            trade=trade, transition="create_trade", reference=recorded[0].reference
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def deposit(self, trade_id: TradeId, actor: str, value: int) -> TransitionOutcome:
        """Buyer funds the escrow with exactly the trade amount."""
        return await self._execute(trade_id, Transition.DEPOSIT, actor, value=value)

    async def mark_shipped(self, trade_id: TradeId, actor: str) -> TransitionOutcome:
        return await self._execute(trade_id, Transition.MARK_SHIPPED, actor)

    async def confirm_received(self, trade_id: TradeId, actor: str) -> TransitionOutcome:
        """Buyer confirms delivery; the escrow is released to the seller."""
        return await self._execute(trade_id, Transition.CONFIRM_RECEIVED, actor)

    async def raise_dispute(self, trade_id: TradeId, actor: str) -> TransitionOutcome:
        return await self._execute(trade_id, Transition.RAISE_DISPUTE, actor)

    async def resolve_dispute(
        self, trade_id: TradeId, actor: str, resolution: Resolution
    ) -> TransitionOutcome:
        """Arbiter settles a dispute. FullRefund is the same move as refund_all."""
        if isinstance(resolution, FullRefund):
            return await self._execute(
                trade_id, Transition.REFUND_ALL, actor, resolution=resolution
            )
        if not isinstance(resolution, SplitTo):
            raise ValidationError("unsupported resolution", field="resolution")
        return await self._execute(
            trade_id, Transition.RESOLVE_DISPUTE, actor, resolution=resolution
        )

    async def refund_all(self, trade_id: TradeId, actor: str) -> TransitionOutcome:
        """Arbiter returns the whole escrow to the buyer."""
        return await self._execute(trade_id, Transition.REFUND_ALL, actor)

    async def reconcile(self, trade_id: TradeId) -> TransitionOutcome:
        """Drive a pending settlement plan to commit or abort.

        Legs already submitted are polled under their original keys. Failed
        legs of a partially confirmed plan are resubmitted under a new
        attempt key.

        Raises:
            InvalidTransitionError: If the trade has no pending settlement.
            SettlementPendingError: If the plan is still not final.
        """
        async with self._store.lock(trade_id):
            plan = await self._store.update(trade_id, self._prepare_reconcile)
            logger.info("settlement.reconciling", trade_id=trade_id.hex, plan_id=plan["id"])
            return await self._settle(trade_id, plan)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_trade(self, trade_id: TradeId) -> Trade:
        return await self._store.get(trade_id)

    async def list_events(self, trade_id: TradeId) -> list[TradeEvent]:
        return await self._store.events(trade_id)

    async def allowed_transitions(self, trade_id: TradeId, actor: str | None = None) -> list[str]:
        """Transitions that could fire now, optionally only those `actor` may fire."""
        trade = await self._store.get(trade_id)
        if trade.pending_settlement:
            return []
        names = TradeStateMachine(current_status=trade.status).get_allowed_events()
        if actor is None:
            return names
        role = self._role_of(trade, normalize_address(actor, "actor"))
        return [n for n in names if TRANSITION_RULES[Transition(n)].allows(role)]

    async def list_trades(
        self, party: str | None = None, status: TradeStatus | None = None
    ) -> list[Trade]:
        if party is not None:
            party = normalize_address(party, "party")
        return await self._store.list(party=party, status=status)

    # ------------------------------------------------------------------
    # Phase 1: reserve
    # ------------------------------------------------------------------

    async def _execute(
        self,
        trade_id: TradeId,
        transition: Transition,
        actor: str,
        *,
        value: int | None = None,
        resolution: Resolution | None = None,
    ) -> TransitionOutcome:
        actor = normalize_address(actor, "actor")
        async with self._store.lock(trade_id):
            reserved = await self._store.update(
                trade_id,
                partial(
                    self._reserve,
                    transition=transition,
                    actor=actor,
                    value=value,
                    resolution=resolution,
                ),
            )
            if isinstance(reserved, TransitionOutcome):
                return reserved
            return await self._settle(trade_id, reserved)

    async def _reserve(
        self,
        trade: Trade,
        events: EventRepository,
        *,
        transition: Transition,
        actor: str,
        value: int | None,
        resolution: Resolution | None,
    ) -> TransitionOutcome | dict:
        rule = TRANSITION_RULES[transition]
        current = trade.trade_status

        if trade.pending_settlement:
            raise InvalidTransitionError(
                current.name, transition.value, reason="settlement in progress"
            )
        if not rule.allows(self._role_of(trade, actor)):
            raise UnauthorizedError(actor, transition.value, rule.describe_roles())

        target = self._fire(current, transition)

        if rule.guard is not None:
            reason = rule.guard(trade.amount, trade.escrow_balance)
            if reason:
                raise InvalidTransitionError(current.name, transition.value, reason=reason)
        if transition is Transition.DEPOSIT and value != trade.amount:
            raise InvalidTransitionError(
                current.name,
                transition.value,
                reason=f"deposit of {value} does not match amount {trade.amount}",
            )

        movements, metadata = self._plan_movements(trade, transition, resolution)
        if not movements:
            event = await self._commit(
                trade, events, transition, target, actor, legs=[], metadata=metadata
            )
            return TransitionOutcome(
                trade=trade, transition=transition.value, reference=event.reference
            )

        plan_id = uuid.uuid4().hex
        plan = {
            "id": plan_id,
            "transition": transition.value,
            "actor": actor,
            "from_status": current.value,
            "to_status": target.value,
            "metadata": metadata,
            "reserved_at": datetime.now(UTC).isoformat(),
            "legs": [
                {
                    "index": index,
                    "kind": kind.value,
                    "counterparty": counterparty,
                    "amount": str(amount),
                    "attempt": 0,
                    "key": _leg_key(trade.id, transition.value, plan_id, index, 0),
                    "state": LegState.NEW.value,
                    "sent": False,
                    "reference": None,
                    "error": None,
                }
                for index, (kind, counterparty, amount) in enumerate(movements)
            ],
        }
        trade.pending_settlement = plan
        logger.info(
            "settlement.reserved",
            trade_id=trade.id,
            transition=transition.value,
            plan_id=plan_id,
            legs=len(movements),
        )
        return copy.deepcopy(plan)

    def _plan_movements(
        self,
        trade: Trade,
        transition: Transition,
        resolution: Resolution | None,
    ) -> tuple[list[tuple[LegKind, str, int]], dict]:
        """Value movements a transition needs, with metadata for its audit event."""
        metadata: dict = {}
        if transition is Transition.DEPOSIT:
            movements = [(LegKind.HOLD, trade.buyer, trade.amount)]
        elif transition is Transition.CONFIRM_RECEIVED:
            movements = [(LegKind.RELEASE, trade.seller, trade.escrow_balance)]
        elif transition is Transition.REFUND_ALL:
            movements = [(LegKind.RELEASE, trade.buyer, trade.escrow_balance)]
            if isinstance(resolution, FullRefund):
                metadata["resolution"] = "full_refund"
        elif transition is Transition.RESOLVE_DISPUTE:
            split = SplitTo(normalize_address(resolution.recipient, "recipient"), resolution.amount)
            payouts = plan_split(
                split,
                seller=trade.seller,
                buyer=trade.buyer,
                escrow_balance=trade.escrow_balance,
                policy=self._remainder_policy,
            )
            movements = [(LegKind.RELEASE, recipient, amount) for recipient, amount in payouts]
            metadata.update(
                resolution="split",
                recipient=split.recipient,
                split_amount=str(split.amount),
                remainder_policy=self._remainder_policy.value,
                payouts={recipient: str(amount) for recipient, amount in payouts},
            )
        else:
            movements = []
        return [m for m in movements if m[2] > 0], metadata

    # ------------------------------------------------------------------
    # Phase 2: settle
    # ------------------------------------------------------------------

    async def _settle(self, trade_id: TradeId, plan: dict) -> TransitionOutcome:
        unavailable: BackendUnavailableError | None = None
        unexpected: Exception | None = None
        try:
            async with asyncio.timeout(self._settlement_timeout):
                await self._drive_legs(trade_id, plan)
        except TimeoutError:
            logger.warning(
                "settlement.timeout",
                trade_id=trade_id.hex,
                plan_id=plan["id"],
                timeout=self._settlement_timeout,
            )
        except BackendUnavailableError as exc:
            logger.warning("settlement.backend_unavailable", trade_id=trade_id.hex, error=exc.message)
            unavailable = exc
        except Exception as exc:
            # Legs already sent stay in flight; the plan is kept for reconcile.
            logger.exception("settlement.interrupted", trade_id=trade_id.hex, plan_id=plan["id"])
            unexpected = exc

        verdict = _verdict(plan["legs"])
        result = await self._store.update(
            trade_id,
            partial(self._finish, plan=plan, verdict=verdict, unavailable=unavailable),
        )
        if isinstance(result, EscrowError):
            raise result from unexpected
        return result

    async def _drive_legs(self, trade_id: TradeId, plan: dict) -> None:
        """Advance legs in order, stopping at the first failed one."""
        for leg in plan["legs"]:
            if leg["state"] == LegState.CONFIRMED:
                continue
            if leg["state"] == LegState.FAILED:
                return
            await self._advance_leg(trade_id, plan["id"], leg)
            if leg["state"] == LegState.FAILED:
                return

    async def _advance_leg(self, trade_id: TradeId, plan_id: str, leg: dict) -> None:
        if leg["reference"] is None:
            was_sent = leg["sent"]
            # Stored before the call: a cancelled or timed-out submission may
            # still have reached the ledger.
            if not was_sent:
                leg["sent"] = True
                await self._store.update(trade_id, partial(self._save_leg, plan_id=plan_id, leg=leg))
            try:
                receipt = await self._submit(trade_id, leg)
            except BackendUnavailableError:
                leg["sent"] = was_sent
                raise
            except SettlementFailureError as exc:
                _mark_failed(leg, exc.message)
                logger.warning(
                    "settlement.rejected", trade_id=trade_id.hex, key=leg["key"], error=exc.message
                )
                return
            leg["reference"] = receipt.reference
            leg["state"] = LegState.SUBMITTED.value
            await self._store.update(trade_id, partial(self._save_leg, plan_id=plan_id, leg=leg))
            logger.info(
                "settlement.submitted",
                trade_id=trade_id.hex,
                kind=leg["kind"],
                counterparty=leg["counterparty"],
                amount=leg["amount"],
                reference=receipt.reference,
            )
        else:
            receipt = None

        try:
            if receipt is None:
                receipt = await self._executor.get_receipt(leg["reference"])
            while not receipt.is_final:
                await asyncio.sleep(self._poll_interval)
                receipt = await self._executor.get_receipt(leg["reference"])
        except SettlementFailureError as exc:
            _mark_failed(leg, exc.message)
            return

        if receipt.status is ReceiptStatus.CONFIRMED:
            leg["state"] = LegState.CONFIRMED.value
            logger.info("settlement.confirmed", trade_id=trade_id.hex, reference=receipt.reference)
        else:
            _mark_failed(leg, receipt.error or "ledger reported failure")
            logger.warning(
                "settlement.failed", trade_id=trade_id.hex, reference=receipt.reference, error=leg["error"]
            )

    async def _save_leg(
        self, trade: Trade, events: EventRepository, *, plan_id: str, leg: dict
    ) -> None:
        """Write one leg's progress into the stored plan."""
        stored = trade.pending_settlement
        if not stored or stored.get("id") != plan_id:
            raise InvalidTransitionError(
                trade.trade_status.name, "settle", reason="settlement plan was replaced"
            )
        stored = copy.deepcopy(stored)
        stored["legs"][leg["index"]] = copy.deepcopy(leg)
        trade.pending_settlement = stored

    async def _submit(self, trade_id: TradeId, leg: dict) -> SettlementReceipt:
        amount = int(leg["amount"])
        if leg["kind"] == LegKind.HOLD:
            return await self._executor.hold(
                trade_id, leg["counterparty"], amount, idempotency_key=leg["key"]
            )
        return await self._executor.release(
            trade_id, leg["counterparty"], amount, idempotency_key=leg["key"]
        )

    # ------------------------------------------------------------------
    # Phase 3: finish
    # ------------------------------------------------------------------

    async def _finish(
        self,
        trade: Trade,
        events: EventRepository,
        *,
        plan: dict,
        verdict: str,
        unavailable: BackendUnavailableError | None,
    ) -> TransitionOutcome | EscrowError:
        """Apply the verdict. Errors are returned, not raised, so the write commits."""
        stored = trade.pending_settlement
        transition = Transition(plan["transition"])
        if not stored or stored.get("id") != plan["id"]:
            raise InvalidTransitionError(
                trade.trade_status.name, transition.value, reason="settlement plan was replaced"
            )

        references = [leg["reference"] for leg in plan["legs"] if leg["reference"]]
        current = trade.trade_status

        if verdict == _COMMIT:
            await self._commit(
                trade,
                events,
                transition,
                TradeStatus(plan["to_status"]),
                plan["actor"],
                legs=plan["legs"],
                metadata=plan["metadata"],
            )
            return TransitionOutcome(
                trade=trade,
                transition=transition.value,
                reference=references[-1],
                references=references,
            )

        if verdict == _ABORT:
            failed = [leg for leg in plan["legs"] if leg["state"] == LegState.FAILED]
            if failed:
                error: EscrowError = SettlementFailureError(
                    f"{transition.value} aborted: {failed[-1]['error']}",
                    reference=failed[-1]["reference"],
                )
            elif unavailable is not None:
                error = unavailable
            else:
                error = SettlementFailureError(f"{transition.value} aborted")
            trade.pending_settlement = None
            await events.record(
                trade_id=trade.id,
                event_type=EventType.SETTLEMENT_ABORTED,
                old_status=current,
                new_status=current,
                actor=plan["actor"],
                settlement_refs=references or None,
                metadata={"transition": transition.value, "plan_id": plan["id"], "error": error.message},
            )
            logger.warning(
                "settlement.aborted", trade_id=trade.id, transition=transition.value, error=error.message
            )
            return error

        first_time = "pending_since" not in stored
        plan = copy.deepcopy(plan)
        plan["pending_since"] = stored.get("pending_since") or datetime.now(UTC).isoformat()
        trade.pending_settlement = plan
        if first_time:
            await events.record(
                trade_id=trade.id,
                event_type=EventType.SETTLEMENT_PENDING,
                old_status=current,
                new_status=current,
                actor=plan["actor"],
                settlement_refs=references or None,
                metadata={"transition": transition.value, "plan_id": plan["id"]},
            )
        logger.info("settlement.pending", trade_id=trade.id, references=references)
        return SettlementPendingError(trade.id, references)

    async def _commit(
        self,
        trade: Trade,
        events: EventRepository,
        transition: Transition,
        target: TradeStatus,
        actor: str,
        *,
        legs: list[dict],
        metadata: dict,
    ) -> TradeEvent:
        rule = TRANSITION_RULES[transition]
        old = trade.trade_status
        held = sum(int(leg["amount"]) for leg in legs if leg["kind"] == LegKind.HOLD)
        released = sum(int(leg["amount"]) for leg in legs if leg["kind"] == LegKind.RELEASE)

        if transition is Transition.DEPOSIT:
            trade.escrow_balance = trade.amount
        trade.escrow_balance = trade.escrow_balance - released
        trade.total_paid_out = trade.total_paid_out + released
        trade.status = target.value
        trade.pending_settlement = None
        _check_balances(trade, transition)

        event = await events.record(
            trade_id=trade.id,
            event_type=rule.event_type,
            old_status=old,
            new_status=target,
            actor=actor,
            amount=(held or released) if rule.moves_value else None,
            settlement_refs=[leg["reference"] for leg in legs] or None,
            metadata=metadata or None,
        )
        logger.info(
            f"trade.{rule.event_type.value.lower().removeprefix('trade_')}",
            trade_id=trade.id,
            old_status=old.name,
            new_status=target.name,
            actor=actor,
            amount=held or released,
        )
        return event

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _prepare_reconcile(self, trade: Trade, events: EventRepository) -> dict:
        if not trade.pending_settlement:
            raise InvalidTransitionError(
                trade.trade_status.name, "reconcile", reason="no settlement pending"
            )
        plan = copy.deepcopy(trade.pending_settlement)
        legs = plan["legs"]
        if any(leg["state"] == LegState.CONFIRMED for leg in legs):
            for leg in legs:
                if leg["state"] != LegState.FAILED:
                    continue
                leg["attempt"] += 1
                leg["key"] = _leg_key(
                    trade.id, plan["transition"], plan["id"], leg["index"], leg["attempt"]
                )
                leg.update(state=LegState.NEW.value, sent=False, reference=None, error=None)
            trade.pending_settlement = plan
        return copy.deepcopy(plan)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _role_of(self, trade: Trade, actor: str) -> Role | None:
        if actor == trade.seller:
            return Role.SELLER
        if actor == trade.buyer:
            return Role.BUYER
        if actor == self._arbiter:
            return Role.ARBITER
        return None

    @staticmethod
    def _fire(current: TradeStatus, transition: Transition) -> TradeStatus:
        """Validate and fire a state machine transition, returning the new status."""
        sm = TradeStateMachine(current_status=current)
        try:
            getattr(sm, transition.value)()
        except TransitionNotAllowed as err:
            raise InvalidTransitionError(current.name, transition.value) from err
        return sm.status


def _leg_key(trade_id: str, transition: str, plan_id: str, index: int, attempt: int) -> str:
    return f"{trade_id}:{transition}:{plan_id}:{index}:{attempt}"


def _mark_failed(leg: dict, error: str) -> None:
    leg["state"] = LegState.FAILED.value
    leg["error"] = error


def _verdict(legs: list[dict]) -> str:
    """commit when every leg confirmed; abort only when no value can have moved."""
    if all(leg["state"] == LegState.CONFIRMED for leg in legs):
        return _COMMIT
    confirmed = any(leg["state"] == LegState.CONFIRMED for leg in legs)
    in_flight = any(leg["sent"] and leg["state"] != LegState.FAILED for leg in legs)
    if not confirmed and not in_flight:
        return _ABORT
    return _PENDING


def _check_balances(trade: Trade, transition: Transition) -> None:
    status = trade.trade_status
    expected = trade.amount if status.holds_funds else 0
    if trade.escrow_balance != expected or trade.total_paid_out > trade.amount:
        raise InvalidTransitionError(
            status.name,
            transition.value,
            reason=(
                f"escrow balance {trade.escrow_balance} would break the funding invariant "
                f"(expected {expected}, paid out {trade.total_paid_out})"
            ),
        )
