"""Tests for domain enumerations."""

from __future__ import annotations

from secure_swap.domain.enums import (
    FUNDED_STATUSES,
    TERMINAL_STATUSES,
    EventType,
    Role,
    TradeStatus,
    Transition,
)


class TestTradeStatus:
    def test_ordinals_match_wire_format(self) -> None:
        assert [s.value for s in TradeStatus] == [0, 1, 2, 3, 4, 5, 6]
        assert TradeStatus(3) is TradeStatus.COMPLETED
        assert TradeStatus.REFUNDED == 6

    def test_terminal_statuses(self) -> None:
        assert {s for s in TradeStatus if s.is_terminal} == {
            TradeStatus.COMPLETED,
            TradeStatus.RESOLVED,
            TradeStatus.REFUNDED,
        }
        assert TERMINAL_STATUSES.isdisjoint(FUNDED_STATUSES)

    def test_funded_statuses_hold_funds(self) -> None:
        assert TradeStatus.FUNDED.holds_funds
        assert TradeStatus.SHIPPED.holds_funds
        assert TradeStatus.DISPUTED.holds_funds
        assert not TradeStatus.CREATED.holds_funds
        assert not TradeStatus.COMPLETED.holds_funds


class TestTransition:
    def test_transition_names(self) -> None:
        assert {t.value for t in Transition} == {
            "deposit",
            "mark_shipped",
            "confirm_received",
            "raise_dispute",
            "resolve_dispute",
            "refund_all",
        }


class TestEventType:
    def test_all_event_types_exist(self) -> None:
        # 4 lifecycle + 3 dispute + 2 settlement
        assert len(EventType) == 9

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.TRADE_CREATED, str)
        assert EventType.SETTLEMENT_PENDING == "SETTLEMENT_PENDING"


class TestRole:
    def test_roles(self) -> None:
        assert Role.SELLER == "seller"
        assert Role.BUYER == "buyer"
        assert Role.ARBITER == "arbiter"
