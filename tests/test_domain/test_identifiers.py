"""Tests for trade id and address canonicalization."""

from __future__ import annotations

import pytest

from secure_swap.domain.exceptions import ValidationError
from secure_swap.domain.identifiers import (
    MAX_LABEL_BYTES,
    TradeId,
    canonical_trade_id,
    normalize_address,
)


class TestTradeId:
    def test_label_is_zero_padded(self) -> None:
        tid = TradeId.parse("order-42")
        assert tid.raw[:8] == b"order-42"
        assert tid.raw[8:] == b"\x00" * 24
        assert tid.label == "order-42"

    def test_canonical_hex_passes_through(self) -> None:
        canonical = "0x" + "ab" * 32
        tid = TradeId.parse(canonical)
        assert tid.hex == canonical
        assert tid.label is None

    def test_uppercase_hex_is_lowercased(self) -> None:
        assert canonical_trade_id("0x" + "AB" * 32) == "0x" + "ab" * 32

    def test_label_and_its_hex_are_the_same_trade(self) -> None:
        tid = TradeId.parse("order-42")
        assert TradeId.parse(tid.hex) == tid

    def test_distinct_labels_never_collide(self) -> None:
        assert TradeId.parse("a") != TradeId.parse("a ")

    def test_longest_label(self) -> None:
        label = "x" * MAX_LABEL_BYTES
        assert TradeId.parse(label).label == label

    def test_label_too_long(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            TradeId.parse("x" * (MAX_LABEL_BYTES + 1))
        assert exc_info.value.field == "tradeId"

    def test_multibyte_label_counts_bytes(self) -> None:
        # 11 three-byte characters = 33 bytes
        with pytest.raises(ValidationError):
            TradeId.parse("€" * 11)

    @pytest.mark.parametrize("value", ["", None, "bad\x00id"])
    def test_rejects_malformed(self, value) -> None:
        with pytest.raises(ValidationError):
            TradeId.parse(value)

    def test_parse_accepts_trade_id(self) -> None:
        tid = TradeId.parse("order-1")
        assert TradeId.parse(tid) is tid

    def test_wrong_width(self) -> None:
        with pytest.raises(ValidationError, match="32 bytes"):
            TradeId(b"short")


class TestNormalizeAddress:
    def test_lowercases(self) -> None:
        assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20

    def test_strips_whitespace(self) -> None:
        assert normalize_address("  0x" + "1" * 40 + " ") == "0x" + "1" * 40

    @pytest.mark.parametrize("value", ["", "0x123", "1" * 42, "0x" + "g" * 40])
    def test_rejects_invalid(self, value: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize_address(value, "buyer")
        assert exc_info.value.field == "buyer"
