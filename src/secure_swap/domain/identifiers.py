"""Trade identifiers and principal addresses.

A TradeId is 32 opaque bytes. Callers may pass either the canonical hex
form ("0x" + 64 hex digits) or a short label such as "order-42", which is
encoded as its UTF-8 bytes zero-padded on the right to 32 bytes. Labels
must be at most 31 bytes so the final byte is always a terminator, and may
not contain NUL, which keeps the encoding injective.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from secure_swap.domain.exceptions import ValidationError

TRADE_ID_BYTES = 32
MAX_LABEL_BYTES = TRADE_ID_BYTES - 1

_CANONICAL_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class TradeId:
    """Fixed-width trade identifier."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != TRADE_ID_BYTES:
            raise ValidationError(
                f"TradeId must be {TRADE_ID_BYTES} bytes, got {len(self.raw)}",
                field="tradeId",
            )

    @classmethod
    def parse(cls, value: str | TradeId) -> TradeId:
        """Canonicalize external input into a TradeId.

        Canonical hex passes through; anything else is treated as a label.
        """
        if isinstance(value, TradeId):
            return value
        if not isinstance(value, str) or not value:
            raise ValidationError("tradeId is required", field="tradeId")
        if _CANONICAL_RE.match(value):
            return cls(bytes.fromhex(value[2:]))
        return cls.from_label(value)

    @classmethod
    def from_label(cls, label: str) -> TradeId:
        if "\x00" in label:
            raise ValidationError("tradeId may not contain NUL characters", field="tradeId")
        encoded = label.encode("utf-8")
        if len(encoded) > MAX_LABEL_BYTES:
            raise ValidationError(
                f"tradeId label is {len(encoded)} bytes; the limit is {MAX_LABEL_BYTES}",
                field="tradeId",
            )
        return cls(encoded.ljust(TRADE_ID_BYTES, b"\x00"))

    @property
    def hex(self) -> str:
        return "0x" + self.raw.hex()

    @property
    def label(self) -> str | None:
        """The human label this id was encoded from, if it decodes as one."""
        stripped = self.raw.rstrip(b"\x00")
        if not stripped or b"\x00" in stripped or len(stripped) > MAX_LABEL_BYTES:
            return None
        try:
            return stripped.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def __str__(self) -> str:
        return self.hex


def canonical_trade_id(value: str) -> str:
    """Shortcut: external id string -> canonical lowercase hex."""
    return TradeId.parse(value).hex


def normalize_address(value: str, field: str = "address") -> str:
    """Validate an EVM-style principal address and lowercase it."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field} is required", field=field)
    value = value.strip()
    if not _ADDRESS_RE.match(value):
        raise ValidationError(f"{field} is not a valid address: {value!r}", field=field)
    return value.lower()
