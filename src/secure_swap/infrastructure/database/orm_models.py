"""SQLAlchemy 2.0 ORM models for the SecureSwap escrow service.

Two tables:
    1. trades        — One row per escrow trade, keyed by its 32-byte id.
    2. trade_events  — Append-only audit log of every transition and settlement step.

Design decisions:
    - The primary key is the canonical trade id hex, so lookups need no join.
    - Base-unit amounts are uint256-sized; they are stored as decimal text
      through the UInt256 type so SQLite cannot round them through REAL.
    - A version column turns every UPDATE into a compare-and-swap.
    - CHECK constraints keep status and balances sane at the DB level.
    - trade_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from secure_swap.domain.enums import TradeStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UInt256(TypeDecorator):
    """Non-negative integer of up to 78 digits, persisted as text."""

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001
        if value is None:
            return None
        if value < 0:
            raise ValueError("UInt256 columns cannot hold negative values")
        return str(int(value))

    def process_result_value(self, value, dialect):  # noqa: ANN001
        return None if value is None else int(value)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. trades
# ---------------------------------------------------------------------------
class Trade(Base):
    """An escrow trade between a seller and a buyer."""

    __tablename__ = "trades"

    # --- Primary Key ---
    id: Mapped[str] = mapped_column(
        String(66),
        primary_key=True,
        comment="Canonical 32-byte trade id, 0x-prefixed lowercase hex",
    )

    # --- Parties (immutable) ---
    seller: Mapped[str] = mapped_column(String(42), nullable=False)
    buyer: Mapped[str] = mapped_column(String(42), nullable=False)

    # --- Terms (immutable) ---
    amount: Mapped[int] = mapped_column(
        UInt256,
        nullable=False,
        comment="Price in base units (wei)",
    )
    content_ref: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="N/A",
        comment="Opaque content reference, e.g. the delivered file's hash",
    )

    # --- State ---
    status: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=TradeStatus.CREATED.value,
        comment="TradeStatus ordinal (guarded by TradeStateMachine)",
    )
    escrow_balance: Mapped[int] = mapped_column(
        UInt256,
        nullable=False,
        default=0,
        comment="Value currently held for this trade",
    )
    total_paid_out: Mapped[int] = mapped_column(
        UInt256,
        nullable=False,
        default=0,
        comment="Cumulative value released to any party",
    )
    pending_settlement: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment="Settlement plan of an in-flight transition; blocks other transitions",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    # --- Relationships ---
    events: Mapped[list[TradeEvent]] = relationship(
        "TradeEvent",
        back_populates="trade",
        order_by="TradeEvent.sequence.asc()",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint("status BETWEEN 0 AND 6", name="ck_trade_valid_status"),
        CheckConstraint("seller <> buyer", name="ck_trade_distinct_parties"),
        Index("idx_trade_status", "status"),
        Index("idx_trade_seller", "seller"),
        Index("idx_trade_buyer", "buyer"),
        Index("idx_trade_created_at", "created_at"),
    )

    @property
    def trade_status(self) -> TradeStatus:
        return TradeStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<Trade id={self.id} status={self.trade_status.name} "
            f"amount={self.amount} escrow={self.escrow_balance}>"
        )


# ---------------------------------------------------------------------------
# 2. trade_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class TradeEvent(Base):
    """Immutable audit record of a transition or settlement step.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "trade_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position in the trade's history, starting at 1",
    )

    trade_id: Mapped[str] = mapped_column(
        String(66),
        ForeignKey("trades.id"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_status: Mapped[int] = mapped_column(Integer, nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Principal that signed the transition, or SYSTEM",
    )
    amount: Mapped[int | None] = mapped_column(UInt256, nullable=True)
    settlement_refs: Mapped[list | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment="Ledger references of the value movements, if any",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    trade: Mapped[Trade] = relationship("Trade", back_populates="events")

    __table_args__ = (
        Index("idx_event_trade", "trade_id"),
        Index("idx_event_type", "event_type"),
        Index("uq_event_trade_sequence", "trade_id", "sequence", unique=True),
    )

    @property
    def reference(self) -> str:
        """Stable handle for this event, used as txHash for non-value transitions."""
        return f"evt-{self.id.hex}"

    def __repr__(self) -> str:
        return (
            f"<TradeEvent #{self.sequence} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


event.listen(Trade, "before_update", _set_updated_at)
