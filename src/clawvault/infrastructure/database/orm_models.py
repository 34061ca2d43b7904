"""SQLAlchemy 2.0 ORM models for the ClawVault escrow engine.

Three tables:
    1. escrows         : Current state of each escrow agreement.
    2. escrow_events   : Append-only audit log of every state transition.
    3. settlements     : Payout / refund / fee directives, at most one per kind.

Design decisions:
    - Opaque string ids (esc_<24 hex>) so ids never leak creation order.
    - Decimal for USDC amounts (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for event payloads.
    - CHECK constraints on status, amount and party distinctness.
    - (escrow_id, sequence) is unique, so two writers can never append the
      same step of the history.
    - (escrow_id, kind) is unique on settlements, so a payout can never be
      emitted twice for one escrow.
    - escrows are never deleted; escrow_events and settlements are never
      updated or deleted at the application level.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from clawvault.domain.enums import EscrowStatus, SettlementKind

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in EscrowStatus)
_KIND_VALUES = ", ".join(f"'{k.value}'" for k in SettlementKind)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_escrow_id() -> str:
    """Opaque escrow identifier."""
    return f"esc_{secrets.token_hex(12)}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always hands back UTC.

    SQLite stores datetimes without an offset; this restores it on load so
    deadline comparisons never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """An escrow agreement between a buyer and a seller."""

    __tablename__ = "escrows"

    # --- Primary Key ---
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_escrow_id)

    # --- Participants ---
    buyer: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Address of the buyer (pays into escrow)",
    )
    seller: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Address of the seller (performs the service)",
    )

    # --- Financials (immutable after creation) ---
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 6),
        nullable=False,
        comment="Escrow amount in USDC (6 decimal precision)",
    )

    # --- Terms (immutable after creation) ---
    service_description: Mapped[str] = mapped_column(Text, nullable=False)
    acceptance_criteria: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    deadline: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="Seller must mark delivery by this time",
    )
    acceptance_window_seconds: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Time after delivery during which the buyer may accept or dispute",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowStatus.CREATED.value,
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )

    # --- Progress ---
    deposit_tx: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    delivery_proof: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, default=None)
    review_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
        comment="delivered_at + acceptance window",
    )

    # --- Dispute ---
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    dispute_evidence: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    winner: Mapped[str | None] = mapped_column(String(10), nullable=True, default=None)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_escrow_valid_status"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint("buyer <> seller", name="ck_escrow_distinct_parties"),
        CheckConstraint("acceptance_window_seconds > 0", name="ck_escrow_positive_window"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_buyer", "buyer"),
        Index("idx_escrow_seller", "seller"),
        Index("idx_escrow_created_at", "created_at"),
        Index("idx_escrow_status_deadline", "status", "deadline"),
        Index("idx_escrow_status_review_deadline", "status", "review_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Escrow id={self.id} status={self.status} amount={self.amount} USDC>"


# ---------------------------------------------------------------------------
# 2. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of one state transition.

    This table is APPEND-ONLY. Ordered by ``sequence`` it replays a valid
    walk of the escrow state machine.
    """

    __tablename__ = "escrow_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    escrow_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("escrows.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Monotonic position in this escrow's history, starting at 1",
    )

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Status before this event (null for creation)",
    )
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (address or SYSTEM)",
    )
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("escrow_id", "sequence", name="uq_event_escrow_sequence"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent escrow={self.escrow_id} #{self.sequence} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 3. settlements
# ---------------------------------------------------------------------------
class Settlement(Base):
    """A directive to move escrowed value, emitted by a terminal transition."""

    __tablename__ = "settlements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("escrows.id"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    recipient: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("escrow_id", "kind", name="uq_settlement_escrow_kind"),
        CheckConstraint(f"kind IN ({_KIND_VALUES})", name="ck_settlement_valid_kind"),
        CheckConstraint("amount >= 0", name="ck_settlement_nonnegative_amount"),
        Index("idx_settlement_recipient", "recipient"),
    )

    def __repr__(self) -> str:
        return f"<Settlement escrow={self.escrow_id} {self.kind} {self.amount} -> {self.recipient}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(Escrow, "before_update", _set_updated_at)
