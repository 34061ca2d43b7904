"""Domain enumerations for the ClawVault escrow engine.

These enums define the closed vocabularies used throughout the system.
They are framework-agnostic (no SQLAlchemy, no httpx imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow agreement.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    CREATED = "CREATED"
    FUNDED = "FUNDED"
    DELIVERED = "DELIVERED"
    DISPUTED = "DISPUTED"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    RESOLVED = "RESOLVED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE_STATUSES


_TERMINAL_STATUSES = frozenset(
    {EscrowStatus.COMPLETED, EscrowStatus.REFUNDED, EscrowStatus.RESOLVED}
)
_ACTIVE_STATUSES = frozenset(
    {EscrowStatus.CREATED, EscrowStatus.FUNDED, EscrowStatus.DELIVERED}
)


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every state transition produces exactly one event.
    This is the append-only forensic trail for disputes.
    """

    # Lifecycle events
    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    DELIVERY_MARKED = "DELIVERY_MARKED"
    DELIVERY_ACCEPTED = "DELIVERY_ACCEPTED"

    # Dispute events
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED_SELLER = "DISPUTE_RESOLVED_SELLER"
    DISPUTE_RESOLVED_BUYER = "DISPUTE_RESOLVED_BUYER"

    # Timeout events
    EXPIRED_RECLAIMED = "EXPIRED_RECLAIMED"
    CLAIMED_BY_TIMEOUT = "CLAIMED_BY_TIMEOUT"


class Operation(enum.StrEnum):
    """Caller-facing lifecycle operations, shared by both backends."""

    CREATE = "create"
    FUND = "fund"
    DELIVER = "deliver"
    ACCEPT = "accept"
    DISPUTE = "dispute"
    RESOLVE = "resolve"
    RECLAIM_EXPIRED = "reclaim_expired"
    CLAIM_BY_TIMEOUT = "claim_by_timeout"


class Winner(enum.StrEnum):
    """The party an arbiter may route disputed funds to."""

    BUYER = "buyer"
    SELLER = "seller"


class SettlementKind(enum.StrEnum):
    """Kinds of fund-moving directives emitted by terminal transitions."""

    PAYOUT = "PAYOUT"  # escrowed amount (minus fee) to the seller
    REFUND = "REFUND"  # escrowed amount back to the buyer
    FEE = "FEE"  # protocol fee to the fee recipient


class EscrowMode(enum.StrEnum):
    """Which backend is the source of truth."""

    INTERNAL = "internal"
    TRUSTLESS = "trustless"


SYSTEM_ACTOR = "SYSTEM"
