"""Pydantic schemas for the escrow engine's caller-facing surface.

These schemas define what callers (API layer, tools, scripts) send in and get
back. They are separate from the ORM models to keep a clean boundary between
callers and the database layer, and they give both backends one shared
vocabulary: internal mode answers with EscrowResult / EscrowView, trustless
mode with TransactionDescriptor / OnChainEscrow, all using EscrowStatus.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic resolves annotations at runtime
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clawvault.domain.enums import EscrowStatus, SettlementKind, Winner

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEscrowRequest(BaseModel):
    """Request body for creating a new escrow agreement."""

    buyer: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Address of the buyer (pays into escrow)",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    seller: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Address of the seller (performs the service)",
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=6,
        description="Escrow amount in USDC",
        examples=[100.0],
    )
    service_description: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="What the seller must deliver",
    )
    acceptance_criteria: str | None = Field(default=None, max_length=5000)
    deadline_hours: float | None = Field(
        default=None,
        gt=0,
        le=24 * 365,
        description="Hours the seller has to mark delivery (default from settings)",
    )
    acceptance_window_hours: float | None = Field(
        default=None,
        gt=0,
        le=24 * 90,
        description="Hours the buyer has to accept or dispute after delivery",
    )

    @model_validator(mode="after")
    def _distinct_parties(self) -> CreateEscrowRequest:
        if self.buyer.strip().lower() == self.seller.strip().lower():
            raise ValueError("buyer and seller must differ")
        return self

    def to_kwargs(self) -> dict:
        """Keyword arguments for EscrowBackend.create_escrow."""
        return {
            "buyer": self.buyer,
            "seller": self.seller,
            "amount": self.amount,
            "description": self.service_description,
            "criteria": self.acceptance_criteria,
            "deadline_hours": self.deadline_hours,
            "acceptance_window_hours": self.acceptance_window_hours,
        }


class ResolveDisputeRequest(BaseModel):
    """Request body for the arbiter resolving a dispute."""

    winner: str = Field(
        ...,
        min_length=1,
        description='"buyer", "seller", or the address of either party',
    )
    resolution: str | None = Field(default=None, max_length=5000)

    @field_validator("winner")
    @classmethod
    def _normalize_side(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered in (Winner.BUYER.value, Winner.SELLER.value):
            return lowered
        return value.strip()


# ---------------------------------------------------------------------------
# Internal-mode Response Schemas
# ---------------------------------------------------------------------------


class EscrowView(BaseModel):
    """Current state of one escrow agreement."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer: str
    seller: str
    amount: Decimal
    service_description: str
    acceptance_criteria: str | None
    status: EscrowStatus
    deadline: datetime
    acceptance_window_seconds: int
    delivered_at: datetime | None
    review_deadline: datetime | None
    deposit_tx: str | None
    delivery_proof: str | None
    dispute_reason: str | None
    dispute_evidence: str | None
    resolution: str | None
    winner: Winner | None
    created_at: datetime
    updated_at: datetime


class SettlementView(BaseModel):
    """A payout, refund or fee directive."""

    model_config = ConfigDict(from_attributes=True)

    kind: SettlementKind
    recipient: str
    amount: Decimal


class EscrowEventView(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    escrow_id: str
    sequence: int
    event_type: str
    old_status: EscrowStatus | None
    new_status: EscrowStatus
    actor: str
    payload: dict | None
    created_at: datetime


class EscrowResult(BaseModel):
    """Outcome of a write operation in internal mode."""

    escrow: EscrowView
    message: str
    next_step: str | None = None
    directives: list[SettlementView] = Field(default_factory=list)
    allowed_operations: list[str] = Field(
        default_factory=list,
        description="Lifecycle operations that can follow from the new status",
    )

    @property
    def status(self) -> EscrowStatus:
        return self.escrow.status


class EscrowStats(BaseModel):
    """Counts of escrows by outcome."""

    total: int = 0
    completed: int = 0
    disputed: int = 0
    refunded: int = 0
    resolved: int = 0
    active: int = 0


# ---------------------------------------------------------------------------
# Trustless-mode Schemas
# ---------------------------------------------------------------------------


class TransactionDescriptor(BaseModel):
    """An unsigned contract call for the party holding the signing key."""

    target: str = Field(description="Contract address the transaction is sent to")
    function: str
    signature: str = Field(description="Canonical ABI signature, e.g. acceptDelivery(uint256)")
    args: dict
    data: str = Field(description="0x-prefixed ABI-encoded calldata")
    chain_id: int
    human_readable: dict = Field(default_factory=dict)
    note: str = ""


class CreateEscrowTransaction(BaseModel):
    """Two-step create: grant the allowance, then create the escrow."""

    step_1_approve: TransactionDescriptor
    step_2_create: TransactionDescriptor
    human_readable: dict = Field(default_factory=dict)
    note: str = ""


class OnChainEscrow(BaseModel):
    """An escrow as read from the contract, in the internal status vocabulary."""

    id: int
    buyer: str
    seller: str
    amount: Decimal
    fee: Decimal
    service_hash: str
    delivery_hash: str
    deadline: datetime
    delivered_at: datetime | None
    acceptance_window_seconds: int
    status: EscrowStatus
    contract_status: str
    dispute_reason: str
    contract: str
    explorer_url: str


class OnChainStats(BaseModel):
    """Global contract counters."""

    total_escrows: int
    total_volume: Decimal
    total_fees: Decimal
    next_escrow_id: int
    fee_bps: int
    fee_percent: str
    contract: str
