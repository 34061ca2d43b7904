"""Pydantic schemas shared by both escrow backends."""

from clawvault.schemas.escrow import (
    CreateEscrowRequest,
    CreateEscrowTransaction,
    EscrowEventView,
    EscrowResult,
    EscrowStats,
    EscrowView,
    OnChainEscrow,
    OnChainStats,
    ResolveDisputeRequest,
    SettlementView,
    TransactionDescriptor,
)

__all__ = [
    "CreateEscrowRequest",
    "CreateEscrowTransaction",
    "EscrowEventView",
    "EscrowResult",
    "EscrowStats",
    "EscrowView",
    "OnChainEscrow",
    "OnChainStats",
    "ResolveDisputeRequest",
    "SettlementView",
    "TransactionDescriptor",
]
