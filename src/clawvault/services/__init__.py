"""Application services: use case orchestration."""

from clawvault.services.arbiter import DisputeArbiter
from clawvault.services.escrow_service import EscrowService
from clawvault.services.factory import create_backend
from clawvault.services.ledger_mirror import LedgerMirror
from clawvault.services.sweeper import ExpirySweeper, SweepReport

__all__ = [
    "DisputeArbiter",
    "EscrowService",
    "ExpirySweeper",
    "LedgerMirror",
    "SweepReport",
    "create_backend",
]
