"""Dispute Arbiter: the one external authority that may settle a dispute.

The arbiter is a configured address, fixed for the lifetime of the process.
It can only route the escrowed amount to the buyer or to the seller of the
disputed escrow; it cannot redirect funds to a third party. Enforcement
lives in the backend (LifecycleEngine.plan_resolve for internal mode,
LedgerMirror.resolve and ultimately the contract for trustless mode), so
this class is a thin, logged entry point bound to one backend.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from clawvault.domain.exceptions import ClawVaultError
from clawvault.logging_config import get_logger

if TYPE_CHECKING:
    from clawvault.domain.backend_protocol import EscrowBackend
    from clawvault.domain.enums import Winner

logger = get_logger(__name__)


class DisputeArbiter:
    """Resolves disputed escrows through the active backend."""

    def __init__(self, backend: EscrowBackend, arbiter_address: str) -> None:
        self._backend = backend
        self.arbiter_address = arbiter_address

    async def resolve(
        self,
        escrow_id: str,
        winner: Winner | str,
        arbiter: str | None = None,
        resolution: str | None = None,
    ) -> Any:
        """Settle a dispute in favour of ``winner`` ("buyer", "seller" or an address).

        ``arbiter`` is the acting address; it defaults to the configured one.
        The backend still rejects any actor that is not the configured arbiter.
        """
        arbiter = arbiter or self.arbiter_address
        logger.info(
            "arbiter.resolving",
            escrow_id=escrow_id,
            winner=str(winner),
            arbiter=arbiter,
        )
        try:
            result = await self._backend.resolve(escrow_id, winner, arbiter, resolution)
        except ClawVaultError as err:
            logger.warning(
                "arbiter.resolve_rejected",
                escrow_id=escrow_id,
                code=err.code,
                reason=err.message,
            )
            raise
        logger.info("arbiter.resolved", escrow_id=escrow_id, winner=str(winner))
        return result
