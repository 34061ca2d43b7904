"""Backend selection.

The operating mode is chosen once, at startup, from ``ESCROW_MODE``:

    internal   -> EscrowService (database is the source of truth)
    trustless  -> LedgerMirror  (the contract is the source of truth)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from clawvault.domain.enums import EscrowMode
from clawvault.logging_config import get_logger
from clawvault.services.escrow_service import EscrowService
from clawvault.services.ledger_mirror import LedgerMirror

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from clawvault.config import Settings
    from clawvault.domain.backend_protocol import EscrowBackend
    from clawvault.domain.clock import Clock
    from clawvault.ledger.client import ContractClient

logger = get_logger(__name__)


def create_backend(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    contract_client: ContractClient | None = None,
    clock: Clock | None = None,
) -> EscrowBackend:
    """Build the backend for ``settings.escrow_mode``."""
    mode = EscrowMode(settings.escrow_mode)
    if mode is EscrowMode.TRUSTLESS:
        backend: EscrowBackend = LedgerMirror.from_settings(
            settings, client=contract_client, clock=clock
        )
    else:
        if session_factory is None:
            from clawvault.infrastructure.database.engine import get_session_factory

            session_factory = get_session_factory()
        backend = EscrowService.from_settings(settings, session_factory, clock=clock)

    logger.info(
        "backend.selected",
        mode=str(mode),
        fee_bps=settings.fee_bps,
        arbiter=settings.arbiter_address,
    )
    return backend
