"""Process entry point for the ClawVault escrow engine.

Lifecycle:
    1. Startup: initialize logging and, in internal mode, the database
       (tables are created in development) and the expiry sweeper.
    2. Running: the backend serves whatever caller embeds it; the sweeper
       settles expired escrows every ``SWEEP_INTERVAL_SECONDS``.
    3. Shutdown: stop the sweeper, close the RPC client and the database.

Run with:
    uv run clawvault
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from clawvault.config import get_settings
from clawvault.domain.enums import EscrowMode
from clawvault.logging_config import get_logger, setup_logging_from_settings
from clawvault.services.arbiter import DisputeArbiter
from clawvault.services.escrow_service import EscrowService
from clawvault.services.factory import create_backend
from clawvault.services.ledger_mirror import LedgerMirror
from clawvault.services.sweeper import ExpirySweeper

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from clawvault.config import Settings
    from clawvault.domain.backend_protocol import EscrowBackend


@dataclass
class Application:
    """The wired-up engine for one process."""

    settings: Settings
    backend: EscrowBackend
    arbiter: DisputeArbiter
    sweeper: ExpirySweeper | None = None


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncIterator[Application]:
    """Manage application startup and shutdown."""
    settings = settings or get_settings()
    setup_logging_from_settings(settings)
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, mode=settings.escrow_mode)

    from clawvault.infrastructure.database.engine import close_db, init_db

    internal = EscrowMode(settings.escrow_mode) is EscrowMode.INTERNAL
    if internal:
        await init_db()

    backend = create_backend(settings)
    app = Application(
        settings=settings,
        backend=backend,
        arbiter=DisputeArbiter(backend, settings.arbiter_address),
    )
    if isinstance(backend, EscrowService):
        app.sweeper = ExpirySweeper(backend, interval_seconds=settings.sweep_interval_seconds)
        await app.sweeper.start()

    logger.info("app.started")
    try:
        yield app
    finally:
        logger.info("app.shutting_down")
        if app.sweeper is not None:
            await app.sweeper.stop()
        if isinstance(backend, LedgerMirror):
            await backend.aclose()
        if internal:
            await close_db()
        logger.info("app.stopped")


async def serve() -> None:
    """Run until SIGINT / SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with lifespan():
        await stop.wait()


def main() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    main()
