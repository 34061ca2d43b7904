"""Expiry Sweeper: periodic settlement of escrows whose clocks ran out.

Each cycle:
    1. claim_by_timeout for every DELIVERED escrow whose acceptance window
       closed (review_deadline < now): the seller is paid.
    2. reclaim_expired for every CREATED / FUNDED escrow whose delivery
       deadline passed (deadline < now): the buyer is refunded.

Transitions go through EscrowService, so the sweeper obeys the same locks
and conditional updates as any caller. Losing a race to a concurrent caller
(InvalidStateTransitionError) is counted as skipped. Any other per-escrow
failure is logged, counted, and retried on the next cycle.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from clawvault.domain.exceptions import ClawVaultError, InvalidStateTransitionError
from clawvault.logging_config import get_logger, sweep_context

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from clawvault.schemas.escrow import EscrowResult
    from clawvault.services.escrow_service import EscrowService

logger = get_logger(__name__)


@dataclass
class SweepReport:
    """Outcome counts of one sweep cycle."""

    auto_completed: int = 0
    auto_refunded: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.auto_completed + self.auto_refunded + self.skipped + self.failed

    def to_dict(self) -> dict:
        return asdict(self)


class ExpirySweeper:
    """Runs sweep cycles on a fixed interval until stopped."""

    def __init__(self, service: EscrowService, interval_seconds: float = 300.0) -> None:
        self._service = service
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False
        self.runs = 0
        self._cycles_started = 0
        self.last_report: SweepReport | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            logger.warning("sweeper.already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="clawvault-expiry-sweeper")
        logger.info("sweeper.started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the loop and wait for the current cycle to be cancelled."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("sweeper.stopped", runs=self.runs)

    async def run_once(self) -> SweepReport:
        """Apply every due timeout once and report what happened."""
        report = SweepReport()
        self._cycles_started += 1
        with sweep_context(self._cycles_started):
            review_expired, deadline_expired = await self._service.list_due()

            for escrow_id in review_expired:
                if await self._settle(escrow_id, self._service.claim_by_timeout, report):
                    report.auto_completed += 1
            for escrow_id in deadline_expired:
                if await self._settle(escrow_id, self._service.reclaim_expired, report):
                    report.auto_refunded += 1

            if report.total:
                logger.info("sweeper.cycle_complete", **report.to_dict())

        self.runs += 1
        self.last_report = report
        return report

    async def _settle(
        self,
        escrow_id: str,
        operation: Callable[[str], Awaitable[EscrowResult]],
        report: SweepReport,
    ) -> bool:
        try:
            await operation(escrow_id)
        except InvalidStateTransitionError:
            # A caller moved the escrow between listing and applying.
            report.skipped += 1
            logger.debug("sweeper.escrow_skipped", escrow_id=escrow_id)
            return False
        except ClawVaultError as err:
            report.failed += 1
            logger.warning(
                "sweeper.escrow_failed",
                escrow_id=escrow_id,
                code=err.code,
                reason=err.message,
            )
            return False
        except Exception:
            report.failed += 1
            logger.exception("sweeper.escrow_failed", escrow_id=escrow_id)
            return False
        return True

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("sweeper.cycle_error")
            await asyncio.sleep(self._interval)
