"""Escrow Service: store-backed lifecycle executor (internal mode).

This is the application layer that coordinates between:
    - LifecycleEngine (validation, next status, settlement directives)
    - Repositories (data access)
    - Event log (audit trail)
    - KeyedLock (one writer per escrow at a time)

Every write runs as one unit of work: read the escrow, plan the transition,
move the status with a conditional update, append the event and the
settlement directives, commit. If any step fails nothing is written.
The sweeper and the arbiter call into this service, so there is a single
source of truth for all business rules.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from clawvault.domain.clock import SystemClock
from clawvault.domain.enums import (
    SYSTEM_ACTOR,
    EscrowMode,
    EscrowStatus,
    EventType,
    Operation,
    SettlementKind,
)
from clawvault.domain.exceptions import (
    ClawVaultError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
)
from clawvault.domain.lifecycle import LifecycleEngine
from clawvault.infrastructure.database.engine import unit_of_work
from clawvault.infrastructure.database.orm_models import Escrow
from clawvault.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    SettlementRepository,
)
from clawvault.infrastructure.locks import KeyedLock
from clawvault.logging_config import get_logger
from clawvault.schemas.escrow import (
    EscrowEventView,
    EscrowResult,
    EscrowStats,
    EscrowView,
    SettlementView,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from clawvault.config import Settings
    from clawvault.domain.clock import Clock
    from clawvault.domain.enums import Winner
    from clawvault.domain.lifecycle import TransitionPlan

logger = get_logger(__name__)

_LOG_EVENTS = {
    Operation.FUND: "escrow.funded",
    Operation.DELIVER: "escrow.delivered",
    Operation.ACCEPT: "escrow.accepted",
    Operation.DISPUTE: "escrow.disputed",
    Operation.RESOLVE: "escrow.resolved",
    Operation.RECLAIM_EXPIRED: "escrow.reclaimed",
    Operation.CLAIM_BY_TIMEOUT: "escrow.claimed_by_timeout",
}


class EscrowService:
    """Manages the escrow lifecycle against the relational store."""

    mode = EscrowMode.INTERNAL

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: LifecycleEngine,
        clock: Clock | None = None,
        locks: KeyedLock | None = None,
        default_deadline_hours: float = 24.0,
        default_acceptance_window_hours: float = 24.0,
        list_page_size: int = 50,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLock()
        self._default_deadline_hours = default_deadline_hours
        self._default_acceptance_window_hours = default_acceptance_window_hours
        self._list_page_size = list_page_size

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
    ) -> EscrowService:
        engine = LifecycleEngine(
            fee_bps=settings.fee_bps,
            fee_recipient=settings.fee_recipient,
            arbiter_address=settings.arbiter_address,
        )
        return cls(
            session_factory,
            engine,
            clock=clock,
            default_deadline_hours=settings.default_deadline_hours,
            default_acceptance_window_hours=settings.default_acceptance_window_hours,
            list_page_size=settings.list_page_size,
        )

    @property
    def lifecycle(self) -> LifecycleEngine:
        return self._engine

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_escrow(
        self,
        buyer: str,
        seller: str,
        amount: Decimal | int | str,
        description: str,
        criteria: str | None = None,
        deadline_hours: float | None = None,
        acceptance_window_hours: float | None = None,
    ) -> EscrowResult:
        """Create a new escrow in CREATED state."""
        now = self._clock.now()
        plan = self._engine.plan_creation(
            buyer=buyer,
            seller=seller,
            amount=amount,
            service_description=description,
            acceptance_criteria=criteria,
            deadline_hours=(
                deadline_hours if deadline_hours is not None else self._default_deadline_hours
            ),
            acceptance_window_hours=(
                acceptance_window_hours
                if acceptance_window_hours is not None
                else self._default_acceptance_window_hours
            ),
            now=now,
        )

        async with unit_of_work(self._session_factory) as session:
            escrow = Escrow(
                buyer=plan.buyer,
                seller=plan.seller,
                amount=plan.amount,
                service_description=plan.service_description,
                acceptance_criteria=plan.acceptance_criteria,
                deadline=plan.deadline,
                acceptance_window_seconds=plan.acceptance_window_seconds,
                status=EscrowStatus.CREATED.value,
                created_at=now,
                updated_at=now,
            )
            escrow = await EscrowRepository(session).create(escrow)
            await EventRepository(session).record(
                escrow_id=escrow.id,
                event_type=EventType.ESCROW_CREATED,
                old_status=None,
                new_status=EscrowStatus.CREATED,
                actor=plan.buyer,
                payload={
                    "amount": str(plan.amount),
                    "fee": str(plan.fee),
                    "deadline": plan.deadline.isoformat(),
                    "description": plan.service_description,
                },
                created_at=now,
            )
            result = self._result(escrow, plan.message, plan.next_step)

        logger.info(
            "escrow.created",
            escrow_id=escrow.id,
            buyer=plan.buyer,
            seller=plan.seller,
            amount=plan.amount,
            deadline=plan.deadline,
        )
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def fund(
        self, escrow_id: str, deposit_proof: str, actor: str | None = None
    ) -> EscrowResult:
        """Record the buyer's deposit and move CREATED -> FUNDED."""
        return await self._apply(
            escrow_id,
            Operation.FUND,
            lambda escrow, now: self._engine.plan_fund(escrow, deposit_proof, actor),
        )

    async def deliver(self, escrow_id: str, proof: str, actor: str | None = None) -> EscrowResult:
        """Seller marks delivery; starts the acceptance window."""
        return await self._apply(
            escrow_id,
            Operation.DELIVER,
            lambda escrow, now: self._engine.plan_deliver(escrow, proof, now, actor),
        )

    async def accept(self, escrow_id: str, actor: str) -> EscrowResult:
        """Buyer accepts delivery; releases payment to the seller."""
        return await self._apply(
            escrow_id,
            Operation.ACCEPT,
            lambda escrow, now: self._engine.plan_accept(escrow, actor),
        )

    async def dispute(
        self,
        escrow_id: str,
        actor: str,
        reason: str,
        evidence: str | None = None,
    ) -> EscrowResult:
        """Buyer disputes a delivery inside the acceptance window."""
        return await self._apply(
            escrow_id,
            Operation.DISPUTE,
            lambda escrow, now: self._engine.plan_dispute(escrow, actor, reason, now, evidence),
        )

    async def resolve(
        self,
        escrow_id: str,
        winner: Winner | str,
        actor: str,
        resolution: str | None = None,
    ) -> EscrowResult:
        """Arbiter routes disputed funds to the buyer or the seller."""
        return await self._apply(
            escrow_id,
            Operation.RESOLVE,
            lambda escrow, now: self._engine.plan_resolve(escrow, winner, actor, resolution),
        )

    async def reclaim_expired(self, escrow_id: str, actor: str = SYSTEM_ACTOR) -> EscrowResult:
        """Refund the buyer once the delivery deadline has passed."""
        return await self._apply(
            escrow_id,
            Operation.RECLAIM_EXPIRED,
            lambda escrow, now: self._engine.plan_reclaim_expired(escrow, now, actor),
        )

    async def claim_by_timeout(self, escrow_id: str, actor: str = SYSTEM_ACTOR) -> EscrowResult:
        """Release payment to the seller once the acceptance window has closed."""
        return await self._apply(
            escrow_id,
            Operation.CLAIM_BY_TIMEOUT,
            lambda escrow, now: self._engine.plan_claim_by_timeout(escrow, now, actor),
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get(self, escrow_id: str) -> EscrowView:
        async with unit_of_work(self._session_factory) as session:
            escrow = await self._get_or_raise(EscrowRepository(session), escrow_id)
            return EscrowView.model_validate(escrow)

    async def list_by_party(self, address: str) -> list[EscrowView]:
        """Escrows where ``address`` is buyer or seller, newest first."""
        async with unit_of_work(self._session_factory) as session:
            rows = await EscrowRepository(session).list_by_party(
                address, limit=self._list_page_size
            )
            return [EscrowView.model_validate(row) for row in rows]

    async def stats(self) -> EscrowStats:
        async with unit_of_work(self._session_factory) as session:
            counts = await EscrowRepository(session).count_by_status()
        return EscrowStats(
            total=sum(counts.values()),
            completed=counts[EscrowStatus.COMPLETED],
            disputed=counts[EscrowStatus.DISPUTED],
            refunded=counts[EscrowStatus.REFUNDED],
            resolved=counts[EscrowStatus.RESOLVED],
            active=sum(n for status, n in counts.items() if status.is_active),
        )

    async def get_events(self, escrow_id: str) -> list[EscrowEventView]:
        """Get the audit trail in the order it happened."""
        async with unit_of_work(self._session_factory) as session:
            await self._get_or_raise(EscrowRepository(session), escrow_id)
            events = await EventRepository(session).get_by_escrow(escrow_id)
            return [EscrowEventView.model_validate(evt) for evt in events]

    async def get_settlements(self, escrow_id: str) -> list[SettlementView]:
        async with unit_of_work(self._session_factory) as session:
            await self._get_or_raise(EscrowRepository(session), escrow_id)
            rows = await SettlementRepository(session).get_by_escrow(escrow_id)
            return [SettlementView.model_validate(row) for row in rows]

    async def settlement_totals(self) -> dict[str, Decimal]:
        """Sum of emitted directives per kind (PAYOUT / REFUND / FEE)."""
        async with unit_of_work(self._session_factory) as session:
            totals = await SettlementRepository(session).totals_by_kind()
        return {kind: totals.get(kind, Decimal(0)) for kind in SettlementKind}

    async def list_due(self, now: datetime | None = None) -> tuple[list[str], list[str]]:
        """Ids past their acceptance window, and ids past their delivery deadline."""
        now = now or self._clock.now()
        async with unit_of_work(self._session_factory) as session:
            repo = EscrowRepository(session)
            review = await repo.list_review_expired(now)
            deadline = await repo.list_deadline_expired(now)
        return [e.id for e in review], [e.id for e in deadline]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _apply(
        self,
        escrow_id: str,
        operation: Operation,
        plan: Callable[[Escrow, datetime], TransitionPlan],
    ) -> EscrowResult:
        """Run one transition atomically under the escrow's lock."""
        async with self._locks.hold(escrow_id):
            try:
                async with unit_of_work(self._session_factory) as session:
                    escrows = EscrowRepository(session)
                    escrow = await self._get_or_raise(escrows, escrow_id)
                    now = self._clock.now()
                    transition = plan(escrow, now)

                    moved = await escrows.compare_and_set(
                        escrow.id,
                        transition.old_status,
                        transition.new_status,
                        transition.changes,
                        now,
                    )
                    if not moved:
                        escrow = await escrows.refresh(escrow)
                        raise InvalidStateTransitionError(escrow.status, str(operation))

                    await EventRepository(session).record(
                        escrow_id=escrow.id,
                        event_type=transition.event_type,
                        old_status=transition.old_status,
                        new_status=transition.new_status,
                        actor=transition.actor,
                        payload=transition.payload or None,
                        created_at=now,
                    )
                    settlements = SettlementRepository(session)
                    for directive in transition.directives:
                        await settlements.record(escrow.id, directive, now)

                    escrow = await escrows.refresh(escrow)
                    result = self._result(
                        escrow,
                        transition.message,
                        transition.next_step,
                        [SettlementView.model_validate(d) for d in transition.directives],
                    )
            except IntegrityError as err:
                # Another writer appended this escrow's next event or settlement first.
                current = await self._current_status(escrow_id)
                raise InvalidStateTransitionError(current, str(operation)) from err
            except ClawVaultError as err:
                logger.info(
                    "escrow.rejected",
                    escrow_id=escrow_id,
                    operation=operation,
                    code=err.code,
                    reason=err.message,
                )
                raise

        logger.info(
            _LOG_EVENTS[operation],
            escrow_id=escrow_id,
            actor=transition.actor,
            old_status=transition.old_status,
            new_status=transition.new_status,
            directives=[d.to_dict() for d in transition.directives],
        )
        return result

    async def _current_status(self, escrow_id: str) -> str:
        async with unit_of_work(self._session_factory) as session:
            escrow = await self._get_or_raise(EscrowRepository(session), escrow_id)
            return escrow.status

    @staticmethod
    async def _get_or_raise(repo: EscrowRepository, escrow_id: str) -> Escrow:
        escrow = await repo.get_by_id(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(escrow_id)
        return escrow

    def _result(
        self,
        escrow: Escrow,
        message: str,
        next_step: str | None,
        directives: list[SettlementView] | None = None,
    ) -> EscrowResult:
        return EscrowResult(
            escrow=EscrowView.model_validate(escrow),
            message=message,
            next_step=next_step,
            directives=directives or [],
            allowed_operations=[str(op) for op in self._engine.next_operations(escrow)],
        )
