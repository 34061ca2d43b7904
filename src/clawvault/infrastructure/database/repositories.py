"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's unit of work).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select, update

from clawvault.domain.enums import EscrowStatus
from clawvault.infrastructure.database.orm_models import Escrow, EscrowEvent, Settlement

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from clawvault.domain.enums import EventType
    from clawvault.domain.lifecycle import SettlementDirective


class EscrowRepository:
    """Data access for escrow agreements."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        """Insert a new escrow."""
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_id: str) -> Escrow | None:
        """Fetch an escrow by its id."""
        result = await self._session.execute(select(Escrow).where(Escrow.id == escrow_id))
        return result.scalar_one_or_none()

    async def list_by_party(self, address: str, limit: int = 50) -> list[Escrow]:
        """Escrows where ``address`` is buyer or seller, newest first."""
        needle = address.strip().lower()
        result = await self._session.execute(
            select(Escrow)
            .where(or_(func.lower(Escrow.buyer) == needle, func.lower(Escrow.seller) == needle))
            .order_by(Escrow.created_at.desc(), Escrow.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        escrow_id: str,
        expected: EscrowStatus,
        new_status: EscrowStatus,
        changes: dict,
        now: datetime,
    ) -> bool:
        """Move an escrow from ``expected`` to ``new_status`` atomically.

        Returns False when another writer changed the status first; the
        caller must then treat its precondition as no longer holding.
        """
        result = await self._session.execute(
            update(Escrow)
            .where(Escrow.id == escrow_id, Escrow.status == expected.value)
            .values(status=new_status.value, updated_at=now, **changes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def refresh(self, escrow: Escrow) -> Escrow:
        await self._session.refresh(escrow)
        return escrow

    async def list_review_expired(self, now: datetime, limit: int = 500) -> list[Escrow]:
        """Delivered escrows whose acceptance window closed before ``now``."""
        result = await self._session.execute(
            select(Escrow)
            .where(
                Escrow.status == EscrowStatus.DELIVERED.value,
                Escrow.review_deadline < now,
            )
            .order_by(Escrow.review_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_deadline_expired(self, now: datetime, limit: int = 500) -> list[Escrow]:
        """Created or funded escrows whose delivery deadline passed before ``now``."""
        result = await self._session.execute(
            select(Escrow)
            .where(
                Escrow.status.in_([EscrowStatus.CREATED.value, EscrowStatus.FUNDED.value]),
                Escrow.deadline < now,
            )
            .order_by(Escrow.deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[EscrowStatus, int]:
        """Number of escrows in each status (missing statuses count zero)."""
        result = await self._session.execute(
            select(Escrow.status, func.count()).group_by(Escrow.status)
        )
        counts = {status: 0 for status in EscrowStatus}
        for status, count in result.all():
            counts[EscrowStatus(status)] = count
        return counts


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        escrow_id: str,
        event_type: EventType,
        old_status: EscrowStatus | None,
        new_status: EscrowStatus,
        actor: str,
        payload: dict | None,
        created_at: datetime,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        last = await self._session.execute(
            select(func.max(EscrowEvent.sequence)).where(EscrowEvent.escrow_id == escrow_id)
        )
        evt = EscrowEvent(
            escrow_id=escrow_id,
            sequence=(last.scalar_one_or_none() or 0) + 1,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            payload=payload,
            created_at=created_at,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_escrow(self, escrow_id: str) -> list[EscrowEvent]:
        """Fetch all events for an escrow in the order they happened."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.escrow_id == escrow_id)
            .order_by(EscrowEvent.sequence.asc())
        )
        return list(result.scalars().all())


class SettlementRepository:
    """Data access for payout, refund and fee directives."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        escrow_id: str,
        directive: SettlementDirective,
        created_at: datetime,
    ) -> Settlement:
        settlement = Settlement(
            escrow_id=escrow_id,
            kind=directive.kind.value,
            recipient=directive.recipient,
            amount=directive.amount,
            created_at=created_at,
        )
        self._session.add(settlement)
        await self._session.flush()
        return settlement

    async def get_by_escrow(self, escrow_id: str) -> list[Settlement]:
        result = await self._session.execute(
            select(Settlement)
            .where(Settlement.escrow_id == escrow_id)
            .order_by(Settlement.id.asc())
        )
        return list(result.scalars().all())

    async def totals_by_kind(self) -> dict[str, Decimal]:
        """Sum of directive amounts per kind across all escrows."""
        result = await self._session.execute(
            select(Settlement.kind, func.sum(Settlement.amount)).group_by(Settlement.kind)
        )
        return {kind: total for kind, total in result.all()}
