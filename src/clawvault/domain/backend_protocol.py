"""Escrow Backend Protocol.

The lifecycle vocabulary is defined once here. Two interchangeable backends
implement it:

    - services/escrow_service.py  (store-backed executor, internal mode)
    - services/ledger_mirror.py   (unsigned transaction builder, trustless mode)

services/factory.py picks one at startup from settings.escrow_mode. Callers
never branch on the mode per request.

This is a Protocol (structural subtyping), so backends don't inherit from a
base class; they just need to match the shape.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from clawvault.domain.enums import SYSTEM_ACTOR

if TYPE_CHECKING:
    from decimal import Decimal

    from clawvault.domain.enums import EscrowMode, Winner


@runtime_checkable
class EscrowBackend(Protocol):
    """Caller-facing escrow operations.

    Write operations return an EscrowResult in internal mode and a
    TransactionDescriptor (CreateEscrowTransaction for create) in trustless
    mode. Reads return EscrowView / OnChainEscrow and EscrowStats /
    OnChainStats respectively.
    """

    mode: EscrowMode

    async def create_escrow(
        self,
        buyer: str,
        seller: str,
        amount: Decimal | int | str,
        description: str,
        criteria: str | None = None,
        deadline_hours: float | None = None,
        acceptance_window_hours: float | None = None,
    ) -> Any: ...

    async def fund(self, escrow_id: str, deposit_proof: str, actor: str | None = None) -> Any: ...

    async def deliver(self, escrow_id: str, proof: str, actor: str | None = None) -> Any: ...

    async def accept(self, escrow_id: str, actor: str) -> Any: ...

    async def dispute(
        self,
        escrow_id: str,
        actor: str,
        reason: str,
        evidence: str | None = None,
    ) -> Any: ...

    async def resolve(
        self,
        escrow_id: str,
        winner: Winner | str,
        actor: str,
        resolution: str | None = None,
    ) -> Any: ...

    async def reclaim_expired(self, escrow_id: str, actor: str = SYSTEM_ACTOR) -> Any: ...

    async def claim_by_timeout(self, escrow_id: str, actor: str = SYSTEM_ACTOR) -> Any: ...

    async def get(self, escrow_id: str) -> Any: ...

    async def list_by_party(self, address: str) -> list[Any]: ...

    async def stats(self) -> Any: ...
