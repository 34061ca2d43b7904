"""Ledger Mirror: the trustless-mode escrow backend.

The ClawVault contract holds the funds and is the source of truth. Writes
never touch a database or a key: each operation returns an unsigned
TransactionDescriptor (target, ABI signature, calldata, human-readable
summary) that the acting party signs and submits themselves. Reads go
through ContractClient and are translated into the engine's status
vocabulary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from clawvault.domain.clock import SystemClock
from clawvault.domain.enums import (
    SYSTEM_ACTOR,
    EscrowMode,
    EscrowStatus,
    Operation,
    Winner,
)
from clawvault.domain.exceptions import (
    EscrowNotFoundError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    UnauthorizedError,
)
from clawvault.domain.lifecycle import LifecycleEngine, same_party
from clawvault.ledger import abi
from clawvault.ledger.client import ContractClient
from clawvault.logging_config import get_logger
from clawvault.schemas.escrow import (
    CreateEscrowTransaction,
    OnChainEscrow,
    OnChainStats,
    TransactionDescriptor,
)

if TYPE_CHECKING:
    from decimal import Decimal

    from clawvault.config import Settings
    from clawvault.domain.clock import Clock

logger = get_logger(__name__)

CONTRACT_STATUS_MAP = {
    "Active": EscrowStatus.FUNDED,
    "Delivered": EscrowStatus.DELIVERED,
    "Completed": EscrowStatus.COMPLETED,
    "Disputed": EscrowStatus.DISPUTED,
    "Refunded": EscrowStatus.REFUNDED,
    "Resolved": EscrowStatus.RESOLVED,
}


class LedgerMirror:
    """Builds contract transactions and reads contract state."""

    mode = EscrowMode.TRUSTLESS

    def __init__(
        self,
        client: ContractClient,
        engine: LifecycleEngine,
        usdc_address: str,
        chain_id: int = 8453,
        chain_name: str = "Base",
        explorer_url: str = "https://basescan.org",
        usdc_decimals: int = 6,
        default_deadline_hours: float = 24.0,
        default_acceptance_window_hours: float = 24.0,
        list_page_size: int = 50,
        list_scan_limit: int = 200,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._engine = engine
        self._usdc = usdc_address
        self._chain_id = chain_id
        self._chain_name = chain_name
        self._explorer_url = explorer_url.rstrip("/")
        self._decimals = usdc_decimals
        self._default_deadline_hours = default_deadline_hours
        self._default_acceptance_window_hours = default_acceptance_window_hours
        self._list_page_size = list_page_size
        self._list_scan_limit = list_scan_limit
        self._clock = clock or SystemClock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: ContractClient | None = None,
        clock: Clock | None = None,
    ) -> LedgerMirror:
        client = client or ContractClient(
            rpc_url=settings.ledger_rpc_url,
            contract_address=settings.escrow_contract_address,
            timeout=settings.ledger_rpc_timeout_seconds,
            max_attempts=settings.ledger_rpc_max_attempts,
        )
        engine = LifecycleEngine(
            fee_bps=settings.fee_bps,
            fee_recipient=settings.fee_recipient,
            arbiter_address=settings.arbiter_address,
        )
        return cls(
            client,
            engine,
            usdc_address=settings.usdc_address,
            chain_id=settings.chain_id,
            chain_name=settings.chain_name,
            explorer_url=settings.explorer_url,
            usdc_decimals=settings.usdc_decimals,
            default_deadline_hours=settings.default_deadline_hours,
            default_acceptance_window_hours=settings.default_acceptance_window_hours,
            list_page_size=settings.list_page_size,
            clock=clock,
        )

    @property
    def contract(self) -> str:
        return self._client.contract_address

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transaction builders
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
    ) -> CreateEscrowTransaction:
        """Approve ``amount + fee`` on the token, then call createEscrow."""
        if deadline_hours is None:
            deadline_hours = self._default_deadline_hours
        if acceptance_window_hours is None:
            acceptance_window_hours = self._default_acceptance_window_hours
        plan = self._engine.plan_creation(
            buyer=buyer,
            seller=seller,
            amount=amount,
            service_description=description,
            acceptance_criteria=criteria,
            deadline_hours=deadline_hours,
            acceptance_window_hours=acceptance_window_hours,
            now=self._clock.now(),
        )
        amount_raw = abi.to_base_units(plan.amount, self._decimals)
        fee_raw = abi.to_base_units(plan.fee, self._decimals)
        service_hash = abi.keccak_hex(plan.service_description)
        # The contract takes a relative deadline and adds block.timestamp itself.
        deadline_seconds = round(deadline_hours * 3600)

        approve = self._descriptor(
            abi.ERC20_APPROVE,
            {"spender": self.contract, "amount": amount_raw + fee_raw},
            target=self._usdc,
            note=(
                f"Buyer approves {plan.amount + plan.fee} USDC (amount + "
                f"{self._engine.fee_bps / 100:g}% fee) to the escrow contract."
            ),
            human_readable={"spender": self.contract, "amount_usdc": str(plan.amount + plan.fee)},
        )
        create = self._descriptor(
            abi.CREATE_ESCROW,
            {
                "seller": plan.seller,
                "amount": amount_raw,
                "serviceHash": service_hash,
                "deadlineSeconds": deadline_seconds,
                "acceptanceWindowSeconds": plan.acceptance_window_seconds,
            },
            note="Buyer then creates the escrow; the contract pulls the approved USDC.",
        )

        logger.info(
            "ledger.create_built",
            buyer=plan.buyer,
            seller=plan.seller,
            amount=str(plan.amount),
            service_hash=service_hash,
        )
        return CreateEscrowTransaction(
            step_1_approve=approve,
            step_2_create=create,
            human_readable={
                "buyer": plan.buyer,
                "seller": plan.seller,
                "amount_usdc": str(plan.amount),
                "fee_usdc": str(plan.fee),
                "service_hash": service_hash,
                "deadline_hours": deadline_seconds / 3600,
                "acceptance_window_hours": plan.acceptance_window_seconds / 3600,
                "contract": self.contract,
                "chain": f"{self._chain_name} ({self._chain_id})",
                "explorer": self._address_url(self.contract),
            },
            note="You sign both transactions yourself. Funds are held by the contract.",
        )

    async def fund(
        self, escrow_id: str, deposit_proof: str, actor: str | None = None
    ) -> TransactionDescriptor:
        """Funding is part of createEscrow on-chain; there is nothing to fund."""
        escrow = await self.get(escrow_id)
        raise InvalidStateTransitionError(escrow.status, str(Operation.FUND))

    async def deliver(
        self, escrow_id: str, proof: str, actor: str | None = None
    ) -> TransactionDescriptor:
        proof = self._require(proof, "proof")
        delivery_hash = abi.keccak_hex(proof)
        return self._descriptor(
            abi.MARK_DELIVERED,
            {"escrowId": self._escrow_id(escrow_id), "deliveryHash": delivery_hash},
            note=(
                "Seller signs this to mark delivery. The buyer then has the acceptance "
                "window to accept or dispute."
            ),
            human_readable={"proof": proof},
        )

    async def accept(self, escrow_id: str, actor: str) -> TransactionDescriptor:
        return self._descriptor(
            abi.ACCEPT_DELIVERY,
            {"escrowId": self._escrow_id(escrow_id)},
            note="Buyer signs this to release USDC to the seller.",
        )

    async def dispute(
        self,
        escrow_id: str,
        actor: str,
        reason: str,
        evidence: str | None = None,
    ) -> TransactionDescriptor:
        reason = self._require(reason, "reason")
        return self._descriptor(
            abi.OPEN_DISPUTE,
            {"escrowId": self._escrow_id(escrow_id), "reason": reason},
            note="Buyer signs this to open a dispute. The arbiter will review it.",
            human_readable={"evidence": evidence} if evidence else None,
        )

    async def resolve(
        self,
        escrow_id: str,
        winner: Winner | str,
        actor: str,
        resolution: str | None = None,
    ) -> TransactionDescriptor:
        """Arbiter-only: route disputed funds to the buyer or the seller."""
        if not same_party(actor, self._engine.arbiter_address):
            raise UnauthorizedError(actor or "<anonymous>", str(Operation.RESOLVE))
        numeric_id = self._escrow_id(escrow_id)
        side = await self._winner_side(numeric_id, winner)
        return self._descriptor(
            abi.RESOLVE_DISPUTE,
            {"escrowId": numeric_id, "buyerWins": side is Winner.BUYER},
            note="Arbiter signs this to resolve the dispute.",
            human_readable={"winner": side.value, "resolution": resolution},
        )

    async def reclaim_expired(
        self, escrow_id: str, actor: str = SYSTEM_ACTOR
    ) -> TransactionDescriptor:
        return self._descriptor(
            abi.RECLAIM_EXPIRED,
            {"escrowId": self._escrow_id(escrow_id)},
            note="Buyer can call this after the deadline if the seller did not deliver. Full refund.",
        )

    async def claim_by_timeout(
        self, escrow_id: str, actor: str = SYSTEM_ACTOR
    ) -> TransactionDescriptor:
        return self._descriptor(
            abi.CLAIM_BY_TIMEOUT,
            {"escrowId": self._escrow_id(escrow_id)},
            note=(
                "Seller can call this if the buyer did not accept or dispute within "
                "the acceptance window."
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, escrow_id: str) -> OnChainEscrow:
        numeric_id = self._escrow_id(escrow_id)
        raw = await self._client.get_escrow(numeric_id)
        return self._to_view(numeric_id, raw)

    async def list_by_party(self, address: str) -> list[OnChainEscrow]:
        """Scan the most recent escrows for ``address`` as buyer or seller.

        The contract keeps no per-party index, so only the last
        ``list_scan_limit`` ids are examined, newest first.
        """
        next_id = await self._client.next_escrow_id()
        lowest = max(next_id - self._list_scan_limit, 0)
        found: list[OnChainEscrow] = []
        for numeric_id in range(next_id - 1, lowest - 1, -1):
            try:
                raw = await self._client.get_escrow(numeric_id)
            except EscrowNotFoundError:
                continue
            if same_party(raw["buyer"], address) or same_party(raw["seller"], address):
                found.append(self._to_view(numeric_id, raw))
                if len(found) >= self._list_page_size:
                    break
        return found

    async def stats(self) -> OnChainStats:
        total, volume, fees, next_id = await self._client.get_stats()
        fee_bps = await self._client.fee_bps()
        return OnChainStats(
            total_escrows=total,
            total_volume=abi.from_base_units(volume, self._decimals),
            total_fees=abi.from_base_units(fees, self._decimals),
            next_escrow_id=next_id,
            fee_bps=fee_bps,
            fee_percent=f"{fee_bps / 100:g}%",
            contract=self.contract,
        )

    async def can_reclaim(self, escrow_id: str) -> bool:
        return await self._client.can_reclaim(self._escrow_id(escrow_id))

    async def can_claim_by_timeout(self, escrow_id: str) -> bool:
        return await self._client.can_claim_by_timeout(self._escrow_id(escrow_id))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _descriptor(
        self,
        signature: str,
        args: dict,
        note: str,
        target: str | None = None,
        human_readable: dict | None = None,
    ) -> TransactionDescriptor:
        return TransactionDescriptor(
            target=target or self.contract,
            function=signature.split("(", 1)[0],
            signature=signature,
            args={k: str(v) if isinstance(v, int) and not isinstance(v, bool) else v
                  for k, v in args.items()},
            data=abi.encode_call(signature, *args.values()),
            chain_id=self._chain_id,
            human_readable=human_readable or {},
            note=note,
        )

    def _to_view(self, numeric_id: int, raw: dict) -> OnChainEscrow:
        return OnChainEscrow(
            id=numeric_id,
            buyer=raw["buyer"],
            seller=raw["seller"],
            amount=abi.from_base_units(raw["amount"], self._decimals),
            fee=abi.from_base_units(raw["fee"], self._decimals),
            service_hash=raw["service_hash"],
            delivery_hash=raw["delivery_hash"],
            deadline=abi.from_timestamp(raw["deadline"]),
            delivered_at=abi.from_timestamp(raw["delivered_at"]) if raw["delivered_at"] else None,
            acceptance_window_seconds=raw["acceptance_window"],
            status=CONTRACT_STATUS_MAP[raw["status"]],
            contract_status=raw["status"],
            dispute_reason=raw["dispute_reason"],
            contract=self.contract,
            explorer_url=self._address_url(self.contract),
        )

    async def _winner_side(self, numeric_id: int, winner: Winner | str) -> Winner:
        if isinstance(winner, Winner):
            return winner
        value = (winner or "").strip()
        if value.lower() in (Winner.BUYER.value, Winner.SELLER.value):
            return Winner(value.lower())
        # An address: look up which side of this escrow it is.
        raw = await self._client.get_escrow(numeric_id)
        if same_party(value, raw["buyer"]):
            return Winner.BUYER
        if same_party(value, raw["seller"]):
            return Winner.SELLER
        raise InvalidArgumentError(
            f"Winner must be the buyer or the seller of escrow {numeric_id}, got {winner!r}",
            field="winner",
        )

    def _address_url(self, address: str) -> str:
        return f"{self._explorer_url}/address/{address}"

    @staticmethod
    def _escrow_id(escrow_id: str | int) -> int:
        try:
            value = int(str(escrow_id).strip())
        except ValueError as err:
            raise InvalidArgumentError(
                f"On-chain escrow ids are integers, got {escrow_id!r}", field="escrow_id"
            ) from err
        if value < 0:
            raise InvalidArgumentError("escrow id must not be negative", field="escrow_id")
        return value

    @staticmethod
    def _require(value: str | None, name: str) -> str:
        text = (value or "").strip()
        if not text:
            raise InvalidArgumentError(f"{name} is required", field=name)
        return text
