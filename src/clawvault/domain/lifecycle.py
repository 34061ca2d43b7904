"""Lifecycle Engine: pure transition planning for escrow agreements.

Given the current snapshot of an escrow, the current time and the caller's
intent, the engine either raises the one domain error that explains why the
operation cannot happen, or returns a TransitionPlan describing:

    - the new status (validated by EscrowStateMachine)
    - the record fields to update
    - the audit event to append
    - the settlement directives (payout / refund / fee) to emit
    - a human message and a next-step hint for the caller

It performs no I/O. The store-backed EscrowService applies plans; the
ExpirySweeper and DisputeArbiter reach it through that service.

Check order is fixed: state, then actor, then arguments, then time. A replay
of an intent whose state has already moved on therefore always fails with
InvalidStateTransitionError, whoever sends it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Protocol

from clawvault.domain.clock import ensure_utc
from clawvault.domain.enums import (
    SYSTEM_ACTOR,
    EscrowStatus,
    EventType,
    Operation,
    SettlementKind,
    Winner,
)
from clawvault.domain.exceptions import (
    DeadlineExceededError,
    DeadlineNotReachedError,
    InvalidArgumentError,
    UnauthorizedError,
    WindowExpiredError,
    WindowNotExpiredError,
)
from clawvault.domain.state_machine import allowed_operations, validate_transition

if TYPE_CHECKING:
    from datetime import datetime

USDC_QUANTUM = Decimal("0.000001")
# Numeric(18, 6) holds twelve integer digits.
MAX_USDC = Decimal("999999999999.999999")
MAX_DURATION_HOURS = 24 * 365 * 10
BPS_DENOMINATOR = 10_000


class EscrowSnapshot(Protocol):
    """The read-only shape the engine needs (the ORM Escrow satisfies it)."""

    id: str
    buyer: str
    seller: str
    amount: Decimal
    status: str
    deadline: datetime
    acceptance_window_seconds: int
    delivered_at: datetime | None
    review_deadline: datetime | None


@dataclass(frozen=True)
class SettlementDirective:
    """An instruction to move value, recorded for a human or external process."""

    kind: SettlementKind
    recipient: str
    amount: Decimal

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "recipient": self.recipient, "amount": str(self.amount)}


@dataclass(frozen=True)
class FeeSplit:
    """How a released amount divides between payee and protocol."""

    payee_amount: Decimal
    fee: Decimal


@dataclass(frozen=True)
class CreationPlan:
    """Validated, normalized inputs for a new escrow."""

    buyer: str
    seller: str
    amount: Decimal
    service_description: str
    acceptance_criteria: str | None
    deadline: datetime
    acceptance_window_seconds: int
    fee: Decimal
    message: str
    next_step: str


@dataclass(frozen=True)
class TransitionPlan:
    """Everything a backend needs to apply one lifecycle transition."""

    operation: Operation
    old_status: EscrowStatus
    new_status: EscrowStatus
    event_type: EventType
    actor: str
    changes: dict = field(default_factory=dict)
    directives: tuple[SettlementDirective, ...] = ()
    payload: dict = field(default_factory=dict)
    message: str = ""
    next_step: str | None = None


def same_party(a: str | None, b: str | None) -> bool:
    """EVM addresses compare case-insensitively (checksum casing is cosmetic)."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def to_usdc(value: Decimal | int | float | str) -> Decimal:
    """Coerce an amount to a 6-decimal USDC Decimal.

    Amounts with sub-micro precision or beyond the storable range are rejected
    rather than rounded.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise InvalidArgumentError(f"Invalid amount: {value!r}", field="amount") from err
    if not amount.is_finite():
        raise InvalidArgumentError(f"Invalid amount: {value!r}", field="amount")
    if abs(amount) > MAX_USDC:
        raise InvalidArgumentError(f"amount {value!r} exceeds {MAX_USDC}", field="amount")
    if amount != amount.quantize(USDC_QUANTUM, rounding=ROUND_DOWN):
        raise InvalidArgumentError(
            f"amount {value!r} has more than 6 decimal places", field="amount"
        )
    return amount.quantize(USDC_QUANTUM)


def to_hours(value: float | None, name: str) -> float:
    """Validate a positive, finite duration in hours."""
    try:
        hours = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as err:
        raise InvalidArgumentError(f"{name} must be a number", field=name) from err
    if not math.isfinite(hours) or hours <= 0:
        raise InvalidArgumentError(f"{name} must be positive", field=name)
    if hours > MAX_DURATION_HOURS:
        raise InvalidArgumentError(
            f"{name} must be at most {MAX_DURATION_HOURS} hours", field=name
        )
    return hours


class LifecycleEngine:
    """Validates lifecycle operations and plans their effects."""

    def __init__(self, fee_bps: int, fee_recipient: str, arbiter_address: str) -> None:
        if not 0 <= fee_bps <= BPS_DENOMINATOR:
            raise ValueError(f"fee_bps must be within 0..{BPS_DENOMINATOR}, got {fee_bps}")
        self.fee_bps = fee_bps
        self.fee_recipient = fee_recipient
        self.arbiter_address = arbiter_address

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def split_fee(self, amount: Decimal) -> FeeSplit:
        """Split a released amount into the payee share and the protocol fee."""
        fee = (amount * self.fee_bps / BPS_DENOMINATOR).quantize(USDC_QUANTUM, rounding=ROUND_DOWN)
        return FeeSplit(payee_amount=amount - fee, fee=fee)

    def fee_for(self, amount: Decimal) -> Decimal:
        return self.split_fee(amount).fee

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def plan_creation(
        self,
        *,
        buyer: str,
        seller: str,
        amount: Decimal | int | float | str,
        service_description: str,
        acceptance_criteria: str | None,
        deadline_hours: float,
        acceptance_window_hours: float,
        now: datetime,
    ) -> CreationPlan:
        """Validate creation inputs and compute the deadline."""
        buyer = (buyer or "").strip()
        seller = (seller or "").strip()
        if not buyer:
            raise InvalidArgumentError("buyer is required", field="buyer")
        if not seller:
            raise InvalidArgumentError("seller is required", field="seller")
        if same_party(buyer, seller):
            raise InvalidArgumentError("buyer and seller must differ", field="seller")

        usdc = to_usdc(amount)
        if usdc <= 0:
            raise InvalidArgumentError("amount must be positive", field="amount")

        description = (service_description or "").strip()
        if not description:
            raise InvalidArgumentError(
                "service description is required", field="service_description"
            )

        deadline_hours = to_hours(deadline_hours, "deadline_hours")
        acceptance_window_hours = to_hours(acceptance_window_hours, "acceptance_window_hours")

        deadline = ensure_utc(now) + timedelta(hours=deadline_hours)
        return CreationPlan(
            buyer=buyer,
            seller=seller,
            amount=usdc,
            service_description=description,
            acceptance_criteria=(acceptance_criteria or None),
            deadline=deadline,
            acceptance_window_seconds=round(acceptance_window_hours * 3600),
            fee=self.fee_for(usdc),
            message=f"Escrow created for {usdc} USDC.",
            next_step="Buyer deposits USDC, then funds the escrow with the deposit proof.",
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def plan_fund(
        self, escrow: EscrowSnapshot, deposit_proof: str, actor: str | None = None
    ) -> TransitionPlan:
        """CREATED -> FUNDED, recording the deposit proof."""
        old, new = self._guard(escrow, Operation.FUND)
        actor = self._authorize(actor, escrow.buyer, Operation.FUND, default=escrow.buyer,
                                also=(SYSTEM_ACTOR,))
        proof = self._require_text(deposit_proof, "deposit_proof")
        return TransitionPlan(
            operation=Operation.FUND,
            old_status=old,
            new_status=new,
            event_type=EventType.ESCROW_FUNDED,
            actor=actor,
            changes={"deposit_tx": proof},
            payload={"deposit_tx": proof},
            message="Escrow funded. Seller can now perform the service.",
            next_step="Seller performs the service, then marks delivery with proof.",
        )

    def plan_deliver(
        self,
        escrow: EscrowSnapshot,
        proof: str,
        now: datetime,
        actor: str | None = None,
    ) -> TransitionPlan:
        """FUNDED -> DELIVERED while the delivery deadline has not passed."""
        old, new = self._guard(escrow, Operation.DELIVER)
        actor = self._authorize(actor, escrow.seller, Operation.DELIVER, default=escrow.seller)
        delivery_proof = self._require_text(proof, "proof")

        now = ensure_utc(now)
        deadline = ensure_utc(escrow.deadline)
        if now > deadline:
            raise DeadlineExceededError(deadline, now)

        review_deadline = now + timedelta(seconds=escrow.acceptance_window_seconds)
        hours = escrow.acceptance_window_seconds / 3600
        return TransitionPlan(
            operation=Operation.DELIVER,
            old_status=old,
            new_status=new,
            event_type=EventType.DELIVERY_MARKED,
            actor=actor,
            changes={
                "delivery_proof": delivery_proof,
                "delivered_at": now,
                "review_deadline": review_deadline,
            },
            payload={"proof": delivery_proof, "review_deadline": review_deadline.isoformat()},
            message=f"Delivery recorded. Buyer has {hours:g}h to accept or dispute.",
            next_step="Buyer accepts to release payment, or opens a dispute.",
        )

    def plan_accept(self, escrow: EscrowSnapshot, actor: str) -> TransitionPlan:
        """DELIVERED -> COMPLETED, releasing the amount to the seller."""
        old, new = self._guard(escrow, Operation.ACCEPT)
        actor = self._authorize(actor, escrow.buyer, Operation.ACCEPT)
        directives = self._release_to_seller(escrow)
        return TransitionPlan(
            operation=Operation.ACCEPT,
            old_status=old,
            new_status=new,
            event_type=EventType.DELIVERY_ACCEPTED,
            actor=actor,
            directives=directives,
            payload={"released_to": escrow.seller},
            message=f"Payment of {directives[0].amount} USDC released to seller.",
            next_step=None,
        )

    def plan_dispute(
        self,
        escrow: EscrowSnapshot,
        actor: str,
        reason: str,
        now: datetime,
        evidence: str | None = None,
    ) -> TransitionPlan:
        """DELIVERED -> DISPUTED while the acceptance window is open."""
        old, new = self._guard(escrow, Operation.DISPUTE)
        actor = self._authorize(actor, escrow.buyer, Operation.DISPUTE)
        dispute_reason = self._require_text(reason, "reason")

        now = ensure_utc(now)
        boundary = self._review_deadline(escrow)
        if now > boundary:
            raise WindowExpiredError(boundary, now)

        return TransitionPlan(
            operation=Operation.DISPUTE,
            old_status=old,
            new_status=new,
            event_type=EventType.DISPUTE_OPENED,
            actor=actor,
            changes={"dispute_reason": dispute_reason, "dispute_evidence": evidence or None},
            payload={"reason": dispute_reason, "evidence": evidence or None},
            message="Dispute filed. The arbiter will review and resolve it.",
            next_step="Await the arbiter's resolution.",
        )

    def plan_resolve(
        self,
        escrow: EscrowSnapshot,
        winner: Winner | str,
        actor: str,
        resolution: str | None = None,
    ) -> TransitionPlan:
        """DISPUTED -> RESOLVED, routing funds to the buyer or the seller only."""
        old, new = self._guard(escrow, Operation.RESOLVE)
        actor = self._authorize(actor, self.arbiter_address, Operation.RESOLVE)
        side = self.resolve_winner(escrow, winner)

        if side is Winner.SELLER:
            directives = self._release_to_seller(escrow)
            event_type = EventType.DISPUTE_RESOLVED_SELLER
            message = f"Dispute resolved for seller. {directives[0].amount} USDC released."
        else:
            directives = self._refund_to_buyer(escrow)
            event_type = EventType.DISPUTE_RESOLVED_BUYER
            message = f"Dispute resolved for buyer. Refund of {escrow.amount} USDC."

        return TransitionPlan(
            operation=Operation.RESOLVE,
            old_status=old,
            new_status=new,
            event_type=event_type,
            actor=actor,
            changes={"winner": side.value, "resolution": resolution or None},
            directives=directives,
            payload={"winner": side.value, "resolution": resolution or None},
            message=message,
            next_step=None,
        )

    def plan_reclaim_expired(
        self, escrow: EscrowSnapshot, now: datetime, actor: str = SYSTEM_ACTOR
    ) -> TransitionPlan:
        """CREATED/FUNDED -> REFUNDED strictly after the deadline."""
        old, new = self._guard(escrow, Operation.RECLAIM_EXPIRED)
        actor = self._authorize(actor, escrow.buyer, Operation.RECLAIM_EXPIRED,
                                also=(SYSTEM_ACTOR,))

        now = ensure_utc(now)
        deadline = ensure_utc(escrow.deadline)
        if now <= deadline:
            raise DeadlineNotReachedError(deadline, now)

        # Nothing was deposited before funding, so there is nothing to return.
        funded = old is EscrowStatus.FUNDED
        directives = self._refund_to_buyer(escrow) if funded else ()
        return TransitionPlan(
            operation=Operation.RECLAIM_EXPIRED,
            old_status=old,
            new_status=new,
            event_type=EventType.EXPIRED_RECLAIMED,
            actor=actor,
            directives=directives,
            payload={"reason": "Deadline passed without delivery", "funded": funded},
            message=(
                f"Refund of {escrow.amount} USDC to buyer." if funded
                else "Unfunded escrow expired and was closed."
            ),
            next_step=None,
        )

    def plan_claim_by_timeout(
        self, escrow: EscrowSnapshot, now: datetime, actor: str = SYSTEM_ACTOR
    ) -> TransitionPlan:
        """DELIVERED -> COMPLETED strictly after the acceptance window closes."""
        old, new = self._guard(escrow, Operation.CLAIM_BY_TIMEOUT)
        actor = self._authorize(actor, escrow.seller, Operation.CLAIM_BY_TIMEOUT,
                                also=(SYSTEM_ACTOR,))

        now = ensure_utc(now)
        boundary = self._review_deadline(escrow)
        if now <= boundary:
            raise WindowNotExpiredError(boundary, now)

        directives = self._release_to_seller(escrow)
        return TransitionPlan(
            operation=Operation.CLAIM_BY_TIMEOUT,
            old_status=old,
            new_status=new,
            event_type=EventType.CLAIMED_BY_TIMEOUT,
            actor=actor,
            directives=directives,
            payload={"reason": "Acceptance window expired", "released_to": escrow.seller},
            message=f"Acceptance window expired. {directives[0].amount} USDC released to seller.",
            next_step=None,
        )

    # ------------------------------------------------------------------
    # Arbiter helpers
    # ------------------------------------------------------------------

    def resolve_winner(self, escrow: EscrowSnapshot, winner: Winner | str) -> Winner:
        """Map a winner given as a side or as an address to a side of this escrow."""
        if isinstance(winner, Winner):
            return winner
        value = (winner or "").strip()
        if value.lower() in (Winner.BUYER.value, Winner.SELLER.value):
            return Winner(value.lower())
        if same_party(value, escrow.buyer):
            return Winner.BUYER
        if same_party(value, escrow.seller):
            return Winner.SELLER
        raise InvalidArgumentError(
            f"Winner must be the buyer or the seller of escrow {escrow.id}, got {winner!r}",
            field="winner",
        )

    def next_operations(self, escrow: EscrowSnapshot) -> list[Operation]:
        return allowed_operations(escrow.status)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _guard(escrow: EscrowSnapshot, operation: Operation) -> tuple[EscrowStatus, EscrowStatus]:
        old = EscrowStatus(escrow.status)
        return old, validate_transition(escrow.status, operation)

    @staticmethod
    def _authorize(
        actor: str | None,
        expected: str,
        operation: Operation,
        default: str | None = None,
        also: tuple[str, ...] = (),
    ) -> str:
        if actor is None or not actor.strip():
            if default is None:
                raise UnauthorizedError(actor or "<anonymous>", str(operation))
            return default
        actor = actor.strip()
        if same_party(actor, expected) or actor in also:
            return actor
        raise UnauthorizedError(actor, str(operation))

    @staticmethod
    def _require_text(value: str | None, name: str) -> str:
        text = (value or "").strip()
        if not text:
            raise InvalidArgumentError(f"{name} is required", field=name)
        return text

    @staticmethod
    def _review_deadline(escrow: EscrowSnapshot) -> datetime:
        if escrow.review_deadline is not None:
            return ensure_utc(escrow.review_deadline)
        # Records delivered before review_deadline was stored.
        delivered_at = ensure_utc(escrow.delivered_at)
        return delivered_at + timedelta(seconds=escrow.acceptance_window_seconds)

    def _release_to_seller(self, escrow: EscrowSnapshot) -> tuple[SettlementDirective, ...]:
        split = self.split_fee(Decimal(escrow.amount))
        directives = [
            SettlementDirective(SettlementKind.PAYOUT, escrow.seller, split.payee_amount),
        ]
        if split.fee > 0:
            directives.append(
                SettlementDirective(SettlementKind.FEE, self.fee_recipient, split.fee)
            )
        return tuple(directives)

    @staticmethod
    def _refund_to_buyer(escrow: EscrowSnapshot) -> tuple[SettlementDirective, ...]:
        return (SettlementDirective(SettlementKind.REFUND, escrow.buyer, Decimal(escrow.amount)),)
