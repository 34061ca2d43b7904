"""Tests for the pure LifecycleEngine (no database)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

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
    InvalidStateTransitionError,
    UnauthorizedError,
    WindowExpiredError,
    WindowNotExpiredError,
)
from clawvault.domain.lifecycle import LifecycleEngine, same_party, to_usdc
from tests.parties import ARBITER, BUYER, FEE_RECIPIENT, SELLER, STRANGER, T0

WINDOW = 24 * 3600


@dataclass
class Snapshot:
    id: str = "esc_test"
    buyer: str = BUYER
    seller: str = SELLER
    amount: Decimal = Decimal("100")
    status: str = "CREATED"
    deadline: datetime = T0 + timedelta(hours=24)
    acceptance_window_seconds: int = WINDOW
    delivered_at: datetime | None = None
    review_deadline: datetime | None = None


def delivered(at: datetime = T0 + timedelta(hours=2)) -> Snapshot:
    return Snapshot(
        status="DELIVERED",
        delivered_at=at,
        review_deadline=at + timedelta(seconds=WINDOW),
    )


class TestFees:
    def test_one_percent_of_hundred(self, lifecycle: LifecycleEngine) -> None:
        split = lifecycle.split_fee(Decimal("100"))
        assert split.payee_amount == Decimal("99")
        assert split.fee == Decimal("1")

    def test_fee_rounds_down_to_micro_usdc(self, lifecycle: LifecycleEngine) -> None:
        split = lifecycle.split_fee(Decimal("0.000199"))
        assert split.fee == Decimal("0.000001")
        assert split.payee_amount + split.fee == Decimal("0.000199")

    def test_zero_fee(self) -> None:
        engine = LifecycleEngine(fee_bps=0, fee_recipient=FEE_RECIPIENT, arbiter_address=ARBITER)
        assert engine.fee_for(Decimal("100")) == 0

    def test_rejects_out_of_range_bps(self) -> None:
        with pytest.raises(ValueError):
            LifecycleEngine(fee_bps=10_001, fee_recipient=FEE_RECIPIENT, arbiter_address=ARBITER)


class TestCreation:
    def test_valid_plan(self, lifecycle: LifecycleEngine) -> None:
        plan = lifecycle.plan_creation(
            buyer=BUYER,
            seller=SELLER,
            amount="100",
            service_description="  Write a haiku  ",
            acceptance_criteria=None,
            deadline_hours=1.5,
            acceptance_window_hours=2,
            now=T0,
        )
        assert plan.amount == Decimal("100")
        assert plan.deadline == T0 + timedelta(minutes=90)
        assert plan.acceptance_window_seconds == 7200
        assert plan.service_description == "Write a haiku"
        assert plan.fee == Decimal("1")

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"amount": 0}, "amount"),
            ({"amount": "-5"}, "amount"),
            ({"amount": "abc"}, "amount"),
            ({"seller": BUYER.lower()}, "seller"),
            ({"service_description": "   "}, "service_description"),
            ({"deadline_hours": 0}, "deadline_hours"),
            ({"acceptance_window_hours": -1}, "acceptance_window_hours"),
            ({"amount": "100.0000009"}, "amount"),
            ({"amount": "1e13"}, "amount"),
            ({"amount": "1e30"}, "amount"),
            ({"deadline_hours": float("nan")}, "deadline_hours"),
            ({"deadline_hours": float("inf")}, "deadline_hours"),
            ({"deadline_hours": 1e12}, "deadline_hours"),
            ({"deadline_hours": None}, "deadline_hours"),
            ({"acceptance_window_hours": float("nan")}, "acceptance_window_hours"),
            ({"acceptance_window_hours": 1e12}, "acceptance_window_hours"),
        ],
    )
    def test_invalid_inputs(
        self, lifecycle: LifecycleEngine, overrides: dict, field: str
    ) -> None:
        kwargs = {
            "buyer": BUYER,
            "seller": SELLER,
            "amount": "100",
            "service_description": "Write a haiku",
            "acceptance_criteria": None,
            "deadline_hours": 24,
            "acceptance_window_hours": 24,
            "now": T0,
            **overrides,
        }
        with pytest.raises(InvalidArgumentError) as exc_info:
            lifecycle.plan_creation(**kwargs)
        assert exc_info.value.field == field


class TestFundAndDeliver:
    def test_fund_defaults_actor_to_buyer(self, lifecycle: LifecycleEngine) -> None:
        plan = lifecycle.plan_fund(Snapshot(), deposit_proof="0xabc")
        assert plan.new_status is EscrowStatus.FUNDED
        assert plan.actor == BUYER
        assert plan.changes == {"deposit_tx": "0xabc"}
        assert plan.message == "Escrow funded. Seller can now perform the service."

    def test_fund_requires_proof(self, lifecycle: LifecycleEngine) -> None:
        with pytest.raises(InvalidArgumentError):
            lifecycle.plan_fund(Snapshot(), deposit_proof="")

    def test_deliver_sets_review_deadline(self, lifecycle: LifecycleEngine) -> None:
        now = T0 + timedelta(hours=3)
        plan = lifecycle.plan_deliver(replace(Snapshot(), status="FUNDED"), "ipfs://x", now)
        assert plan.new_status is EscrowStatus.DELIVERED
        assert plan.actor == SELLER
        assert plan.changes["delivered_at"] == now
        assert plan.changes["review_deadline"] == now + timedelta(hours=24)

    def test_deliver_at_deadline_is_allowed(self, lifecycle: LifecycleEngine) -> None:
        escrow = replace(Snapshot(), status="FUNDED")
        plan = lifecycle.plan_deliver(escrow, "proof", escrow.deadline)
        assert plan.event_type is EventType.DELIVERY_MARKED

    def test_deliver_after_deadline(self, lifecycle: LifecycleEngine) -> None:
        escrow = replace(Snapshot(), status="FUNDED")
        with pytest.raises(DeadlineExceededError) as exc_info:
            lifecycle.plan_deliver(escrow, "proof", escrow.deadline + timedelta(seconds=1))
        assert exc_info.value.boundary == escrow.deadline

    def test_deliver_by_buyer_is_unauthorized(self, lifecycle: LifecycleEngine) -> None:
        with pytest.raises(UnauthorizedError):
            lifecycle.plan_deliver(replace(Snapshot(), status="FUNDED"), "p", T0, actor=BUYER)


class TestAccept:
    def test_payout_and_fee(self, lifecycle: LifecycleEngine) -> None:
        plan = lifecycle.plan_accept(delivered(), actor=BUYER)
        assert plan.new_status is EscrowStatus.COMPLETED
        assert [(d.kind, d.recipient, d.amount) for d in plan.directives] == [
            (SettlementKind.PAYOUT, SELLER, Decimal("99")),
            (SettlementKind.FEE, FEE_RECIPIENT, Decimal("1")),
        ]

    def test_actor_compared_case_insensitively(self, lifecycle: LifecycleEngine) -> None:
        plan = lifecycle.plan_accept(delivered(), actor=BUYER.upper().replace("0X", "0x"))
        assert plan.new_status is EscrowStatus.COMPLETED

    def test_seller_cannot_accept(self, lifecycle: LifecycleEngine) -> None:
        with pytest.raises(UnauthorizedError):
            lifecycle.plan_accept(delivered(), actor=SELLER)

    def test_state_checked_before_actor(self, lifecycle: LifecycleEngine) -> None:
        completed = replace(delivered(), status="COMPLETED")
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.plan_accept(completed, actor=STRANGER)


class TestDispute:
    def test_at_window_boundary(self, lifecycle: LifecycleEngine) -> None:
        escrow = delivered()
        plan = lifecycle.plan_dispute(escrow, BUYER, "late", escrow.review_deadline)
        assert plan.new_status is EscrowStatus.DISPUTED
        assert plan.changes["dispute_reason"] == "late"

    def test_after_window(self, lifecycle: LifecycleEngine) -> None:
        escrow = delivered()
        with pytest.raises(WindowExpiredError):
            lifecycle.plan_dispute(
                escrow, BUYER, "late", escrow.review_deadline + timedelta(seconds=1)
            )

    def test_reason_required(self, lifecycle: LifecycleEngine) -> None:
        with pytest.raises(InvalidArgumentError):
            lifecycle.plan_dispute(delivered(), BUYER, "  ", T0)

    def test_window_derived_when_review_deadline_missing(
        self, lifecycle: LifecycleEngine
    ) -> None:
        escrow = replace(delivered(), review_deadline=None)
        late = escrow.delivered_at + timedelta(seconds=WINDOW + 1)
        with pytest.raises(WindowExpiredError):
            lifecycle.plan_dispute(escrow, BUYER, "late", late)


class TestResolve:
    def disputed(self) -> Snapshot:
        return replace(delivered(), status="DISPUTED")

    def test_seller_wins(self, lifecycle: LifecycleEngine) -> None:
        plan = lifecycle.plan_resolve(self.disputed(), "seller", ARBITER)
        assert plan.new_status is EscrowStatus.RESOLVED
        assert plan.event_type is EventType.DISPUTE_RESOLVED_SELLER
        assert sum(d.amount for d in plan.directives) == Decimal("100")

    def test_buyer_wins_full_refund(self, lifecycle: LifecycleEngine) -> None:
        plan = lifecycle.plan_resolve(self.disputed(), Winner.BUYER, ARBITER)
        assert plan.new_status is EscrowStatus.RESOLVED
        assert [(d.kind, d.amount) for d in plan.directives] == [
            (SettlementKind.REFUND, Decimal("100"))
        ]

    def test_winner_by_address(self, lifecycle: LifecycleEngine) -> None:
        assert lifecycle.resolve_winner(self.disputed(), "0x" + SELLER[2:].upper()) is (
            Winner.SELLER
        )
        assert lifecycle.resolve_winner(self.disputed(), BUYER) is Winner.BUYER

    def test_third_party_rejected(self, lifecycle: LifecycleEngine) -> None:
        with pytest.raises(InvalidArgumentError):
            lifecycle.plan_resolve(self.disputed(), STRANGER, ARBITER)

    def test_only_arbiter(self, lifecycle: LifecycleEngine) -> None:
        with pytest.raises(UnauthorizedError):
            lifecycle.plan_resolve(self.disputed(), "seller", BUYER)


class TestTimeouts:
    def test_reclaim_at_deadline_is_too_early(self, lifecycle: LifecycleEngine) -> None:
        escrow = replace(Snapshot(), status="FUNDED")
        with pytest.raises(DeadlineNotReachedError):
            lifecycle.plan_reclaim_expired(escrow, escrow.deadline)

    def test_reclaim_funded_refunds(self, lifecycle: LifecycleEngine) -> None:
        escrow = replace(Snapshot(), status="FUNDED")
        plan = lifecycle.plan_reclaim_expired(escrow, escrow.deadline + timedelta(seconds=1))
        assert plan.new_status is EscrowStatus.REFUNDED
        assert plan.actor == SYSTEM_ACTOR
        assert [(d.kind, d.recipient, d.amount) for d in plan.directives] == [
            (SettlementKind.REFUND, BUYER, Decimal("100"))
        ]

    def test_reclaim_unfunded_moves_no_money(self, lifecycle: LifecycleEngine) -> None:
        escrow = Snapshot()
        plan = lifecycle.plan_reclaim_expired(escrow, escrow.deadline + timedelta(seconds=1))
        assert plan.new_status is EscrowStatus.REFUNDED
        assert plan.directives == ()

    def test_reclaim_by_seller_is_unauthorized(self, lifecycle: LifecycleEngine) -> None:
        escrow = replace(Snapshot(), status="FUNDED")
        with pytest.raises(UnauthorizedError):
            lifecycle.plan_reclaim_expired(escrow, escrow.deadline + timedelta(days=1), SELLER)

    def test_claim_at_window_boundary_is_too_early(self, lifecycle: LifecycleEngine) -> None:
        escrow = delivered()
        with pytest.raises(WindowNotExpiredError):
            lifecycle.plan_claim_by_timeout(escrow, escrow.review_deadline)

    def test_claim_after_window(self, lifecycle: LifecycleEngine) -> None:
        escrow = delivered()
        plan = lifecycle.plan_claim_by_timeout(
            escrow, escrow.review_deadline + timedelta(seconds=1), actor=SELLER
        )
        assert plan.new_status is EscrowStatus.COMPLETED
        assert plan.event_type is EventType.CLAIMED_BY_TIMEOUT
        assert {d.kind for d in plan.directives} == {SettlementKind.PAYOUT, SettlementKind.FEE}


class TestHelpers:
    def test_same_party(self) -> None:
        assert same_party(BUYER, BUYER.lower())
        assert not same_party(BUYER, None)
        assert not same_party(BUYER, SELLER)

    def test_to_usdc_keeps_micro_precision(self) -> None:
        assert to_usdc("1.234567") == Decimal("1.234567")
        assert to_usdc(5) == Decimal("5.000000")

    def test_to_usdc_rejects_sub_micro_amounts(self) -> None:
        with pytest.raises(InvalidArgumentError, match="more than 6 decimal places"):
            to_usdc("1.23456789")

    def test_next_operations(self, lifecycle: LifecycleEngine) -> None:
        assert lifecycle.next_operations(delivered()) == [
            Operation.ACCEPT,
            Operation.DISPUTE,
            Operation.CLAIM_BY_TIMEOUT,
        ]
