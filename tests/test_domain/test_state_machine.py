"""Tests for the EscrowStateMachine domain guard.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. Terminal states allow nothing.
    4. validate_transition / allowed_operations speak the Operation vocabulary.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from clawvault.domain.enums import EscrowStatus, Operation
from clawvault.domain.exceptions import InvalidStateTransitionError
from clawvault.domain.state_machine import (
    EscrowStateMachine,
    allowed_operations,
    validate_transition,
)


class TestHappyPath:
    """The full happy-path lifecycle: CREATED -> COMPLETED."""

    def test_full_lifecycle(self) -> None:
        sm = EscrowStateMachine("CREATED")
        assert sm.status == "CREATED"

        sm.fund()
        assert sm.status == "FUNDED"

        sm.mark_delivered()
        assert sm.status == "DELIVERED"

        sm.accept_delivery()
        assert sm.status == "COMPLETED"


class TestDisputePath:
    def test_dispute_from_delivered(self) -> None:
        sm = EscrowStateMachine("DELIVERED")
        sm.open_dispute()
        assert sm.status == "DISPUTED"

    def test_dispute_resolved(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        sm.resolve_dispute()
        assert sm.status == "RESOLVED"

    def test_cannot_dispute_before_delivery(self) -> None:
        sm = EscrowStateMachine("FUNDED")
        with pytest.raises(TransitionNotAllowed):
            sm.open_dispute()


class TestTimeoutPath:
    def test_reclaim_unfunded(self) -> None:
        sm = EscrowStateMachine("CREATED")
        sm.reclaim_expired()
        assert sm.status == "REFUNDED"

    def test_reclaim_funded(self) -> None:
        sm = EscrowStateMachine("FUNDED")
        sm.reclaim_expired()
        assert sm.status == "REFUNDED"

    def test_claim_by_timeout(self) -> None:
        sm = EscrowStateMachine("DELIVERED")
        sm.claim_by_timeout()
        assert sm.status == "COMPLETED"

    def test_cannot_reclaim_after_delivery(self) -> None:
        sm = EscrowStateMachine("DELIVERED")
        with pytest.raises(TransitionNotAllowed):
            sm.reclaim_expired()


class TestIllegalTransitions:
    def test_created_to_completed(self) -> None:
        sm = EscrowStateMachine("CREATED")
        with pytest.raises(TransitionNotAllowed):
            sm.accept_delivery()

    def test_disputed_cannot_be_claimed(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        with pytest.raises(TransitionNotAllowed):
            sm.claim_by_timeout()

    @pytest.mark.parametrize("status", ["COMPLETED", "REFUNDED", "RESOLVED"])
    def test_terminal_states_are_final(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        assert sm.get_allowed_events() == []

    def test_allowed_events_are_identifiers(self) -> None:
        sm = EscrowStateMachine("FUNDED")
        assert set(sm.get_allowed_events()) == {"mark_delivered", "reclaim_expired"}
        assert sm.status == EscrowStatus.FUNDED


class TestAllowedOperations:
    def test_created_allowed(self) -> None:
        assert allowed_operations("CREATED") == [Operation.FUND, Operation.RECLAIM_EXPIRED]

    def test_delivered_allowed(self) -> None:
        allowed = allowed_operations("DELIVERED")
        assert set(allowed) == {Operation.ACCEPT, Operation.DISPUTE, Operation.CLAIM_BY_TIMEOUT}

    def test_disputed_allowed(self) -> None:
        assert allowed_operations("DISPUTED") == [Operation.RESOLVE]


class TestValidateTransitionFunction:
    def test_valid_transition(self) -> None:
        result = validate_transition("FUNDED", Operation.DELIVER)
        assert result is EscrowStatus.DELIVERED

    def test_illegal_transition_raises_domain_error(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_transition("COMPLETED", Operation.ACCEPT)
        assert exc_info.value.code == "INVALID_STATE"
        assert "COMPLETED" in exc_info.value.message

    def test_create_has_no_event(self) -> None:
        with pytest.raises(ValueError, match="no state machine event"):
            validate_transition("CREATED", Operation.CREATE)

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            EscrowStateMachine("INVALID_STATUS")
