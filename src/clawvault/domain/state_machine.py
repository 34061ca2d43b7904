"""Escrow State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter which caller (API layer, sweeper, arbiter) drives an escrow, an
illegal transition (e.g., CREATED -> COMPLETED) raises TransitionNotAllowed.

Transition table:
    CREATED    -> FUNDED      (fund)
    FUNDED     -> DELIVERED   (mark_delivered)
    DELIVERED  -> COMPLETED   (accept_delivery)
    DELIVERED  -> DISPUTED    (open_dispute)
    DISPUTED   -> RESOLVED    (resolve_dispute)
    CREATED    -> REFUNDED    (reclaim_expired)
    FUNDED     -> REFUNDED    (reclaim_expired)
    DELIVERED  -> COMPLETED   (claim_by_timeout)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from clawvault.domain.enums import EscrowStatus, Operation
from clawvault.domain.exceptions import InvalidStateTransitionError

# Lifecycle operation -> state machine event.
OPERATION_EVENTS: dict[Operation, str] = {
    Operation.FUND: "fund",
    Operation.DELIVER: "mark_delivered",
    Operation.ACCEPT: "accept_delivery",
    Operation.DISPUTE: "open_dispute",
    Operation.RESOLVE: "resolve_dispute",
    Operation.RECLAIM_EXPIRED: "reclaim_expired",
    Operation.CLAIM_BY_TIMEOUT: "claim_by_timeout",
}


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="FUNDED")
        sm.mark_delivered()  # transitions to DELIVERED
        sm.status            # "DELIVERED"
    """

    # --- States ---
    CREATED = State("CREATED", initial=True)
    FUNDED = State("FUNDED")
    DELIVERED = State("DELIVERED")
    DISPUTED = State("DISPUTED")
    COMPLETED = State("COMPLETED", final=True)
    REFUNDED = State("REFUNDED", final=True)
    RESOLVED = State("RESOLVED", final=True)

    # --- Events / Transitions ---

    # Happy path
    fund = CREATED.to(FUNDED)
    mark_delivered = FUNDED.to(DELIVERED)
    accept_delivery = DELIVERED.to(COMPLETED)

    # Disputes
    open_dispute = DELIVERED.to(DISPUTED)
    resolve_dispute = DISPUTED.to(RESOLVED)

    # Timeout escape hatches
    reclaim_expired = CREATED.to(REFUNDED) | FUNDED.to(REFUNDED)
    claim_by_timeout = DELIVERED.to(COMPLETED)

    def __init__(self, current_status: str = "CREATED") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "FUNDED").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> EscrowStatus:
        """Return the current state as an EscrowStatus."""
        return EscrowStatus(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return the ids of the events that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def allowed_operations(current_status: str) -> list[Operation]:
    """Operations a caller may attempt from ``current_status``."""
    allowed = set(EscrowStateMachine(current_status).get_allowed_events())
    return [op for op, event in OPERATION_EVENTS.items() if event in allowed]


def validate_transition(current_status: str, operation: Operation) -> EscrowStatus:
    """Validate a lifecycle operation against the guard and return the new status.

    Args:
        current_status: Current EscrowStatus value.
        operation: The lifecycle operation being attempted.

    Returns:
        The status the escrow moves to.

    Raises:
        InvalidStateTransitionError: If the operation is not allowed from
            ``current_status``.
        ValueError: If the status or operation is unknown.
    """
    event_name = OPERATION_EVENTS.get(operation)
    if event_name is None:
        raise ValueError(f"Operation '{operation}' has no state machine event")

    sm = EscrowStateMachine(current_status=current_status)
    try:
        sm.send(event_name)
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current_status, str(operation)) from err
    return sm.status
