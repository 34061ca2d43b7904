"""Domain layer: pure business logic with zero framework dependencies."""

from clawvault.domain.backend_protocol import EscrowBackend
from clawvault.domain.clock import Clock, ManualClock, SystemClock
from clawvault.domain.enums import (
    SYSTEM_ACTOR,
    EscrowMode,
    EscrowStatus,
    EventType,
    Operation,
    SettlementKind,
    Winner,
)
from clawvault.domain.exceptions import (
    ClawVaultError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
)
from clawvault.domain.lifecycle import LifecycleEngine, SettlementDirective, TransitionPlan
from clawvault.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "SYSTEM_ACTOR",
    "Clock",
    "ManualClock",
    "SystemClock",
    "EscrowBackend",
    "EscrowMode",
    "EscrowStatus",
    "EventType",
    "Operation",
    "SettlementKind",
    "Winner",
    "ClawVaultError",
    "EscrowNotFoundError",
    "InvalidStateTransitionError",
    "LifecycleEngine",
    "SettlementDirective",
    "TransitionPlan",
    "EscrowStateMachine",
    "validate_transition",
]
