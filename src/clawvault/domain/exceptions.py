"""Domain exceptions for the ClawVault escrow engine.

These exceptions are framework-agnostic and represent business rule
violations or transient infrastructure failures. Every failure of an engine
operation is exactly one of these.

``retryable`` marks the transient ones (store and ledger outages). Everything
else is permanent for the given input and must be surfaced to the caller
verbatim.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class ClawVaultError(Exception):
    """Base exception for all domain errors."""

    retryable: bool = False

    def __init__(self, message: str, code: str = "CLAWVAULT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Structured error body for callers (API layer, MCP tools, CLIs)."""
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


# --- Input Errors ---


class InvalidArgumentError(ClawVaultError):
    """Raised when a required field is missing or malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="INVALID_ARGUMENT")
        self.field = field


class EscrowNotFoundError(ClawVaultError):
    """Raised when an escrow ID does not exist."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Escrow not found: {escrow_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.escrow_id = escrow_id


class UnauthorizedError(ClawVaultError):
    """Raised when the wrong actor attempts a restricted operation."""

    def __init__(self, actor: str, operation: str) -> None:
        super().__init__(
            message=f"Actor {actor} is not allowed to {operation}",
            code="UNAUTHORIZED",
        )
        self.actor = actor
        self.operation = operation


# --- State Machine Errors ---


class InvalidStateTransitionError(ClawVaultError):
    """Raised when an operation is attempted from a state that does not permit it.

    Example: accept on a COMPLETED escrow (replay of the same intent).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Cannot {attempted}: status is {current_state}",
            code="INVALID_STATE",
        )
        self.current_state = current_state
        self.attempted = attempted


# --- Timing Errors ---


class _TimingError(ClawVaultError):
    def __init__(self, message: str, code: str, boundary: datetime, now: datetime) -> None:
        super().__init__(message=message, code=code)
        self.boundary = boundary
        self.now = now


class DeadlineExceededError(_TimingError):
    """Raised when the seller marks delivery after the deadline."""

    def __init__(self, boundary: datetime, now: datetime) -> None:
        super().__init__(
            f"Delivery deadline {boundary.isoformat()} has passed",
            "DEADLINE_EXCEEDED",
            boundary,
            now,
        )


class DeadlineNotReachedError(_TimingError):
    """Raised when reclaiming before the delivery deadline has passed."""

    def __init__(self, boundary: datetime, now: datetime) -> None:
        super().__init__(
            f"Deadline {boundary.isoformat()} not reached yet",
            "DEADLINE_NOT_REACHED",
            boundary,
            now,
        )


class WindowExpiredError(_TimingError):
    """Raised when disputing after the acceptance window closed."""

    def __init__(self, boundary: datetime, now: datetime) -> None:
        super().__init__(
            f"Acceptance window closed at {boundary.isoformat()}",
            "WINDOW_EXPIRED",
            boundary,
            now,
        )


class WindowNotExpiredError(_TimingError):
    """Raised when claiming by timeout while the buyer can still respond."""

    def __init__(self, boundary: datetime, now: datetime) -> None:
        super().__init__(
            f"Acceptance window open until {boundary.isoformat()}",
            "WINDOW_NOT_EXPIRED",
            boundary,
            now,
        )


# --- Transient Infrastructure Errors ---


class StoreUnavailableError(ClawVaultError):
    """Raised when the escrow record store cannot be reached or fails mid-write."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="STORE_UNAVAILABLE")


class LedgerUnreachableError(ClawVaultError):
    """Raised when the external contract cannot be read within the timeout."""

    retryable = True

    def __init__(self, message: str, method: str | None = None) -> None:
        super().__init__(message=message, code="LEDGER_UNREACHABLE")
        self.method = method
