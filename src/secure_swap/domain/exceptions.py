"""Domain exceptions for the SecureSwap escrow service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""

from __future__ import annotations


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationError(EscrowError, ValueError):
    """Raised for missing or malformed input (ids, addresses, amounts).

    Also a ValueError so pydantic validators surface it as a field error.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


# --- Trade Errors ---


class TradeNotFoundError(EscrowError):
    """Raised when a trade id was never created."""

    def __init__(self, trade_id: str) -> None:
        super().__init__(
            message=f"Trade not found: {trade_id}",
            code="TRADE_NOT_FOUND",
        )
        self.trade_id = trade_id


class TradeConflictError(EscrowError):
    """Raised when creating a trade whose id is already taken."""

    def __init__(self, trade_id: str) -> None:
        super().__init__(
            message=f"Trade already exists: {trade_id}",
            code="TRADE_CONFLICT",
        )
        self.trade_id = trade_id


class UnauthorizedError(EscrowError):
    """Raised when the acting principal may not trigger a transition."""

    def __init__(self, actor: str, transition: str, required: str) -> None:
        super().__init__(
            message=f"{actor} is not allowed to {transition} (requires {required})",
            code="UNAUTHORIZED",
        )
        self.actor = actor
        self.transition = transition


# --- State Machine Errors ---


class InvalidTransitionError(EscrowError):
    """Raised when a transition's guard fails.

    Covers a wrong current status (including already-terminal trades), a
    deposit that does not match the price, and lost concurrent races.
    """

    def __init__(self, current_state: str, attempted: str, reason: str | None = None) -> None:
        message = f"Invalid transition: {attempted} from {current_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="INVALID_TRANSITION")
        self.current_state = current_state
        self.attempted = attempted
        self.reason = reason


# --- Settlement Errors ---


class SettlementFailureError(EscrowError):
    """Raised when the ledger rejected a value movement."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message=message, code="SETTLEMENT_FAILURE")
        self.reference = reference


class BackendUnavailableError(EscrowError):
    """Raised when the settlement backend could not be reached at all."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="BACKEND_UNAVAILABLE")


class SettlementPendingError(EscrowError):
    """Raised when a transition is waiting on ledger finality.

    The trade keeps its pending plan; callers poll with reconcile().
    """

    def __init__(self, trade_id: str, references: list[str] | None = None) -> None:
        super().__init__(
            message=f"Settlement pending for trade {trade_id}; reconcile to finish",
            code="SETTLEMENT_PENDING",
        )
        self.trade_id = trade_id
        self.references = references or []
