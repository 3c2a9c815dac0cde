"""
Delivery ledger error taxonomy.

Services raise these; the API layer turns them into JSON responses using
`status_code`. Only ConflictError is expected in normal operation (another
agent won the claim); callers should refresh their list and move on.
"""

from typing import Any, Optional


class DeliveryLedgerError(Exception):
    """Base class for all delivery/ledger failures."""

    status_code: int = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": type(self).__name__,
            **({"context": self.context} if self.context else {}),
        }


class NotFoundError(DeliveryLedgerError):
    """Unknown assignment, agent, zone, order or payout request."""
    status_code = 404


class ConflictError(DeliveryLedgerError):
    """Assignment was claimed by someone else first."""
    status_code = 409


class InvalidTransitionError(DeliveryLedgerError):
    """Edge not in the transition table, or source state is terminal."""
    status_code = 400


class UnauthorizedError(DeliveryLedgerError):
    """Wrong tenant, or an agent acting on another agent's assignment."""
    status_code = 403


class InsufficientBalanceError(DeliveryLedgerError):
    """Payout exceeds the wallet balance at request or settlement time."""
    status_code = 422

    def __init__(self, message: str, requested: Optional[Any] = None, available: Optional[Any] = None):
        super().__init__(
            message,
            **{k: str(v) for k, v in (("requested", requested), ("available", available)) if v is not None},
        )


class ValidationError(DeliveryLedgerError):
    """Malformed amount, unknown payment type, bad rate configuration."""
    status_code = 422
