"""
Error taxonomy for the linking and billing services.

Every error carries a stable ``code`` tag so callers (an API layer, a UI)
can branch on the failure kind without matching on message text.
Storage-level exceptions live in ``duofinance.services.storage`` and are
translated to ``GatewayUnavailable`` at the service boundary.
"""

from typing import Optional


class FinanceError(Exception):
    """Base exception for all duofinance business errors."""

    code = "finance_error"

    def __init__(self, message: str, *, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        """Tagged result for callers that report errors instead of raising."""
        return {
            "error": self.code,
            "message": self.message,
            "entity_id": self.entity_id,
        }


class DuplicateInvitation(FinanceError):
    """A pending invitation to this email from this sender already exists."""

    code = "duplicate_invitation"


class NotFound(FinanceError):
    """The referenced entity does not exist."""

    code = "not_found"


class AlreadyResolved(FinanceError):
    """The invitation is no longer pending."""

    code = "already_resolved"


class Expired(FinanceError):
    """The invitation is past its expiry timestamp."""

    code = "expired"


class AlreadyCoupled(FinanceError):
    """One of the profiles already belongs to a couple."""

    code = "already_coupled"


class Forbidden(FinanceError):
    """The caller is not allowed to perform this action."""

    code = "forbidden"


class ValidationError(FinanceError):
    """Bad input: amount, date, frequency, email, password..."""

    code = "validation_error"


class GatewayUnavailable(FinanceError):
    """The persistence backend failed. Retried only by the user."""

    code = "gateway_unavailable"
