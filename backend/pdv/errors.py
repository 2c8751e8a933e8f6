"""
PDV error taxonomy.

- ValidationError / StateError / NotFoundError are raised before any write.
- PersistenceError wraps every database failure that reaches a service.
- PartialFailureWarning is never raised: it is returned on commit/cancel
  summaries (and logged) when a follow-up failed after the authoritative
  record was already written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class PdvError(Exception):
    """Base class for domain errors. `details` is JSON-safe context."""
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


# =============================================================================
# VALIDATION (400)
# =============================================================================

class ValidationError(PdvError):
    """400-level input problem."""


class EmptyCartError(ValidationError):
    pass


class InvalidPaymentMethodError(ValidationError):
    pass


class InvalidDiscountError(ValidationError):
    pass


class InvalidAmountError(ValidationError):
    pass


class InsufficientStockError(ValidationError):
    pass


class NotFoundError(PdvError):
    http_status = 404


# =============================================================================
# STATE (409)
# =============================================================================

class StateError(PdvError):
    """Operation not allowed in the current state of a session or sale."""
    http_status = 409


class NoOpenSessionError(StateError):
    pass


class SessionAlreadyOpenError(StateError):
    pass


class SessionNotOpenError(StateError):
    pass


class AlreadyCancelledError(StateError):
    pass


# =============================================================================
# PERSISTENCE (503) / DEADLINE (504)
# =============================================================================

class PersistenceError(PdvError):
    http_status = 503

    def __init__(self, message: str, details: dict | None = None, *, retryable: bool = False):
        super().__init__(message, details)
        self.retryable = retryable


class CancellationIncompleteError(PersistenceError):
    """Some stock reversals failed; the sale is still COMPLETED and may be retried."""


class DeadlineExceededError(PdvError):
    http_status = 504


@dataclass(frozen=True)
class PartialFailureWarning:
    """Follow-up failure after the sale (or its cancellation) was recorded."""
    step: str
    message: str
    sale_id: int | None = None
    sale_line_id: int | None = None
    product_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "message": self.message,
            "sale_id": self.sale_id,
            "sale_line_id": self.sale_line_id,
            "product_id": self.product_id,
            "details": dict(self.details),
        }
