# Overview: Exception taxonomy shared by services and routes.

"""
Lockstock error taxonomy.

Every failure raised by the service layer is a LockstockError subclass that
carries the HTTP status the API layer should answer with. Services never
auto-correct a failing request (an over-receipt is rejected, never clamped),
and nothing here is retried by the core; transient store contention is handled
in services/concurrency.py only.

    Unauthorized            403  actor has no membership in the organization
    Forbidden               403  actor's role rank is below the required minimum
    NotFound                404  record missing or owned by another organization
    InvalidArgument         400  zero delta, empty batch, non-positive quantity, bad payload
    InvalidState            400  operation not allowed for the record's current status
    InvalidTransition       400  illegal manual purchase order status change
    QuantityExceedsOrdered  400  receipt would push quantity_received past quantity_ordered
    Conflict                409  uniqueness or idempotency-key clash
"""

from __future__ import annotations

from typing import Any

from .quantity_utils import quantity_to_json


class LockstockError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class Unauthorized(LockstockError):
    """Actor is not a member of the organization (or it is inactive)."""
    status_code = 403


class Forbidden(LockstockError):
    """Actor's role rank is too low for the operation."""
    status_code = 403


class NotFound(LockstockError):
    status_code = 404


class InvalidArgument(LockstockError):
    status_code = 400


class ValidationError(InvalidArgument):
    """400-level payload problem detected by the validation layer."""


class InvalidState(LockstockError):
    status_code = 400


class InvalidTransition(LockstockError):
    status_code = 400

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Invalid status transition: {current} -> {requested}.",
            details={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class QuantityExceedsOrdered(LockstockError):
    status_code = 400

    def __init__(self, line_id: int, overflow, *, quantity_ordered, quantity_received):
        super().__init__(
            f"Receipt for line {line_id} exceeds ordered quantity by {quantity_to_json(overflow)}.",
            details={
                "line_id": line_id,
                "overflow": quantity_to_json(overflow),
                "quantity_ordered": quantity_to_json(quantity_ordered),
                "quantity_received": quantity_to_json(quantity_received),
            },
        )
        self.line_id = line_id
        self.overflow = overflow


class Conflict(LockstockError):
    status_code = 409
