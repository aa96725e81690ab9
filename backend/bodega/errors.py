# Overview: Domain error hierarchy shared by services and routes.

"""
Every error raised by the service layer is a BodegaError carrying:

- kind: machine-readable code (stable, safe for clients to switch on)
- status_code: HTTP status the routes answer with
- details: list of violated rules, each a string or a small dict with the
  values involved (e.g. available vs requested stock)

Routes translate them with ``jsonify(e.to_dict()), e.status_code``.
"""

from __future__ import annotations

from typing import Any


class BodegaError(Exception):
    """Base class for domain errors."""
    status_code = 500
    kind = "ERROR"

    def __init__(self, message: str, details: list[Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationError(BodegaError):
    """400-level input problem; retrying without fixing the input is pointless."""
    status_code = 400
    kind = "VALIDATION_ERROR"


class NotFoundError(BodegaError):
    """Referenced entity does not exist."""
    status_code = 404
    kind = "NOT_FOUND"


class ConflictError(BodegaError):
    """409-level business rule violation."""
    status_code = 409
    kind = "CONFLICT"


class InsufficientStockError(ConflictError):
    kind = "INSUFFICIENT_STOCK"


class InsufficientCreditError(ConflictError):
    kind = "INSUFFICIENT_CREDIT"


class ClientTypeMismatchError(ConflictError):
    kind = "CLIENT_TYPE_MISMATCH"


class AlreadyVoidError(ConflictError):
    kind = "ALREADY_VOID"


class AlreadySettledError(ConflictError):
    kind = "ALREADY_SETTLED"


class ExcessPaymentError(ConflictError):
    kind = "EXCESS_PAYMENT"


class StorageError(BodegaError):
    """Persistence failure; may succeed if retried later."""
    status_code = 503
    kind = "STORAGE_ERROR"
