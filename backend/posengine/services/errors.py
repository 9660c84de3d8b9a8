# Overview: Typed POS error hierarchy; each error carries a kind and a stable message key.

"""
POS error taxonomy.

Callers (routes, CLI, tests) get a machine-stable message_key suitable for
localization ("posShiftAlreadyOpen") plus an ErrorKind that maps onto an
HTTP status. Raising any PosError aborts the surrounding transaction.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    BAD_REQUEST = "BAD_REQUEST"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL = "INTERNAL"


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INTERNAL: 500,
}


class PosError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message_key: str, kind: ErrorKind = ErrorKind.BAD_REQUEST, details: dict | None = None):
        super().__init__(message_key)
        self.message_key = message_key
        self.kind = kind
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def to_dict(self) -> dict:
        return {"error": self.message_key, "kind": self.kind.value, "details": self.details}


class RegisterError(PosError):
    """Raised for register setup errors."""


class ShiftError(PosError):
    """Raised for shift lifecycle and cash drawer errors."""


class SaleError(PosError):
    """Raised for sale draft and completion errors."""


class ReturnError(PosError):
    """Raised for return draft and completion errors."""


class PricingError(PosError):
    """Raised when a product or variant cannot be priced."""


class SequenceError(PosError):
    """Raised when a document number cannot be minted."""


class IdempotencyError(PosError):
    """Raised for malformed idempotency keys."""


class FiscalError(PosError):
    """Raised by fiscal adapters and fiscal configuration checks."""
