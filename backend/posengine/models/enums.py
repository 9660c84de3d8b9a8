# Overview: Closed value sets for POS statuses, payment methods and movement types.

from __future__ import annotations

from enum import Enum

# Variant key used for a product's base form in price/cost/stock lookups
BASE_VARIANT_KEY = "BASE"


class ShiftStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class SaleStatus(str, Enum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class ReturnStatus(str, Enum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class CashMovementType(str, Enum):
    PAY_IN = "PAY_IN"
    PAY_OUT = "PAY_OUT"


class StockMovementType(str, Enum):
    SALE = "SALE"
    RETURN = "RETURN"
    ADJUSTMENT = "ADJUSTMENT"


class KkmStatus(str, Enum):
    NOT_SENT = "NOT_SENT"
    SENT = "SENT"
    FAILED = "FAILED"


class KkmMode(str, Enum):
    OFF = "OFF"
    EXPORT_ONLY = "EXPORT_ONLY"
    ADAPTER = "ADAPTER"
    CONNECTOR = "CONNECTOR"


def parse_enum(enum_cls, value):
    """Return the enum member for value, or None if it is not a member."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except (ValueError, AttributeError):
        return None
