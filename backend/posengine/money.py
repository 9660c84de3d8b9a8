# Overview: Fixed-point money helpers; every stored amount is an integer count of cents.

"""
Money & rounding utilities.

WHY: Payment totals are compared against order totals for equality. Binary
floats cannot do that reliably, so amounts are carried as integer cents from
the API boundary inward. Major-unit input ("150.50", 150.5) is rounded
half-up to 2 decimals exactly once, at the edge.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def round_money(value) -> Decimal:
    """Round a major-unit amount to 2 decimals, half-up. None -> 0.00."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, bool):
        raise ValueError("invalid money amount")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid money amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid money amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    """Major units in, integer cents out (150.5 -> 15050)."""
    return int(round_money(value) * 100)


def from_cents(cents: int | None) -> Decimal:
    return (Decimal(cents_or_zero(cents)) / 100).quantize(CENT)


def cents_or_zero(value) -> int:
    """Non-null coercion for stored (possibly NULL) amounts."""
    if value is None:
        return 0
    return int(value)


def line_total_cents(unit_cents: int | None, qty: int) -> int:
    return cents_or_zero(unit_cents) * int(qty)


def format_cents(cents: int | None) -> str:
    return f"{from_cents(cents):.2f}"


def amount_cents_from(data: dict, field: str) -> int | None:
    """
    Read an amount from a JSON payload.

    Accepts "<field>_cents" (integer) or "<field>" (major units). Returns None
    when neither is present.
    """
    cents_key = f"{field}_cents"
    if data.get(cents_key) is not None:
        raw = data[cents_key]
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValueError(f"{cents_key} must be an integer")
        return raw
    if data.get(field) is not None:
        return to_cents(data[field])
    return None
