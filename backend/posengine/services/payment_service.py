# Overview: Service-layer operations for POS tenders: normalization and recording at completion.

"""
POS Payment Service

WHY: Sales and returns are settled with one or more tenders whose sum must
equal the document total exactly (integer cents, no tolerance).

DESIGN PRINCIPLES:
- Payments are written only when a sale/return completes, never edited after
- Split tender: any number of methods, inserted in the order given
- Zero-amount entries are dropped before validation
"""

from __future__ import annotations

from ..extensions import db
from ..models import Payment
from ..models.enums import PaymentMethod, parse_enum
from ..money import amount_cents_from
from .errors import ErrorKind, PosError


def normalize_payments(payments: list[dict] | None, error_cls=PosError) -> list[dict]:
    """
    Validate and normalize tender input.

    Each entry: {"method": "CASH", "amount_cents": 30000} or
    {"method": "CASH", "amount": "300.00"}, optional "provider_ref".
    Amounts <= 0 are dropped; at least one positive tender must remain.
    """
    normalized = []
    for index, payment in enumerate(payments or []):
        if not isinstance(payment, dict):
            raise error_cls("invalidPayment", ErrorKind.BAD_REQUEST, {"index": index})

        method = parse_enum(PaymentMethod, payment.get("method"))
        if method is None:
            raise error_cls("invalidPaymentMethod", ErrorKind.BAD_REQUEST, {"index": index, "method": payment.get("method")})

        try:
            amount_cents = amount_cents_from(payment, "amount")
        except ValueError:
            raise error_cls("invalidPaymentAmount", ErrorKind.BAD_REQUEST, {"index": index})

        if amount_cents is None or amount_cents <= 0:
            continue

        provider_ref = payment.get("provider_ref")
        if provider_ref is not None:
            provider_ref = str(provider_ref).strip() or None

        normalized.append({
            "method": method.value,
            "amount_cents": amount_cents,
            "provider_ref": provider_ref,
        })

    if not normalized:
        raise error_cls("posPaymentMissing", ErrorKind.BAD_REQUEST)

    return normalized


def payments_total_cents(payments: list[dict]) -> int:
    return sum(payment["amount_cents"] for payment in payments)


def assert_payments_match_total(payments: list[dict], total_cents: int, error_cls=PosError) -> None:
    paid = payments_total_cents(payments)
    if paid != total_cents:
        raise error_cls(
            "posPaymentTotalMismatch",
            ErrorKind.BAD_REQUEST,
            {"expected_cents": total_cents, "received_cents": paid},
        )


def record_payments(
    payments: list[dict],
    *,
    org_id: int,
    store_id: int,
    shift_id: int,
    actor_id: int | None,
    sale_id: int | None = None,
    sale_return_id: int | None = None,
    is_refund: bool = False,
) -> list[Payment]:
    """Insert one Payment row per normalized tender, preserving order. Flushes."""
    rows = []
    for payment in payments:
        row = Payment(
            org_id=org_id,
            store_id=store_id,
            shift_id=shift_id,
            sale_id=sale_id,
            sale_return_id=sale_return_id,
            method=payment["method"],
            amount_cents=payment["amount_cents"],
            is_refund=is_refund,
            provider_ref=payment.get("provider_ref"),
            created_by=actor_id,
        )
        db.session.add(row)
        # Flush per row so ids follow input order
        db.session.flush()
        rows.append(row)
    return rows
