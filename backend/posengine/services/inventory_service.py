"""
Stock ledger writer.

WHY: Stock is never stored as a mutable counter. Every change is a
StockMovement row written in the caller's transaction, and on-hand is
the sum of deltas, so concurrent sales on the same product commute.
Negative on-hand is allowed: the till does not refuse a sale the shelf
already handed over.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import StockMovement
from ..models.enums import StockMovementType
from ..time_utils import utcnow
from .pricing_service import variant_key_for


def apply_stock_movement(
    *,
    org_id: int,
    store_id: int,
    product_id: int,
    variant_id: int | None,
    qty_delta: int,
    movement_type: StockMovementType,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    """Append one movement. Flushes, never commits."""
    movement = StockMovement(
        org_id=org_id,
        store_id=store_id,
        product_id=product_id,
        variant_id=variant_id,
        variant_key=variant_key_for(variant_id),
        qty_delta=int(qty_delta),
        movement_type=StockMovementType(movement_type).value,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        actor_id=actor_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def get_quantity_on_hand(store_id: int, product_id: int, variant_id: int | None = None) -> int:
    total = db.session.query(func.coalesce(func.sum(StockMovement.qty_delta), 0)).filter(
        StockMovement.store_id == store_id,
        StockMovement.product_id == product_id,
        StockMovement.variant_key == variant_key_for(variant_id),
    ).scalar()
    return int(total or 0)


def adjust_stock(org_id: int, store_id: int, product_id: int, qty_delta: int, *, variant_id: int | None = None,
                 note: str | None = None, actor_id: int | None = None) -> StockMovement:
    """Manual adjustment (receiving, shrinkage). Commits."""
    movement = apply_stock_movement(
        org_id=org_id,
        store_id=store_id,
        product_id=product_id,
        variant_id=variant_id,
        qty_delta=qty_delta,
        movement_type=StockMovementType.ADJUSTMENT,
        reference_type="Adjustment",
        note=note,
        actor_id=actor_id,
    )
    db.session.commit()
    return movement
