"""
POS Returns Service - refunds against completed sales

WHY: A return re-credits stock and pays money back, so it must never give
back more than was sold. For every original sale line:

    sum(qty on COMPLETED returns) <= sold qty

DESIGN:
- A return references exactly one COMPLETED sale in the same store as the
  shift it is recorded in
- Availability is checked when lines are added/edited and re-checked at
  completion under a row lock on the referenced sale lines, before any
  stock or payment write, so two drafts racing to complete cannot
  over-return
- Completion mirrors sales: idempotency table + COMPLETED status check,
  positive RETURN stock movements, refund tenders
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..events import publish, publish_inventory_updated, SALE_REFUNDED
from ..extensions import db
from ..models import Sale, SaleLine, SaleReturn, SaleReturnLine, RegisterShift, Payment
from ..models.enums import ReturnStatus, SaleStatus, ShiftStatus, StockMovementType
from ..money import line_total_cents
from ..time_utils import utcnow, to_utc_z
from .audit_service import write_audit_log
from .concurrency import lock_for_update, run_with_retry
from .errors import ErrorKind, ReturnError
from .idempotency_service import run_idempotent
from .inventory_service import apply_stock_movement
from .payment_service import normalize_payments, assert_payments_match_total, record_payments
from .pricing_service import line_cost_total
from .sequence_service import next_return_number

ROUTE_RETURN_COMPLETE = "pos.returns.complete"


def _validate_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ReturnError("invalidQuantity", ErrorKind.BAD_REQUEST, {"qty": qty})
    return qty


def returned_qty(sale_line_id: int, exclude_return_line_id: int | None = None) -> int:
    """Quantity of a sale line already given back by COMPLETED returns."""
    query = db.session.query(func.coalesce(func.sum(SaleReturnLine.qty), 0)).join(
        SaleReturn, SaleReturn.id == SaleReturnLine.sale_return_id
    ).filter(
        SaleReturnLine.sale_line_id == sale_line_id,
        SaleReturn.status == ReturnStatus.COMPLETED.value,
    )
    if exclude_return_line_id is not None:
        query = query.filter(SaleReturnLine.id != exclude_return_line_id)
    return int(query.scalar() or 0)


def _assert_line_available(sale_line: SaleLine, requested_qty: int, exclude_return_line_id: int | None = None) -> None:
    if sale_line.sale.status != SaleStatus.COMPLETED.value:
        raise ReturnError("posReturnSourceNotCompleted", ErrorKind.CONFLICT, {"sale_id": sale_line.sale_id})

    available = sale_line.qty - returned_qty(sale_line.id, exclude_return_line_id)
    if available <= 0 or requested_qty > available:
        raise ReturnError(
            "posReturnQtyExceeded",
            ErrorKind.CONFLICT,
            {"sale_line_id": sale_line.id, "requested": requested_qty, "available": max(available, 0)},
        )


def _load_source_line(sale_return: SaleReturn, sale_line_id: int) -> SaleLine:
    sale_line = db.session.get(SaleLine, sale_line_id)
    if sale_line is None:
        raise ReturnError("posSaleLineNotFound", ErrorKind.NOT_FOUND, {"sale_line_id": sale_line_id})
    if sale_line.sale_id != sale_return.original_sale_id:
        raise ReturnError("posReturnSourceMismatch", ErrorKind.CONFLICT, {"sale_line_id": sale_line_id})
    return sale_line


def _load_draft_return(org_id: int, return_id: int) -> SaleReturn:
    sale_return = lock_for_update(
        db.session.query(SaleReturn).filter_by(id=return_id, org_id=org_id)
    ).first()
    if sale_return is None:
        raise ReturnError("posReturnNotFound", ErrorKind.NOT_FOUND, {"return_id": return_id})
    if sale_return.status != ReturnStatus.DRAFT.value:
        raise ReturnError("posReturnNotEditable", ErrorKind.CONFLICT, {"status": sale_return.status})
    return sale_return


def _load_return_line(org_id: int, return_line_id: int) -> SaleReturnLine:
    line = db.session.get(SaleReturnLine, return_line_id)
    if line is None:
        raise ReturnError("posReturnLineNotFound", ErrorKind.NOT_FOUND, {"return_line_id": return_line_id})
    if line.sale_return.org_id != org_id:
        raise ReturnError("salesOrderOrgMismatch", ErrorKind.FORBIDDEN, {"return_line_id": return_line_id})
    return line


def _recompute_totals(sale_return: SaleReturn) -> None:
    db.session.flush()
    total = db.session.query(func.coalesce(func.sum(SaleReturnLine.line_total_cents), 0)).filter(
        SaleReturnLine.sale_return_id == sale_return.id
    ).scalar()
    sale_return.subtotal_cents = int(total or 0)
    sale_return.total_cents = int(total or 0)
    db.session.flush()


# =============================================================================
# DRAFTS
# =============================================================================

def create_return_draft(
    org_id: int,
    shift_id: int,
    original_sale_id: int,
    actor_id: int,
    *,
    notes: str | None = None,
    request_id: str | None = None,
) -> SaleReturn:
    def _op():
        shift = db.session.query(RegisterShift).filter_by(
            id=shift_id, org_id=org_id, status=ShiftStatus.OPEN.value
        ).first()
        if shift is None:
            raise ReturnError("posShiftNotOpen", ErrorKind.CONFLICT, {"shift_id": shift_id})

        original = db.session.query(Sale).filter_by(
            id=original_sale_id, org_id=org_id, status=SaleStatus.COMPLETED.value
        ).first()
        if original is None:
            raise ReturnError("posSaleNotFound", ErrorKind.NOT_FOUND, {"sale_id": original_sale_id})
        if original.store_id != shift.store_id:
            raise ReturnError("posReturnStoreMismatch", ErrorKind.CONFLICT, {"sale_id": original_sale_id})

        sale_return = SaleReturn(
            org_id=org_id,
            store_id=shift.store_id,
            register_id=shift.register_id,
            shift_id=shift.id,
            original_sale_id=original.id,
            number=next_return_number(org_id),
            status=ReturnStatus.DRAFT.value,
            notes=notes,
            created_by=actor_id,
        )
        db.session.add(sale_return)
        db.session.flush()

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_RETURN_CREATE",
            entity="SaleReturn",
            entity_id=sale_return.id,
            before=None,
            after={"number": sale_return.number, "original_sale_id": original.id, "shift_id": shift.id},
            request_id=request_id,
        )
        db.session.commit()
        return sale_return

    return run_with_retry(_op)


def cancel_return(org_id: int, return_id: int, actor_id: int, *, request_id: str | None = None) -> SaleReturn:
    def _op():
        sale_return = _load_draft_return(org_id, return_id)
        sale_return.status = ReturnStatus.CANCELED.value
        sale_return.canceled_at = utcnow()
        db.session.flush()

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_RETURN_CANCEL",
            entity="SaleReturn",
            entity_id=sale_return.id,
            before={"status": ReturnStatus.DRAFT.value},
            after={"status": sale_return.status},
            request_id=request_id,
        )
        db.session.commit()
        return sale_return

    return run_with_retry(_op)


# =============================================================================
# LINES
# =============================================================================

def add_return_line(
    org_id: int,
    return_id: int,
    sale_line_id: int,
    qty: int,
    actor_id: int,
    *,
    request_id: str | None = None,
) -> SaleReturnLine:
    _validate_qty(qty)

    def _op():
        sale_return = _load_draft_return(org_id, return_id)
        sale_line = _load_source_line(sale_return, sale_line_id)
        _assert_line_available(sale_line, qty)

        duplicate = db.session.query(SaleReturnLine).filter_by(
            sale_return_id=sale_return.id, sale_line_id=sale_line.id
        ).first()
        if duplicate is not None:
            raise ReturnError("duplicateLineItem", ErrorKind.CONFLICT, {"return_line_id": duplicate.id})

        line = SaleReturnLine(
            sale_return_id=sale_return.id,
            sale_line_id=sale_line.id,
            product_id=sale_line.product_id,
            variant_id=sale_line.variant_id,
            variant_key=sale_line.variant_key,
            qty=qty,
            unit_price_cents=sale_line.unit_price_cents,
            line_total_cents=line_total_cents(sale_line.unit_price_cents, qty),
            unit_cost_cents=sale_line.unit_cost_cents,
            line_cost_total_cents=line_cost_total(sale_line.unit_cost_cents, qty),
        )
        db.session.add(line)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ReturnError("duplicateLineItem", ErrorKind.CONFLICT, {"sale_line_id": sale_line_id})

        _recompute_totals(sale_return)
        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_RETURN_LINE_ADD",
            entity="SaleReturn",
            entity_id=sale_return.id,
            before=None,
            after=line.to_dict(),
            request_id=request_id,
        )
        db.session.commit()
        return line

    return run_with_retry(_op)


def update_return_line(org_id: int, return_line_id: int, qty: int, actor_id: int, *,
                       request_id: str | None = None) -> SaleReturnLine:
    _validate_qty(qty)

    def _op():
        line = _load_return_line(org_id, return_line_id)
        sale_return = _load_draft_return(org_id, line.sale_return_id)
        _assert_line_available(line.sale_line, qty, exclude_return_line_id=line.id)
        before = line.to_dict()

        line.qty = qty
        line.line_total_cents = line_total_cents(line.unit_price_cents, qty)
        line.line_cost_total_cents = line_cost_total(line.unit_cost_cents, qty)
        _recompute_totals(sale_return)

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_RETURN_LINE_UPDATE",
            entity="SaleReturn",
            entity_id=sale_return.id,
            before=before,
            after=line.to_dict(),
            request_id=request_id,
        )
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_return_line(org_id: int, return_line_id: int, actor_id: int, *, request_id: str | None = None) -> int:
    def _op():
        line = _load_return_line(org_id, return_line_id)
        sale_return = _load_draft_return(org_id, line.sale_return_id)
        before = line.to_dict()

        db.session.delete(line)
        _recompute_totals(sale_return)

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_RETURN_LINE_REMOVE",
            entity="SaleReturn",
            entity_id=sale_return.id,
            before=before,
            after=None,
            request_id=request_id,
        )
        db.session.commit()
        return sale_return.id

    return run_with_retry(_op)


# =============================================================================
# COMPLETION
# =============================================================================

def _completion_result(sale_return: SaleReturn, product_ids: list[int], already_completed: bool) -> dict:
    return {
        "return_id": sale_return.id,
        "number": sale_return.number,
        "status": sale_return.status,
        "store_id": sale_return.store_id,
        "register_id": sale_return.register_id,
        "shift_id": sale_return.shift_id,
        "original_sale_id": sale_return.original_sale_id,
        "total_cents": sale_return.total_cents,
        "completed_at": to_utc_z(sale_return.completed_at),
        "product_ids": product_ids,
        "already_completed": already_completed,
    }


def _complete_locked(org_id: int, return_id: int, payments: list[dict] | None, actor_id: int,
                     idempotency_key: str, request_id: str | None) -> dict:
    sale_return = lock_for_update(
        db.session.query(SaleReturn).filter_by(id=return_id, org_id=org_id)
    ).first()
    if sale_return is None:
        raise ReturnError("posReturnNotFound", ErrorKind.NOT_FOUND, {"return_id": return_id})

    lines = list(sale_return.lines)
    product_ids = [line.product_id for line in lines]

    if sale_return.status == ReturnStatus.COMPLETED.value:
        return _completion_result(sale_return, product_ids, already_completed=True)
    if sale_return.status != ReturnStatus.DRAFT.value:
        raise ReturnError("posReturnNotEditable", ErrorKind.CONFLICT, {"status": sale_return.status})

    shift = db.session.query(RegisterShift).filter_by(
        id=sale_return.shift_id, org_id=org_id, status=ShiftStatus.OPEN.value
    ).first()
    if shift is None:
        raise ReturnError("posShiftNotOpen", ErrorKind.CONFLICT, {"shift_id": sale_return.shift_id})

    if not lines:
        raise ReturnError("salesOrderEmpty", ErrorKind.BAD_REQUEST)

    normalized = normalize_payments(payments, error_cls=ReturnError)
    assert_payments_match_total(normalized, sale_return.total_cents, error_cls=ReturnError)

    # Serialize against other returns of the same sale lines, then re-check.
    sale_line_ids = sorted({line.sale_line_id for line in lines})
    locked = lock_for_update(
        db.session.query(SaleLine).filter(SaleLine.id.in_(sale_line_ids)).order_by(SaleLine.id)
    ).all()
    sale_lines = {sale_line.id: sale_line for sale_line in locked}
    for line in lines:
        _assert_line_available(sale_lines[line.sale_line_id], line.qty, exclude_return_line_id=line.id)

    for line in lines:
        apply_stock_movement(
            org_id=org_id,
            store_id=sale_return.store_id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            qty_delta=line.qty,
            movement_type=StockMovementType.RETURN,
            reference_type="SaleReturn",
            reference_id=sale_return.id,
            note=sale_return.number,
            actor_id=actor_id,
        )

    record_payments(
        normalized,
        org_id=org_id,
        store_id=sale_return.store_id,
        shift_id=sale_return.shift_id,
        actor_id=actor_id,
        sale_id=sale_return.original_sale_id,
        sale_return_id=sale_return.id,
        is_refund=True,
    )

    sale_return.status = ReturnStatus.COMPLETED.value
    sale_return.completed_at = utcnow()
    sale_return.completed_event_id = idempotency_key
    sale_return.completed_by = actor_id
    db.session.flush()

    write_audit_log(
        org_id=org_id,
        actor_id=actor_id,
        action="POS_RETURN_COMPLETE",
        entity="SaleReturn",
        entity_id=sale_return.id,
        before={"status": ReturnStatus.DRAFT.value},
        after={"status": sale_return.status, "total_cents": sale_return.total_cents},
        request_id=request_id,
    )
    return _completion_result(sale_return, product_ids, already_completed=False)


def complete_return(
    org_id: int,
    return_id: int,
    payments: list[dict] | None,
    actor_id: int,
    idempotency_key: str,
    *,
    request_id: str | None = None,
) -> dict:
    """
    Complete a DRAFT return: re-credit stock, record refund tenders.

    Returns:
        completion dict plus "replayed"
    """
    def _op():
        result, replayed = run_idempotent(
            org_id,
            idempotency_key,
            ROUTE_RETURN_COMPLETE,
            actor_id,
            lambda: _complete_locked(org_id, return_id, payments, actor_id, idempotency_key, request_id),
        )
        db.session.commit()
        return result, replayed

    result, replayed = run_with_retry(_op)

    if replayed or result["already_completed"]:
        return {**result, "replayed": True}

    publish_inventory_updated(result["store_id"], result["product_ids"])
    publish(SALE_REFUNDED, {
        "return_id": result["return_id"],
        "original_sale_id": result["original_sale_id"],
        "store_id": result["store_id"],
        "register_id": result["register_id"],
        "shift_id": result["shift_id"],
        "number": result["number"],
    })
    return {**result, "replayed": False}


# =============================================================================
# QUERIES
# =============================================================================

def get_return(org_id: int, return_id: int) -> SaleReturn:
    sale_return = db.session.query(SaleReturn).filter_by(id=return_id, org_id=org_id).first()
    if sale_return is None:
        raise ReturnError("posReturnNotFound", ErrorKind.NOT_FOUND, {"return_id": return_id})
    return sale_return


def return_detail(sale_return: SaleReturn) -> dict:
    data = sale_return.to_dict()
    data["lines"] = [line.to_dict() for line in sale_return.lines]
    data["payments"] = [
        payment.to_dict()
        for payment in db.session.query(Payment).filter_by(sale_return_id=sale_return.id).order_by(Payment.id).all()
    ]
    return data


def list_returns(
    org_id: int,
    *,
    shift_id: int | None = None,
    register_id: int | None = None,
    original_sale_id: int | None = None,
) -> list[SaleReturn]:
    query = db.session.query(SaleReturn).filter_by(org_id=org_id)
    if shift_id is not None:
        query = query.filter_by(shift_id=shift_id)
    if register_id is not None:
        query = query.filter_by(register_id=register_id)
    if original_sale_id is not None:
        query = query.filter_by(original_sale_id=original_sale_id)
    return query.order_by(SaleReturn.created_at.desc(), SaleReturn.id.desc()).all()
