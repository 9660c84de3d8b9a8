"""
POS Sales Service - draft editing and atomic completion

WHY: A sale is built up as a DRAFT inside an OPEN shift and completed in one
transaction that debits stock, records tenders and flips status. Retries
of completion must never debit stock or record tenders twice.

DESIGN:
- One DRAFT per (shift, creator): create_draft returns the existing draft
- One line per (product, variant_key): repeats are rejected on add and
  merged when seeding a draft
- Totals are recomputed from lines after every line mutation
- complete_sale is guarded twice: the idempotency table (retries before the
  first commit lands) and the COMPLETED status check (retries after)
- Fiscalization and events run strictly after commit
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..events import publish, publish_inventory_updated, SALE_COMPLETED
from ..extensions import db
from ..models import Sale, SaleLine, SaleReturn, Payment, RegisterShift
from ..models.enums import SaleStatus, ShiftStatus, StockMovementType, ReturnStatus, parse_enum
from ..money import line_total_cents
from ..time_utils import utcnow, to_utc_z
from .audit_service import write_audit_log
from .compliance_service import get_compliance_profile
from .concurrency import lock_for_update, run_with_retry
from .errors import ErrorKind, SaleError
from .fiscal_service import build_receipt_draft, dispatch_fiscalization
from .idempotency_service import run_idempotent
from .inventory_service import apply_stock_movement
from .payment_service import normalize_payments, assert_payments_match_total, record_payments
from .pricing_service import resolve_unit_price, resolve_unit_cost, line_cost_total
from .register_service import require_open_shift
from .sequence_service import next_sale_number

ROUTE_SALE_COMPLETE = "pos.sales.complete"


def validate_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise SaleError("invalidQuantity", ErrorKind.BAD_REQUEST, {"qty": qty})
    return qty


def _find_draft(org_id: int, shift: RegisterShift, actor_id: int) -> Sale | None:
    return db.session.query(Sale).filter_by(
        org_id=org_id,
        store_id=shift.store_id,
        register_id=shift.register_id,
        shift_id=shift.id,
        created_by=actor_id,
        status=SaleStatus.DRAFT.value,
    ).order_by(Sale.created_at.desc(), Sale.id.desc()).first()


def _recompute_totals(sale: Sale, actor_id: int | None = None) -> None:
    db.session.flush()
    total = db.session.query(func.coalesce(func.sum(SaleLine.line_total_cents), 0)).filter(
        SaleLine.sale_id == sale.id
    ).scalar()
    sale.subtotal_cents = int(total or 0)
    sale.total_cents = int(total or 0)
    if actor_id is not None:
        sale.updated_by = actor_id
    db.session.flush()


def _price_line(sale: Sale, product_id: int, variant_id: int | None, qty: int) -> dict:
    resolved = resolve_unit_price(sale.org_id, sale.store_id, product_id, variant_id)
    unit_cost = resolve_unit_cost(sale.org_id, product_id, variant_id, resolved.is_bundle)
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "variant_key": resolved.variant_key,
        "qty": qty,
        "unit_price_cents": resolved.unit_price_cents,
        "line_total_cents": line_total_cents(resolved.unit_price_cents, qty),
        "unit_cost_cents": unit_cost,
        "line_cost_total_cents": line_cost_total(unit_cost, qty),
    }


def _load_draft_for_update(org_id: int, sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise SaleError("posSaleNotFound", ErrorKind.NOT_FOUND, {"sale_id": sale_id})
    if sale.org_id != org_id:
        raise SaleError("salesOrderOrgMismatch", ErrorKind.FORBIDDEN, {"sale_id": sale_id})
    if sale.status != SaleStatus.DRAFT.value:
        raise SaleError("posSaleNotEditable", ErrorKind.CONFLICT, {"status": sale.status})
    return sale


def _load_line(org_id: int, line_id: int) -> SaleLine:
    line = db.session.get(SaleLine, line_id)
    if line is None:
        raise SaleError("posSaleLineNotFound", ErrorKind.NOT_FOUND, {"line_id": line_id})
    if line.sale.org_id != org_id:
        raise SaleError("salesOrderOrgMismatch", ErrorKind.FORBIDDEN, {"line_id": line_id})
    return line


# =============================================================================
# DRAFTS
# =============================================================================

def create_draft(
    org_id: int,
    register_id: int,
    actor_id: int,
    *,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    notes: str | None = None,
    lines: list[dict] | None = None,
    request_id: str | None = None,
) -> Sale:
    """
    Create (or reuse) the actor's DRAFT sale in the register's open shift.

    lines: optional [{"product_id", "variant_id"?, "qty"}]; repeats of the
    same product/variant are merged into one line.
    """
    seed: dict[tuple, dict] = {}
    for line_input in lines or []:
        key = (line_input.get("product_id"), line_input.get("variant_id"))
        qty = validate_qty(line_input.get("qty"))
        if key in seed:
            seed[key]["qty"] += qty
        else:
            seed[key] = {"product_id": key[0], "variant_id": key[1], "qty": qty}

    def _op():
        shift = require_open_shift(org_id, register_id)

        existing = _find_draft(org_id, shift, actor_id)
        if existing is not None:
            return existing

        shift_ref = {"id": shift.id, "store_id": shift.store_id, "register_id": shift.register_id}
        sale = Sale(
            org_id=org_id,
            store_id=shift.store_id,
            register_id=shift.register_id,
            shift_id=shift.id,
            number=next_sale_number(org_id),
            status=SaleStatus.DRAFT.value,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=notes,
            created_by=actor_id,
            updated_by=actor_id,
        )
        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            concurrent = db.session.query(Sale).filter_by(
                org_id=org_id,
                shift_id=shift_ref["id"],
                register_id=shift_ref["register_id"],
                created_by=actor_id,
                status=SaleStatus.DRAFT.value,
            ).order_by(Sale.id.desc()).first()
            if concurrent is not None:
                return concurrent
            raise

        for item in seed.values():
            db.session.add(SaleLine(sale_id=sale.id, **_price_line(sale, item["product_id"], item["variant_id"], item["qty"])))
        if seed:
            _recompute_totals(sale, actor_id)

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SALE_CREATE",
            entity="Sale",
            entity_id=sale.id,
            before=None,
            after={"number": sale.number, "shift_id": sale.shift_id, "total_cents": sale.total_cents},
            request_id=request_id,
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_active_draft(org_id: int, register_id: int, actor_id: int) -> Sale | None:
    shift = db.session.query(RegisterShift).filter_by(
        org_id=org_id, register_id=register_id, status=ShiftStatus.OPEN.value
    ).first()
    if shift is None:
        return None
    return _find_draft(org_id, shift, actor_id)


def cancel_sale(org_id: int, sale_id: int, actor_id: int, *, request_id: str | None = None) -> Sale:
    """Cancel a DRAFT sale. Completed and canceled sales are terminal."""
    def _op():
        sale = _load_draft_for_update(org_id, sale_id)
        sale.status = SaleStatus.CANCELED.value
        sale.canceled_at = utcnow()
        sale.updated_by = actor_id
        db.session.flush()

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SALE_DRAFT_CANCEL",
            entity="Sale",
            entity_id=sale.id,
            before={"status": SaleStatus.DRAFT.value},
            after={"status": sale.status},
            request_id=request_id,
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# LINES
# =============================================================================

def add_line(
    org_id: int,
    sale_id: int,
    product_id: int,
    qty: int,
    actor_id: int,
    *,
    variant_id: int | None = None,
    request_id: str | None = None,
) -> SaleLine:
    """
    Add a product line to a DRAFT sale.

    Raises:
        SaleError: duplicateLineItem (CONFLICT) when the product/variant is
            already on the sale; update its quantity instead.
    """
    validate_qty(qty)

    def _op():
        sale = _load_draft_for_update(org_id, sale_id)
        priced = _price_line(sale, product_id, variant_id, qty)

        duplicate = db.session.query(SaleLine).filter_by(
            sale_id=sale.id, product_id=product_id, variant_key=priced["variant_key"]
        ).first()
        if duplicate is not None:
            raise SaleError("duplicateLineItem", ErrorKind.CONFLICT, {"line_id": duplicate.id})

        line = SaleLine(sale_id=sale.id, **priced)
        db.session.add(line)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise SaleError("duplicateLineItem", ErrorKind.CONFLICT, {"product_id": product_id})

        _recompute_totals(sale, actor_id)
        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SALE_LINE_ADD",
            entity="Sale",
            entity_id=sale.id,
            before=None,
            after=line.to_dict(),
            request_id=request_id,
        )
        db.session.commit()
        return line

    return run_with_retry(_op)


def update_line_qty(org_id: int, line_id: int, qty: int, actor_id: int, *, request_id: str | None = None) -> SaleLine:
    validate_qty(qty)

    def _op():
        line = _load_line(org_id, line_id)
        sale = _load_draft_for_update(org_id, line.sale_id)
        before = line.to_dict()

        line.qty = qty
        line.line_total_cents = line_total_cents(line.unit_price_cents, qty)
        line.line_cost_total_cents = line_cost_total(line.unit_cost_cents, qty)
        _recompute_totals(sale, actor_id)

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SALE_LINE_UPDATE",
            entity="Sale",
            entity_id=sale.id,
            before=before,
            after=line.to_dict(),
            request_id=request_id,
        )
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_line(org_id: int, line_id: int, actor_id: int, *, request_id: str | None = None) -> int:
    """Remove a line from a DRAFT sale. Returns the sale id."""
    def _op():
        line = _load_line(org_id, line_id)
        sale = _load_draft_for_update(org_id, line.sale_id)
        before = line.to_dict()

        db.session.delete(line)
        _recompute_totals(sale, actor_id)

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SALE_LINE_REMOVE",
            entity="Sale",
            entity_id=sale.id,
            before=before,
            after=None,
            request_id=request_id,
        )
        db.session.commit()
        return sale.id

    return run_with_retry(_op)


# =============================================================================
# COMPLETION
# =============================================================================

def _completion_result(sale: Sale, product_ids: list[int], already_completed: bool) -> dict:
    return {
        "sale_id": sale.id,
        "number": sale.number,
        "status": sale.status,
        "store_id": sale.store_id,
        "register_id": sale.register_id,
        "shift_id": sale.shift_id,
        "total_cents": sale.total_cents,
        "completed_at": to_utc_z(sale.completed_at),
        "product_ids": product_ids,
        "already_completed": already_completed,
    }


def _complete_locked(org_id: int, sale_id: int, payments: list[dict] | None, actor_id: int,
                     idempotency_key: str, request_id: str | None, pending: dict) -> dict:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id, org_id=org_id)).first()
    if sale is None:
        raise SaleError("posSaleNotFound", ErrorKind.NOT_FOUND, {"sale_id": sale_id})

    lines = list(sale.lines)
    product_ids = [line.product_id for line in lines]

    if sale.status == SaleStatus.COMPLETED.value:
        return _completion_result(sale, product_ids, already_completed=True)
    if sale.status != SaleStatus.DRAFT.value:
        raise SaleError("posSaleNotEditable", ErrorKind.CONFLICT, {"status": sale.status})
    if sale.shift_id is None or sale.register_id is None:
        raise SaleError("posSaleMissingShift", ErrorKind.CONFLICT)

    shift = db.session.query(RegisterShift).filter_by(id=sale.shift_id, org_id=org_id).first()
    if shift is None:
        raise SaleError("posShiftNotFound", ErrorKind.NOT_FOUND, {"shift_id": sale.shift_id})
    if shift.status != ShiftStatus.OPEN.value:
        raise SaleError("posShiftClosed", ErrorKind.CONFLICT, {"shift_id": shift.id})

    current_shift = require_open_shift(org_id, sale.register_id)
    if current_shift.id != sale.shift_id or current_shift.register_id != sale.register_id:
        raise SaleError("posShiftMismatch", ErrorKind.CONFLICT, {"shift_id": current_shift.id})

    if not lines:
        raise SaleError("salesOrderEmpty", ErrorKind.BAD_REQUEST)

    normalized = normalize_payments(payments, error_cls=SaleError)
    assert_payments_match_total(normalized, sale.total_cents, error_cls=SaleError)

    for line in lines:
        apply_stock_movement(
            org_id=org_id,
            store_id=sale.store_id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            qty_delta=-line.qty,
            movement_type=StockMovementType.SALE,
            reference_type="Sale",
            reference_id=sale.id,
            note=sale.number,
            actor_id=actor_id,
        )

    record_payments(
        normalized,
        org_id=org_id,
        store_id=sale.store_id,
        shift_id=shift.id,
        actor_id=actor_id,
        sale_id=sale.id,
        is_refund=False,
    )

    sale.status = SaleStatus.COMPLETED.value
    sale.completed_at = utcnow()
    sale.completed_event_id = idempotency_key
    sale.updated_by = actor_id
    db.session.flush()

    write_audit_log(
        org_id=org_id,
        actor_id=actor_id,
        action="POS_SALE_COMPLETE",
        entity="Sale",
        entity_id=sale.id,
        before={"status": SaleStatus.DRAFT.value},
        after={"status": sale.status, "total_cents": sale.total_cents},
        request_id=request_id,
    )

    profile = get_compliance_profile(sale.store_id)
    if profile is not None and profile.fiscalization_enabled:
        pending["fiscal_draft"] = build_receipt_draft(sale, normalized, actor_id)
        pending["provider_key"] = profile.kkm_provider_key

    return _completion_result(sale, product_ids, already_completed=False)


def complete_sale(
    org_id: int,
    sale_id: int,
    payments: list[dict] | None,
    actor_id: int,
    idempotency_key: str,
    *,
    request_id: str | None = None,
) -> dict:
    """
    Complete a DRAFT sale: debit stock, record tenders, mark COMPLETED.

    Sum of tenders must equal the sale total exactly. A replay (same key, or
    a sale already COMPLETED) returns the stored outcome and runs no side
    effects.

    Returns:
        completion dict plus "replayed"
    """
    pending: dict = {}

    def _op():
        pending.clear()
        result, replayed = run_idempotent(
            org_id,
            idempotency_key,
            ROUTE_SALE_COMPLETE,
            actor_id,
            lambda: _complete_locked(org_id, sale_id, payments, actor_id, idempotency_key, request_id, pending),
        )
        db.session.commit()
        return result, replayed

    result, replayed = run_with_retry(_op)

    if replayed or result["already_completed"]:
        return {**result, "replayed": True}

    if pending.get("fiscal_draft") is not None:
        # The sale is already committed; fiscal bookkeeping errors must not undo that for the caller
        try:
            dispatch_fiscalization(result["sale_id"], pending["fiscal_draft"], pending.get("provider_key"))
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Fiscal dispatch failed for committed sale %s", result["sale_id"])

    publish_inventory_updated(result["store_id"], result["product_ids"])
    publish(SALE_COMPLETED, {
        "sale_id": result["sale_id"],
        "store_id": result["store_id"],
        "register_id": result["register_id"],
        "shift_id": result["shift_id"],
        "number": result["number"],
    })
    current_app.logger.info("pos sale completed: id=%s number=%s", result["sale_id"], result["number"])

    return {**result, "replayed": False}


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(org_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id).first()
    if sale is None:
        raise SaleError("posSaleNotFound", ErrorKind.NOT_FOUND, {"sale_id": sale_id})
    return sale


def sale_detail(sale: Sale) -> dict:
    """Sale with lines, tenders and the returns made against it."""
    data = sale.to_dict()
    data["lines"] = [line.to_dict() for line in sale.lines]
    data["payments"] = [
        payment.to_dict()
        for payment in db.session.query(Payment).filter_by(sale_id=sale.id, is_refund=False).order_by(Payment.id).all()
    ]
    data["returns"] = [
        {"id": r.id, "number": r.number, "status": r.status, "total_cents": r.total_cents}
        for r in db.session.query(SaleReturn).filter_by(original_sale_id=sale.id).order_by(SaleReturn.id).all()
    ]
    return data


def list_sales(
    org_id: int,
    *,
    store_id: int | None = None,
    register_id: int | None = None,
    statuses: list[str] | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> dict:
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or 25), 1), 200)

    query = db.session.query(Sale).filter(Sale.org_id == org_id)
    if store_id is not None:
        query = query.filter(Sale.store_id == store_id)
    if register_id is not None:
        query = query.filter(Sale.register_id == register_id)
    if statuses:
        parsed = [parse_enum(SaleStatus, status) for status in statuses]
        if any(status is None for status in parsed):
            raise SaleError("invalidStatus", ErrorKind.BAD_REQUEST, {"statuses": statuses})
        query = query.filter(Sale.status.in_([status.value for status in parsed]))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Sale.number.ilike(pattern),
            Sale.customer_name.ilike(pattern),
            Sale.customer_phone.ilike(pattern),
        ))

    total = query.count()
    sales = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    returned = {}
    if sales:
        rows = db.session.query(
            SaleReturn.original_sale_id, func.coalesce(func.sum(SaleReturn.total_cents), 0)
        ).filter(
            SaleReturn.original_sale_id.in_([sale.id for sale in sales]),
            SaleReturn.status == ReturnStatus.COMPLETED.value,
        ).group_by(SaleReturn.original_sale_id).all()
        returned = {sale_id: int(amount) for sale_id, amount in rows}

    items = []
    for sale in sales:
        data = sale.to_dict()
        data["returned_total_cents"] = returned.get(sale.id, 0)
        items.append(data)

    return {"items": items, "total": total, "page": page, "page_size": page_size}
