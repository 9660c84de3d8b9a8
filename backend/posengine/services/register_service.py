"""
Register and Shift Management Service

WHY: Track POS terminals, cashier shifts, and cash accountability.
Every sale and return happens inside an OPEN shift of an active register.

DESIGN PRINCIPLES:
- One OPEN shift per register, enforced by a partial unique index
- Shifts are immutable once closed
- Expected cash has exactly one formula (_expected_cash_cents), shared by
  the live X-report and the close operation
- Open, close and cash movements are idempotency-wrapped
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..events import publish, SHIFT_OPENED, SHIFT_CLOSED
from ..extensions import db
from ..models import Register, RegisterShift, CashDrawerMovement, Sale, SaleReturn, Payment, Store
from ..models.enums import (
    CashMovementType,
    PaymentMethod,
    ReturnStatus,
    SaleStatus,
    ShiftStatus,
    parse_enum,
)
from ..time_utils import utcnow
from .audit_service import write_audit_log
from .concurrency import lock_for_update, run_with_retry
from .errors import ErrorKind, RegisterError, ShiftError
from .idempotency_service import run_idempotent

ROUTE_SHIFT_OPEN = "pos.shifts.open"
ROUTE_SHIFT_CLOSE = "pos.shifts.close"
ROUTE_CASH_RECORD = "pos.cash.record"


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

def get_register(org_id: int, register_id: int) -> Register:
    register = db.session.query(Register).filter_by(id=register_id, org_id=org_id).first()
    if register is None:
        raise RegisterError("posRegisterNotFound", ErrorKind.NOT_FOUND, {"register_id": register_id})
    return register


def create_register(
    org_id: int,
    store_id: int,
    code: str,
    name: str,
    *,
    actor_id: int | None = None,
    request_id: str | None = None,
) -> Register:
    """
    Create a new POS register in a store of the organization.

    Raises:
        RegisterError: store not in org (NOT_FOUND), duplicate code (CONFLICT)
    """
    code = (code or "").strip()
    name = (name or "").strip()
    if not code or not name:
        raise RegisterError("posRegisterInvalid", ErrorKind.BAD_REQUEST, {"required": ["code", "name"]})

    def _op():
        store = db.session.get(Store, store_id)
        if store is None or store.org_id != org_id:
            raise RegisterError("storeNotFound", ErrorKind.NOT_FOUND, {"store_id": store_id})

        existing = db.session.query(Register).filter_by(store_id=store_id, code=code).first()
        if existing:
            raise RegisterError("posRegisterCodeExists", ErrorKind.CONFLICT, {"code": code})

        register = Register(org_id=org_id, store_id=store_id, code=code, name=name, is_active=True)
        db.session.add(register)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise RegisterError("posRegisterCodeExists", ErrorKind.CONFLICT, {"code": code})

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_REGISTER_CREATE",
            entity="Register",
            entity_id=register.id,
            before=None,
            after={"store_id": store_id, "code": code, "name": name, "is_active": True},
            request_id=request_id,
        )
        db.session.commit()
        return register

    return run_with_retry(_op)


def update_register(
    org_id: int,
    register_id: int,
    *,
    name: str | None = None,
    code: str | None = None,
    is_active: bool | None = None,
    actor_id: int | None = None,
    request_id: str | None = None,
) -> Register:
    def _op():
        register = get_register(org_id, register_id)
        before = {"code": register.code, "name": register.name, "is_active": register.is_active}

        if code is not None:
            new_code = code.strip()
            if not new_code:
                raise RegisterError("posRegisterInvalid", ErrorKind.BAD_REQUEST, {"required": ["code"]})
            if new_code != register.code:
                clash = db.session.query(Register).filter_by(store_id=register.store_id, code=new_code).first()
                if clash:
                    raise RegisterError("posRegisterCodeExists", ErrorKind.CONFLICT, {"code": new_code})
                register.code = new_code
        if name is not None:
            if not name.strip():
                raise RegisterError("posRegisterInvalid", ErrorKind.BAD_REQUEST, {"required": ["name"]})
            register.name = name.strip()
        if is_active is not None:
            register.is_active = bool(is_active)

        db.session.flush()
        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_REGISTER_UPDATE",
            entity="Register",
            entity_id=register.id,
            before=before,
            after={"code": register.code, "name": register.name, "is_active": register.is_active},
            request_id=request_id,
        )
        db.session.commit()
        return register

    return run_with_retry(_op)


def get_open_shift(register_id: int) -> RegisterShift | None:
    """Get the currently open shift for a register, if any."""
    return db.session.query(RegisterShift).filter_by(
        register_id=register_id,
        status=ShiftStatus.OPEN.value,
    ).first()


def list_registers(org_id: int, store_id: int | None = None, include_inactive: bool = True) -> list[dict]:
    """Registers of the organization, each with its open shift (or None)."""
    query = db.session.query(Register).filter_by(org_id=org_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)

    result = []
    for register in query.order_by(Register.store_id, Register.code).all():
        data = register.to_dict()
        open_shift = get_open_shift(register.id)
        data["open_shift"] = open_shift.to_dict() if open_shift else None
        result.append(data)
    return result


# =============================================================================
# SHIFT MANAGEMENT
# =============================================================================

def require_open_shift(org_id: int, register_id: int) -> RegisterShift:
    """
    Return the OPEN shift of an active register.

    Raises:
        ShiftError: posShiftNotOpen / posRegisterInactive (CONFLICT)
    """
    shift = db.session.query(RegisterShift).filter_by(
        org_id=org_id,
        register_id=register_id,
        status=ShiftStatus.OPEN.value,
    ).order_by(RegisterShift.opened_at.desc()).first()
    if shift is None:
        raise ShiftError("posShiftNotOpen", ErrorKind.CONFLICT, {"register_id": register_id})
    if not shift.register.is_active:
        raise ShiftError("posRegisterInactive", ErrorKind.CONFLICT, {"register_id": register_id})
    return shift


def get_current_shift(org_id: int, register_id: int) -> RegisterShift | None:
    register = get_register(org_id, register_id)
    return get_open_shift(register.id)


def get_shift(org_id: int, shift_id: int) -> RegisterShift:
    shift = db.session.query(RegisterShift).filter_by(id=shift_id, org_id=org_id).first()
    if shift is None:
        raise ShiftError("posShiftNotFound", ErrorKind.NOT_FOUND, {"shift_id": shift_id})
    return shift


def list_shifts(
    org_id: int,
    *,
    register_id: int | None = None,
    store_id: int | None = None,
    page: int = 1,
    page_size: int = 25,
) -> dict:
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or 25), 1), 200)

    query = db.session.query(RegisterShift).filter_by(org_id=org_id)
    if register_id is not None:
        query = query.filter_by(register_id=register_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)

    total = query.count()
    shifts = (
        query.order_by(RegisterShift.opened_at.desc(), RegisterShift.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [shift.to_dict() for shift in shifts],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def open_shift(
    org_id: int,
    register_id: int,
    opening_cash_cents: int,
    actor_id: int,
    idempotency_key: str,
    *,
    notes: str | None = None,
    request_id: str | None = None,
) -> tuple[dict, bool]:
    """
    Open a new shift on a register.

    Only one shift can be open per register at a time. A replay with the
    same idempotency key returns the original shift.

    Returns:
        (shift dict, replayed)

    Raises:
        ShiftError: register missing (NOT_FOUND), inactive or already open (CONFLICT)
    """
    if opening_cash_cents is None or opening_cash_cents < 0:
        raise ShiftError("invalidAmount", ErrorKind.BAD_REQUEST, {"field": "opening_cash"})

    def _open():
        register = db.session.query(Register).filter_by(id=register_id, org_id=org_id).first()
        if register is None:
            raise ShiftError("posRegisterNotFound", ErrorKind.NOT_FOUND, {"register_id": register_id})
        if not register.is_active:
            raise ShiftError("posRegisterInactive", ErrorKind.CONFLICT, {"register_id": register_id})

        existing_open = get_open_shift(register.id)
        if existing_open:
            raise ShiftError("posShiftAlreadyOpen", ErrorKind.CONFLICT, {"shift_id": existing_open.id})

        shift = RegisterShift(
            org_id=org_id,
            store_id=register.store_id,
            register_id=register.id,
            status=ShiftStatus.OPEN.value,
            opened_at=utcnow(),
            opened_by=actor_id,
            opening_cash_cents=opening_cash_cents,
            notes=notes,
        )
        db.session.add(shift)
        try:
            db.session.flush()
        except IntegrityError:
            # Partial unique index: another open won the race
            db.session.rollback()
            raise ShiftError("posShiftAlreadyOpen", ErrorKind.CONFLICT, {"register_id": register_id})

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SHIFT_OPEN",
            entity="RegisterShift",
            entity_id=shift.id,
            before=None,
            after=shift.to_dict(),
            request_id=request_id,
        )
        return shift.to_dict()

    def _op():
        result, replayed = run_idempotent(org_id, idempotency_key, ROUTE_SHIFT_OPEN, actor_id, _open)
        db.session.commit()
        return result, replayed

    result, replayed = run_with_retry(_op)

    if not replayed:
        publish(SHIFT_OPENED, {
            "shift_id": result["id"],
            "register_id": result["register_id"],
            "store_id": result["store_id"],
        })
    return result, replayed


def _expected_cash_cents(opening: int, pay_in: int, pay_out: int, cash_sales: int, cash_refunds: int) -> int:
    """The single reconciliation formula for a drawer."""
    return opening + pay_in - pay_out + cash_sales - cash_refunds


def _build_shift_report(shift: RegisterShift) -> dict:
    sales_count, sales_total = db.session.query(
        func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0)
    ).filter(
        Sale.org_id == shift.org_id,
        Sale.shift_id == shift.id,
        Sale.status == SaleStatus.COMPLETED.value,
    ).one()

    returns_count, returns_total = db.session.query(
        func.count(SaleReturn.id), func.coalesce(func.sum(SaleReturn.total_cents), 0)
    ).filter(
        SaleReturn.org_id == shift.org_id,
        SaleReturn.shift_id == shift.id,
        SaleReturn.status == ReturnStatus.COMPLETED.value,
    ).one()

    payment_rows = db.session.query(
        Payment.method, Payment.is_refund, func.coalesce(func.sum(Payment.amount_cents), 0)
    ).filter(
        Payment.org_id == shift.org_id,
        Payment.shift_id == shift.id,
    ).group_by(Payment.method, Payment.is_refund).all()

    payments_by_method = {
        method.value: {"sales_cents": 0, "refunds_cents": 0, "net_cents": 0}
        for method in PaymentMethod
    }
    for method, is_refund, amount in payment_rows:
        bucket = payments_by_method.setdefault(method, {"sales_cents": 0, "refunds_cents": 0, "net_cents": 0})
        if is_refund:
            bucket["refunds_cents"] += int(amount)
        else:
            bucket["sales_cents"] += int(amount)
        bucket["net_cents"] = bucket["sales_cents"] - bucket["refunds_cents"]

    cash_rows = db.session.query(
        CashDrawerMovement.movement_type, func.coalesce(func.sum(CashDrawerMovement.amount_cents), 0)
    ).filter(
        CashDrawerMovement.org_id == shift.org_id,
        CashDrawerMovement.shift_id == shift.id,
    ).group_by(CashDrawerMovement.movement_type).all()
    cash_totals = {movement_type: int(amount) for movement_type, amount in cash_rows}
    pay_in = cash_totals.get(CashMovementType.PAY_IN.value, 0)
    pay_out = cash_totals.get(CashMovementType.PAY_OUT.value, 0)

    cash = payments_by_method[PaymentMethod.CASH.value]
    expected_cash = _expected_cash_cents(
        shift.opening_cash_cents,
        pay_in,
        pay_out,
        cash["sales_cents"],
        cash["refunds_cents"],
    )

    shift_data = shift.to_dict()
    if shift.expected_cash_cents is None:
        shift_data["expected_cash_cents"] = expected_cash

    return {
        "shift": shift_data,
        "summary": {
            "sales_count": int(sales_count),
            "sales_total_cents": int(sales_total),
            "returns_count": int(returns_count),
            "returns_total_cents": int(returns_total),
            "pay_in_cents": pay_in,
            "pay_out_cents": pay_out,
            "expected_cash_cents": expected_cash,
        },
        "payments_by_method": payments_by_method,
    }


def get_shift_report(org_id: int, shift_id: int) -> dict:
    """
    X-report: live totals for a shift.

    expected cash = opening + pay-ins - pay-outs + cash sales - cash refunds
    """
    return _build_shift_report(get_shift(org_id, shift_id))


def close_shift(
    org_id: int,
    shift_id: int,
    closing_cash_counted_cents: int,
    actor_id: int,
    idempotency_key: str,
    *,
    notes: str | None = None,
    request_id: str | None = None,
) -> tuple[dict, bool]:
    """
    Close a shift and freeze its cash reconciliation.

    IMMUTABLE: closing an already CLOSED shift returns its stored snapshot
    without changing anything, independent of the idempotency key.

    Returns:
        (shift dict, replayed)
    """
    if closing_cash_counted_cents is None or closing_cash_counted_cents < 0:
        raise ShiftError("invalidAmount", ErrorKind.BAD_REQUEST, {"field": "closing_cash_counted"})

    transitioned = {}

    def _close():
        shift = lock_for_update(
            db.session.query(RegisterShift).filter_by(id=shift_id, org_id=org_id)
        ).first()
        if shift is None:
            raise ShiftError("posShiftNotFound", ErrorKind.NOT_FOUND, {"shift_id": shift_id})

        if shift.status == ShiftStatus.CLOSED.value:
            return shift.to_dict()

        report = _build_shift_report(shift)
        expected = report["summary"]["expected_cash_cents"]
        before = {"status": shift.status}

        shift.status = ShiftStatus.CLOSED.value
        shift.closed_at = utcnow()
        shift.closed_by = actor_id
        shift.closing_cash_counted_cents = closing_cash_counted_cents
        shift.expected_cash_cents = expected
        shift.discrepancy_cents = closing_cash_counted_cents - expected
        if notes is not None:
            shift.notes = notes
        db.session.flush()

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_SHIFT_CLOSE",
            entity="RegisterShift",
            entity_id=shift.id,
            before=before,
            after=shift.to_dict(),
            request_id=request_id,
        )
        transitioned["shift_id"] = shift.id
        return shift.to_dict()

    def _op():
        transitioned.clear()
        result, replayed = run_idempotent(org_id, idempotency_key, ROUTE_SHIFT_CLOSE, actor_id, _close)
        db.session.commit()
        return result, replayed

    result, replayed = run_with_retry(_op)

    if transitioned:
        publish(SHIFT_CLOSED, {
            "shift_id": result["id"],
            "register_id": result["register_id"],
            "store_id": result["store_id"],
            "discrepancy_cents": result["discrepancy_cents"],
        })
    return result, replayed


# =============================================================================
# CASH DRAWER MOVEMENTS
# =============================================================================

def record_cash_movement(
    org_id: int,
    shift_id: int,
    movement_type: str,
    amount_cents: int,
    reason: str,
    actor_id: int,
    idempotency_key: str,
    *,
    request_id: str | None = None,
) -> tuple[dict, bool]:
    """
    Record a PAY_IN or PAY_OUT against an OPEN shift.

    Returns:
        (movement dict, replayed)
    """
    kind = parse_enum(CashMovementType, movement_type)
    if kind is None:
        raise ShiftError("invalidCashMovementType", ErrorKind.BAD_REQUEST, {"type": movement_type})
    if amount_cents is None or amount_cents <= 0:
        raise ShiftError("invalidAmount", ErrorKind.BAD_REQUEST, {"field": "amount"})
    reason = (reason or "").strip()
    if not reason:
        raise ShiftError("cashMovementReasonRequired", ErrorKind.BAD_REQUEST)

    def _record():
        # Serializes against close_shift so no movement lands after the snapshot
        shift = lock_for_update(
            db.session.query(RegisterShift).filter_by(id=shift_id, org_id=org_id)
        ).first()
        if shift is None:
            raise ShiftError("posShiftNotFound", ErrorKind.NOT_FOUND, {"shift_id": shift_id})
        if shift.status != ShiftStatus.OPEN.value:
            raise ShiftError("posShiftClosed", ErrorKind.CONFLICT, {"shift_id": shift_id})

        movement = CashDrawerMovement(
            org_id=org_id,
            store_id=shift.store_id,
            shift_id=shift.id,
            movement_type=kind.value,
            amount_cents=amount_cents,
            reason=reason,
            created_by=actor_id,
            created_at=utcnow(),
        )
        db.session.add(movement)
        db.session.flush()

        write_audit_log(
            org_id=org_id,
            actor_id=actor_id,
            action="POS_CASH_DRAWER_MOVEMENT",
            entity="CashDrawerMovement",
            entity_id=movement.id,
            before=None,
            after=movement.to_dict(),
            request_id=request_id,
        )
        return movement.to_dict()

    def _op():
        result, replayed = run_idempotent(org_id, idempotency_key, ROUTE_CASH_RECORD, actor_id, _record)
        db.session.commit()
        return result, replayed

    return run_with_retry(_op)
