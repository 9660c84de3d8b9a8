# Overview: Flask API routes for register shifts and cash drawer movements.

"""
Shift API Routes

DESIGN:
- Shift lifecycle: open -> close (immutable once closed)
- Open, close and cash movements require an Idempotency-Key
- X-report is available for open and closed shifts
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context, require_idempotency_key
from ..services import register_service
from ..services.errors import PosError
from .helpers import BadRequest, bad_request, error_response, json_body, require_int, require_amount_cents


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/pos/shifts")


@shifts_bp.post("/open")
@require_tenant_context
@require_idempotency_key
def open_shift_route():
    """
    Open a shift on a register.

    Request body:
    {
        "register_id": 1,
        "opening_cash": "1000.00",      (or "opening_cash_cents": 100000)
        "notes": "Morning shift"        (optional)
    }
    """
    try:
        data = json_body()
        shift, replayed = register_service.open_shift(
            g.org_id,
            require_int(data, "register_id"),
            require_amount_cents(data, "opening_cash"),
            g.actor_id,
            g.idempotency_key,
            notes=data.get("notes"),
            request_id=g.request_id,
        )
        return jsonify({"shift": shift, "replayed": replayed}), 200 if replayed else 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_tenant_context
@require_idempotency_key
def close_shift_route(shift_id: int):
    """
    Close a shift with the counted drawer cash.

    Request body:
    {
        "closing_cash_counted": "640.00",   (or "closing_cash_counted_cents")
        "notes": "..."                      (optional)
    }
    """
    try:
        data = json_body()
        shift, replayed = register_service.close_shift(
            g.org_id,
            shift_id,
            require_amount_cents(data, "closing_cash_counted"),
            g.actor_id,
            g.idempotency_key,
            notes=data.get("notes"),
            request_id=g.request_id,
        )
        return jsonify({"shift": shift, "replayed": replayed}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/<int:shift_id>/report")
@require_tenant_context
def shift_report_route(shift_id: int):
    try:
        return jsonify(register_service.get_shift_report(g.org_id, shift_id)), 200
    except PosError as e:
        return error_response(e)


@shifts_bp.get("")
@require_tenant_context
def list_shifts_route():
    result = register_service.list_shifts(
        g.org_id,
        register_id=request.args.get("register_id", type=int),
        store_id=request.args.get("store_id", type=int),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 25, type=int),
    )
    return jsonify(result), 200


@shifts_bp.post("/<int:shift_id>/cash-movements")
@require_tenant_context
@require_idempotency_key
def record_cash_movement_route(shift_id: int):
    """
    Record a pay-in or pay-out.

    Request body:
    {
        "type": "PAY_OUT",
        "amount": "50.00",          (or "amount_cents": 5000)
        "reason": "Supplier COD"
    }
    """
    try:
        data = json_body()
        movement, replayed = register_service.record_cash_movement(
            g.org_id,
            shift_id,
            data.get("type"),
            require_amount_cents(data, "amount"),
            data.get("reason"),
            g.actor_id,
            g.idempotency_key,
            request_id=g.request_id,
        )
        return jsonify({"movement": movement, "replayed": replayed}), 200 if replayed else 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500
