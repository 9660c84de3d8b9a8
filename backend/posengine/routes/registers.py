# Overview: Flask API routes for POS registers; parses input and returns JSON responses.

"""
Register Management API Routes

DESIGN:
- Register CRUD scoped to the caller's organization
- Each register is returned with its currently open shift (if any)
- Active draft lookup for the calling cashier
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..services import register_service, sales_service
from ..services.errors import PosError
from .helpers import BadRequest, bad_request, error_response, json_body, require_int


registers_bp = Blueprint("registers", __name__, url_prefix="/api/pos/registers")


@registers_bp.post("")
@require_tenant_context
def create_register_route():
    """
    Create a new POS register.

    Request body:
    {
        "store_id": 1,
        "code": "REG-01",
        "name": "Front Counter 1"
    }
    """
    try:
        data = json_body()
        register = register_service.create_register(
            g.org_id,
            require_int(data, "store_id"),
            data.get("code"),
            data.get("name"),
            actor_id=g.actor_id,
            request_id=g.request_id,
        )
        return jsonify({"register": register.to_dict()}), 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("")
@require_tenant_context
def list_registers_route():
    store_id = request.args.get("store_id", type=int)
    include_inactive = request.args.get("include_inactive", "true").lower() != "false"
    registers = register_service.list_registers(g.org_id, store_id=store_id, include_inactive=include_inactive)
    return jsonify({"registers": registers}), 200


@registers_bp.get("/<int:register_id>")
@require_tenant_context
def get_register_route(register_id: int):
    try:
        register = register_service.get_register(g.org_id, register_id)
        result = register.to_dict()
        current_shift = register_service.get_open_shift(register.id)
        result["open_shift"] = current_shift.to_dict() if current_shift else None
        return jsonify(result), 200
    except PosError as e:
        return error_response(e)


@registers_bp.patch("/<int:register_id>")
@require_tenant_context
def update_register_route(register_id: int):
    """
    Update register details.

    Request body (all optional): {"code": "...", "name": "...", "is_active": false}
    """
    try:
        data = json_body()
        is_active = data.get("is_active")
        if is_active is not None and not isinstance(is_active, bool):
            return bad_request("is_active must be a boolean")

        register = register_service.update_register(
            g.org_id,
            register_id,
            name=data.get("name"),
            code=data.get("code"),
            is_active=is_active,
            actor_id=g.actor_id,
            request_id=g.request_id,
        )
        return jsonify({"register": register.to_dict()}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>/current-shift")
@require_tenant_context
def current_shift_route(register_id: int):
    try:
        shift = register_service.get_current_shift(g.org_id, register_id)
        return jsonify({"shift": shift.to_dict() if shift else None}), 200
    except PosError as e:
        return error_response(e)


@registers_bp.get("/<int:register_id>/active-draft")
@require_tenant_context
def active_draft_route(register_id: int):
    """The calling cashier's DRAFT sale in this register's open shift, if any."""
    try:
        register_service.get_register(g.org_id, register_id)
        sale = sales_service.get_active_draft(g.org_id, register_id, g.actor_id)
        return jsonify({"sale": sales_service.sale_detail(sale) if sale else None}), 200
    except PosError as e:
        return error_response(e)
