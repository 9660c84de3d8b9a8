# Overview: Flask API routes for POS returns; parses input and returns JSON responses.

"""
Returns API Routes

Returns are drafted against one completed sale, filled with lines that
point at the original sale lines, and completed with refund tenders.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context, require_idempotency_key
from ..services import return_service
from ..services.errors import PosError
from .helpers import BadRequest, bad_request, error_response, json_body, require_int


returns_bp = Blueprint("returns", __name__, url_prefix="/api/pos/returns")


@returns_bp.post("/drafts")
@require_tenant_context
def create_return_route():
    """
    Request body: {"shift_id": 3, "original_sale_id": 10, "notes": "..."}
    """
    try:
        data = json_body()
        sale_return = return_service.create_return_draft(
            g.org_id,
            require_int(data, "shift_id"),
            require_int(data, "original_sale_id"),
            g.actor_id,
            notes=data.get("notes"),
            request_id=g.request_id,
        )
        return jsonify({"return": return_service.return_detail(sale_return)}), 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
@require_tenant_context
def list_returns_route():
    returns = return_service.list_returns(
        g.org_id,
        shift_id=request.args.get("shift_id", type=int),
        register_id=request.args.get("register_id", type=int),
        original_sale_id=request.args.get("original_sale_id", type=int),
    )
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200


@returns_bp.get("/<int:return_id>")
@require_tenant_context
def get_return_route(return_id: int):
    try:
        sale_return = return_service.get_return(g.org_id, return_id)
        return jsonify({"return": return_service.return_detail(sale_return)}), 200
    except PosError as e:
        return error_response(e)


@returns_bp.post("/<int:return_id>/lines")
@require_tenant_context
def add_return_line_route(return_id: int):
    """
    Request body: {"sale_line_id": 42, "qty": 1}
    """
    try:
        data = json_body()
        line = return_service.add_return_line(
            g.org_id,
            return_id,
            require_int(data, "sale_line_id"),
            data.get("qty"),
            g.actor_id,
            request_id=g.request_id,
        )
        return jsonify({"line": line.to_dict()}), 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add return line")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.patch("/lines/<int:line_id>")
@require_tenant_context
def update_return_line_route(line_id: int):
    try:
        data = json_body()
        line = return_service.update_return_line(
            g.org_id, line_id, data.get("qty"), g.actor_id, request_id=g.request_id
        )
        return jsonify({"line": line.to_dict()}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update return line")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.delete("/lines/<int:line_id>")
@require_tenant_context
def remove_return_line_route(line_id: int):
    try:
        return_id = return_service.remove_return_line(g.org_id, line_id, g.actor_id, request_id=g.request_id)
        return jsonify({"return_id": return_id}), 200

    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove return line")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/complete")
@require_tenant_context
@require_idempotency_key
def complete_return_route(return_id: int):
    """
    Request body: {"payments": [{"method": "CASH", "amount": "150.00"}]}
    """
    try:
        data = json_body()
        payments = data.get("payments")
        if not isinstance(payments, list):
            return bad_request("payments must be a list")

        result = return_service.complete_return(
            g.org_id, return_id, payments, g.actor_id, g.idempotency_key, request_id=g.request_id
        )
        return jsonify({"return": result}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/cancel")
@require_tenant_context
def cancel_return_route(return_id: int):
    try:
        sale_return = return_service.cancel_return(g.org_id, return_id, g.actor_id, request_id=g.request_id)
        return jsonify({"return": sale_return.to_dict()}), 200

    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel return")
        return jsonify({"error": "Internal server error"}), 500
