# Overview: Flask API routes for POS sales; parses input and returns JSON responses.

"""POS sales API routes: drafts, lines, completion, cancel, fiscal retry."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context, require_idempotency_key
from ..services import sales_service, fiscal_service
from ..services.errors import PosError
from .helpers import BadRequest, bad_request, error_response, json_body, require_int, optional_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/pos/sales")


@sales_bp.post("/drafts")
@require_tenant_context
def create_draft_route():
    """
    Create (or reuse) the caller's draft sale on a register.

    Request body:
    {
        "register_id": 1,
        "customer_name": "...", "customer_phone": "...", "notes": "...",   (optional)
        "lines": [{"product_id": 5, "variant_id": null, "qty": 2}]          (optional)
    }
    """
    try:
        data = json_body()
        lines = data.get("lines") or []
        if not isinstance(lines, list) or not all(isinstance(line, dict) for line in lines):
            return bad_request("lines must be a list of objects")

        sale = sales_service.create_draft(
            g.org_id,
            require_int(data, "register_id"),
            g.actor_id,
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            notes=data.get("notes"),
            lines=lines,
            request_id=g.request_id,
        )
        return jsonify({"sale": sales_service.sale_detail(sale)}), 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale draft")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_tenant_context
def list_sales_route():
    try:
        statuses = [s for s in (request.args.get("status") or "").split(",") if s.strip()]
        result = sales_service.list_sales(
            g.org_id,
            store_id=request.args.get("store_id", type=int),
            register_id=request.args.get("register_id", type=int),
            statuses=statuses or None,
            search=request.args.get("search"),
            page=request.args.get("page", 1, type=int),
            page_size=request.args.get("page_size", 25, type=int),
        )
        return jsonify(result), 200
    except PosError as e:
        return error_response(e)


@sales_bp.get("/<int:sale_id>")
@require_tenant_context
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.org_id, sale_id)
        return jsonify({"sale": sales_service.sale_detail(sale)}), 200
    except PosError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/lines")
@require_tenant_context
def add_line_route(sale_id: int):
    """
    Add line to a draft sale.

    Request body: {"product_id": 5, "variant_id": null, "qty": 2}
    """
    try:
        data = json_body()
        line = sales_service.add_line(
            g.org_id,
            sale_id,
            require_int(data, "product_id"),
            data.get("qty"),
            g.actor_id,
            variant_id=optional_int(data, "variant_id"),
            request_id=g.request_id,
        )
        return jsonify({"line": line.to_dict()}), 201

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add sale line")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/lines/<int:line_id>")
@require_tenant_context
def update_line_route(line_id: int):
    try:
        data = json_body()
        line = sales_service.update_line_qty(
            g.org_id, line_id, data.get("qty"), g.actor_id, request_id=g.request_id
        )
        return jsonify({"line": line.to_dict()}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale line")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/lines/<int:line_id>")
@require_tenant_context
def remove_line_route(line_id: int):
    try:
        sale_id = sales_service.remove_line(g.org_id, line_id, g.actor_id, request_id=g.request_id)
        return jsonify({"sale_id": sale_id}), 200

    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove sale line")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/complete")
@require_tenant_context
@require_idempotency_key
def complete_sale_route(sale_id: int):
    """
    Complete a draft sale.

    Request body:
    {
        "payments": [
            {"method": "CASH", "amount": "200.00"},
            {"method": "CARD", "amount_cents": 10000, "provider_ref": "auth-123"}
        ]
    }
    """
    try:
        data = json_body()
        payments = data.get("payments")
        if not isinstance(payments, list):
            return bad_request("payments must be a list")

        result = sales_service.complete_sale(
            g.org_id, sale_id, payments, g.actor_id, g.idempotency_key, request_id=g.request_id
        )
        return jsonify({"sale": result}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_tenant_context
def cancel_sale_route(sale_id: int):
    try:
        sale = sales_service.cancel_sale(g.org_id, sale_id, g.actor_id, request_id=g.request_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/fiscal/retry")
@require_tenant_context
def retry_fiscal_route(sale_id: int):
    try:
        result = fiscal_service.retry_fiscalization(g.org_id, sale_id, g.actor_id, request_id=g.request_id)
        return jsonify(result), 200

    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to retry fiscalization")
        return jsonify({"error": "Internal server error"}), 500
