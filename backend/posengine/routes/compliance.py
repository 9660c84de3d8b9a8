# Overview: Flask API routes for per-store fiscal compliance profiles.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..services import compliance_service
from ..services.errors import PosError
from .helpers import BadRequest, bad_request, error_response, json_body


compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/pos/stores")


@compliance_bp.get("/<int:store_id>/compliance")
@require_tenant_context
def get_compliance_route(store_id: int):
    profile = compliance_service.get_compliance_profile(store_id)
    if profile is None or profile.org_id != g.org_id:
        return jsonify({"profile": None}), 200
    return jsonify({"profile": profile.to_dict()}), 200


@compliance_bp.put("/<int:store_id>/compliance")
@require_tenant_context
def upsert_compliance_route(store_id: int):
    """
    Request body: {"enable_kkm": true, "kkm_mode": "ADAPTER", "kkm_provider_key": "acme"}
    """
    try:
        data = json_body()
        profile = compliance_service.upsert_compliance_profile(
            g.org_id,
            store_id,
            enable_kkm=bool(data.get("enable_kkm")),
            kkm_mode=data.get("kkm_mode") or "OFF",
            kkm_provider_key=data.get("kkm_provider_key"),
        )
        return jsonify({"profile": profile.to_dict()}), 200

    except BadRequest as e:
        return bad_request(str(e))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update compliance profile")
        return jsonify({"error": "Internal server error"}), 500
