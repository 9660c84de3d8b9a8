# Overview: Shared request parsing and error mapping for POS API routes.

from flask import jsonify, request

from ..extensions import db
from ..money import amount_cents_from
from ..services.errors import PosError


class BadRequest(ValueError):
    """Malformed request payload."""


def error_response(exc: PosError):
    db.session.rollback()
    return jsonify(exc.to_dict()), exc.status_code


def bad_request(message: str):
    return jsonify({"error": message, "kind": "BAD_REQUEST"}), 400


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("JSON object body required")
    return data


def require_int(data: dict, field: str) -> int:
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequest(f"{field} must be an integer")
    return value


def optional_int(data: dict, field: str) -> int | None:
    if data.get(field) is None:
        return None
    return require_int(data, field)


def require_amount_cents(data: dict, field: str) -> int:
    """Amount as "<field>_cents" (int) or "<field>" (major units)."""
    try:
        cents = amount_cents_from(data, field)
    except ValueError as e:
        raise BadRequest(str(e))
    if cents is None:
        raise BadRequest(f"{field} or {field}_cents required")
    return cents
