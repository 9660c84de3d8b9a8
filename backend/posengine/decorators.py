# Overview: Request decorators for POS API routes (tenant context, idempotency keys).

import uuid
from functools import wraps

from flask import request, jsonify, g


def _int_header(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_tenant_context(f):
    """
    Establish tenant context from upstream-resolved headers.

    Authentication happens before the engine; the gateway forwards:
    - X-Org-Id (required): organization (tenant) id
    - X-Actor-Id (required): acting user id
    - X-Request-Id (optional): correlation id, generated when absent

    Sets g.org_id, g.actor_id, g.request_id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        org_id = _int_header("X-Org-Id")
        actor_id = _int_header("X-Actor-Id")
        if org_id is None or actor_id is None:
            return jsonify({"error": "tenantContextRequired", "kind": "BAD_REQUEST"}), 400

        g.org_id = org_id
        g.actor_id = actor_id
        g.request_id = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        return f(*args, **kwargs)

    return decorated_function


def require_idempotency_key(f):
    """
    Require an idempotency key for money-moving routes.

    Read from the Idempotency-Key header, falling back to
    "idempotency_key" in the JSON body. Sets g.idempotency_key.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        key = request.headers.get("Idempotency-Key")
        if not key:
            body = request.get_json(silent=True) or {}
            key = body.get("idempotency_key")
        key = (str(key).strip() if key is not None else "")
        if not key:
            return jsonify({"error": "idempotencyKeyRequired", "kind": "BAD_REQUEST"}), 400

        g.idempotency_key = key
        return f(*args, **kwargs)

    return decorated_function
