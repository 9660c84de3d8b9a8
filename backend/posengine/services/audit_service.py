# Overview: Service-layer writer for the append-only POS audit log.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLog


def write_audit_log(
    *,
    org_id: int,
    actor_id: int | None,
    action: str,
    entity: str,
    entity_id: int | None,
    before: dict | None = None,
    after: dict | None = None,
    request_id: str | None = None,
) -> AuditLog:
    """
    Append an audit entry in the caller's transaction.

    Flushes but does not commit: the entry lives or dies with the change it
    records.
    """
    entry = AuditLog(
        org_id=org_id,
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        before=before,
        after=after,
        request_id=request_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
