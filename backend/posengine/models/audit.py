from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only before/after record of every state-changing POS operation.

    Written in the same transaction as the change it describes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. POS_SALE_COMPLETE
    entity = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "request_id": self.request_id,
            "created_at": to_utc_z(self.created_at),
        }


class IdempotencyRecord(db.Model):
    """
    Stored outcome of a keyed mutation.

    UNIQUE (org_id, key, route): the insert that claims a key is what serializes
    concurrent first attempts. result holds the JSON the operation returned.
    """
    __tablename__ = "idempotency_records"
    __table_args__ = (
        db.UniqueConstraint("org_id", "key", "route", name="uq_idempotency_org_key_route"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    key = db.Column(db.String(128), nullable=False)
    route = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    result = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
