from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import KkmMode


class Organization(db.Model):
    """
    Multi-tenant root: Every tenant is an Organization.

    WHY: Enables shared-database multi-tenancy with strict isolation.
    Registers, shifts, sales and returns all carry org_id and every
    service query is scoped by it.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Store(db.Model):
    """
    Store within an organization.

    MULTI-TENANT: Store codes are unique within an organization, not globally.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_stores_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("stores", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class OrganizationCounter(db.Model):
    """
    Per-organization document number counters.

    WHY: Sale and return numbers must be unique and gap-free per tenant
    across processes. The row is only ever touched through a single
    INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement
    (see services/sequence_service.py), never read-then-write.
    """
    __tablename__ = "organization_counters"

    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), primary_key=True)
    sales_order_number = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    pos_sale_number = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    pos_return_number = db.Column(db.Integer, nullable=False, default=0, server_default="0")


class StoreComplianceProfile(db.Model):
    """
    Per-store fiscal settings.

    Fiscalization is attempted only when enable_kkm is set and kkm_mode is
    ADAPTER; kkm_provider_key selects the adapter.
    """
    __tablename__ = "store_compliance_profiles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, unique=True)

    enable_kkm = db.Column(db.Boolean, nullable=False, default=False)
    kkm_mode = db.Column(db.String(16), nullable=False, default=KkmMode.OFF.value)  # OFF, EXPORT_ONLY, ADAPTER, CONNECTOR
    kkm_provider_key = db.Column(db.String(64), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("compliance_profile", uselist=False, lazy=True))

    @property
    def fiscalization_enabled(self) -> bool:
        return bool(self.enable_kkm) and self.kkm_mode == KkmMode.ADAPTER.value

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "enable_kkm": self.enable_kkm,
            "kkm_mode": self.kkm_mode,
            "kkm_provider_key": self.kkm_provider_key,
            "updated_at": to_utc_z(self.updated_at),
        }
