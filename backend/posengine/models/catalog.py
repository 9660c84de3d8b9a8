from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import BASE_VARIANT_KEY


class Product(db.Model):
    """
    Sellable catalog item.

    Bundles (is_bundle=True) are priced as a unit but costed from their
    components (see ProductBundleComponent). Deleted products stay in the
    table (is_deleted) so historical lines keep resolving.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Price in cents (store overrides live in StorePrice)
    base_price_cents = db.Column(db.Integer, nullable=True)

    is_bundle = db.Column(db.Boolean, nullable=False, default=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "base_price_cents": self.base_price_cents,
            "is_bundle": self.is_bundle,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    @property
    def variant_key(self) -> str:
        return str(self.id)


class StorePrice(db.Model):
    """Store-specific price override keyed by (org, store, product, variant_key)."""
    __tablename__ = "store_prices"
    __table_args__ = (
        db.UniqueConstraint("org_id", "store_id", "product_id", "variant_key", name="uq_store_prices_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_key = db.Column(db.String(64), nullable=False, default=BASE_VARIANT_KEY)
    price_cents = db.Column(db.Integer, nullable=True)


class ProductCost(db.Model):
    """
    Average unit cost per (org, product, variant_key).

    NULL avg_cost_cents means "cost unknown", which is not the same as 0.
    """
    __tablename__ = "product_costs"
    __table_args__ = (
        db.UniqueConstraint("org_id", "product_id", "variant_key", name="uq_product_costs_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_key = db.Column(db.String(64), nullable=False, default=BASE_VARIANT_KEY)
    avg_cost_cents = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class ProductBundleComponent(db.Model):
    """One component of a bundle product. Bundles are one level deep."""
    __tablename__ = "product_bundle_components"
    __table_args__ = (
        db.UniqueConstraint(
            "bundle_product_id", "component_product_id", "component_variant_id",
            name="uq_bundle_components_component",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    bundle_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    component_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    qty = db.Column(db.Integer, nullable=False, default=1)
