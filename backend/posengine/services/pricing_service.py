"""
Pricing & costing resolver.

Price: store override > product base price > 0.
Cost: direct variant cost > BASE cost; bundles sum component cost x qty.

Unknown cost is None, never 0. A bundle with any component lacking a cost
is itself of unknown cost, so margins are never silently overstated.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Product, ProductVariant, StorePrice, ProductCost, ProductBundleComponent
from ..models.enums import BASE_VARIANT_KEY
from .errors import ErrorKind, PricingError


@dataclass(frozen=True)
class PriceResolution:
    variant_key: str
    unit_price_cents: int
    is_bundle: bool


def variant_key_for(variant_id: int | None) -> str:
    return str(variant_id) if variant_id is not None else BASE_VARIANT_KEY


def resolve_unit_price(org_id: int, store_id: int, product_id: int, variant_id: int | None = None) -> PriceResolution:
    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise PricingError("productNotFound", ErrorKind.NOT_FOUND, {"product_id": product_id})
    if product.org_id != org_id:
        raise PricingError("productOrgMismatch", ErrorKind.FORBIDDEN, {"product_id": product_id})

    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id or not variant.is_active:
            raise PricingError("variantNotFound", ErrorKind.NOT_FOUND, {"variant_id": variant_id})

    variant_key = variant_key_for(variant_id)
    override = db.session.query(StorePrice).filter_by(
        org_id=org_id,
        store_id=store_id,
        product_id=product.id,
        variant_key=variant_key,
    ).first()

    if override is not None and override.price_cents is not None:
        unit_price = override.price_cents
    elif product.base_price_cents is not None:
        unit_price = product.base_price_cents
    else:
        unit_price = 0

    return PriceResolution(variant_key=variant_key, unit_price_cents=int(unit_price), is_bundle=bool(product.is_bundle))


def _direct_cost(org_id: int, product_id: int, variant_id: int | None) -> int | None:
    variant_key = variant_key_for(variant_id)
    row = db.session.query(ProductCost).filter_by(
        org_id=org_id, product_id=product_id, variant_key=variant_key
    ).first()
    if row is not None and row.avg_cost_cents is not None:
        return row.avg_cost_cents

    if variant_key != BASE_VARIANT_KEY:
        base_row = db.session.query(ProductCost).filter_by(
            org_id=org_id, product_id=product_id, variant_key=BASE_VARIANT_KEY
        ).first()
        if base_row is not None and base_row.avg_cost_cents is not None:
            return base_row.avg_cost_cents

    return None


def resolve_unit_cost(org_id: int, product_id: int, variant_id: int | None = None, is_bundle: bool = False) -> int | None:
    if not is_bundle:
        return _direct_cost(org_id, product_id, variant_id)

    components = db.session.query(ProductBundleComponent).filter_by(
        org_id=org_id, bundle_product_id=product_id
    ).order_by(ProductBundleComponent.id).all()
    if not components:
        return None

    # Components are simple products; nested bundles are not expanded.
    total = 0
    for component in components:
        cost = _direct_cost(org_id, component.component_product_id, component.component_variant_id)
        if cost is None:
            return None
        total += cost * component.qty
    return total


def line_cost_total(unit_cost_cents: int | None, qty: int) -> int | None:
    if unit_cost_cents is None:
        return None
    return unit_cost_cents * qty
