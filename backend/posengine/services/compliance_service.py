# Overview: Service-layer access to per-store fiscal compliance profiles.

from __future__ import annotations

from ..extensions import db
from ..models import Store, StoreComplianceProfile
from ..models.enums import KkmMode, parse_enum
from .errors import ErrorKind, FiscalError


def get_compliance_profile(store_id: int) -> StoreComplianceProfile | None:
    return db.session.query(StoreComplianceProfile).filter_by(store_id=store_id).first()


def upsert_compliance_profile(
    org_id: int,
    store_id: int,
    *,
    enable_kkm: bool,
    kkm_mode: str,
    kkm_provider_key: str | None = None,
) -> StoreComplianceProfile:
    store = db.session.get(Store, store_id)
    if store is None or store.org_id != org_id:
        raise FiscalError("storeNotFound", ErrorKind.NOT_FOUND, {"store_id": store_id})

    mode = parse_enum(KkmMode, kkm_mode)
    if mode is None:
        raise FiscalError("invalidKkmMode", ErrorKind.BAD_REQUEST, {"kkm_mode": kkm_mode})

    profile = get_compliance_profile(store_id)
    if profile is None:
        profile = StoreComplianceProfile(org_id=org_id, store_id=store_id)
        db.session.add(profile)

    profile.enable_kkm = bool(enable_kkm)
    profile.kkm_mode = mode.value
    profile.kkm_provider_key = (kkm_provider_key or "").strip() or None

    db.session.commit()
    return profile
