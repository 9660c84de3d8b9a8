# Overview: Fiscal receipt hand-off: adapter registry, post-commit dispatch and manual retry.

"""
Fiscalization dispatcher.

WHY: The fiscal device/service is slow, external and fallible, while the
sale (stock + payments + status) is the unit of correctness. So the adapter
is only ever called after the sale has committed, and its failure is
recorded on the sale (kkm_status=FAILED + raw error) instead of raised.

Adapters are registered by provider key; the store's compliance profile
names the key. The built-in "stub" adapter always fails with
kkmNotConfigured.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Sale, Payment
from ..models.enums import KkmStatus, SaleStatus
from ..time_utils import utcnow, to_utc_z
from .audit_service import write_audit_log
from .compliance_service import get_compliance_profile
from .errors import ErrorKind, FiscalError, SaleError


@dataclass
class FiscalReceiptLine:
    sku: str
    name: str
    qty: int
    price_cents: int


@dataclass
class FiscalReceiptPayment:
    type: str
    amount_cents: int


@dataclass
class FiscalReceiptDraft:
    store_id: int
    receipt_id: str
    cashier_name: str | None
    customer_name: str | None
    lines: list[FiscalReceiptLine] = field(default_factory=list)
    payments: list[FiscalReceiptPayment] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FiscalReceiptResult:
    provider_receipt_id: str
    fiscal_number: str | None = None
    printed_at: str | None = None
    raw_json: dict | None = None


class FiscalAdapter:
    """Base class for fiscal device/service adapters."""

    provider_key = "base"

    def health(self) -> dict:
        return {"ok": True, "provider": self.provider_key}

    def fiscalize_receipt(self, draft: FiscalReceiptDraft) -> FiscalReceiptResult:
        raise NotImplementedError


class StubFiscalAdapter(FiscalAdapter):
    provider_key = "stub"

    def health(self) -> dict:
        return {"ok": False, "provider": self.provider_key, "message": "kkmNotConfigured"}

    def fiscalize_receipt(self, draft: FiscalReceiptDraft) -> FiscalReceiptResult:
        raise FiscalError("kkmNotConfigured", ErrorKind.BAD_REQUEST)


_ADAPTERS: dict[str, FiscalAdapter] = {}


def register_adapter(adapter: FiscalAdapter, provider_key: str | None = None) -> None:
    _ADAPTERS[provider_key or adapter.provider_key] = adapter


def unregister_adapter(provider_key: str) -> None:
    _ADAPTERS.pop(provider_key, None)


def get_adapter(provider_key: str | None) -> FiscalAdapter:
    key = provider_key or current_app.config.get("FISCAL_DEFAULT_PROVIDER") or StubFiscalAdapter.provider_key
    return _ADAPTERS.get(key) or _ADAPTERS[StubFiscalAdapter.provider_key]


register_adapter(StubFiscalAdapter())


def build_receipt_draft(sale: Sale, payments: list[dict], actor_id: int | None, **extra_metadata) -> FiscalReceiptDraft:
    """Build the receipt from a sale's lines and the tenders it was paid with."""
    metadata = {
        "sale_id": sale.id,
        "shift_id": sale.shift_id,
        "register_id": sale.register_id,
    }
    metadata.update(extra_metadata)
    return FiscalReceiptDraft(
        store_id=sale.store_id,
        receipt_id=sale.number,
        cashier_name=str(actor_id) if actor_id is not None else None,
        customer_name=sale.customer_name,
        lines=[
            FiscalReceiptLine(
                sku=line.product.sku,
                name=line.product.name,
                qty=line.qty,
                price_cents=line.unit_price_cents,
            )
            for line in sale.lines
        ],
        payments=[
            FiscalReceiptPayment(type=payment["method"], amount_cents=payment["amount_cents"])
            for payment in payments
        ],
        metadata=metadata,
    )


def _fiscalize(sale: Sale, draft: FiscalReceiptDraft, provider_key: str | None) -> tuple[str, str | None]:
    """
    Call the adapter and record the outcome on the sale. Commits.

    Returns (kkm_status, error_message). Never raises for adapter failures.
    """
    try:
        adapter = get_adapter(provider_key)
        result = adapter.fiscalize_receipt(draft)
    except Exception as exc:
        message = getattr(exc, "message_key", None) or str(exc) or type(exc).__name__
        current_app.logger.warning(
            "Fiscalization failed for sale %s (provider %s): %s", sale.id, provider_key, message
        )
        sale.kkm_status = KkmStatus.FAILED.value
        sale.kkm_raw_json = {"message": message, "failed_at": to_utc_z(utcnow())}
        db.session.commit()
        return KkmStatus.FAILED.value, message

    sale.kkm_status = KkmStatus.SENT.value
    sale.kkm_receipt_id = result.provider_receipt_id
    sale.kkm_raw_json = result.raw_json
    db.session.commit()
    return KkmStatus.SENT.value, None


def dispatch_fiscalization(sale_id: int, draft: FiscalReceiptDraft, provider_key: str | None) -> str:
    """Post-commit, best-effort fiscalization of a just-completed sale."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        current_app.logger.warning("Fiscalization skipped: sale %s not found", sale_id)
        return KkmStatus.NOT_SENT.value
    status, _ = _fiscalize(sale, draft, provider_key)
    return status


def retry_fiscalization(org_id: int, sale_id: int, actor_id: int | None, request_id: str | None = None) -> dict:
    """
    Re-attempt fiscalization of a COMPLETED sale.

    No-op when already SENT. Every attempt is audited (POS_KKM_RETRY),
    successful or not.
    """
    sale = db.session.query(Sale).filter_by(
        id=sale_id, org_id=org_id, status=SaleStatus.COMPLETED.value
    ).first()
    if sale is None:
        raise SaleError("posSaleNotFound", ErrorKind.NOT_FOUND, {"sale_id": sale_id})

    profile = get_compliance_profile(sale.store_id)
    if profile is None or not profile.fiscalization_enabled:
        raise FiscalError("kkmNotConfigured", ErrorKind.BAD_REQUEST)

    if sale.kkm_status == KkmStatus.SENT.value:
        return {
            "sale_id": sale.id,
            "kkm_status": sale.kkm_status,
            "kkm_receipt_id": sale.kkm_receipt_id,
            "error_message": None,
            "retried": False,
        }

    payments = db.session.query(Payment).filter_by(sale_id=sale.id, is_refund=False).order_by(Payment.id).all()
    draft = build_receipt_draft(
        sale,
        [{"method": p.method, "amount_cents": p.amount_cents} for p in payments],
        actor_id,
        retried_by=actor_id,
    )

    before = {"kkm_status": sale.kkm_status, "kkm_receipt_id": sale.kkm_receipt_id}
    status, error_message = _fiscalize(sale, draft, profile.kkm_provider_key)

    after = {"kkm_status": status}
    if status == KkmStatus.SENT.value:
        after["kkm_receipt_id"] = sale.kkm_receipt_id
    else:
        after["error_message"] = error_message
        sale.kkm_raw_json = {**(sale.kkm_raw_json or {}), "retried_by": actor_id}

    write_audit_log(
        org_id=org_id,
        actor_id=actor_id,
        action="POS_KKM_RETRY",
        entity="Sale",
        entity_id=sale.id,
        before=before,
        after=after,
        request_id=request_id,
    )
    db.session.commit()

    return {
        "sale_id": sale.id,
        "kkm_status": status,
        "kkm_receipt_id": sale.kkm_receipt_id if status == KkmStatus.SENT.value else None,
        "error_message": error_message,
        "retried": True,
    }
