from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import SaleStatus, KkmStatus


class Sale(db.Model):
    """
    POS sale document.

    LIFECYCLE:
    - DRAFT: lines may be added, re-quantified and removed
    - COMPLETED: stock debited, payments recorded (terminal)
    - CANCELED: abandoned draft (terminal)

    The number (S-000123) is minted when the draft is created.
    At most one DRAFT exists per (shift, creator); the partial unique index
    backs the draft-reuse rule against concurrent creates.
    """
    __tablename__ = "pos_sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_pos_sales_org_number"),
        db.Index(
            "uq_pos_sales_one_draft_per_creator",
            "shift_id",
            "created_by",
            unique=True,
            sqlite_where=db.text("status = 'DRAFT'"),
            postgresql_where=db.text("status = 'DRAFT'"),
        ),
        db.Index("ix_pos_sales_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("register_shifts.id"), nullable=True, index=True)

    number = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SaleStatus.DRAFT.value)  # DRAFT, COMPLETED, CANCELED

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Totals (cents); recomputed from lines after every line mutation
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Fiscal receipt hand-off
    kkm_status = db.Column(db.String(16), nullable=False, default=KkmStatus.NOT_SENT.value)
    kkm_receipt_id = db.Column(db.String(128), nullable=True)
    kkm_raw_json = db.Column(db.JSON, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_event_id = db.Column(db.String(128), nullable=True)  # Idempotency key that completed it
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shift = db.relationship("RegisterShift", backref=db.backref("sales", lazy=True))
    lines = db.relationship("SaleLine", back_populates="sale", order_by="SaleLine.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_draft(self) -> bool:
        return self.status == SaleStatus.DRAFT.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "register_id": self.register_id,
            "shift_id": self.shift_id,
            "number": self.number,
            "status": self.status,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "kkm_status": self.kkm_status,
            "kkm_receipt_id": self.kkm_receipt_id,
            "created_by": self.created_by,
            "completed_at": to_utc_z(self.completed_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "created_at": to_utc_z(self.created_at),
        }


class SaleLine(db.Model):
    """
    Sale line item.

    One line per (sale, product, variant_key): repeats increase qty on the
    existing line. Price and cost are snapshotted when the line is added.
    unit_cost_cents is NULL when cost is unknown.
    """
    __tablename__ = "pos_sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", "variant_key", name="uq_pos_sale_lines_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_key = db.Column(db.String(64), nullable=False)

    qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    line_cost_total_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "variant_key": self.variant_key,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_cost_total_cents": self.line_cost_total_cents,
        }


class Payment(db.Model):
    """
    Tender recorded at completion of a sale (is_refund=False) or a return
    (is_refund=True). Refund rows also point at the original sale.

    IMMUTABLE: never updated after insert.
    """
    __tablename__ = "pos_payments"
    __table_args__ = (
        db.Index("ix_pos_payments_shift_method", "shift_id", "method", "is_refund"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("register_shifts.id"), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=True, index=True)
    sale_return_id = db.Column(db.Integer, db.ForeignKey("pos_returns.id"), nullable=True, index=True)

    method = db.Column(db.String(16), nullable=False)  # CASH, CARD, TRANSFER, OTHER
    amount_cents = db.Column(db.Integer, nullable=False)
    is_refund = db.Column(db.Boolean, nullable=False, default=False)
    provider_ref = db.Column(db.String(128), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "sale_id": self.sale_id,
            "sale_return_id": self.sale_return_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "is_refund": self.is_refund,
            "provider_ref": self.provider_ref,
            "created_at": to_utc_z(self.created_at),
        }
