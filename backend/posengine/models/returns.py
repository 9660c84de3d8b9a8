from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import ReturnStatus


class SaleReturn(db.Model):
    """
    Refund document against exactly one COMPLETED sale.

    LIFECYCLE: DRAFT -> COMPLETED (stock re-credited, refund payments
    recorded) or DRAFT -> CANCELED.
    """
    __tablename__ = "pos_returns"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_pos_returns_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("register_shifts.id"), nullable=False, index=True)
    original_sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=False, index=True)

    number = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ReturnStatus.DRAFT.value)  # DRAFT, COMPLETED, CANCELED
    notes = db.Column(db.Text, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_event_id = db.Column(db.String(128), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    original_sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    lines = db.relationship("SaleReturnLine", back_populates="sale_return", order_by="SaleReturnLine.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "register_id": self.register_id,
            "shift_id": self.shift_id,
            "original_sale_id": self.original_sale_id,
            "number": self.number,
            "status": self.status,
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "created_by": self.created_by,
            "completed_by": self.completed_by,
            "completed_at": to_utc_z(self.completed_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "created_at": to_utc_z(self.created_at),
        }


class SaleReturnLine(db.Model):
    """Returned quantity of one original sale line. One per (return, sale line)."""
    __tablename__ = "pos_return_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_return_id", "sale_line_id", name="uq_pos_return_lines_sale_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_return_id = db.Column(db.Integer, db.ForeignKey("pos_returns.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("pos_sale_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    variant_key = db.Column(db.String(64), nullable=False)

    qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    line_cost_total_cents = db.Column(db.Integer, nullable=True)

    sale_return = db.relationship("SaleReturn", back_populates="lines")
    sale_line = db.relationship("SaleLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_return_id": self.sale_return_id,
            "sale_line_id": self.sale_line_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "variant_key": self.variant_key,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_cost_total_cents": self.line_cost_total_cents,
        }
