from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import ShiftStatus


class Register(db.Model):
    """
    Physical POS register/terminal.

    WHY: Track which device processed each transaction. Each register has
    its own cash drawer and shift history.

    DESIGN: Registers are persistent (not deleted when inactive).
    Inactive registers cannot open shifts or accept sale mutations.
    """
    __tablename__ = "registers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "code", name="uq_registers_store_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable identifier (e.g., "REG-01", "FRONT")
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("registers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RegisterShift(db.Model):
    """
    Register shift: the accountability window for one drawer.

    LIFECYCLE:
    - OPEN: sales, returns and cash movements may be recorded
    - CLOSED: terminal; expected cash, counted cash and discrepancy frozen

    The partial unique index makes "one OPEN shift per register" a database
    guarantee, so two concurrent opens cannot both commit.
    """
    __tablename__ = "register_shifts"
    __table_args__ = (
        db.Index(
            "uq_register_shifts_one_open",
            "register_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_register_shifts_register_opened", "register_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ShiftStatus.OPEN.value, index=True)  # OPEN, CLOSED

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    opened_by = db.Column(db.Integer, nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.Integer, nullable=True)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_counted_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # Frozen at close
    discrepancy_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    register = db.relationship("Register", backref=db.backref("shifts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == ShiftStatus.OPEN.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "register_id": self.register_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "opened_by": self.opened_by,
            "closed_at": to_utc_z(self.closed_at),
            "closed_by": self.closed_by,
            "opening_cash_cents": self.opening_cash_cents,
            "closing_cash_counted_cents": self.closing_cash_counted_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "notes": self.notes,
        }


class CashDrawerMovement(db.Model):
    """
    Pay-in / pay-out of drawer cash outside of sales.

    Append-only. Feeds the expected-cash formula of the shift report.
    """
    __tablename__ = "cash_drawer_movements"
    __table_args__ = (
        db.Index("ix_cash_drawer_movements_shift_type", "shift_id", "movement_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("register_shifts.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)  # PAY_IN, PAY_OUT
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("RegisterShift", backref=db.backref("cash_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "store_id": self.store_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
