"""POS engine schema: tenancy, catalog, stock ledger, registers, sales, returns, audit

Revision ID: 20261017_pos_engine
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_pos_engine"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    # --- Tenancy ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("organizations", schema=None) as batch_op:
        batch_op.create_index("ix_organizations_code", ["code"], unique=True)
        batch_op.create_index("ix_organizations_is_active", ["is_active"], unique=False)

    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "code", name="uq_stores_org_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stores", schema=None) as batch_op:
        batch_op.create_index("ix_stores_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_stores_code", ["code"], unique=False)

    op.create_table(
        "organization_counters",
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("sales_order_number", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pos_sale_number", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pos_return_number", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("org_id"),
    )

    op.create_table(
        "store_compliance_profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("enable_kkm", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("kkm_mode", sa.String(16), nullable=False, server_default="OFF"),
        sa.Column("kkm_provider_key", sa.String(64), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("store_compliance_profiles", schema=None) as batch_op:
        batch_op.create_index("ix_store_compliance_profiles_org_id", ["org_id"], unique=False)

    # --- Catalog ---
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("base_price_cents", sa.Integer(), nullable=True),
        sa.Column("is_bundle", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_products_is_deleted", ["is_deleted"], unique=False)

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_variants", schema=None) as batch_op:
        batch_op.create_index("ix_product_variants_product_id", ["product_id"], unique=False)

    op.create_table(
        "store_prices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_key", sa.String(64), nullable=False, server_default="BASE"),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "store_id", "product_id", "variant_key", name="uq_store_prices_scope"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("store_prices", schema=None) as batch_op:
        batch_op.create_index("ix_store_prices_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_store_prices_product_id", ["product_id"], unique=False)

    op.create_table(
        "product_costs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_key", sa.String(64), nullable=False, server_default="BASE"),
        sa.Column("avg_cost_cents", sa.Integer(), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "product_id", "variant_key", name="uq_product_costs_scope"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_costs", schema=None) as batch_op:
        batch_op.create_index("ix_product_costs_product_id", ["product_id"], unique=False)

    op.create_table(
        "product_bundle_components",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("bundle_product_id", sa.Integer(), nullable=False),
        sa.Column("component_product_id", sa.Integer(), nullable=False),
        sa.Column("component_variant_id", sa.Integer(), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["bundle_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["component_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["component_variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "bundle_product_id", "component_product_id", "component_variant_id",
            name="uq_bundle_components_component",
        ),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_bundle_components", schema=None) as batch_op:
        batch_op.create_index("ix_product_bundle_components_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_product_bundle_components_bundle_product_id", ["bundle_product_id"], unique=False)

    # --- Stock ledger ---
    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("variant_key", sa.String(64), nullable=False),
        sa.Column("qty_delta", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        _timestamp("occurred_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_stock_movements_movement_type", ["movement_type"], unique=False)
        batch_op.create_index("ix_stock_movements_store_product", ["store_id", "product_id", "variant_key"], unique=False)
        batch_op.create_index("ix_stock_movements_reference", ["reference_type", "reference_id"], unique=False)

    # --- Registers & shifts ---
    op.create_table(
        "registers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "code", name="uq_registers_store_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("registers", schema=None) as batch_op:
        batch_op.create_index("ix_registers_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_registers_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_registers_is_active", ["is_active"], unique=False)

    op.create_table(
        "register_shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("register_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        _timestamp("opened_at"),
        sa.Column("opened_by", sa.Integer(), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.Integer(), nullable=True),
        sa.Column("opening_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("closing_cash_counted_cents", sa.Integer(), nullable=True),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=True),
        sa.Column("discrepancy_cents", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["register_id"], ["registers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("register_shifts", schema=None) as batch_op:
        batch_op.create_index("ix_register_shifts_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_register_shifts_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_register_shifts_status", ["status"], unique=False)
        batch_op.create_index("ix_register_shifts_register_opened", ["register_id", "opened_at"], unique=False)

    # At most one OPEN shift per register
    op.create_index(
        "uq_register_shifts_one_open",
        "register_shifts",
        ["register_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "cash_drawer_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["shift_id"], ["register_shifts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_drawer_movements", schema=None) as batch_op:
        batch_op.create_index("ix_cash_drawer_movements_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_cash_drawer_movements_shift_id", ["shift_id"], unique=False)
        batch_op.create_index("ix_cash_drawer_movements_shift_type", ["shift_id", "movement_type"], unique=False)

    # --- Sales ---
    op.create_table(
        "pos_sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("register_id", sa.Integer(), nullable=True),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("kkm_status", sa.String(16), nullable=False, server_default="NOT_SENT"),
        sa.Column("kkm_receipt_id", sa.String(128), nullable=True),
        sa.Column("kkm_raw_json", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_event_id", sa.String(128), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["register_id"], ["registers.id"]),
        sa.ForeignKeyConstraint(["shift_id"], ["register_shifts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "number", name="uq_pos_sales_org_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pos_sales", schema=None) as batch_op:
        batch_op.create_index("ix_pos_sales_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_pos_sales_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_pos_sales_register_id", ["register_id"], unique=False)
        batch_op.create_index("ix_pos_sales_shift_id", ["shift_id"], unique=False)
        batch_op.create_index("ix_pos_sales_org_status", ["org_id", "status"], unique=False)

    # At most one DRAFT per cashier per shift
    op.create_index(
        "uq_pos_sales_one_draft_per_creator",
        "pos_sales",
        ["shift_id", "created_by"],
        unique=True,
        sqlite_where=sa.text("status = 'DRAFT'"),
        postgresql_where=sa.text("status = 'DRAFT'"),
    )

    op.create_table(
        "pos_sale_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("variant_key", sa.String(64), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("line_cost_total_cents", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["sale_id"], ["pos_sales.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sale_id", "product_id", "variant_key", name="uq_pos_sale_lines_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pos_sale_lines", schema=None) as batch_op:
        batch_op.create_index("ix_pos_sale_lines_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_pos_sale_lines_product_id", ["product_id"], unique=False)

    # --- Returns ---
    op.create_table(
        "pos_returns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("register_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("original_sale_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_event_id", sa.String(128), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["register_id"], ["registers.id"]),
        sa.ForeignKeyConstraint(["shift_id"], ["register_shifts.id"]),
        sa.ForeignKeyConstraint(["original_sale_id"], ["pos_sales.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "number", name="uq_pos_returns_org_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pos_returns", schema=None) as batch_op:
        batch_op.create_index("ix_pos_returns_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_pos_returns_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_pos_returns_shift_id", ["shift_id"], unique=False)
        batch_op.create_index("ix_pos_returns_original_sale_id", ["original_sale_id"], unique=False)

    op.create_table(
        "pos_return_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_return_id", sa.Integer(), nullable=False),
        sa.Column("sale_line_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("variant_key", sa.String(64), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("line_cost_total_cents", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["sale_return_id"], ["pos_returns.id"]),
        sa.ForeignKeyConstraint(["sale_line_id"], ["pos_sale_lines.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sale_return_id", "sale_line_id", name="uq_pos_return_lines_sale_line"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pos_return_lines", schema=None) as batch_op:
        batch_op.create_index("ix_pos_return_lines_sale_return_id", ["sale_return_id"], unique=False)
        batch_op.create_index("ix_pos_return_lines_sale_line_id", ["sale_line_id"], unique=False)

    # --- Payments ---
    op.create_table(
        "pos_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("sale_return_id", sa.Integer(), nullable=True),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("is_refund", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("provider_ref", sa.String(128), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["shift_id"], ["register_shifts.id"]),
        sa.ForeignKeyConstraint(["sale_id"], ["pos_sales.id"]),
        sa.ForeignKeyConstraint(["sale_return_id"], ["pos_returns.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pos_payments", schema=None) as batch_op:
        batch_op.create_index("ix_pos_payments_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_pos_payments_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_pos_payments_sale_return_id", ["sale_return_id"], unique=False)
        batch_op.create_index("ix_pos_payments_shift_method", ["shift_id", "method", "is_refund"], unique=False)

    # --- Audit & idempotency ---
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index("ix_audit_logs_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_audit_logs_action", ["action"], unique=False)
        batch_op.create_index("ix_audit_logs_entity", ["entity", "entity_id"], unique=False)

    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("route", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "key", "route", name="uq_idempotency_org_key_route"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("idempotency_records")
    op.drop_table("audit_logs")
    op.drop_table("pos_payments")
    op.drop_table("pos_return_lines")
    op.drop_table("pos_returns")
    op.drop_table("pos_sale_lines")
    op.drop_index("uq_pos_sales_one_draft_per_creator", table_name="pos_sales")
    op.drop_table("pos_sales")
    op.drop_table("cash_drawer_movements")
    op.drop_index("uq_register_shifts_one_open", table_name="register_shifts")
    op.drop_table("register_shifts")
    op.drop_table("registers")
    op.drop_table("stock_movements")
    op.drop_table("product_bundle_components")
    op.drop_table("product_costs")
    op.drop_table("store_prices")
    op.drop_table("product_variants")
    op.drop_table("products")
    op.drop_table("store_compliance_profiles")
    op.drop_table("organization_counters")
    op.drop_table("stores")
    op.drop_table("organizations")
