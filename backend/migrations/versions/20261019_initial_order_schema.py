"""Initial schema: agencies, inventory, orders, auth

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "agencies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_agencies_status"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("agencies", schema=None) as batch_op:
        batch_op.create_index("ix_agencies_status", ["status"], unique=False)

    op.create_table(
        "delivery_agents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("vehicle_number", sa.String(20), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="offline"),
        sa.Column("joined_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("status IN ('online', 'offline')", name="ck_delivery_agents_status"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("phone"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("delivery_agents", schema=None) as batch_op:
        batch_op.create_index("ix_delivery_agents_agency_id", ["agency_id"], unique=False)
        batch_op.create_index("ix_delivery_agents_agency_status", ["agency_id", "status"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("unit", sa.String(50), nullable=True),
        sa.Column("category", sa.String(32), nullable=False, server_default="lpg"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "inventory_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_inventory_stock_non_negative"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("agency_id", "product_id", name="uq_inventory_agency_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_records", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_records_agency_id", ["agency_id"], unique=False)
        batch_op.create_index("ix_inventory_records_product_id", ["product_id"], unique=False)

    op.create_table(
        "variant_stocks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_record_id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(50), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
        sa.ForeignKeyConstraint(["inventory_record_id"], ["inventory_records.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("inventory_record_id", "label", name="uq_variant_stock_record_label"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("variant_stocks", schema=None) as batch_op:
        batch_op.create_index("ix_variant_stocks_inventory_record_id", ["inventory_record_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("customer_name", sa.String(100), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(15), nullable=False),
        sa.Column("customer_address", sa.Text(), nullable=False),
        sa.Column("delivery_mode", sa.String(16), nullable=False, server_default="home_delivery"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="cash_on_delivery"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("assigned_agent_id", sa.Integer(), nullable=True),
        sa.Column("delivery_otp", sa.String(6), nullable=True),
        sa.Column("otp_expires_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=True),
        sa.Column("out_for_delivery_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("returned_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(16), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_by_name", sa.String(255), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("returned_by", sa.String(16), nullable=True),
        sa.Column("returned_by_id", sa.Integer(), nullable=True),
        sa.Column("returned_by_name", sa.String(255), nullable=True),
        sa.Column("return_reason", sa.String(500), nullable=True),
        sa.Column("delivery_proof_image", sa.String(512), nullable=True),
        sa.Column("delivery_note", sa.Text(), nullable=True),
        sa.Column("payment_received", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("agent_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_non_negative"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'assigned', 'out_for_delivery', "
            "'delivered', 'cancelled', 'returned')",
            name="ck_orders_status",
        ),
        sa.CheckConstraint("payment_status IN ('pending', 'paid', 'failed')", name="ck_orders_payment_status"),
        sa.CheckConstraint(
            "cancelled_by IS NULL OR cancelled_by IN ('customer', 'admin', 'agency', 'system')",
            name="ck_orders_cancelled_by",
        ),
        sa.CheckConstraint(
            "returned_by IS NULL OR returned_by IN ('customer', 'admin', 'agency', 'system')",
            name="ck_orders_returned_by",
        ),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"]),
        sa.ForeignKeyConstraint(["assigned_agent_id"], ["delivery_agents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_order_number", ["order_number"], unique=True)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_agency_id", ["agency_id"], unique=False)
        batch_op.create_index("ix_orders_assigned_agent_id", ["assigned_agent_id"], unique=False)
        batch_op.create_index("ix_orders_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_orders_agency_status_created", ["agency_id", "status", "created_at"], unique=False)
        batch_op.create_index("ix_orders_agent_status", ["assigned_agent_id", "status"], unique=False)
        batch_op.create_index("ix_orders_customer_email_created", ["customer_email", "created_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(200), nullable=False),
        sa.Column("variant_label", sa.String(50), nullable=True),
        sa.Column("variant_price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "position", name="uq_order_items_order_position"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("agency_id", sa.Integer(), nullable=True),
        sa.Column("delivery_agent_id", sa.Integer(), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"]),
        sa.ForeignKeyConstraint(["delivery_agent_id"], ["delivery_agents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", "role", name="uq_users_email_role"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=False)
        batch_op.create_index("ix_users_role", ["role"], unique=False)
        batch_op.create_index("ix_users_agency_id", ["agency_id"], unique=False)
        batch_op.create_index("ix_users_delivery_agent_id", ["delivery_agent_id"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_reason", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_session_tokens_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_session_tokens_is_revoked", ["is_revoked"], unique=False)
        batch_op.create_index("ix_session_tokens_user_active", ["user_id", "is_revoked"], unique=False)

    op.create_table(
        "login_otps",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("login_otps", schema=None) as batch_op:
        batch_op.create_index("ix_login_otps_email_role", ["email", "role"], unique=False)
        batch_op.create_index("ix_login_otps_expires_at", ["expires_at"], unique=False)


def downgrade():
    op.drop_table("login_otps")
    op.drop_table("session_tokens")
    op.drop_table("users")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("variant_stocks")
    op.drop_table("inventory_records")
    op.drop_table("products")
    op.drop_table("delivery_agents")
    op.drop_table("agencies")
