"""initial back office schema

Revision ID: 3f9a2c71d0b4
Revises:
Create Date: 2026-10-19 09:12:44.118302

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f9a2c71d0b4"
down_revision = None
branch_labels = None
depends_on = None


# Enum columns store member names
USER_ROLE = sa.Enum(
    "ADMIN", "CUSTOMER", "ENGRAVING", "PRINTING", "ASSEMBLY",
    "QUALITY_CHECK", "PACKAGING", "RIDER", "SUPPLIER", "FINANCE_MANAGER",
    "SERVICE_MANAGER", "INVENTORY_MANAGER", "DISPATCH_MANAGER",
    name="userrole",
)
USER_STATUS = sa.Enum("PENDING", "APPROVED", "REJECTED", name="userstatus")
ORDER_STATUS = sa.Enum(
    "PENDING", "PROCESSING", "IN_PRODUCTION", "AWAITING_QUALITY_CHECK",
    "AWAITING_ASSIGNMENT", "ASSIGNED", "OUT_FOR_DELIVERY",
    "DELIVERY_ATTEMPTED", "DELIVERED", "CANCELLED",
    name="orderstatus",
)
PAYMENT_STATUS = sa.Enum(
    "PENDING", "PAID", "FAILED", "REFUNDED", name="paymentstatus")
PAYMENT_METHOD = sa.Enum(
    "MPESA", "CARD", "PAY_ON_DELIVERY", name="paymentmethod")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", USER_ROLE, nullable=False),
        sa.Column("status", USER_STATUS, nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("supplier_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False),
        sa.Column("image_url", sa.String(length=255), nullable=True),
        sa.Column("customization_options", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("stock >= 0", name="check_product_stock"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)

    op.create_table(
        "shipping_methods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration", sa.String(length=50), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "carts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=True),
        sa.Column("shipping_method_id", sa.Integer(), nullable=True),
        sa.Column("is_gift", sa.Boolean(), nullable=False),
        sa.Column("gift_details", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["shipping_method_id"], ["shipping_methods.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "cart_lines",
        sa.Column("cart_id", sa.Integer(), nullable=False),
        sa.Column("line_key", sa.String(length=500), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("effective_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("customizations", sa.JSON(), nullable=True),
        sa.Column("image_url", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="check_quantity_positive"),
        sa.ForeignKeyConstraint(
            ["cart_id"], ["carts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("cart_id", "line_key"),
    )
    with op.batch_alter_table("cart_lines", schema=None) as batch_op:
        batch_op.create_index(
            "ix_cart_lines_product_id", ["product_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("customer_name", sa.String(length=100), nullable=False),
        sa.Column("customer_email", sa.String(length=120), nullable=True),
        sa.Column("customer_phone", sa.String(length=20), nullable=True),
        sa.Column("sub_total", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("payment_status", PAYMENT_STATUS, nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=False),
        sa.Column("shipping_method_id", sa.Integer(), nullable=True),
        sa.Column(
            "shipping_method_name", sa.String(length=100), nullable=True),
        sa.Column("rider_id", sa.Integer(), nullable=True),
        sa.Column("estimated_delivery_time", sa.DateTime(), nullable=True),
        sa.Column("actual_delivery_time", sa.DateTime(), nullable=True),
        sa.Column("is_gift", sa.Boolean(), nullable=False),
        sa.Column("gift_details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "ABS(total_amount - (sub_total + shipping_cost)) < 0.005",
            name="check_order_total"),
        sa.ForeignKeyConstraint(
            ["customer_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["rider_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index(
            "ix_orders_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_rider_id", ["rider_id"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(length=32), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("customizations", sa.JSON(), nullable=True),
        sa.Column("image_url", sa.String(length=255), nullable=True),
        sa.CheckConstraint(
            "quantity > 0", name="check_order_quantity_positive"),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index(
            "ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index(
            "ix_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "delivery_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(length=32), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(
            ["actor_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "order_id", "position", name="uq_delivery_history_position"),
    )
    with op.batch_alter_table("delivery_history", schema=None) as batch_op:
        batch_op.create_index(
            "ix_delivery_history_order_id", ["order_id"], unique=False)

    op.create_table(
        "approval_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("USER_REGISTRATION", "OTHER",
                    name="approvalrequesttype"),
            nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "APPROVED", "REJECTED",
                    name="approvalstatus"),
            nullable=False),
        sa.Column("requested_by", sa.Integer(), nullable=False),
        sa.Column("requested_by_name", sa.String(length=100), nullable=True),
        sa.Column(
            "requested_by_email", sa.String(length=120), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("resolved_by", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["requested_by"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resolved_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "bulk_order_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("requester_name", sa.String(length=100), nullable=False),
        sa.Column("requester_email", sa.String(length=120), nullable=False),
        sa.Column("requester_phone", sa.String(length=20), nullable=False),
        sa.Column("company_name", sa.String(length=150), nullable=True),
        sa.Column("desired_delivery_date", sa.Date(), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING_REVIEW", "APPROVED", "REJECTED", "FULFILLED",
                    name="bulkorderstatus"),
            nullable=False),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column(
            "converted_order_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["requester_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["converted_order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("bulk_order_requests", schema=None) as batch_op:
        batch_op.create_index(
            "ix_bulk_order_requests_requester_id",
            ["requester_id"], unique=False)

    op.create_table(
        "stock_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("requester_name", sa.String(length=100), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING_FINANCE_APPROVAL",
                    "PENDING_SUPPLIER_FULFILLMENT", "AWAITING_RECEIPT",
                    "RECEIVED", "REJECTED_FINANCE", "REJECTED_SUPPLIER",
                    "CANCELLED", name="stockrequeststatus"),
            nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("finance_manager_id", sa.Integer(), nullable=True),
        sa.Column("finance_action_at", sa.DateTime(), nullable=True),
        sa.Column("finance_notes", sa.Text(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("supplier_name", sa.String(length=100), nullable=True),
        sa.Column("supplier_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("supplier_notes", sa.Text(), nullable=True),
        sa.Column("fulfilled_quantity", sa.Integer(), nullable=True),
        sa.Column("supplier_action_at", sa.DateTime(), nullable=True),
        sa.Column("received_quantity", sa.Integer(), nullable=True),
        sa.Column("received_by_id", sa.Integer(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("receipt_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "requested_quantity > 0", name="check_stock_request_quantity"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["requester_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["finance_manager_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["received_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("stock_requests", schema=None) as batch_op:
        batch_op.create_index(
            "ix_stock_requests_product_id", ["product_id"], unique=False)
        batch_op.create_index(
            "ix_stock_requests_status", ["status"], unique=False)

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(length=40), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("supplier_name", sa.String(length=100), nullable=True),
        sa.Column("client_name", sa.String(length=100), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("sub_total", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING_APPROVAL", "APPROVED_FOR_PAYMENT", "REJECTED",
                    "PAID", name="invoicestatus"),
            nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("stock_request_id", sa.Integer(), nullable=True),
        sa.Column("finance_manager_id", sa.Integer(), nullable=True),
        sa.Column(
            "payment_reference", sa.String(length=100), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["supplier_id"], ["users.id"]),
        sa.ForeignKeyConstraint(
            ["stock_request_id"], ["stock_requests.id"]),
        sa.ForeignKeyConstraint(["finance_manager_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number"),
    )
    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.create_index(
            "ix_invoices_stock_request_id",
            ["stock_request_id"], unique=False)

    op.create_table(
        "feedback_threads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("sender_name", sa.String(length=100), nullable=False),
        sa.Column("sender_email", sa.String(length=120), nullable=True),
        sa.Column("target_role", sa.String(length=30), nullable=False),
        sa.Column("target_user_id", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("OPEN", "REPLIED", "CLOSED", name="feedbackstatus"),
            nullable=False),
        sa.Column(
            "last_message_snippet", sa.String(length=50), nullable=True),
        sa.Column("last_replier_role", sa.String(length=30), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("feedback_threads", schema=None) as batch_op:
        batch_op.create_index(
            "ix_feedback_threads_sender_id", ["sender_id"], unique=False)
        batch_op.create_index(
            "ix_feedback_threads_target_role", ["target_role"], unique=False)

    op.create_table(
        "feedback_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("thread_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=True),
        sa.Column("sender_name", sa.String(length=100), nullable=False),
        sa.Column("sender_role", sa.String(length=30), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["thread_id"], ["feedback_threads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["sender_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("feedback_messages", schema=None) as batch_op:
        batch_op.create_index(
            "ix_feedback_messages_thread_id", ["thread_id"], unique=False)
        batch_op.create_index(
            "ix_feedback_messages_created_at", ["created_at"], unique=False)

    op.create_table(
        "push_subscriptions",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("keys", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=30), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["actor_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index(
            "ix_audit_logs_created_at", ["created_at"], unique=False)


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("push_subscriptions")
    op.drop_table("feedback_messages")
    op.drop_table("feedback_threads")
    op.drop_table("invoices")
    op.drop_table("stock_requests")
    op.drop_table("bulk_order_requests")
    op.drop_table("approval_requests")
    op.drop_table("delivery_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("cart_lines")
    op.drop_table("carts")
    op.drop_table("shipping_methods")
    op.drop_table("products")
    op.drop_table("users")
