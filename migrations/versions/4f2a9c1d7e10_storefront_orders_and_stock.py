"""storefront orders, order items and product stock

Revision ID: 4f2a9c1d7e10
Revises:
Create Date: 2026-10-19 09:12:03.114502

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("stock", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("type in ('PHYSICAL','DIGITAL')", name="ck_products_type"),
        sa.CheckConstraint("price >= 0", name="ck_products_price_ge_0"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_session_id", sa.String(255), nullable=False),
        sa.Column("customer_email", sa.String(320), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("stock_adjusted", sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        # the idempotency key: one order per gateway checkout session
        sa.UniqueConstraint("external_session_id",
                            name="uq_orders_external_session_id"),
        sa.CheckConstraint("total_amount >= 0", name="ck_orders_total_ge_0"),
        sa.CheckConstraint("status in ('PENDING','COMPLETED','CANCELLED')",
                           name="ck_orders_status"),
    )
    op.create_index("idx_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(),
                  sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(200), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_gt_0"),
        sa.CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_ge_0"),
        sa.CheckConstraint("kind in ('PHYSICAL','DIGITAL')", name="ck_order_items_kind"),
        sa.UniqueConstraint("order_id", "position",
                            name="uq_order_items_order_position"),
    )
    op.create_index("idx_order_items_order", "order_items", ["order_id"])


def downgrade():
    op.drop_index("idx_order_items_order", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("idx_orders_created_at", table_name="orders")
    op.drop_table("orders")
    op.drop_table("products")
