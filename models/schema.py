# models/schema.py
from datetime import datetime, timezone
from decimal import Decimal
import uuid

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric,
    String, Text, UniqueConstraint, false,
)
from models.base import Base

ORDER_STATUSES = ("PENDING", "COMPLETED", "CANCELLED")
PRODUCT_KINDS = ("PHYSICAL", "DIGITAL")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_product_id() -> str:
    return str(uuid.uuid4())


# --- CATALOG (only the fields fulfillment touches)

class Product(Base):
    __tablename__ = "products"
    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=_new_product_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(
        String(16), nullable=False)  # 'PHYSICAL' | 'DIGITAL'
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD")
    # NULL for digital goods; may go negative when an oversold order is paid
    stock: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("type in ('PHYSICAL','DIGITAL')",
                        name="ck_products_type"),
        CheckConstraint("price >= 0", name="ck_products_price_ge_0"),
    )


# --- ORDERS (ledger written by the fulfillment engine)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    external_session_id: Mapped[str] = mapped_column(
        String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING")
    stock_adjusted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.position.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("external_session_id",
                         name="uq_orders_external_session_id"),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_ge_0"),
        CheckConstraint("status in ('PENDING','COMPLETED','CANCELLED')",
                        name="ck_orders_status"),
        Index("idx_orders_created_at", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    # no FK: the line must survive the product being deleted later
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_gt_0"),
        CheckConstraint("unit_price >= 0",
                        name="ck_order_items_unit_price_ge_0"),
        CheckConstraint("kind in ('PHYSICAL','DIGITAL')",
                        name="ck_order_items_kind"),
        UniqueConstraint("order_id", "position",
                         name="uq_order_items_order_position"),
        Index("idx_order_items_order", "order_id"),
    )
