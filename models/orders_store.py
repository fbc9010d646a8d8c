# models/orders_store.py (Postgres / SQLAlchemy)
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from models.base import session_scope
from models.schema import Order, OrderItem, Product
from services.cart import CartLine


@dataclass(frozen=True)
class OrderInserted:
    order_id: int


@dataclass(frozen=True)
class ConflictOutcome:
    """The session id already has an order: another delivery won the insert."""
    order_id: int


InsertOutcome = Union[OrderInserted, ConflictOutcome]


def _item_to_dict(i: OrderItem) -> dict:
    return {
        "id": i.id,
        "productId": i.product_id,
        "productName": i.product_name,
        "kind": i.kind,
        "quantity": i.quantity,
        "unitPrice": i.unit_price,
    }


def _order_to_dict(o: Order) -> dict:
    return {
        "id": o.id,
        "externalSessionId": o.external_session_id,
        "customerEmail": o.customer_email,
        "currency": o.currency,
        "totalAmount": o.total_amount,
        "status": o.status,
        "stockAdjusted": bool(o.stock_adjusted),
        "createdAt": o.created_at,
        "items": [_item_to_dict(i) for i in o.items],
    }


def find_order_id_by_session(external_session_id: str) -> Optional[int]:
    if not external_session_id:
        return None
    with session_scope() as s:
        return s.execute(
            select(Order.id).where(Order.external_session_id == external_session_id)
        ).scalar_one_or_none()


def insert_order_once(external_session_id: str, customer_email: str, currency: str,
                      total_amount: Decimal, lines: Iterable[CartLine],
                      status: str = "COMPLETED") -> InsertOutcome:
    """
    Insert the order and its items in one transaction. The UNIQUE constraint on
    external_session_id decides the race between concurrent deliveries; the
    loser gets ConflictOutcome carrying the winner's order id.
    """
    try:
        with session_scope() as s:
            o = Order(
                external_session_id=external_session_id,
                customer_email=customer_email,
                currency=currency.upper(),
                total_amount=total_amount,
                status=status,
                stock_adjusted=False,
            )
            o.items = [
                OrderItem(position=pos, product_id=ln.product_id, product_name=ln.name,
                          kind=ln.kind, quantity=ln.quantity, unit_price=ln.unit_price)
                for pos, ln in enumerate(lines)
            ]
            s.add(o)
            s.flush()
            oid = o.id
    except IntegrityError:
        existing = find_order_id_by_session(external_session_id)
        if existing is None:
            # some other constraint failed; that is a real error
            raise
        return ConflictOutcome(existing)
    return OrderInserted(oid)


def claim_stock_adjustment(order_id: int) -> bool:
    """Flip stock_adjusted false->true; True only for the single caller that flipped it."""
    with session_scope() as s:
        res = s.execute(
            update(Order)
            .where(Order.id == order_id, Order.stock_adjusted.is_(False))
            .values(stock_adjusted=True)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1


def get_order(order_id: int) -> Optional[dict]:
    with session_scope() as s:
        o = s.get(Order, order_id)
        return _order_to_dict(o) if o else None


def get_order_by_session(external_session_id: str) -> Optional[dict]:
    with session_scope() as s:
        o = s.execute(
            select(Order).where(Order.external_session_id == external_session_id)
        ).scalars().first()
        return _order_to_dict(o) if o else None


def list_orders(status: Optional[str] = None, limit: int = 500) -> list[dict]:
    with session_scope() as s:
        q = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
        if status:
            q = q.where(Order.status == status.upper())
        return [_order_to_dict(o) for o in s.execute(q).scalars().all()]


def count_orders(external_session_id: Optional[str] = None) -> int:
    with session_scope() as s:
        q = select(func.count(Order.id))
        if external_session_id:
            q = q.where(Order.external_session_id == external_session_id)
        return int(s.execute(q).scalar_one())


def orders_summary() -> dict:
    with session_scope() as s:
        total_products = s.execute(select(func.count(Product.id))).scalar_one()
        total_orders = s.execute(select(func.count(Order.id))).scalar_one()
        revenue = s.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0))
            .where(Order.status == "COMPLETED")
        ).scalar_one()
    return {
        "totalProducts": int(total_products),
        "totalOrders": int(total_orders),
        "totalRevenue": Decimal(str(revenue)).quantize(Decimal("0.01")),
    }
