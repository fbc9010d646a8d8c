# models/products_store.py
from __future__ import annotations
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select, update

from models.base import session_scope
from models.schema import Product
from services.errors import StockAdjustmentFailure


def _D(x) -> Decimal:
    # safe conversion avoiding float binary artifacts
    return x if isinstance(x, Decimal) else Decimal(str(x))


def _product_to_dict(p: Product) -> dict:
    return {
        "id": p.id, "name": p.name, "description": p.description,
        "type": p.type, "price": p.price, "currency": p.currency,
        "stock": p.stock, "createdAt": p.created_at,
    }


def get_product(product_id: str) -> Optional[dict]:
    with session_scope() as s:
        p = s.get(Product, product_id)
        return _product_to_dict(p) if p else None


def get_stock(product_id: str) -> Optional[int]:
    with session_scope() as s:
        return s.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()


def decrement_stock(product_id: str, quantity: int) -> int:
    """
    Atomic `stock = stock - quantity` in a single UPDATE; concurrent orders for
    the same product cannot lose each other's decrement. Returns the new stock.
    Raises StockAdjustmentFailure when no stocked product row matched.
    """
    if quantity <= 0:
        raise StockAdjustmentFailure("quantity must be positive",
                                     detail={"productId": product_id, "quantity": quantity})
    with session_scope() as s:
        new_stock = s.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock.is_not(None))
            .values(stock=Product.stock - quantity)
            .returning(Product.stock)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
    if new_stock is None:
        raise StockAdjustmentFailure("product missing or not stock-tracked",
                                     detail={"productId": product_id, "quantity": quantity})
    return int(new_stock)


def upsert_products(rows: Iterable[dict]) -> list[str]:
    """Insert or overwrite catalog rows keyed by id; used by the seed script and tests."""
    ids = []
    with session_scope() as s:
        for r in rows:
            kind = (r.get("type") or "PHYSICAL").upper()
            p = s.get(Product, r["id"]) if r.get("id") else None
            if p is None:
                p = Product(id=r.get("id")) if r.get("id") else Product()
            p.name = r["name"]
            p.description = r.get("description")
            p.type = kind
            p.price = _D(r.get("price", 0))
            p.currency = (r.get("currency") or "USD").upper()
            p.stock = None if kind == "DIGITAL" else r.get("stock")
            s.add(p)
            s.flush()
            ids.append(p.id)
    return ids
