# services/orders_export.py
from __future__ import annotations
import io

import pandas as pd

COLUMNS = [
    "order_id", "created_at", "external_session_id", "customer_email", "status",
    "currency", "order_total", "product_id", "product_name", "kind",
    "quantity", "unit_price", "line_total",
]


def orders_frame(orders: list[dict]) -> pd.DataFrame:
    """One row per order item, in the order the orders were given."""
    rows = []
    for o in orders:
        for it in o["items"]:
            rows.append({
                "order_id": o["id"],
                "created_at": o["createdAt"],
                "external_session_id": o["externalSessionId"],
                "customer_email": o["customerEmail"],
                "status": o["status"],
                "currency": o["currency"],
                "order_total": float(o["totalAmount"]),
                "product_id": it["productId"],
                "product_name": it["productName"],
                "kind": it["kind"],
                "quantity": int(it["quantity"]),
                "unit_price": float(it["unitPrice"]),
            })
    if not rows:
        return pd.DataFrame(columns=COLUMNS)
    df = pd.DataFrame(rows, columns=COLUMNS[:-1])
    df["line_total"] = (df["quantity"] * df["unit_price"]).round(2)
    return df[COLUMNS]


def orders_csv(orders: list[dict]) -> str:
    out = io.StringIO()
    orders_frame(orders).to_csv(out, index=False)
    return out.getvalue()
