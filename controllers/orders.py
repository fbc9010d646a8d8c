# controllers/orders.py
from datetime import date

from flask import Blueprint, Response, abort, jsonify, request
from flask_login import login_required

from controllers.auth import admin_required
from models.orders_store import get_order, list_orders, orders_summary
from models.schema import ORDER_STATUSES
from services.orders_export import orders_csv

orders_bp = Blueprint("orders", __name__, url_prefix="/api/admin/orders")


def _status_arg():
    status = (request.args.get("status") or "").upper() or None
    if status and status not in ORDER_STATUSES:
        abort(400, description=f"status must be one of {'|'.join(ORDER_STATUSES)}")
    return status


@orders_bp.get("")
@login_required
@admin_required
def all_orders():
    limit = request.args.get("limit", default=500, type=int)
    return jsonify(list_orders(status=_status_arg(), limit=max(1, min(limit, 5000))))


@orders_bp.get("/summary")
@login_required
@admin_required
def summary():
    return jsonify(orders_summary())


@orders_bp.get("/<int:oid>")
@login_required
@admin_required
def one_order(oid: int):
    order = get_order(oid)
    if not order:
        abort(404)
    return jsonify(order)


@orders_bp.get("/export.csv")
@login_required
@admin_required
def export_csv():
    body = orders_csv(list_orders(status=_status_arg(), limit=100000))
    filename = f"orders_{date.today().isoformat()}.csv"
    return Response(body, mimetype="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={filename}"})
