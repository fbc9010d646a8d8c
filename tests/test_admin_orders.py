import io

import pandas as pd
import pytest

from services.fulfillment import FulfillmentEngine
from tests.utils import completion_event, line, parsed


def _place(app, sid, lines, email="ann@example.com"):
    return FulfillmentEngine().handle(parsed(app, completion_event(app, lines, session_id=sid,
                                                                   email=email))).order_id


def test_requires_token(client, admin_headers):
    assert client.get("/api/admin/orders").status_code == 401
    r = client.get("/api/admin/orders", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    assert client.get("/api/admin/orders", headers=admin_headers).status_code == 200


@pytest.mark.db
def test_list_and_detail(client, app, products, admin_headers):
    oid = _place(app, "cs_admin_1", [line("p1", 2, "10.00")])
    _place(app, "cs_admin_2", [line("d1", 1, "29.00", kind="DIGITAL")], email="bob@example.com")

    r = client.get("/api/admin/orders", headers=admin_headers)
    assert r.status_code == 200
    rows = r.get_json()
    assert {o["externalSessionId"] for o in rows} == {"cs_admin_1", "cs_admin_2"}

    one = client.get(f"/api/admin/orders/{oid}", headers=admin_headers).get_json()
    assert one["customerEmail"] == "ann@example.com"
    assert one["items"][0]["productId"] == "p1"
    assert one["items"][0]["quantity"] == 2

    assert client.get("/api/admin/orders/999999", headers=admin_headers).status_code == 404


@pytest.mark.db
def test_status_filter_validated(client, admin_headers):
    assert client.get("/api/admin/orders?status=completed", headers=admin_headers).status_code == 200
    assert client.get("/api/admin/orders?status=shipped", headers=admin_headers).status_code == 400


@pytest.mark.db
def test_summary(client, app, products, admin_headers):
    _place(app, "cs_sum_1", [line("p1", 2, "10.00")])
    _place(app, "cs_sum_2", [line("p2", 1, "129.50")])
    data = client.get("/api/admin/orders/summary", headers=admin_headers).get_json()
    assert data["totalProducts"] == 3
    assert data["totalOrders"] == 2
    assert str(data["totalRevenue"]) == "149.50"


@pytest.mark.db
def test_export_csv_one_row_per_item(client, app, products, admin_headers):
    _place(app, "cs_csv", [line("p1", 2, "10.00"), line("d1", 1, "29.00", kind="DIGITAL")])
    r = client.get("/api/admin/orders/export.csv", headers=admin_headers)
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "attachment" in r.headers["Content-Disposition"]

    df = pd.read_csv(io.StringIO(r.get_data(as_text=True)))
    assert list(df["product_id"]) == ["p1", "d1"]
    assert list(df["line_total"]) == [20.0, 29.0]
    assert set(df["external_session_id"]) == {"cs_csv"}


@pytest.mark.db
def test_export_csv_empty_has_header(client, admin_headers):
    r = client.get("/api/admin/orders/export.csv", headers=admin_headers)
    assert r.get_data(as_text=True).startswith("order_id,created_at,")
