from urllib.parse import parse_qs, urlparse

import copy

import pytest
import stripe

from services.cart import decode_cart_metadata
from services.errors import GatewayError, ValidationError
from services.payments.base import CheckoutSessionResult
from services.payments.stripe_provider import StripeProvider
from services.session_builder import CheckoutUrls, build_checkout_session
from tests.utils import cart_secret, line

URL = "/api/stripe/checkout"


class CapturingProvider:
    name = "capture"

    def __init__(self):
        self.requests = []

    def create_checkout_session(self, req):
        self.requests.append(req)
        return CheckoutSessionResult("cs_captured", "https://pay.example/cs_captured")


class DownProvider:
    name = "down"

    def create_checkout_session(self, req):
        raise GatewayError("Failed to create checkout session", detail={"reason": "503"})


def test_checkout_returns_session_and_redirect(client):
    r = client.post(URL, json={"lines": [line("p1", 2, "10.00")],
                               "customerEmail": "ann@example.com"})
    assert r.status_code == 200
    data = r.get_json()
    assert data["sessionId"].startswith("cs_dummy_")
    assert data["id"] == data["sessionId"]
    parsed = urlparse(data["url"])
    assert parsed.path == "/api/payments/simulate"
    assert "token" in parse_qs(parsed.query)


@pytest.mark.parametrize("payload", [
    {"lines": [], "customerEmail": "ann@example.com"},
    {"customerEmail": "ann@example.com"},
    {"lines": [line("p1", 0, "10.00")], "customerEmail": "ann@example.com"},
    {"lines": [line("p1", 1, "-1")], "customerEmail": "ann@example.com"},
    {"lines": [line("p1", 1, "10.00")], "customerEmail": "not-an-email"},
    {"lines": [line("p1", 1, "10.00")], "customerEmail": "ann@example.com", "currency": "dollars"},
    {"lines": [line("p1", 1, "10.00")], "customerEmail": "ann@example.com", "currency": 840},
    {"lines": [line("p1", 8, "0.125")], "customerEmail": "ann@example.com"},
    {"lines": [line("p1", 1, "10.5")], "customerEmail": "ann@example.com", "currency": "JPY"},
    [1, 2],
    "lines",
])
def test_invalid_cart_is_400_and_gateway_not_called(client, app, monkeypatch, payload):
    provider = CapturingProvider()
    monkeypatch.setitem(app.extensions, "payment_provider", provider)
    r = client.post(URL, json=payload)
    assert r.status_code == 400
    assert "error" in r.get_json()
    assert provider.requests == []


def test_gateway_failure_is_502(client, app, monkeypatch):
    monkeypatch.setitem(app.extensions, "payment_provider", DownProvider())
    r = client.post(URL, json={"lines": [line("p1", 1, "10.00")],
                               "customerEmail": "ann@example.com"})
    assert r.status_code == 502
    assert r.get_json()["error"] == "Failed to create checkout session"


def test_session_request_carries_minor_units_and_signed_cart(client, app, monkeypatch):
    provider = CapturingProvider()
    monkeypatch.setitem(app.extensions, "payment_provider", provider)
    lines = [dict(line("p1", 2, "10.00"), thumbnail="https://img.example/p1.png"),
             line("d1", 1, "29.00", kind="DIGITAL")]
    r = client.post(URL, json={"items": lines, "customerEmail": "ann@example.com"})
    assert r.status_code == 200
    assert r.get_json()["url"] == "https://pay.example/cs_captured"

    req = provider.requests[0]
    assert req.currency == "usd"
    assert [(li.unit_amount, li.quantity) for li in req.line_items] == [(1000, 2), (2900, 1)]
    assert req.line_items[0].images == ["https://img.example/p1.png"]
    assert req.success_url == "http://shop.test/order-confirmation?session_id={CHECKOUT_SESSION_ID}"
    assert req.cancel_url == "http://shop.test/cart"

    cart = decode_cart_metadata(req.metadata, cart_secret(app))
    assert [(c.product_id, c.quantity, c.kind) for c in cart] == [("p1", 2, "PHYSICAL"),
                                                                  ("d1", 1, "DIGITAL")]
    assert "thumbnail" not in req.metadata["itemsJson"]


def test_stripe_provider_maps_request(monkeypatch):
    seen = {}

    def fake_create(**kwargs):
        seen.update(kwargs)
        return stripe.checkout.Session.construct_from(
            {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}, "sk_test")
    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    res = build_checkout_session(
        [line("p1", 2, "10.00")], "ann@example.com",
        provider=StripeProvider(api_key="sk_test_x"), currency="USD",
        urls=CheckoutUrls.for_frontend("http://shop.test/"), cart_secret=b"s",
    )
    assert (res.session_id, res.redirect_url) == ("cs_test_1", "https://checkout.stripe.com/c/cs_test_1")
    assert seen["api_key"] == "sk_test_x"
    assert seen["mode"] == "payment"
    assert seen["customer_email"] == "ann@example.com"
    assert seen["line_items"][0]["price_data"]["unit_amount"] == 1000
    assert seen["line_items"][0]["price_data"]["currency"] == "usd"
    assert "itemsSig" in seen["metadata"]


def test_stripe_error_becomes_gateway_error(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.StripeError("card network unreachable")
    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    with pytest.raises(GatewayError) as ei:
        StripeProvider(api_key="sk_test_x").create_checkout_session(_request())
    assert ei.value.detail["gateway"] == "stripe"


def _request():
    from services.session_builder import build_session_request
    from services.cart import parse_cart_lines
    return build_session_request(parse_cart_lines([line("p1", 1, "10.00")]), "ann@example.com",
                                 "USD", CheckoutUrls.for_frontend("http://shop.test"), b"s")


@pytest.mark.parametrize("raw_lines", [
    [dict(line("p1", 2, "10.00"), thumbnail="https://img.example/p1.png"),
     line("d1", 1, "29.00", kind="DIGITAL")],
    [line("p1", 2, "10.00"), line("p2", 0, "5.00")],
])
def test_build_checkout_session_leaves_input_untouched(raw_lines):
    before = copy.deepcopy(raw_lines)
    try:
        build_checkout_session(
            raw_lines, "ann@example.com", provider=CapturingProvider(), currency="USD",
            urls=CheckoutUrls.for_frontend("http://shop.test"), cart_secret=b"s",
        )
    except ValidationError:
        pass
    assert raw_lines == before
