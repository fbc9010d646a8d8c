# tests/utils.py
import json
import time
import uuid

from services.cart import encode_cart_metadata, lines_total, parse_cart_lines, to_minor
from services.event_verifier import PaymentEvent, sign_payload, verify_and_parse
from services.payments.dummy_provider import build_completion_event

WEBHOOK_URL = "/api/webhook/stripe"


def line(pid, qty, price, kind="PHYSICAL", name=None):
    return {"productId": pid, "quantity": qty, "unitPrice": price,
            "name": name or f"Product {pid}", "type": kind}


def webhook_secret(app) -> bytes:
    return app.config["PAYMENT_WEBHOOK_SECRET"].encode("utf-8")


def cart_secret(app) -> bytes:
    return app.config["CART_SIGNING_SECRET"].encode("utf-8")


def completion_event(app, lines, *, session_id=None, amount_minor=None, currency="usd",
                     email="buyer@example.com", event_type="checkout.session.completed",
                     payment_status="paid") -> dict:
    parsed = parse_cart_lines(lines)
    if amount_minor is None:
        amount_minor = to_minor(lines_total(parsed), currency)
    descriptor = {
        "session_id": session_id or f"cs_test_{uuid.uuid4().hex[:16]}",
        "amount_total": amount_minor,
        "currency": currency,
        "customer_email": email,
        "metadata": encode_cart_metadata(parsed, cart_secret(app)),
    }
    return build_completion_event(descriptor, event_type=event_type,
                                  payment_status=payment_status)


def encode(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


def signed_headers(app, body: bytes, timestamp=None) -> dict:
    return {"Stripe-Signature": sign_payload(body, webhook_secret(app), timestamp),
            "Content-Type": "application/json"}


def post_webhook(client, app, body: bytes, timestamp=None, headers=None):
    return client.post(WEBHOOK_URL, data=body,
                       headers=headers if headers is not None else signed_headers(app, body, timestamp))


def parsed(app, event: dict) -> PaymentEvent:
    body = encode(event)
    ts = int(time.time())
    return verify_and_parse(body, sign_payload(body, webhook_secret(app), ts),
                            secret=webhook_secret(app), cart_secret=cart_secret(app), now=ts)
