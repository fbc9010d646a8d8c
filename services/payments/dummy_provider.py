# services/payments/dummy_provider.py
"""
A development-only gateway that *simulates* a successful hosted checkout.
Useful to exercise checkout -> webhook -> order end-to-end without touching
a real gateway.

How it works:
- create_checkout_session(...) mints a local "cs_dummy_<hex>" id and returns a
  redirect URL pointing at /api/payments/simulate, carrying the session
  descriptor as an HMAC-signed token (nothing is stored server-side).
- The simulate route unpacks the token, builds a gateway-shaped
  "checkout.session.completed" event with build_completion_event(...), signs
  it like the real gateway would, and posts it to our webhook.
"""

from __future__ import annotations
import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Any
from urllib.parse import urlencode

from flask import url_for

from services.config import webhook_secret
from services.errors import AuthenticationError
from services.payments.base import CheckoutSessionRequest, CheckoutSessionResult


def pack_session(descriptor: dict) -> str:
    body = json.dumps(descriptor, separators=(",", ":"), sort_keys=True).encode("utf-8")
    mac = hmac.new(webhook_secret(), body, hashlib.sha256).hexdigest()
    return base64.urlsafe_b64encode(body).decode("ascii") + "." + mac


def unpack_session(token: str) -> dict:
    try:
        b64, mac = token.rsplit(".", 1)
        body = base64.urlsafe_b64decode(b64.encode("ascii"))
    except ValueError:
        raise AuthenticationError("malformed checkout token")
    expected = hmac.new(webhook_secret(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, mac):
        raise AuthenticationError("checkout token signature mismatch")
    return json.loads(body)


def build_completion_event(descriptor: dict, *, event_type: str = "checkout.session.completed",
                           payment_status: str = "paid", created: int | None = None) -> dict[str, Any]:
    """Shape a descriptor like the gateway's checkout.session.* event."""
    return {
        "id": f"evt_dummy_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": int(created if created is not None else time.time()),
        "data": {
            "object": {
                "id": descriptor["session_id"],
                "object": "checkout.session",
                "amount_total": descriptor["amount_total"],
                "currency": descriptor["currency"],
                "customer_email": descriptor["customer_email"],
                "customer_details": {"email": descriptor["customer_email"]},
                "payment_status": payment_status,
                "metadata": descriptor["metadata"],
            },
        },
    }


class DummyProvider:
    name = "dummy"

    def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSessionResult:
        session_id = f"cs_dummy_{uuid.uuid4().hex}"
        descriptor = {
            "session_id": session_id,
            "amount_total": sum(li.unit_amount * li.quantity for li in req.line_items),
            "currency": req.currency.lower(),
            "customer_email": req.customer_email,
            "metadata": req.metadata,
            "success_url": req.success_url.replace("{CHECKOUT_SESSION_ID}", session_id),
        }
        qs = urlencode({"token": pack_session(descriptor)})
        redirect_url = url_for("payments.simulate_checkout", _external=True) + "?" + qs
        return CheckoutSessionResult(session_id, redirect_url)
