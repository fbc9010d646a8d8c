# services/session_builder.py
"""
Turns a cart snapshot into a hosted-checkout session on the gateway.

Local-state free: nothing is written here, so a failed call can simply be
retried by the shopper. The cart travels inside the session metadata
(services.cart.encode_cart_metadata) and is the only cart the webhook trusts.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any

from services.cart import (
    CartLine, check_minor_precision, encode_cart_metadata, parse_cart_lines, to_minor,
)
from services.errors import ValidationError
from services.payments.base import (
    CheckoutSessionRequest, CheckoutSessionResult, GatewayLineItem, PaymentProvider,
)

EMAIL_RX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CURRENCY_RX = re.compile(r"^[A-Za-z]{3}$")


@dataclass(frozen=True)
class CheckoutUrls:
    success_url: str
    cancel_url: str

    @classmethod
    def for_frontend(cls, frontend_url: str) -> "CheckoutUrls":
        base = frontend_url.rstrip("/")
        return cls(
            success_url=f"{base}/order-confirmation?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/cart",
        )


def build_session_request(lines: list[CartLine], customer_email: str, currency: str,
                          urls: CheckoutUrls, cart_secret: bytes,
                          images: dict[str, list[str]] | None = None) -> CheckoutSessionRequest:
    cur = currency.lower()
    items = [
        GatewayLineItem(
            name=ln.name,
            unit_amount=to_minor(ln.unit_price, currency),
            quantity=ln.quantity,
            currency=cur,
            images=list((images or {}).get(ln.product_id, [])),
        )
        for ln in lines
    ]
    return CheckoutSessionRequest(
        customer_email=customer_email,
        currency=cur,
        line_items=items,
        metadata=encode_cart_metadata(lines, cart_secret),
        success_url=urls.success_url,
        cancel_url=urls.cancel_url,
    )


def build_checkout_session(raw_lines: Any, customer_email: Any, *, provider: PaymentProvider,
                           currency: str, urls: CheckoutUrls,
                           cart_secret: bytes) -> CheckoutSessionResult:
    """
    Validate the cart, then ask the gateway for a session.
    ValidationError is raised before any gateway call; GatewayError comes from the provider.
    """
    lines = parse_cart_lines(raw_lines)

    email = (customer_email or "").strip() if isinstance(customer_email, str) else ""
    if not EMAIL_RX.match(email):
        raise ValidationError("customerEmail must be a valid email address")
    if not isinstance(currency, str) or not CURRENCY_RX.match(currency):
        raise ValidationError("currency must be a 3-letter ISO code")
    check_minor_precision(lines, currency)

    # thumbnails are display-only and never copied into the metadata
    images = {}
    for raw in raw_lines:
        thumb = raw.get("thumbnail")
        if isinstance(thumb, str) and thumb:
            images.setdefault(str(raw.get("productId")), []).append(thumb)

    req = build_session_request(lines, email, currency.upper(), urls, cart_secret, images)
    return provider.create_checkout_session(req)
