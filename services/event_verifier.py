# services/event_verifier.py
"""
Webhook authentication and parsing.

Signature header (gateway format):  t=<unix ts>,v1=<hex>[,v1=<hex>...]
Expected v1 = HMAC-SHA256(secret, f"{t}." + raw_body)

Verification must run on the exact raw bytes received; re-serialized JSON
never matches. Everything here fails closed.
"""

from __future__ import annotations
import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from services.cart import CartLine, decode_cart_metadata, from_minor
from services.errors import AuthenticationError, DataError

DEFAULT_TOLERANCE_SEC = 300
SIGNATURE_SCHEME = "v1"

COMPLETED = "checkout.session.completed"
ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
FULFILLMENT_EVENT_TYPES = (COMPLETED, ASYNC_SUCCEEDED)


@dataclass(frozen=True)
class SignatureHeader:
    timestamp: int
    signatures: tuple[str, ...]


@dataclass(frozen=True)
class PaymentEvent:
    event_id: Optional[str]
    event_type: str
    external_session_id: Optional[str]
    amount_total: Optional[Decimal]
    amount_total_minor: Optional[int]
    currency: Optional[str]
    customer_email: Optional[str]
    payment_status: Optional[str]
    lines: tuple[CartLine, ...]
    signature: str
    timestamp: int
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_fulfillment_candidate(self) -> bool:
        return self.event_type in FULFILLMENT_EVENT_TYPES

    @property
    def is_paid(self) -> bool:
        # unpaid completions belong to async payment methods; the
        # async_payment_succeeded event follows when the money arrives
        if self.event_type == ASYNC_SUCCEEDED:
            return True
        return self.payment_status in (None, "paid", "no_payment_required")


def compute_signature(raw_body: bytes, secret: bytes, timestamp: int) -> str:
    signed = str(int(timestamp)).encode("ascii") + b"." + raw_body
    return hmac.new(secret, signed, hashlib.sha256).hexdigest()


def sign_payload(raw_body: bytes, secret: bytes, timestamp: int | None = None) -> str:
    """Build a header value the way the gateway does (dev simulator, tests)."""
    ts = int(timestamp if timestamp is not None else time.time())
    return f"t={ts},{SIGNATURE_SCHEME}={compute_signature(raw_body, secret, ts)}"


def parse_signature_header(header: str | None) -> SignatureHeader:
    if not header:
        raise AuthenticationError("missing signature header")
    ts = None
    sigs = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                ts = int(value)
            except ValueError:
                raise AuthenticationError("malformed signature timestamp")
        elif key == SIGNATURE_SCHEME and value:
            sigs.append(value)
    if ts is None:
        raise AuthenticationError("signature header has no timestamp")
    if not sigs:
        raise AuthenticationError(f"signature header has no {SIGNATURE_SCHEME} signature")
    return SignatureHeader(ts, tuple(sigs))


def verify_signature(raw_body: bytes, header: str | None, secret: bytes, *,
                     now: float | None = None,
                     tolerance: int = DEFAULT_TOLERANCE_SEC) -> SignatureHeader:
    parsed = parse_signature_header(header)
    expected = compute_signature(raw_body, secret, parsed.timestamp)
    # compare against every candidate so rotated secrets keep working
    matched = False
    for sig in parsed.signatures:
        if hmac.compare_digest(expected, sig):
            matched = True
    if not matched:
        raise AuthenticationError("signature mismatch")

    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - parsed.timestamp) > tolerance:
        raise AuthenticationError("signature timestamp outside tolerance",
                                  detail={"timestamp": parsed.timestamp, "tolerance": tolerance})
    return parsed


def _session_object(payload: dict) -> dict:
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise DataError("event carries no data.object")
    return obj


def _customer_email(obj: dict) -> str:
    details = obj.get("customer_details") or {}
    email = details.get("email") if isinstance(details, dict) else None
    return email or obj.get("customer_email") or "unknown@example.com"


def parse_event(raw_body: bytes, sig: SignatureHeader, cart_secret: bytes) -> PaymentEvent:
    """Turn an already-verified body into a PaymentEvent; DataError if it cannot be."""
    try:
        payload: Any = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise DataError("webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise DataError("webhook body is not a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise DataError("event has no type")

    base = dict(
        event_id=payload.get("id"),
        event_type=event_type,
        signature=sig.signatures[0],
        timestamp=sig.timestamp,
        raw=payload,
    )
    if event_type not in FULFILLMENT_EVENT_TYPES:
        return PaymentEvent(external_session_id=None, amount_total=None, amount_total_minor=None,
                            currency=None, customer_email=None, payment_status=None,
                            lines=(), **base)

    obj = _session_object(payload)
    session_id = obj.get("id")
    if not isinstance(session_id, str) or not session_id:
        raise DataError("checkout session has no id")

    currency = obj.get("currency")
    if not isinstance(currency, str) or len(currency) != 3:
        raise DataError("checkout session has no currency")
    currency = currency.upper()

    amount_minor = obj.get("amount_total")
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor < 0:
        raise DataError("checkout session has no valid amount_total")

    return PaymentEvent(
        external_session_id=session_id,
        amount_total=from_minor(amount_minor, currency),
        amount_total_minor=amount_minor,
        currency=currency,
        customer_email=_customer_email(obj),
        payment_status=obj.get("payment_status"),
        lines=tuple(decode_cart_metadata(obj.get("metadata"), cart_secret)),
        **base,
    )


def verify_and_parse(raw_body: bytes, header: str | None, *, secret: bytes, cart_secret: bytes,
                     now: float | None = None,
                     tolerance: int = DEFAULT_TOLERANCE_SEC) -> PaymentEvent:
    sig = verify_signature(raw_body, header, secret, now=now, tolerance=tolerance)
    return parse_event(raw_body, sig, cart_secret)
