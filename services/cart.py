# services/cart.py
"""
Cart snapshot lines and the metadata envelope that carries them through the
payment gateway.

The envelope is the only copy of the cart the webhook ever sees:
  itemsJson, itemsJson_1, ...   compact JSON split into <= 500 char chunks
  itemsSig                      HMAC-SHA256(CART_SIGNING_SECRET, full JSON)
"""

from __future__ import annotations
import hashlib
import hmac
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from services.errors import DataError, FulfillmentError, ValidationError

KINDS = ("PHYSICAL", "DIGITAL")

METADATA_KEY = "itemsJson"
METADATA_SIG_KEY = "itemsSig"
METADATA_VALUE_LIMIT = 500
METADATA_MAX_KEYS = 50

# ISO codes the gateway treats as having no minor unit
ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    unit_price: Decimal
    name: str
    kind: str

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_metadata(self) -> dict:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
            "name": self.name,
            "type": self.kind,
        }


# ----- money helpers -----

def _minor_factor(currency: str) -> int:
    return 1 if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else 100


def to_minor(amount: Decimal, currency: str) -> int:
    factor = _minor_factor(currency)
    exp = Decimal("1") if factor == 1 else Decimal("0.01")
    return int(amount.quantize(exp, rounding=ROUND_HALF_UP) * factor)


def from_minor(units: int, currency: str) -> Decimal:
    factor = _minor_factor(currency)
    exp = Decimal("1") if factor == 1 else Decimal("0.01")
    return (Decimal(int(units)) / Decimal(factor)).quantize(exp)


def check_minor_precision(lines: Iterable[CartLine], currency: str,
                          error_cls: type[FulfillmentError] = ValidationError) -> None:
    """Prices must be whole minor units, or the charged amount drifts from the line sum."""
    exp = Decimal("1") if _minor_factor(currency) == 1 else Decimal("0.01")
    for i, ln in enumerate(lines):
        if ln.unit_price != ln.unit_price.quantize(exp):
            raise error_cls(f"line {i}: unitPrice has more precision than {currency.upper()} allows",
                            detail={"line": i, "unitPrice": str(ln.unit_price)})


def lines_total(lines: Iterable[CartLine]) -> Decimal:
    return sum((ln.subtotal for ln in lines), Decimal("0"))


# ----- parsing / validation -----

def _D(x: Any) -> Decimal:
    if isinstance(x, bool):
        raise InvalidOperation("bool is not a price")
    d = x if isinstance(x, Decimal) else Decimal(str(x))
    if not d.is_finite():
        raise InvalidOperation("non-finite price")
    return d


def parse_cart_line(raw: Any, index: int,
                    error_cls: type[FulfillmentError] = ValidationError) -> CartLine:
    if not isinstance(raw, dict):
        raise error_cls(f"line {index}: expected an object")

    product_id = raw.get("productId")
    if product_id is None or str(product_id).strip() == "":
        raise error_cls(f"line {index}: productId is required")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise error_cls(f"line {index}: name is required")

    qty = raw.get("quantity")
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise error_cls(f"line {index}: quantity must be an integer")
    if qty <= 0:
        raise error_cls(f"line {index}: quantity must be positive",
                        detail={"line": index, "quantity": qty})

    try:
        price = _D(raw.get("unitPrice"))
    except (InvalidOperation, ValueError, TypeError):
        raise error_cls(f"line {index}: unitPrice must be a number")
    if price < 0:
        raise error_cls(f"line {index}: unitPrice must not be negative",
                        detail={"line": index, "unitPrice": str(price)})

    kind = str(raw.get("type") or raw.get("kind") or "").upper()
    if kind not in KINDS:
        raise error_cls(f"line {index}: type must be PHYSICAL or DIGITAL")

    return CartLine(str(product_id), qty, price, name.strip(), kind)


def parse_cart_lines(raw_lines: Any,
                     error_cls: type[FulfillmentError] = ValidationError) -> list[CartLine]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise error_cls("Cart is empty")
    return [parse_cart_line(r, i, error_cls) for i, r in enumerate(raw_lines)]


# ----- metadata envelope -----

def _sign(secret: bytes, body: str) -> str:
    return hmac.new(secret, body.encode("utf-8"), hashlib.sha256).hexdigest()


def _chunk_key(i: int) -> str:
    return METADATA_KEY if i == 0 else f"{METADATA_KEY}_{i}"


def encode_cart_metadata(lines: list[CartLine], secret: bytes) -> dict[str, str]:
    body = json.dumps([ln.to_metadata() for ln in lines],
                      ensure_ascii=False, separators=(",", ":"))
    chunks = [body[i:i + METADATA_VALUE_LIMIT]
              for i in range(0, len(body), METADATA_VALUE_LIMIT)]
    if len(chunks) + 1 > METADATA_MAX_KEYS:
        raise ValidationError("Cart is too large for a single checkout",
                              detail={"lines": len(lines)})
    out = {_chunk_key(i): c for i, c in enumerate(chunks)}
    out[METADATA_SIG_KEY] = _sign(secret, body)
    return out


def decode_cart_metadata(metadata: Any, secret: bytes) -> list[CartLine]:
    """Rebuild and authenticate the cart lines from gateway metadata; DataError on any defect."""
    if not isinstance(metadata, dict) or METADATA_KEY not in metadata:
        raise DataError("event metadata carries no cart")

    parts = []
    i = 0
    while _chunk_key(i) in metadata:
        parts.append(str(metadata[_chunk_key(i)]))
        i += 1
    body = "".join(parts)

    sig = metadata.get(METADATA_SIG_KEY)
    if not sig or not hmac.compare_digest(_sign(secret, body), str(sig)):
        raise DataError("cart metadata signature mismatch")

    try:
        raw_lines = json.loads(body)
    except ValueError:
        raise DataError("cart metadata is not valid JSON")
    return parse_cart_lines(raw_lines, error_cls=DataError)
