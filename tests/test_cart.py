from decimal import Decimal

import pytest

from services.cart import (
    METADATA_KEY, METADATA_SIG_KEY, METADATA_VALUE_LIMIT, check_minor_precision, decode_cart_metadata,
    encode_cart_metadata, from_minor, lines_total, parse_cart_lines, to_minor,
)
from services.errors import DataError, ValidationError
from tests.utils import line

SECRET = b"cart-secret"


def test_parse_lines_and_total():
    lines = parse_cart_lines([line("p1", 2, "10.00"), line("d1", 1, 29, kind="digital")])
    assert [ln.kind for ln in lines] == ["PHYSICAL", "DIGITAL"]
    assert lines[0].unit_price == Decimal("10.00")
    assert lines_total(lines) == Decimal("49.00")


@pytest.mark.parametrize("raw, fragment", [
    ([], "Cart is empty"),
    (None, "Cart is empty"),
    ([line("p1", 0, "1.00")], "quantity must be positive"),
    ([line("p1", -3, "1.00")], "quantity must be positive"),
    ([line("p1", 1.5, "1.00")], "quantity must be an integer"),
    ([line("p1", 1, "-0.01")], "unitPrice must not be negative"),
    ([line("p1", 1, "abc")], "unitPrice must be a number"),
    ([line("p1", 1, "1.00", kind="SERVICE")], "type must be PHYSICAL or DIGITAL"),
    ([{"quantity": 1, "unitPrice": "1", "name": "x", "type": "PHYSICAL"}], "productId is required"),
])
def test_parse_rejects_bad_lines(raw, fragment):
    with pytest.raises(ValidationError) as ei:
        parse_cart_lines(raw)
    assert fragment in ei.value.message


def test_minor_units_two_decimal_and_zero_decimal():
    assert to_minor(Decimal("20.00"), "USD") == 2000
    assert to_minor(Decimal("0.105"), "eur") == 11
    assert to_minor(Decimal("1500"), "JPY") == 1500
    assert from_minor(2000, "USD") == Decimal("20.00")
    assert from_minor(1500, "jpy") == Decimal("1500")


def test_metadata_envelope_roundtrip_with_chunks():
    lines = parse_cart_lines([line(f"p{i}", i + 1, "3.50", name="Item " + "x" * 40)
                              for i in range(20)])
    meta = encode_cart_metadata(lines, SECRET)
    assert all(len(v) <= METADATA_VALUE_LIMIT for v in meta.values())
    assert f"{METADATA_KEY}_1" in meta
    assert decode_cart_metadata(meta, SECRET) == lines


def test_metadata_tamper_and_wrong_secret_rejected():
    lines = parse_cart_lines([line("p1", 2, "10.00")])
    meta = encode_cart_metadata(lines, SECRET)

    forged = dict(meta)
    forged[METADATA_KEY] = meta[METADATA_KEY].replace('"quantity":2', '"quantity":1')
    with pytest.raises(DataError):
        decode_cart_metadata(forged, SECRET)

    with pytest.raises(DataError):
        decode_cart_metadata(meta, b"other-secret")

    unsigned = {k: v for k, v in meta.items() if k != METADATA_SIG_KEY}
    with pytest.raises(DataError):
        decode_cart_metadata(unsigned, SECRET)


def test_metadata_missing_cart_is_data_error():
    with pytest.raises(DataError):
        decode_cart_metadata({}, SECRET)
    with pytest.raises(DataError):
        decode_cart_metadata(None, SECRET)


def test_signed_but_invalid_lines_are_data_error():
    import hashlib
    import hmac
    body = '[{"productId":"p1","quantity":0,"unitPrice":"1.00","name":"x","type":"PHYSICAL"}]'
    meta = {METADATA_KEY: body,
            METADATA_SIG_KEY: hmac.new(SECRET, body.encode(), hashlib.sha256).hexdigest()}
    with pytest.raises(DataError):
        decode_cart_metadata(meta, SECRET)


def test_prices_must_fit_the_currency_minor_unit():
    check_minor_precision(parse_cart_lines([line("p1", 8, "0.13")]), "USD")
    check_minor_precision(parse_cart_lines([line("p1", 1, "1500.00")]), "JPY")

    with pytest.raises(ValidationError) as ei:
        check_minor_precision(parse_cart_lines([line("p1", 8, "0.125")]), "usd")
    assert ei.value.detail == {"line": 0, "unitPrice": "0.125"}
    with pytest.raises(ValidationError):
        check_minor_precision(parse_cart_lines([line("p1", 1, "10.5")]), "JPY")
