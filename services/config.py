# services/config.py
"""Settings lookup: environment first, then Flask config."""

from __future__ import annotations
import os

from flask import current_app, has_app_context


def cfg(key: str, default=None):
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def cfg_int(key: str, default: int) -> int:
    v = cfg(key)
    return default if v in (None, "") else int(v)


def webhook_secret() -> bytes:
    return (cfg("PAYMENT_WEBHOOK_SECRET") or "dev").encode("utf-8")


def cart_secret() -> bytes:
    # falls back to the webhook secret so a single-secret dev setup still signs carts
    return (cfg("CART_SIGNING_SECRET") or cfg("PAYMENT_WEBHOOK_SECRET") or "dev").encode("utf-8")

