# services/payments/registry.py
from flask import current_app, has_app_context

from services.config import cfg
from services.payments.dummy_provider import DummyProvider


def get_provider():
    # an app may pin a provider instance (tests, or a preconfigured client)
    if has_app_context():
        pinned = current_app.extensions.get("payment_provider")
        if pinned is not None:
            return pinned

    name = (cfg("PAYMENT_PROVIDER") or "dummy").lower()
    if name == "dummy":
        return DummyProvider()
    if name == "stripe":
        # imported lazily so dev setups don't need the Stripe SDK configured
        from services.payments.stripe_provider import StripeProvider
        return StripeProvider()
    raise RuntimeError(f"Unknown PAYMENT_PROVIDER: {name}")
