# services/payments/stripe_provider.py
from __future__ import annotations
import stripe

from services.config import cfg
from services.errors import GatewayError
from services.payments.base import CheckoutSessionRequest, CheckoutSessionResult


class StripeProvider:
    name = "stripe"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or cfg("STRIPE_SECRET_KEY")
        if not self.api_key:
            raise RuntimeError("STRIPE_SECRET_KEY not set")

    def _line_items(self, req: CheckoutSessionRequest) -> list[dict]:
        return [{
            "price_data": {
                "currency": li.currency,
                "product_data": {"name": li.name, "images": li.images},
                "unit_amount": li.unit_amount,
            },
            "quantity": li.quantity,
        } for li in req.line_items]

    def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSessionResult:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                customer_email=req.customer_email,
                line_items=self._line_items(req),
                mode="payment",
                success_url=req.success_url,
                cancel_url=req.cancel_url,
                metadata=req.metadata,
            )
        except stripe.StripeError as e:
            raise GatewayError("Failed to create checkout session",
                               detail={"gateway": self.name, "reason": getattr(e, "user_message", None) or str(e)})
        return CheckoutSessionResult(session_id=session.id, redirect_url=session.url)
