# controllers/payments.py
from __future__ import annotations
import json

from flask import Blueprint, abort, current_app, jsonify, redirect, request, url_for

from services.config import cart_secret, cfg, cfg_int, webhook_secret
from services.errors import AuthenticationError, DataError, GatewayError, ValidationError
from services.event_verifier import DEFAULT_TOLERANCE_SEC, sign_payload, verify_and_parse
from services.metrics import CHECKOUT_SESSIONS, WEBHOOK_EVENTS
from services.payments.dummy_provider import build_completion_event, unpack_session
from services.payments.registry import get_provider
from services.session_builder import CheckoutUrls, build_checkout_session

payments_bp = Blueprint("payments", __name__)


def _event_label(event_type: str | None) -> str:
    return (event_type or "unknown").replace(".", "_")


# ----- storefront starts a hosted checkout for its cart -----

@payments_bp.post("/api/stripe/checkout")
def create_checkout():
    payload = request.get_json(silent=True)
    provider = get_provider()
    urls = CheckoutUrls.for_frontend(cfg("FRONTEND_URL") or request.host_url)

    try:
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError("request body must be a JSON object")
        currency = payload.get("currency") or cfg("PAYMENT_CURRENCY") or "USD"
        if not isinstance(currency, str):
            raise ValidationError("currency must be a 3-letter ISO code")
        result = build_checkout_session(
            payload.get("lines", payload.get("items")), payload.get("customerEmail"),
            provider=provider, currency=currency.upper(), urls=urls, cart_secret=cart_secret(),
        )
    except ValidationError as e:
        CHECKOUT_SESSIONS.labels(provider=provider.name, outcome="validation_error").inc()
        return jsonify(e.to_dict()), e.status_code
    except GatewayError as e:
        CHECKOUT_SESSIONS.labels(provider=provider.name, outcome="gateway_error").inc()
        current_app.logger.error("Checkout session failed: %s %s", e.message, e.detail)
        return jsonify({"error": e.message}), e.status_code

    CHECKOUT_SESSIONS.labels(provider=provider.name, outcome="created").inc()
    current_app.logger.info("Checkout session %s created via %s", result.session_id, provider.name)
    return jsonify({
        "id": result.session_id, "sessionId": result.session_id,
        "url": result.redirect_url, "redirectUrl": result.redirect_url,
    })


# ----- gateway webhook (no session auth, signature-verified) -----

@payments_bp.post("/api/webhook/stripe")
def webhook():
    """
    Raw body in, signature checked, order materialized at most once.
    400 = gateway should retry later, 500 = store trouble before commit.
    """
    raw = request.get_data()
    header = request.headers.get(cfg("WEBHOOK_SIGNATURE_HEADER") or "Stripe-Signature")

    try:
        event = verify_and_parse(
            raw, header,
            secret=webhook_secret(), cart_secret=cart_secret(),
            tolerance=cfg_int("WEBHOOK_TOLERANCE_SEC", DEFAULT_TOLERANCE_SEC),
        )
    except AuthenticationError as e:
        WEBHOOK_EVENTS.labels(event="unknown", outcome="rejected").inc()
        current_app.logger.warning("Webhook rejected: %s", e.message)
        return jsonify({"error": f"Webhook Error: {e.message}"}), e.status_code
    except DataError as e:
        WEBHOOK_EVENTS.labels(event="unknown", outcome="rejected").inc()
        current_app.logger.error("Webhook body unusable: %s %s", e.message, e.detail)
        return jsonify({"error": f"Webhook Error: {e.message}"}), e.status_code

    label = _event_label(event.event_type)
    engine = current_app.extensions["fulfillment"]
    try:
        result = engine.handle(event)
    except DataError as e:
        WEBHOOK_EVENTS.labels(event=label, outcome="rejected").inc()
        current_app.logger.error("Webhook %s rejected: %s %s", event.event_id, e.message, e.detail)
        return jsonify({"error": f"Webhook Error: {e.message}"}), e.status_code
    except Exception:
        WEBHOOK_EVENTS.labels(event=label, outcome="error").inc()
        current_app.logger.exception("Database error processing webhook %s", event.event_id)
        return jsonify({"error": "temporarily unable to process event"}), 500

    WEBHOOK_EVENTS.labels(event=label, outcome=result.outcome).inc()
    return jsonify({"received": True, "outcome": result.outcome, "orderId": result.order_id}), 200


# ----- DEV ONLY: simulate a hosted checkout (used by DummyProvider) -----

@payments_bp.get("/api/payments/simulate")
def simulate_checkout():
    """
    Dev helper used by DummyProvider:
    - rebuilds the session from the signed token and signs a completion event
    - posts it to /api/webhook/stripe through the WSGI app
    - then redirects the shopper to the storefront's success URL
    """
    if current_app.config.get("APP_ENV") == "production":
        abort(404)
    try:
        descriptor = unpack_session(request.args.get("token") or "")
    except AuthenticationError:
        abort(400)

    body = json.dumps(build_completion_event(descriptor)).encode("utf-8")

    # Post internally
    from werkzeug.test import EnvironBuilder, run_wsgi_app

    builder = EnvironBuilder(method="POST", path=url_for("payments.webhook"),
                             data=body, content_type="application/json")
    env = builder.get_environ()
    header = cfg("WEBHOOK_SIGNATURE_HEADER") or "Stripe-Signature"
    env["HTTP_" + header.upper().replace("-", "_")] = sign_payload(body, webhook_secret())

    app_iter, status, _headers = run_wsgi_app(current_app.wsgi_app, env)
    try:
        for _ in app_iter:
            pass
    finally:
        if hasattr(app_iter, "close"):
            app_iter.close()
    current_app.logger.info("Simulated checkout %s -> webhook %s",
                            descriptor["session_id"], status)

    return redirect(descriptor.get("success_url") or "/")
