# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Checkout ---
CHECKOUT_SESSIONS = Counter(
    "checkout_sessions_total", "Checkout session attempts",
    ["provider", "outcome"], registry=APP_REGISTRY
)

# --- Webhook / fulfillment ---
WEBHOOK_EVENTS = Counter(
    "payments_webhook_events_total", "Webhook deliveries",
    ["event", "outcome"], registry=APP_REGISTRY
)
ORDERS_MATERIALIZED = Counter(
    "orders_materialized_total", "Orders created from payment events",
    ["currency"], registry=APP_REGISTRY
)
ORDER_CONFLICTS = Counter(
    "orders_conflict_total", "Duplicate deliveries absorbed by the unique constraint",
    registry=APP_REGISTRY
)
STOCK_ADJUST_FAILURES = Counter(
    "stock_adjustment_failures_total", "Stock decrements that could not be applied",
    registry=APP_REGISTRY
)
NOTIFICATIONS = Counter(
    "order_notifications_total", "Receipt emails by outcome",
    ["outcome"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for outcome in ("created", "validation_error", "gateway_error"):
        CHECKOUT_SESSIONS.labels(provider="dummy", outcome=outcome).inc(0)
    for outcome in ("materialized", "duplicate", "ignored", "rejected", "error"):
        WEBHOOK_EVENTS.labels(event="checkout_session_completed", outcome=outcome).inc(0)
    for outcome in ("sent", "failed", "timeout"):
        NOTIFICATIONS.labels(outcome=outcome).inc(0)
    ORDER_CONFLICTS.inc(0)
    STOCK_ADJUST_FAILURES.inc(0)
