# services/errors.py
"""
Failure taxonomy for checkout and webhook fulfillment.

Rejections (raised back to the immediate caller):
  ValidationError      bad cart input; nothing sent to the gateway or store
  GatewayError         the gateway could not mint a checkout session
  AuthenticationError  webhook signature/freshness check failed
  DataError            well-signed webhook whose body cannot become an order

Non-fatal (logged by the fulfillment engine, never propagated):
  StockAdjustmentFailure, NotificationFailure

A unique-constraint hit on order insert is not an error at all; see
models.orders_store.ConflictOutcome.
"""

from __future__ import annotations


class FulfillmentError(Exception):
    status_code = 500

    def __init__(self, message: str, *, detail: dict | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        out = {"error": self.message}
        if self.detail:
            out["detail"] = self.detail
        return out


class ValidationError(FulfillmentError):
    status_code = 400


class GatewayError(FulfillmentError):
    status_code = 502


class AuthenticationError(FulfillmentError):
    status_code = 400


class DataError(FulfillmentError):
    status_code = 400


class StockAdjustmentFailure(FulfillmentError):
    pass


class NotificationFailure(FulfillmentError):
    pass
