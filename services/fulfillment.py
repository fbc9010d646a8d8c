# services/fulfillment.py
"""
Fulfillment engine: verified payment event -> durable order, exactly once.

Per external session id there are two states, absent and materialized.
  1. read: order already there -> duplicate delivery, acknowledge
  2. insert order + items under UNIQUE(external_session_id); losing the race
     yields ConflictOutcome, which is acknowledged the same way
  3. claim and apply stock decrements for PHYSICAL lines (best effort)
  4. hand the receipt to the notifier (best effort, detached)

Anything raised before step 2 commits propagates so the gateway redelivers.
Nothing after the commit is allowed to escape.
"""

from __future__ import annotations
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from models import orders_store, products_store
from models.orders_store import ConflictOutcome
from services.cart import lines_total
from services.errors import DataError, StockAdjustmentFailure
from services.event_verifier import PaymentEvent
from services.metrics import ORDER_CONFLICTS, ORDERS_MATERIALIZED, STOCK_ADJUST_FAILURES
from services.notifier import Notifier, OrderReceipt

log = logging.getLogger(__name__)

MATERIALIZED = "materialized"
DUPLICATE = "duplicate"
CONFLICT = "conflict"
IGNORED = "ignored"


@dataclass(frozen=True)
class FulfillmentResult:
    outcome: str
    order_id: Optional[int] = None
    stock_failures: tuple[str, ...] = ()
    notification: Optional[Future] = field(default=None, compare=False, repr=False)


def reconcile_amount(event: PaymentEvent, tolerance: Decimal) -> Decimal:
    """Line sum must match the gateway total; the gateway total is what gets stored."""
    line_sum = lines_total(event.lines)
    if abs(line_sum - event.amount_total) > tolerance:
        raise DataError("cart lines do not add up to the paid amount",
                        detail={"sessionId": event.external_session_id,
                                "lineSum": str(line_sum),
                                "amountTotal": str(event.amount_total)})
    return event.amount_total


class FulfillmentEngine:
    def __init__(self, notifier: Optional[Notifier] = None, *,
                 tolerance: Decimal = Decimal("0.01"), receipt_locale: str = "en"):
        self.notifier = notifier
        self.tolerance = tolerance
        self.receipt_locale = receipt_locale

    def handle(self, event: PaymentEvent) -> FulfillmentResult:
        if not event.is_fulfillment_candidate:
            log.info("webhook %s: ignoring event type", event.event_type)
            return FulfillmentResult(IGNORED)
        if not event.is_paid:
            log.info("webhook %s for %s: payment_status=%s, waiting for async success",
                     event.event_type, event.external_session_id, event.payment_status)
            return FulfillmentResult(IGNORED)

        sid = event.external_session_id
        total = reconcile_amount(event, self.tolerance)

        existing = orders_store.find_order_id_by_session(sid)
        if existing is not None:
            log.info("session %s already materialized as order %s", sid, existing)
            return FulfillmentResult(DUPLICATE, existing, self._settle_stock(existing))

        outcome = orders_store.insert_order_once(
            sid, event.customer_email, event.currency, total, event.lines)

        if isinstance(outcome, ConflictOutcome):
            ORDER_CONFLICTS.inc()
            log.info("session %s lost insert race to order %s", sid, outcome.order_id)
            return FulfillmentResult(CONFLICT, outcome.order_id, self._settle_stock(outcome.order_id))

        # --- committed: from here on the answer to the gateway is success ---
        order_id = outcome.order_id
        ORDERS_MATERIALIZED.labels(currency=event.currency).inc()
        log.info("order %s materialized for session %s total=%s %s",
                 order_id, sid, total, event.currency)

        failures = self._settle_stock(order_id)
        future = self._notify(order_id)
        return FulfillmentResult(MATERIALIZED, order_id, failures, future)

    def _settle_stock(self, order_id: int) -> tuple[str, ...]:
        """Apply decrements once per order; whoever wins the claim does the work."""
        try:
            if not orders_store.claim_stock_adjustment(order_id):
                return ()
            order = orders_store.get_order(order_id)
        except Exception:
            log.exception("order %s: stock claim failed, stock left untouched", order_id)
            STOCK_ADJUST_FAILURES.inc()
            return ("*",)

        failed = []
        for item in order["items"]:
            if item["kind"] != "PHYSICAL":
                continue
            try:
                left = products_store.decrement_stock(item["productId"], item["quantity"])
                if left < 0:
                    log.warning("product %s oversold by %s (order %s)",
                                item["productId"], -left, order_id)
            except StockAdjustmentFailure as e:
                STOCK_ADJUST_FAILURES.inc()
                failed.append(item["productId"])
                log.warning("order %s: %s %s", order_id, e.message, e.detail)
            except Exception:
                STOCK_ADJUST_FAILURES.inc()
                failed.append(item["productId"])
                log.exception("order %s: stock decrement for %s failed",
                              order_id, item["productId"])
        return tuple(failed)

    def _notify(self, order_id: int) -> Optional[Future]:
        if self.notifier is None:
            return None
        try:
            order = orders_store.get_order(order_id)
            return self.notifier.notify(OrderReceipt.from_order(order), self.receipt_locale)
        except Exception:
            log.exception("order %s: receipt not dispatched", order_id)
            return None
