# services/notifier.py
"""
Best-effort receipt email.

The message is rendered in the caller's app context, then handed to a small
worker pool. The webhook never waits on the worker: delivery outcome is only
logged and counted. NOTIFY_TIMEOUT_SEC is a deadline counted from hand-off:
the socket gets only the time that is left, and a message still queued when
it passes is dropped. There is no retry queue.
"""

from __future__ import annotations
import logging
import smtplib
import socket
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
from typing import Optional, Protocol

from flask import render_template
from flask_babel import force_locale, format_currency, gettext as _

from services.errors import NotificationFailure
from services.metrics import NOTIFICATIONS

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class OrderReceipt:
    to_address: str
    order_id: int
    total_amount: Decimal
    currency: str
    items: tuple[ReceiptItem, ...]

    @classmethod
    def from_order(cls, order: dict) -> "OrderReceipt":
        return cls(
            to_address=order["customerEmail"],
            order_id=order["id"],
            total_amount=order["totalAmount"],
            currency=order["currency"],
            items=tuple(ReceiptItem(i["productName"], i["quantity"], i["unitPrice"])
                        for i in order["items"]),
        )


class MailTransport(Protocol):
    def send(self, message: EmailMessage, timeout: float) -> None: ...


class SMTPTransport:
    def __init__(self, host: str, port: int = 587, username: str | None = None,
                 password: str | None = None, use_tls: bool = True):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def send(self, message: EmailMessage, timeout: float) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


class LoggingTransport:
    """Dev transport: writes the envelope to the log instead of sending."""

    def send(self, message: EmailMessage, timeout: float) -> None:
        log.info("mail (not sent) to=%s subject=%r", message["To"], message["Subject"])


def render_receipt(receipt: OrderReceipt, sender: str, locale: str = "en") -> EmailMessage:
    """Build the receipt email. Needs an app context for templates and Babel."""
    with force_locale(locale):
        lines = [{
            "name": it.name,
            "quantity": it.quantity,
            "unit_price": format_currency(it.unit_price, receipt.currency),
        } for it in receipt.items]
        ctx = {
            "order_id": receipt.order_id,
            "total": format_currency(receipt.total_amount, receipt.currency),
            "currency": receipt.currency,
            "items": lines,
        }
        subject = _("Your Marketplace Order Confirmation")
        text_body = render_template("email/order_receipt.txt", **ctx)
        html_body = render_template("email/order_receipt.html", **ctx)

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = receipt.to_address
    msg["Subject"] = subject
    msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")
    return msg


class Notifier:
    def __init__(self, transport: MailTransport, sender: str,
                 timeout: float = 10.0, max_workers: int = 2):
        self.transport = transport
        self.sender = sender
        self.timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers,
                                        thread_name_prefix="notifier")

    def send_now(self, message: EmailMessage, timeout: float | None = None) -> None:
        timeout = self.timeout if timeout is None else timeout
        try:
            self.transport.send(message, timeout)
        except (TimeoutError, socket.timeout) as e:
            raise NotificationFailure("mail transport timed out",
                                      detail={"to": message["To"], "timeout": timeout}) from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure("mail transport failed",
                                      detail={"to": message["To"], "reason": str(e)}) from e

    def _deliver(self, message: EmailMessage, deadline: float) -> bool:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            NOTIFICATIONS.labels(outcome="timeout").inc()
            log.warning("receipt email to=%s dropped: waited %.1fs past its deadline in the queue",
                        message["To"], -remaining)
            return False
        try:
            self.send_now(message, remaining)
        except NotificationFailure as e:
            outcome = "timeout" if isinstance(e.__cause__, (TimeoutError, socket.timeout)) else "failed"
            NOTIFICATIONS.labels(outcome=outcome).inc()
            log.warning("receipt email dropped: %s %s", e.message, e.detail)
            return False
        except Exception:
            NOTIFICATIONS.labels(outcome="failed").inc()
            log.exception("receipt email dropped: unexpected transport error")
            return False
        NOTIFICATIONS.labels(outcome="sent").inc()
        log.info("receipt email sent to=%s", message["To"])
        return True

    def notify(self, receipt: OrderReceipt, locale: str = "en") -> Optional[Future]:
        """Render now, deliver in the background. Never raises."""
        try:
            message = render_receipt(receipt, self.sender, locale)
            return self._pool.submit(self._deliver, message, time.monotonic() + self.timeout)
        except Exception:
            NOTIFICATIONS.labels(outcome="failed").inc()
            log.exception("receipt email for order %s not dispatched", receipt.order_id)
            return None

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait)
