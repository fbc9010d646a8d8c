# services/payments/base.py
"""
Abstract interface for hosted-checkout gateways.
Adapters must implement PaymentProvider.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol


@dataclass(frozen=True)
class GatewayLineItem:
    name: str
    unit_amount: int              # minor units (cents, or yen for JPY)
    quantity: int
    currency: str                 # lower-case ISO code, as gateways expect
    images: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CheckoutSessionRequest:
    customer_email: str
    currency: str
    line_items: List[GatewayLineItem]
    metadata: Dict[str, str]
    success_url: str
    cancel_url: str


@dataclass
class CheckoutSessionResult:
    session_id: str               # gateway's id; becomes Order.external_session_id
    redirect_url: Optional[str]   # hosted payment page


class PaymentProvider(Protocol):
    name: str

    def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSessionResult:
        """
        Mint a hosted checkout session on the gateway.
        Raise services.errors.GatewayError on any upstream failure.
        """
