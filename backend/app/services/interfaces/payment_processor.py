"""
Payment processor interface.
Lets the issuer and the webhook pipeline run against Stripe in production
and an in-memory fake in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel


class CheckoutLineItem(BaseModel):
    name: str
    unit_amount_cents: int
    currency: str
    recurring_months: Optional[int] = None  # None for one-time payments


class CheckoutRequest(BaseModel):
    mode: str  # "payment" or "subscription"
    line_item: CheckoutLineItem
    metadata: dict[str, str]
    success_url: str
    cancel_url: str


class CheckoutSession(BaseModel):
    id: str
    url: str


class PaymentProcessor(ABC):
    """
    Interface for the external payment processor.

    Implementations:
    - StripeProcessor: Stripe Checkout + signed webhooks
    """

    @abstractmethod
    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Verify a webhook delivery and return the event as a plain dict.

        Raises:
            SignatureInvalid: missing or bad signature, or unparseable payload
        """

    @abstractmethod
    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted checkout link.

        Raises:
            ExternalProcessorError: the processor rejected or failed the call
        """
